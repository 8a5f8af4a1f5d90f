from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from safetysecretary.db.tenant_models import (
    IncidentAccount,
    IncidentCase,
    IncidentCauseAction,
    IncidentCauseNode,
    IncidentFact,
    IncidentPerson,
    IncidentPersonalEvent,
    IncidentTimelineEvent,
    IncidentTimelineSource,
)
from safetysecretary.domain.errors import AccountNotFoundError, CaseNotFoundError
from safetysecretary.domain.models import utcnow
from safetysecretary.services.llm_schemas import CauseActionSuggestion, IncidentEventItem
from safetysecretary.tenancy.registry import TenantHandle


@dataclass
class TimelineSourceRef:
    account_id: str
    fact_id: Optional[str] = None
    personal_event_id: Optional[str] = None


@dataclass
class TimelineRow:
    text: str
    time_label: Optional[str] = None
    confidence: str = "LIKELY"
    sources: list[TimelineSourceRef] = field(default_factory=list)


@dataclass
class CauseNodeDraft:
    statement: str
    parent_id: Optional[str] = None
    question: Optional[str] = None
    timeline_event_id: Optional[str] = None
    is_root_cause: bool = False


def _key(text: str) -> str:
    return " ".join(text.split()).casefold()


class IncidentService:
    """Incident investigations: accounts, facts, the merged timeline and the cause tree."""

    def __init__(self, handle: TenantHandle):
        self.handle = handle

    async def _ensure_case(self, session: AsyncSession, case_id: str) -> None:
        stmt = select(IncidentCase.id).where(IncidentCase.id == case_id)
        if await session.scalar(stmt) is None:
            raise CaseNotFoundError(case_id, kind="Incident case")

    async def _ensure_account(self, session: AsyncSession, case_id: str, account_id: str) -> None:
        stmt = select(IncidentAccount.id).where(
            IncidentAccount.id == account_id,
            IncidentAccount.case_id == case_id,
        )
        if await session.scalar(stmt) is None:
            raise AccountNotFoundError(account_id, case_id)

    async def create_case(
        self,
        title: str,
        incident_type: str = "NEAR_MISS",
        location: Optional[str] = None,
        coordinator_role: str = "Coordinator",
        coordinator_name: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> IncidentCase:
        async with self.handle.session() as session:
            incident = IncidentCase(
                title=title,
                incident_type=incident_type,
                location=location,
                coordinator_role=coordinator_role,
                coordinator_name=coordinator_name,
                created_by=created_by,
            )
            session.add(incident)
            await session.commit()
            case_id = incident.id
        return await self.get_case(case_id)

    async def get_case(self, case_id: str) -> Optional[IncidentCase]:
        async with self.handle.session() as session:
            return await session.scalar(select(IncidentCase).where(IncidentCase.id == case_id))

    async def add_person(self, case_id: str, role: str, name: Optional[str] = None) -> IncidentPerson:
        async with self.handle.session() as session:
            await self._ensure_case(session, case_id)
            person = IncidentPerson(case_id=case_id, role=role, name=name)
            session.add(person)
            await session.commit()
            return person

    async def add_account(
        self, case_id: str, person_id: str, raw_statement: Optional[str] = None
    ) -> IncidentAccount:
        async with self.handle.session() as session:
            await self._ensure_case(session, case_id)
            stmt = select(IncidentPerson.id).where(
                IncidentPerson.id == person_id,
                IncidentPerson.case_id == case_id,
            )
            if await session.scalar(stmt) is None:
                raise CaseNotFoundError(person_id, kind="Person")

            account = IncidentAccount(case_id=case_id, person_id=person_id, raw_statement=raw_statement)
            session.add(account)
            await session.commit()
            account_id = account.id

        async with self.handle.session() as session:
            return await session.scalar(select(IncidentAccount).where(IncidentAccount.id == account_id))

    async def update_assistant_draft(
        self, case_id: str, narrative: Optional[str], draft: dict[str, Any]
    ) -> IncidentCase:
        async with self.handle.session() as session:
            incident = await session.get(IncidentCase, case_id)
            if incident is None:
                raise CaseNotFoundError(case_id, kind="Incident case")
            incident.assistant_narrative = narrative
            incident.assistant_draft = draft
            incident.assistant_draft_updated_at = utcnow()
            await session.commit()
        return await self.get_case(case_id)

    async def replace_account_facts(self, case_id: str, account_id: str, facts: list[str]) -> int:
        async with self.handle.session() as session:
            await self._ensure_account(session, case_id, account_id)

            old_ids = select(IncidentFact.id).where(IncidentFact.account_id == account_id)
            await session.execute(
                update(IncidentTimelineSource)
                .where(IncidentTimelineSource.fact_id.in_(old_ids))
                .values(fact_id=None)
            )
            await session.execute(delete(IncidentFact).where(IncidentFact.account_id == account_id))

            for index, text in enumerate(facts):
                session.add(IncidentFact(account_id=account_id, order_index=index, text=text))
            await session.commit()
        return len(facts)

    async def replace_account_personal_events(
        self, case_id: str, account_id: str, events: list[IncidentEventItem]
    ) -> int:
        async with self.handle.session() as session:
            await self._ensure_account(session, case_id, account_id)

            old_ids = select(IncidentPersonalEvent.id).where(IncidentPersonalEvent.account_id == account_id)
            await session.execute(
                update(IncidentTimelineSource)
                .where(IncidentTimelineSource.personal_event_id.in_(old_ids))
                .values(personal_event_id=None)
            )
            await session.execute(
                delete(IncidentPersonalEvent).where(IncidentPersonalEvent.account_id == account_id)
            )

            for index, event in enumerate(events):
                session.add(IncidentPersonalEvent(
                    account_id=account_id,
                    order_index=index,
                    time_label=event.time_label,
                    text=event.text,
                ))
            await session.commit()
        return len(events)

    async def replace_timeline_from_merge(self, case_id: str, rows: list[TimelineRow]) -> IncidentCase:
        async with self.handle.session() as session:
            await self._ensure_case(session, case_id)

            event_ids = select(IncidentTimelineEvent.id).where(IncidentTimelineEvent.case_id == case_id)
            await session.execute(
                update(IncidentCauseNode)
                .where(IncidentCauseNode.case_id == case_id)
                .values(timeline_event_id=None)
            )
            await session.execute(
                delete(IncidentTimelineSource).where(IncidentTimelineSource.timeline_event_id.in_(event_ids))
            )
            await session.execute(delete(IncidentTimelineEvent).where(IncidentTimelineEvent.case_id == case_id))

            for index, row in enumerate(rows):
                event = IncidentTimelineEvent(
                    case_id=case_id,
                    order_index=index,
                    time_label=row.time_label,
                    text=row.text,
                    confidence=row.confidence,
                )
                event.sources = [
                    IncidentTimelineSource(
                        account_id=source.account_id,
                        fact_id=source.fact_id,
                        personal_event_id=source.personal_event_id,
                    )
                    for source in row.sources
                ]
                session.add(event)
            await session.commit()

        return await self.get_case(case_id)

    async def merge_cause_nodes(self, case_id: str, drafts: list[CauseNodeDraft]) -> int:
        """
        Adds cause nodes, upserting by (parent, statement). An existing node only ever
        gains the root-cause mark, never loses it. Drafts naming a parent outside the
        case are skipped. Returns how many nodes were created.
        """
        created = 0
        async with self.handle.session() as session:
            await self._ensure_case(session, case_id)

            stmt = select(IncidentCauseNode).where(IncidentCauseNode.case_id == case_id)
            nodes = (await session.scalars(stmt)).all()
            node_ids = {n.id for n in nodes}
            by_key = {(n.parent_id, _key(n.statement)): n for n in nodes}

            stmt = select(IncidentTimelineEvent.id).where(IncidentTimelineEvent.case_id == case_id)
            event_ids = set((await session.scalars(stmt)).all())
            order_index = len(nodes)

            for draft in drafts:
                statement = draft.statement.strip()
                if not statement:
                    continue
                if draft.parent_id is not None and draft.parent_id not in node_ids:
                    continue
                timeline_event_id = draft.timeline_event_id if draft.timeline_event_id in event_ids else None

                current = by_key.get((draft.parent_id, _key(statement)))
                if current is not None:
                    current.is_root_cause = current.is_root_cause or draft.is_root_cause
                    if draft.question and not current.question:
                        current.question = draft.question
                    if timeline_event_id and not current.timeline_event_id:
                        current.timeline_event_id = timeline_event_id
                    continue

                node = IncidentCauseNode(
                    case_id=case_id,
                    parent_id=draft.parent_id,
                    timeline_event_id=timeline_event_id,
                    order_index=order_index,
                    statement=statement,
                    question=draft.question,
                    is_root_cause=draft.is_root_cause,
                )
                session.add(node)
                by_key[(draft.parent_id, _key(statement))] = node
                order_index += 1
                created += 1

            await session.commit()
        return created

    async def merge_cause_actions(self, case_id: str, suggestions: list[CauseActionSuggestion]) -> int:
        """Returns the number of actions created; duplicates and unknown nodes are skipped."""
        created = 0
        async with self.handle.session() as session:
            await self._ensure_case(session, case_id)

            stmt = select(IncidentCauseNode).where(IncidentCauseNode.case_id == case_id)
            nodes = {n.id: n for n in (await session.scalars(stmt)).all()}
            known = {
                (node.id, _key(action.description)) for node in nodes.values() for action in node.actions
            }
            next_order = {node.id: len(node.actions) for node in nodes.values()}

            for suggestion in suggestions:
                description = suggestion.description.strip()
                if not description or suggestion.cause_node_id not in nodes:
                    continue
                key = (suggestion.cause_node_id, _key(description))
                if key in known:
                    continue
                known.add(key)

                due_date = None
                if suggestion.due_in_days is not None:
                    due_date = utcnow() + timedelta(days=suggestion.due_in_days)
                session.add(IncidentCauseAction(
                    cause_node_id=suggestion.cause_node_id,
                    order_index=next_order[suggestion.cause_node_id],
                    description=description,
                    owner_role=suggestion.owner_role,
                    due_date=due_date,
                    action_type=suggestion.action_type,
                ))
                next_order[suggestion.cause_node_id] += 1
                created += 1

            await session.commit()
        return created
