from datetime import timedelta
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from safetysecretary.db.tenant_models import (
    CorrectiveAction,
    Hazard,
    ProcessStep,
    ProposedControl,
    RiskAssessmentCase,
)
from safetysecretary.domain.errors import CaseNotFoundError
from safetysecretary.domain.models import utcnow
from safetysecretary.services.llm_schemas import ActionSuggestion, ControlSuggestion, ExtractedHazard, ExtractedStep
from safetysecretary.tenancy.registry import TenantHandle

HAZARD_CATEGORIES = [
    "MECHANICAL",
    "FALLS",
    "ELECTRICAL",
    "HAZARDOUS_SUBSTANCES",
    "FIRE_EXPLOSION",
    "THERMAL",
    "PHYSICAL",
    "ENVIRONMENTAL",
    "ERGONOMIC",
    "PSYCHOSOCIAL",
    "CONTROL_FAILURES",
    "POWER_FAILURE",
    "ORGANIZATIONAL",
]


def _key(text: str) -> str:
    return " ".join(text.split()).casefold()


class RiskAssessmentService:
    """HIRA cases: process steps, hazards, proposed controls and corrective actions."""

    def __init__(self, handle: TenantHandle):
        self.handle = handle

    async def _ensure_case(self, session: AsyncSession, case_id: str) -> None:
        stmt = select(RiskAssessmentCase.id).where(RiskAssessmentCase.id == case_id)
        if await session.scalar(stmt) is None:
            raise CaseNotFoundError(case_id, kind="Risk assessment")

    async def create_case(
        self,
        activity_name: str,
        location: Optional[str] = None,
        team: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> RiskAssessmentCase:
        async with self.handle.session() as session:
            ra_case = RiskAssessmentCase(
                activity_name=activity_name, location=location, team=team, created_by=created_by
            )
            session.add(ra_case)
            await session.commit()
            case_id = ra_case.id
        return await self.get_case(case_id)

    async def get_case(self, case_id: str) -> Optional[RiskAssessmentCase]:
        async with self.handle.session() as session:
            stmt = select(RiskAssessmentCase).where(RiskAssessmentCase.id == case_id)
            return await session.scalar(stmt)

    async def set_steps_from_extraction(self, case_id: str, steps: list[ExtractedStep]) -> RiskAssessmentCase:
        """
        Replaces the case's steps with the extracted ones.
        Hazards hang off steps, so they go too, along with their controls and actions.
        """
        async with self.handle.session() as session:
            await self._ensure_case(session, case_id)

            hazard_ids = select(Hazard.id).where(Hazard.case_id == case_id)
            await session.execute(delete(ProposedControl).where(ProposedControl.hazard_id.in_(hazard_ids)))
            await session.execute(delete(CorrectiveAction).where(CorrectiveAction.hazard_id.in_(hazard_ids)))
            await session.execute(delete(Hazard).where(Hazard.case_id == case_id))
            await session.execute(delete(ProcessStep).where(ProcessStep.case_id == case_id))

            for index, step in enumerate(steps):
                session.add(ProcessStep(
                    case_id=case_id,
                    order_index=index,
                    activity=step.activity,
                    equipment=list(step.equipment),
                    substances=list(step.substances),
                    description=step.description,
                ))
            await session.commit()

        return await self.get_case(case_id)

    async def merge_extracted_hazards(self, case_id: str, hazards: list[ExtractedHazard]) -> RiskAssessmentCase:
        """
        Upserts hazards by (step, label). Unknown step ids fall back to the first step;
        a case without steps gets no hazards.
        """
        async with self.handle.session() as session:
            await self._ensure_case(session, case_id)

            stmt = select(ProcessStep.id).where(ProcessStep.case_id == case_id).order_by(ProcessStep.order_index)
            step_ids = list((await session.scalars(stmt)).all())
            valid_step_ids = set(step_ids)
            default_step_id = step_ids[0] if step_ids else None

            stmt = select(Hazard).where(Hazard.case_id == case_id)
            existing = {(h.step_id, _key(h.label)): h for h in (await session.scalars(stmt)).all()}
            next_order: dict[str, int] = {}
            for hazard in existing.values():
                next_order[hazard.step_id] = max(next_order.get(hazard.step_id, 0), hazard.order_index + 1)

            for extracted in hazards:
                targets = [s for s in extracted.step_ids if s in valid_step_ids]
                if not targets and default_step_id:
                    targets = [default_step_id]
                category = extracted.category_code if extracted.category_code in HAZARD_CATEGORIES else None

                for step_id in dict.fromkeys(targets):
                    current = existing.get((step_id, _key(extracted.label)))
                    if current is not None:
                        if extracted.description:
                            current.description = extracted.description
                        if category:
                            current.category_code = category
                        merged = list(current.existing_controls or [])
                        merged += [c for c in extracted.existing_controls if c not in merged]
                        current.existing_controls = merged
                        continue

                    hazard = Hazard(
                        case_id=case_id,
                        step_id=step_id,
                        order_index=next_order.get(step_id, 0),
                        label=extracted.label,
                        description=extracted.description,
                        category_code=category,
                        existing_controls=list(dict.fromkeys(extracted.existing_controls)),
                    )
                    next_order[step_id] = hazard.order_index + 1
                    session.add(hazard)
                    existing[(step_id, _key(extracted.label))] = hazard

            await session.commit()

        return await self.get_case(case_id)

    async def merge_suggested_controls(self, case_id: str, suggestions: list[ControlSuggestion]) -> int:
        """
        Adds proposed controls, skipping ones the hazard already has.
        Returns how many controls were added.
        """
        added = 0
        async with self.handle.session() as session:
            await self._ensure_case(session, case_id)

            stmt = select(Hazard).where(Hazard.case_id == case_id)
            hazards = {h.id: h for h in (await session.scalars(stmt)).all()}

            for suggestion in suggestions:
                hazard = hazards.get(suggestion.hazard_id)
                if hazard is None:
                    continue

                known = {_key(c.description) for c in hazard.controls}
                order_index = len(hazard.controls)
                for description in suggestion.controls:
                    if _key(description) in known:
                        continue
                    known.add(_key(description))
                    session.add(ProposedControl(
                        hazard_id=hazard.id,
                        order_index=order_index,
                        description=description,
                        hierarchy=suggestion.hierarchy,
                    ))
                    order_index += 1
                    added += 1

                if suggestion.residual_severity and suggestion.residual_likelihood:
                    hazard.residual_severity = suggestion.residual_severity
                    hazard.residual_likelihood = suggestion.residual_likelihood

            await session.commit()
        return added

    async def create_suggested_actions(self, case_id: str, suggestions: list[ActionSuggestion]) -> int:
        """Returns the number of actions created; duplicates and unknown hazards are skipped."""
        created = 0
        async with self.handle.session() as session:
            await self._ensure_case(session, case_id)

            stmt = select(Hazard.id).where(Hazard.case_id == case_id)
            hazard_ids = set((await session.scalars(stmt)).all())

            stmt = select(CorrectiveAction).where(CorrectiveAction.case_id == case_id)
            actions = (await session.scalars(stmt)).all()
            known = {(a.hazard_id, _key(a.description)) for a in actions}
            order_index = len(actions)

            for suggestion in suggestions:
                description = suggestion.description.strip()
                if not description or suggestion.hazard_id not in hazard_ids:
                    continue
                if (suggestion.hazard_id, _key(description)) in known:
                    continue
                known.add((suggestion.hazard_id, _key(description)))

                due_date = None
                if suggestion.due_in_days is not None:
                    due_date = utcnow() + timedelta(days=suggestion.due_in_days)
                session.add(CorrectiveAction(
                    case_id=case_id,
                    hazard_id=suggestion.hazard_id,
                    order_index=order_index,
                    description=description,
                    owner=(suggestion.owner or "").strip() or None,
                    due_date=due_date,
                ))
                order_index += 1
                created += 1

            await session.commit()
        return created
