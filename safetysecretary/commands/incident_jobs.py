from typing import Any, Optional

from safetysecretary.db.tenant_models import IncidentCase, IncidentCauseNode
from safetysecretary.domain.errors import CaseNotFoundError
from safetysecretary.domain.inputs import (
    IncidentActionCoachingInput,
    IncidentCauseCoachingInput,
    IncidentConsistencyInput,
    IncidentNarrativeInput,
    IncidentRootCauseCoachingInput,
    IncidentTimelineMergeInput,
    IncidentWitnessInput,
)
from safetysecretary.scheduler.context import HandlerContext
from safetysecretary.services.incident_service import CauseNodeDraft, TimelineRow, TimelineSourceRef


async def _load_case(ctx: HandlerContext, payload):
    incident_service = ctx.tenant(payload).incident_service
    incident = await incident_service.get_case(payload.case_id)
    if incident is None:
        raise CaseNotFoundError(payload.case_id, kind="Incident case")
    return incident_service, incident


def _timeline_context(incident: IncidentCase, with_ids: bool = False) -> list[dict[str, Any]]:
    timeline = []
    for event in incident.timeline_events:
        item = {"timeLabel": event.time_label, "text": event.text}
        if with_ids:
            item["id"] = event.id
        timeline.append(item)
    return timeline


def _select_nodes(
    incident: IncidentCase, requested: Optional[list[str]], default: str
) -> list[IncidentCauseNode]:
    """
    Nodes a coaching job works on. Explicit ids are filtered to the case;
    otherwise `default` picks "leaves" (unmarked leaf nodes) or "roots"
    (root causes, falling back to leaves when none is marked).
    """
    nodes = incident.cause_nodes
    if requested is not None:
        wanted = set(requested)
        return [node for node in nodes if node.id in wanted]

    parents = {node.parent_id for node in nodes if node.parent_id}
    leaves = [node for node in nodes if node.id not in parents]
    if default == "roots":
        roots = [node for node in nodes if node.is_root_cause]
        return roots or leaves
    return [node for node in leaves if not node.is_root_cause]


async def extract_narrative(ctx: HandlerContext, payload: IncidentNarrativeInput) -> dict[str, Any]:
    incident_service = ctx.tenant(payload).incident_service
    extraction = await ctx.extraction.extract_incident_narrative(payload.narrative)
    await incident_service.update_assistant_draft(
        payload.case_id,
        narrative=payload.narrative,
        draft=extraction.model_dump(mode="json", by_alias=True),
    )
    return {
        "factsExtracted": len(extraction.facts),
        "eventsExtracted": len(extraction.timeline),
        "clarifications": extraction.clarifications,
    }


async def extract_witness(ctx: HandlerContext, payload: IncidentWitnessInput) -> dict[str, Any]:
    incident_service = ctx.tenant(payload).incident_service
    extraction = await ctx.extraction.extract_incident_witness(payload.statement)
    facts = await incident_service.replace_account_facts(
        payload.case_id, payload.account_id, [fact.text for fact in extraction.facts]
    )
    events = await incident_service.replace_account_personal_events(
        payload.case_id, payload.account_id, extraction.personal_timeline
    )
    return {
        "factsExtracted": facts,
        "eventsExtracted": events,
        "openQuestions": extraction.open_questions,
    }


async def merge_timeline(ctx: HandlerContext, payload: IncidentTimelineMergeInput) -> dict[str, Any]:
    incident_service, incident = await _load_case(ctx, payload)
    accounts = [
        {
            "accountId": account.id,
            "role": account.person.role if account.person else None,
            "name": account.person.name if account.person else None,
            "facts": [{"text": fact.text} for fact in account.facts],
            "personalTimeline": [
                {"timeLabel": event.time_label, "text": event.text} for event in account.personal_events
            ],
        }
        for account in incident.accounts
    ]
    merge = await ctx.extraction.merge_incident_timeline(accounts)

    # Sources point at facts/events by index; resolve them to ids and drop the dangling ones
    by_id = {account.id: account for account in incident.accounts}
    rows = []
    for row in merge.timeline:
        sources = []
        for source in row.sources:
            account = by_id.get(source.account_id)
            if account is None:
                continue
            fact_id = None
            if source.fact_index is not None and 0 <= source.fact_index < len(account.facts):
                fact_id = account.facts[source.fact_index].id
            event_id = None
            if source.personal_event_index is not None and 0 <= source.personal_event_index < len(account.personal_events):
                event_id = account.personal_events[source.personal_event_index].id
            if fact_id or event_id:
                sources.append(TimelineSourceRef(account.id, fact_id=fact_id, personal_event_id=event_id))
        rows.append(TimelineRow(
            text=row.text, time_label=row.time_label, confidence=row.confidence, sources=sources
        ))

    await incident_service.replace_timeline_from_merge(payload.case_id, rows)
    return {
        "eventsGenerated": len(merge.timeline),
        "openQuestions": merge.open_questions,
    }


async def check_consistency(ctx: HandlerContext, payload: IncidentConsistencyInput) -> dict[str, Any]:
    _, incident = await _load_case(ctx, payload)
    result = await ctx.extraction.check_incident_consistency(_timeline_context(incident))
    return {"issues": [issue.model_dump(mode="json", by_alias=True) for issue in result.issues]}


async def coach_causes(ctx: HandlerContext, payload: IncidentCauseCoachingInput) -> dict[str, Any]:
    incident_service, incident = await _load_case(ctx, payload)
    coaching = await ctx.extraction.coach_causes(_timeline_context(incident, with_ids=True))
    created = await incident_service.merge_cause_nodes(payload.case_id, [
        CauseNodeDraft(
            statement=cause.statement,
            question=cause.question,
            timeline_event_id=cause.timeline_event_id,
        )
        for cause in coaching.causes
    ])
    return {"causesSuggested": len(coaching.causes), "causesCreated": created}


async def coach_root_causes(ctx: HandlerContext, payload: IncidentRootCauseCoachingInput) -> dict[str, Any]:
    incident_service, incident = await _load_case(ctx, payload)
    nodes = _select_nodes(incident, payload.cause_node_ids, default="leaves")
    if not nodes:
        return {"rootCausesSuggested": 0, "nodesCreated": 0}

    context = [{"id": node.id, "statement": node.statement, "question": node.question} for node in nodes]
    coaching = await ctx.extraction.coach_root_causes(context)
    allowed = {node.id for node in nodes}
    suggestions = [item for item in coaching.root_causes if item.parent_id in allowed]
    created = await incident_service.merge_cause_nodes(payload.case_id, [
        CauseNodeDraft(
            statement=item.statement,
            parent_id=item.parent_id,
            question=item.question,
            is_root_cause=item.is_root_cause,
        )
        for item in suggestions
    ])
    return {"rootCausesSuggested": len(suggestions), "nodesCreated": created}


async def coach_actions(ctx: HandlerContext, payload: IncidentActionCoachingInput) -> dict[str, Any]:
    incident_service, incident = await _load_case(ctx, payload)
    nodes = _select_nodes(incident, payload.cause_node_ids, default="roots")
    if not nodes:
        return {"actionsSuggested": 0, "actionsCreated": 0}

    context = [
        {
            "id": node.id,
            "statement": node.statement,
            "existingActions": [action.description for action in node.actions],
        }
        for node in nodes
    ]
    coaching = await ctx.extraction.coach_actions(context)
    allowed = {node.id for node in nodes}
    suggestions = [item for item in coaching.actions if item.cause_node_id in allowed]
    created = await incident_service.merge_cause_actions(payload.case_id, suggestions)
    return {"actionsSuggested": len(suggestions), "actionsCreated": created}
