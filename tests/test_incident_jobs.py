import pytest

from safetysecretary.commands import incident_jobs
from safetysecretary.domain.errors import AccountNotFoundError
from safetysecretary.domain.inputs import (
    IncidentActionCoachingInput,
    IncidentCauseCoachingInput,
    IncidentConsistencyInput,
    IncidentNarrativeInput,
    IncidentRootCauseCoachingInput,
    IncidentTimelineMergeInput,
    IncidentWitnessInput,
)

OPERATOR_STATEMENT = "At 08:10 I started the press. At 08:20 the guard was open"
SUPERVISOR_STATEMENT = "At 08:15 I heard a shout. Nobody had locked out the press"


@pytest.fixture
async def incident(services):
    return await services.incident_service.create_case("Hand injury at press 3", location="Line B")


@pytest.fixture
def ref(incident, tenant_url):
    return dict(case_id=incident.id, tenant_connection_ref=tenant_url)


async def add_account(services, incident, role, statement):
    person = await services.incident_service.add_person(incident.id, role=role)
    return await services.incident_service.add_account(incident.id, person.id, raw_statement=statement)


async def witness(context, ref, account):
    return await incident_jobs.extract_witness(
        context, IncidentWitnessInput(account_id=account.id, statement=account.raw_statement, **ref)
    )


@pytest.mark.asyncio
async def test_narrative_extraction_stores_assistant_draft(context, services, incident, ref):
    narrative = "The operator reached into the press. The guard was open"

    result = await incident_jobs.extract_narrative(context, IncidentNarrativeInput(narrative=narrative, **ref))

    assert result == {
        "factsExtracted": 2,
        "eventsExtracted": 2,
        "clarifications": ["When did each event happen?"],
    }
    stored = await services.incident_service.get_case(incident.id)
    assert stored.assistant_narrative == narrative
    assert stored.assistant_draft["facts"][0] == {"text": "The operator reached into the press"}
    assert stored.assistant_draft["timeline"][1] == {"timeLabel": None, "text": "The guard was open"}
    assert stored.assistant_draft_updated_at is not None


@pytest.mark.asyncio
async def test_witness_extraction_replaces_account_records(context, services, incident, ref):
    account = await add_account(services, incident, "Operator", OPERATOR_STATEMENT)

    first = await witness(context, ref, account)
    assert first == {"factsExtracted": 2, "eventsExtracted": 2, "openQuestions": []}

    result = await incident_jobs.extract_witness(
        context, IncidentWitnessInput(account_id=account.id, statement="At 08:10 I started the press", **ref)
    )
    assert result["factsExtracted"] == 1

    stored = await services.incident_service.get_case(incident.id)
    (stored_account,) = stored.accounts
    assert [f.text for f in stored_account.facts] == ["At 08:10 I started the press"]
    assert [(e.time_label, e.text) for e in stored_account.personal_events] == [
        ("08:10", "At 08:10 I started the press"),
    ]


@pytest.mark.asyncio
async def test_witness_extraction_rejects_account_from_another_case(context, services, ref):
    other = await services.incident_service.create_case("Other incident")
    account = await add_account(services, other, "Witness", "I saw nothing")

    with pytest.raises(AccountNotFoundError):
        await witness(context, ref, account)


@pytest.mark.asyncio
async def test_timeline_merge_resolves_sources(context, services, incident, ref):
    operator = await add_account(services, incident, "Operator", OPERATOR_STATEMENT)
    supervisor = await add_account(services, incident, "Supervisor", SUPERVISOR_STATEMENT)
    await witness(context, ref, operator)
    await witness(context, ref, supervisor)

    result = await incident_jobs.merge_timeline(context, IncidentTimelineMergeInput(**ref))

    assert result == {"eventsGenerated": 4, "openQuestions": []}
    stored = await services.incident_service.get_case(incident.id)
    assert [e.time_label for e in stored.timeline_events] == ["08:10", "08:15", "08:20", None]
    assert [e.order_index for e in stored.timeline_events] == [0, 1, 2, 3]

    operator_events = {e.id for a in stored.accounts if a.id == operator.id for e in a.personal_events}
    first = stored.timeline_events[0]
    assert len(first.sources) == 1
    assert first.sources[0].account_id == operator.id
    assert first.sources[0].personal_event_id in operator_events


@pytest.mark.asyncio
async def test_merge_with_single_account_asks_for_confirmation(context, services, incident, ref):
    operator = await add_account(services, incident, "Operator", OPERATOR_STATEMENT)
    await witness(context, ref, operator)

    result = await incident_jobs.merge_timeline(context, IncidentTimelineMergeInput(**ref))

    assert result["eventsGenerated"] == 2
    assert len(result["openQuestions"]) == 1


@pytest.mark.asyncio
async def test_consistency_check_reports_issues(context, services, incident, ref):
    operator = await add_account(services, incident, "Operator", OPERATOR_STATEMENT)
    supervisor = await add_account(services, incident, "Supervisor", SUPERVISOR_STATEMENT)
    await witness(context, ref, operator)
    await witness(context, ref, supervisor)
    await incident_jobs.merge_timeline(context, IncidentTimelineMergeInput(**ref))

    result = await incident_jobs.check_consistency(context, IncidentConsistencyInput(**ref))

    assert result == {"issues": [
        {"type": "MISSING_TIME", "details": "1 event(s) have no time label", "eventIndices": [3]},
    ]}


@pytest.mark.asyncio
async def test_cause_tree_coaching_is_idempotent(context, services, incident, ref):
    operator = await add_account(services, incident, "Operator", OPERATOR_STATEMENT)
    await witness(context, ref, operator)
    await incident_jobs.merge_timeline(context, IncidentTimelineMergeInput(**ref))

    first = await incident_jobs.coach_causes(context, IncidentCauseCoachingInput(**ref))
    again = await incident_jobs.coach_causes(context, IncidentCauseCoachingInput(**ref))
    assert first == {"causesSuggested": 2, "causesCreated": 2}
    assert again == {"causesSuggested": 2, "causesCreated": 0}

    stored = await services.incident_service.get_case(incident.id)
    event_ids = {e.id for e in stored.timeline_events}
    assert all(node.timeline_event_id in event_ids for node in stored.cause_nodes)

    roots = await incident_jobs.coach_root_causes(context, IncidentRootCauseCoachingInput(**ref))
    assert roots == {"rootCausesSuggested": 2, "nodesCreated": 2}
    # Every leaf is now a root cause, nothing left to coach
    roots = await incident_jobs.coach_root_causes(context, IncidentRootCauseCoachingInput(**ref))
    assert roots == {"rootCausesSuggested": 0, "nodesCreated": 0}

    stored = await services.incident_service.get_case(incident.id)
    marked = [node for node in stored.cause_nodes if node.is_root_cause]
    assert len(marked) == 2
    assert all(node.parent_id for node in marked)

    actions = await incident_jobs.coach_actions(context, IncidentActionCoachingInput(**ref))
    assert actions == {"actionsSuggested": 2, "actionsCreated": 2}
    actions = await incident_jobs.coach_actions(context, IncidentActionCoachingInput(**ref))
    assert actions == {"actionsSuggested": 2, "actionsCreated": 0}

    stored = await services.incident_service.get_case(incident.id)
    created = [action for node in stored.cause_nodes for action in node.actions]
    assert len(created) == 2
    assert {a.action_type for a in created} == {"ORGANIZATIONAL"}
    assert all(a.due_date is not None for a in created)


@pytest.mark.asyncio
async def test_coaching_with_unknown_node_ids_does_nothing(context, incident, ref):
    roots = await incident_jobs.coach_root_causes(
        context, IncidentRootCauseCoachingInput(cause_node_ids=["ghost"], **ref)
    )
    actions = await incident_jobs.coach_actions(
        context, IncidentActionCoachingInput(cause_node_ids=["ghost"], **ref)
    )

    assert roots == {"rootCausesSuggested": 0, "nodesCreated": 0}
    assert actions == {"actionsSuggested": 0, "actionsCreated": 0}


@pytest.mark.asyncio
async def test_remerging_timeline_keeps_cause_nodes(context, services, incident, ref):
    operator = await add_account(services, incident, "Operator", OPERATOR_STATEMENT)
    await witness(context, ref, operator)
    await incident_jobs.merge_timeline(context, IncidentTimelineMergeInput(**ref))
    await incident_jobs.coach_causes(context, IncidentCauseCoachingInput(**ref))

    await incident_jobs.merge_timeline(context, IncidentTimelineMergeInput(**ref))

    stored = await services.incident_service.get_case(incident.id)
    assert len(stored.cause_nodes) == 2
    assert all(node.timeline_event_id is None for node in stored.cause_nodes)
    assert len(stored.timeline_events) == 2
