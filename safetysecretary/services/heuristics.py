"""
Deterministic stand-ins for the extraction collaborator.

Used when no API key is configured so the whole workflow stays usable
offline. Each function returns the same response model the remote
endpoint would have produced.
"""
import re
from typing import Any, Optional

from safetysecretary.services.llm_schemas import (
    ActionCoaching,
    ActionSuggestion,
    ActionSuggestions,
    CauseActionSuggestion,
    CauseCoaching,
    CauseSuggestion,
    ConsistencyCheck,
    ConsistencyIssue,
    ControlSuggestion,
    ControlSuggestions,
    ExtractedHazard,
    ExtractedStep,
    HazardsExtraction,
    IncidentEventItem,
    IncidentFactItem,
    JhaRow,
    JhaRowsExtraction,
    MergedTimelineRow,
    NarrativeExtraction,
    RootCauseCoaching,
    RootCauseSuggestion,
    StepsExtraction,
    TimelineMerge,
    TimelineSource,
    WitnessExtraction,
)

MAX_STEPS = 7
MAX_HAZARDS = 5
MAX_SUGGESTIONS = 5

_TIME_PATTERN = re.compile(r"\b(\d{1,2}[:.]\d{2}(?:\s?[ap]m)?|\d{1,2}\s?[ap]m)\b", re.IGNORECASE)


def split_sentences(text: str, min_length: int = 1) -> list[str]:
    parts = (part.strip() for part in re.split(r"[\n\r.]", text or ""))
    return [part for part in parts if len(part) >= min_length]


def _time_label(sentence: str) -> Optional[str]:
    match = _TIME_PATTERN.search(sentence)
    return match.group(1) if match else None


def extract_steps(description: str) -> StepsExtraction:
    sentences = split_sentences(description)[:MAX_STEPS]
    if not sentences:
        return StepsExtraction(steps=[
            ExtractedStep(activity="Describe activity", description="No steps inferred")
        ])
    return StepsExtraction(steps=[
        ExtractedStep(activity=sentence[:80], description=sentence) for sentence in sentences
    ])


def extract_hazards(narrative: str, steps: list[dict[str, Any]]) -> HazardsExtraction:
    lines = split_sentences(narrative, min_length=6)[:MAX_HAZARDS]
    if not lines:
        first = [steps[0]["id"]] if steps else []
        return HazardsExtraction(hazards=[
            ExtractedHazard(
                label="No hazards captured",
                description="Provide details about what can happen and existing controls.",
                step_ids=first,
            )
        ])

    hazards = []
    for index, line in enumerate(lines):
        step_ids = [steps[index % len(steps)]["id"]] if steps else []
        hazards.append(ExtractedHazard(label=line[:60], description=line, step_ids=step_ids))
    return HazardsExtraction(hazards=hazards)


def suggest_controls(hazards: list[dict[str, Any]]) -> ControlSuggestions:
    return ControlSuggestions(suggestions=[
        ControlSuggestion(
            hazard_id=hazard["id"],
            controls=[
                f"Review procedure for {hazard['label']}",
                f"Brief crew on {hazard['label']} safeguards",
            ],
            hierarchy="ORGANIZATIONAL",
        )
        for hazard in hazards[:MAX_SUGGESTIONS]
    ])


def suggest_actions(hazards: list[dict[str, Any]]) -> ActionSuggestions:
    return ActionSuggestions(actions=[
        ActionSuggestion(
            hazard_id=hazard["id"],
            description=f"Verify controls for {hazard['label']}",
            owner="Supervisor",
            due_in_days=14,
        )
        for hazard in hazards[:MAX_SUGGESTIONS]
    ])


def extract_jha_rows(job_description: str) -> JhaRowsExtraction:
    sentences = split_sentences(job_description)[:MAX_STEPS]
    if not sentences:
        sentences = ["Describe the job"]
    return JhaRowsExtraction(rows=[
        JhaRow(
            step_label=sentence[:80],
            hazard=f"Hazards while {sentence[:60].lower()}",
            consequence="Injury or property damage",
            controls=["Follow the work instruction", "Use required PPE"],
        )
        for sentence in sentences
    ])


def extract_incident_narrative(narrative: str) -> NarrativeExtraction:
    sentences = split_sentences(narrative)
    clarifications = []
    if not any(_time_label(sentence) for sentence in sentences):
        clarifications.append("When did each event happen?")
    if not sentences:
        clarifications.append("What happened?")
    return NarrativeExtraction(
        facts=[IncidentFactItem(text=sentence) for sentence in sentences],
        timeline=[
            IncidentEventItem(time_label=_time_label(sentence), text=sentence) for sentence in sentences
        ],
        clarifications=clarifications,
    )


def extract_incident_witness(statement: str) -> WitnessExtraction:
    sentences = split_sentences(statement)
    open_questions = []
    if not sentences:
        open_questions.append("The statement is empty; what did the witness observe?")
    return WitnessExtraction(
        facts=[IncidentFactItem(text=sentence) for sentence in sentences],
        personal_timeline=[
            IncidentEventItem(time_label=_time_label(sentence), text=sentence) for sentence in sentences
        ],
        open_questions=open_questions,
    )


def merge_incident_timeline(accounts: list[dict[str, Any]]) -> TimelineMerge:
    # Timed events first, ordered by label; untimed ones keep account order
    rows = []
    for account in accounts:
        for index, event in enumerate(account["personalTimeline"]):
            rows.append(MergedTimelineRow(
                time_label=event.get("timeLabel"),
                text=event["text"],
                confidence="LIKELY",
                sources=[TimelineSource(account_id=account["accountId"], personal_event_index=index)],
            ))
    rows.sort(key=lambda row: (row.time_label is None, row.time_label or ""))

    open_questions = []
    if len(accounts) < 2:
        open_questions.append("Only one account is available; can another witness confirm the sequence?")
    return TimelineMerge(timeline=rows, open_questions=open_questions)


def check_incident_consistency(timeline: list[dict[str, Any]]) -> ConsistencyCheck:
    issues = []
    missing = [index for index, event in enumerate(timeline) if not event.get("timeLabel")]
    if missing:
        issues.append(ConsistencyIssue(
            type="MISSING_TIME",
            details=f"{len(missing)} event(s) have no time label",
            event_indices=missing,
        ))
    seen: dict[str, int] = {}
    for index, event in enumerate(timeline):
        key = event["text"].strip().casefold()
        if key in seen:
            issues.append(ConsistencyIssue(
                type="DUPLICATE",
                details=f"Event {index + 1} repeats event {seen[key] + 1}",
                event_indices=[seen[key], index],
            ))
        else:
            seen[key] = index
    return ConsistencyCheck(issues=issues)


def coach_causes(timeline: list[dict[str, Any]]) -> CauseCoaching:
    return CauseCoaching(causes=[
        CauseSuggestion(
            statement=event["text"],
            question=f"Why did this happen: {event['text']}?",
            timeline_event_id=event["id"],
        )
        for event in timeline[-MAX_SUGGESTIONS:]
    ])


def coach_root_causes(nodes: list[dict[str, Any]]) -> RootCauseCoaching:
    return RootCauseCoaching(root_causes=[
        RootCauseSuggestion(
            parent_id=node["id"],
            statement=f"No barrier prevented: {node['statement']}",
            question="Which missing safeguard allowed this?",
            is_root_cause=True,
        )
        for node in nodes[:MAX_SUGGESTIONS]
    ])


def coach_actions(nodes: list[dict[str, Any]]) -> ActionCoaching:
    return ActionCoaching(actions=[
        CauseActionSuggestion(
            cause_node_id=node["id"],
            description=f"Introduce a control addressing: {node['statement']}",
            owner_role="Supervisor",
            due_in_days=30,
            action_type="ORGANIZATIONAL",
        )
        for node in nodes[:MAX_SUGGESTIONS]
    ])
