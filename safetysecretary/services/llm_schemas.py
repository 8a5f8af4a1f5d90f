"""
Response models for the extraction collaborator.

The model answers in camelCase JSON; unknown keys are ignored and loosely
typed values (ratings spelled out in words, a single control given as a
string) are normalized here so the domain services only see clean data.
"""
import re
from typing import Annotated, Any, Optional

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

HIERARCHY_LEVELS = ("SUBSTITUTION", "TECHNICAL", "ORGANIZATIONAL", "PPE")
SEVERITY_LEVELS = ("A", "B", "C", "D", "E")
LIKELIHOOD_LEVELS = ("1", "2", "3", "4", "5")
CONFIDENCE_LEVELS = ("CONFIRMED", "LIKELY", "UNCLEAR")
INCIDENT_ACTION_TYPES = ("ENGINEERING", "ORGANIZATIONAL", "PPE", "TRAINING")

_SEVERITY_WORDS = {
    "CATASTROPHIC": "A",
    "HAZARDOUS": "B",
    "MAJOR": "C",
    "MINOR": "D",
    "NEGLIGIBLE": "E",
}

_LIKELIHOOD_WORDS = {
    "CERTAIN": "1",
    "LIKELY": "2",
    "POSSIBLE": "3",
    "UNLIKELY": "4",
    "EXTREMELY_UNLIKELY": "5",
    "EXTREMELY": "5",
}


def _upper_token(value: Any) -> str:
    return re.sub(r"\s+", "_", str(value).strip().upper())


def normalize_hierarchy(value: Any) -> Optional[str]:
    if value is None:
        return None
    token = _upper_token(value)
    return token if token in HIERARCHY_LEVELS else None


def normalize_severity(value: Any) -> Optional[str]:
    if value is None:
        return None
    token = _upper_token(value)
    if token in SEVERITY_LEVELS:
        return token
    return _SEVERITY_WORDS.get(token)


def normalize_likelihood(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    token = _upper_token(value)
    if token in LIKELIHOOD_LEVELS:
        return token
    return _LIKELIHOOD_WORDS.get(token)


def _clean_strings(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    elif not isinstance(value, list):
        raise ValueError("expected a string or a list of strings")
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


StringList = Annotated[list[str], BeforeValidator(_clean_strings)]
Hierarchy = Annotated[Optional[str], BeforeValidator(normalize_hierarchy)]
Severity = Annotated[Optional[str], BeforeValidator(normalize_severity)]
Likelihood = Annotated[Optional[str], BeforeValidator(normalize_likelihood)]


class LlmModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# --- Risk assessment ---


class ExtractedStep(LlmModel):
    activity: str
    equipment: StringList = Field(default_factory=list)
    substances: StringList = Field(default_factory=list)
    description: Optional[str] = None


class StepsExtraction(LlmModel):
    steps: list[ExtractedStep] = Field(default_factory=list)


class ExtractedHazard(LlmModel):
    label: str
    description: Optional[str] = None
    category_code: Optional[str] = None
    existing_controls: StringList = Field(default_factory=list)
    step_ids: StringList = Field(default_factory=list)


class HazardsExtraction(LlmModel):
    hazards: list[ExtractedHazard] = Field(default_factory=list)


class ControlSuggestion(LlmModel):
    hazard_id: str
    controls: StringList = Field(default_factory=list)
    hierarchy: Hierarchy = None
    residual_severity: Severity = None
    residual_likelihood: Likelihood = None


class ControlSuggestions(LlmModel):
    suggestions: list[ControlSuggestion] = Field(default_factory=list)


class ActionSuggestion(LlmModel):
    hazard_id: str
    description: str
    owner: Optional[str] = None
    due_in_days: Optional[int] = Field(default=None, ge=0)


class ActionSuggestions(LlmModel):
    actions: list[ActionSuggestion] = Field(default_factory=list)


# --- JHA ---


class JhaRow(LlmModel):
    step_label: str = Field(default="", validation_alias=AliasChoices("stepLabel", "step", "step_label"))
    hazard: str = ""
    consequence: Optional[str] = None
    controls: StringList = Field(default_factory=list)


class JhaRowsExtraction(LlmModel):
    rows: list[JhaRow] = Field(default_factory=list)


# --- Incident ---


class IncidentFactItem(LlmModel):
    text: str


class IncidentEventItem(LlmModel):
    time_label: Optional[str] = None
    text: str


class NarrativeExtraction(LlmModel):
    facts: list[IncidentFactItem] = Field(default_factory=list)
    timeline: list[IncidentEventItem] = Field(default_factory=list)
    clarifications: StringList = Field(default_factory=list)


class WitnessExtraction(LlmModel):
    facts: list[IncidentFactItem] = Field(default_factory=list)
    personal_timeline: list[IncidentEventItem] = Field(default_factory=list)
    open_questions: StringList = Field(default_factory=list)


class TimelineSource(LlmModel):
    account_id: str
    fact_index: Optional[int] = None
    personal_event_index: Optional[int] = None


class MergedTimelineRow(LlmModel):
    time_label: Optional[str] = None
    text: str
    confidence: str = "LIKELY"
    sources: list[TimelineSource] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def normalize_confidence(cls, value: Any) -> str:
        token = _upper_token(value) if value is not None else ""
        return token if token in CONFIDENCE_LEVELS else "LIKELY"


class TimelineMerge(LlmModel):
    timeline: list[MergedTimelineRow] = Field(default_factory=list)
    open_questions: StringList = Field(default_factory=list)


class ConsistencyIssue(LlmModel):
    type: str = "GAP"
    details: str
    event_indices: list[int] = Field(default_factory=list)


class ConsistencyCheck(LlmModel):
    issues: list[ConsistencyIssue] = Field(default_factory=list)


class CauseSuggestion(LlmModel):
    statement: str
    question: Optional[str] = None
    timeline_event_id: Optional[str] = None


class CauseCoaching(LlmModel):
    causes: list[CauseSuggestion] = Field(default_factory=list)


class RootCauseSuggestion(LlmModel):
    parent_id: str
    statement: str
    question: Optional[str] = None
    is_root_cause: bool = False


class RootCauseCoaching(LlmModel):
    root_causes: list[RootCauseSuggestion] = Field(default_factory=list)


class CauseActionSuggestion(LlmModel):
    cause_node_id: str
    description: str
    owner_role: Optional[str] = None
    due_in_days: Optional[int] = Field(default=None, ge=0)
    action_type: Optional[str] = None

    @field_validator("action_type", mode="before")
    @classmethod
    def normalize_action_type(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        token = _upper_token(value)
        return token if token in INCIDENT_ACTION_TYPES else None


class ActionCoaching(LlmModel):
    actions: list[CauseActionSuggestion] = Field(default_factory=list)
