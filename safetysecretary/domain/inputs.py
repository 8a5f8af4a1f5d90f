"""
Typed inputs for each job type.

Every input carries the case it works on and the tenant connection reference
resolved by the HTTP boundary; the remaining fields are task specific.
"""
from typing import Optional

from pydantic import ConfigDict, Field

from safetysecretary.domain.models import CamelModel
from safetysecretary.domain.states import JobType


class JobInput(CamelModel):
    model_config = ConfigDict(frozen=True)

    case_id: str = Field(min_length=1)
    tenant_connection_ref: str = Field(min_length=1)


class StepExtractionInput(JobInput):
    description: str


class HazardExtractionInput(JobInput):
    narrative: str


class ControlSuggestionInput(JobInput):
    notes: str = ""


class ActionSuggestionInput(JobInput):
    notes: str = ""


class JhaRowExtractionInput(JobInput):
    job_description: str


class IncidentNarrativeInput(JobInput):
    narrative: str


class IncidentWitnessInput(JobInput):
    account_id: str
    statement: str


class IncidentTimelineMergeInput(JobInput):
    pass


class IncidentConsistencyInput(JobInput):
    pass


class IncidentCauseCoachingInput(JobInput):
    pass


class IncidentRootCauseCoachingInput(JobInput):
    # None means "every leaf of the cause tree not yet marked as a root cause"
    cause_node_ids: Optional[list[str]] = None


class IncidentActionCoachingInput(JobInput):
    # None means "every root cause, or every leaf when none is marked"
    cause_node_ids: Optional[list[str]] = None


JOB_INPUT_MODELS: dict[JobType, type[JobInput]] = {
    JobType.STEP_EXTRACTION: StepExtractionInput,
    JobType.HAZARD_EXTRACTION: HazardExtractionInput,
    JobType.CONTROL_SUGGESTION: ControlSuggestionInput,
    JobType.ACTION_SUGGESTION: ActionSuggestionInput,
    JobType.JHA_ROW_EXTRACTION: JhaRowExtractionInput,
    JobType.INCIDENT_NARRATIVE_EXTRACTION: IncidentNarrativeInput,
    JobType.INCIDENT_WITNESS_EXTRACTION: IncidentWitnessInput,
    JobType.INCIDENT_TIMELINE_MERGE: IncidentTimelineMergeInput,
    JobType.INCIDENT_CONSISTENCY_CHECK: IncidentConsistencyInput,
    JobType.INCIDENT_CAUSE_COACHING: IncidentCauseCoachingInput,
    JobType.INCIDENT_ROOT_CAUSE_COACHING: IncidentRootCauseCoachingInput,
    JobType.INCIDENT_ACTION_COACHING: IncidentActionCoachingInput,
}

_missing = set(JobType) - set(JOB_INPUT_MODELS)
if _missing:
    raise RuntimeError(f"No input model registered for job types: {sorted(_missing)}")
