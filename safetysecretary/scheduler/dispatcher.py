from typing import Any, Union

from pydantic import BaseModel

from safetysecretary.commands import incident_jobs, jha_jobs, ra_jobs
from safetysecretary.domain.inputs import JOB_INPUT_MODELS, JobInput
from safetysecretary.domain.states import JobType
from safetysecretary.scheduler.context import Handler, HandlerContext

HANDLERS: dict[JobType, Handler] = {
    JobType.STEP_EXTRACTION: ra_jobs.extract_steps,
    JobType.HAZARD_EXTRACTION: ra_jobs.extract_hazards,
    JobType.CONTROL_SUGGESTION: ra_jobs.suggest_controls,
    JobType.ACTION_SUGGESTION: ra_jobs.suggest_actions,
    JobType.JHA_ROW_EXTRACTION: jha_jobs.extract_rows,
    JobType.INCIDENT_NARRATIVE_EXTRACTION: incident_jobs.extract_narrative,
    JobType.INCIDENT_WITNESS_EXTRACTION: incident_jobs.extract_witness,
    JobType.INCIDENT_TIMELINE_MERGE: incident_jobs.merge_timeline,
    JobType.INCIDENT_CONSISTENCY_CHECK: incident_jobs.check_consistency,
    JobType.INCIDENT_CAUSE_COACHING: incident_jobs.coach_causes,
    JobType.INCIDENT_ROOT_CAUSE_COACHING: incident_jobs.coach_root_causes,
    JobType.INCIDENT_ACTION_COACHING: incident_jobs.coach_actions,
}

_missing = set(JobType) - set(HANDLERS)
if _missing:
    raise RuntimeError(f"No handler registered for job types: {sorted(_missing)}")


def coerce_input(job_type: JobType, payload: Union[BaseModel, dict[str, Any]]) -> JobInput:
    """
    Typed input for a job. Raw mappings are validated here, inside the job,
    so a malformed payload fails the job rather than the caller.
    """
    model = JOB_INPUT_MODELS[job_type]
    if isinstance(payload, model):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump()
    return model.model_validate(payload)


async def dispatch(
    job_type: JobType,
    payload: Union[BaseModel, dict[str, Any]],
    context: HandlerContext,
    handlers: dict[JobType, Handler] = HANDLERS,
) -> dict[str, Any]:
    handler = handlers[job_type]
    result = await handler(context, coerce_input(job_type, payload))
    return result if result is not None else {}
