from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import ConfigDict, Field

from safetysecretary.api.deps import JobManagerDep
from safetysecretary.auth.security import TenantCtx, TenantServicesDep
from safetysecretary.domain.inputs import (
    ActionSuggestionInput,
    ControlSuggestionInput,
    HazardExtractionInput,
    StepExtractionInput,
)
from safetysecretary.domain.models import CamelModel, JobView
from safetysecretary.domain.states import JobType

router = APIRouter()


class RaCaseCreate(CamelModel):
    activity_name: str = Field(min_length=1)
    location: Optional[str] = None
    team: Optional[str] = None


class StepResponse(CamelModel):
    id: str
    order_index: int
    activity: str
    equipment: list[str]
    substances: list[str]
    description: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class ControlResponse(CamelModel):
    id: str
    description: str
    hierarchy: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class HazardResponse(CamelModel):
    id: str
    step_id: str
    order_index: int
    label: str
    description: Optional[str] = None
    category_code: Optional[str] = None
    existing_controls: list[str]
    residual_severity: Optional[str] = None
    residual_likelihood: Optional[str] = None
    controls: list[ControlResponse]
    model_config = ConfigDict(from_attributes=True)


class ActionResponse(CamelModel):
    id: str
    hazard_id: Optional[str] = None
    description: str
    owner: Optional[str] = None
    due_date: Optional[datetime] = None
    status: str
    model_config = ConfigDict(from_attributes=True)


class RaCaseResponse(CamelModel):
    id: str
    activity_name: str
    location: Optional[str] = None
    team: Optional[str] = None
    phase: str
    created_at: datetime
    updated_at: datetime
    steps: list[StepResponse]
    hazards: list[HazardResponse]
    actions: list[ActionResponse]
    model_config = ConfigDict(from_attributes=True)


class StepsExtractRequest(CamelModel):
    description: str = Field(min_length=1)


class HazardsExtractRequest(CamelModel):
    narrative: str = Field(min_length=1)


class NotesRequest(CamelModel):
    notes: str = ""


@router.post("", response_model=RaCaseResponse, status_code=status.HTTP_201_CREATED)
async def create_case(payload: RaCaseCreate, services: TenantServicesDep, tenant: TenantCtx):
    return await services.ra_service.create_case(
        payload.activity_name, location=payload.location, team=payload.team, created_by=tenant.org_id
    )


@router.get("/{case_id}", response_model=RaCaseResponse)
async def get_case(case_id: str, services: TenantServicesDep):
    ra_case = await services.ra_service.get_case(case_id)
    if not ra_case:
        raise HTTPException(status_code=404, detail="Case not found")
    return ra_case


@router.post(
    "/{case_id}/steps/extract",
    response_model=JobView,
    response_model_exclude_none=True,
    status_code=status.HTTP_202_ACCEPTED,
)
async def extract_steps(case_id: str, payload: StepsExtractRequest, tenant: TenantCtx, jobs: JobManagerDep):
    return jobs.enqueue(JobType.STEP_EXTRACTION, StepExtractionInput(
        case_id=case_id,
        tenant_connection_ref=tenant.connection_string,
        description=payload.description,
    ))


@router.post(
    "/{case_id}/hazards/extract",
    response_model=JobView,
    response_model_exclude_none=True,
    status_code=status.HTTP_202_ACCEPTED,
)
async def extract_hazards(case_id: str, payload: HazardsExtractRequest, tenant: TenantCtx, jobs: JobManagerDep):
    return jobs.enqueue(JobType.HAZARD_EXTRACTION, HazardExtractionInput(
        case_id=case_id,
        tenant_connection_ref=tenant.connection_string,
        narrative=payload.narrative,
    ))


@router.post(
    "/{case_id}/controls/extract",
    response_model=JobView,
    response_model_exclude_none=True,
    status_code=status.HTTP_202_ACCEPTED,
)
async def extract_controls(case_id: str, payload: NotesRequest, tenant: TenantCtx, jobs: JobManagerDep):
    return jobs.enqueue(JobType.CONTROL_SUGGESTION, ControlSuggestionInput(
        case_id=case_id,
        tenant_connection_ref=tenant.connection_string,
        notes=payload.notes,
    ))


@router.post(
    "/{case_id}/actions/extract",
    response_model=JobView,
    response_model_exclude_none=True,
    status_code=status.HTTP_202_ACCEPTED,
)
async def extract_actions(case_id: str, payload: NotesRequest, tenant: TenantCtx, jobs: JobManagerDep):
    return jobs.enqueue(JobType.ACTION_SUGGESTION, ActionSuggestionInput(
        case_id=case_id,
        tenant_connection_ref=tenant.connection_string,
        notes=payload.notes,
    ))
