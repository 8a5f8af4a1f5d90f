from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import ConfigDict, Field

from safetysecretary.api.deps import JobManagerDep
from safetysecretary.auth.security import TenantCtx, TenantServicesDep
from safetysecretary.domain.inputs import JhaRowExtractionInput
from safetysecretary.domain.models import CamelModel, JobView
from safetysecretary.domain.states import JobType

router = APIRouter()


class JhaCaseCreate(CamelModel):
    title: str = Field(min_length=1)
    site: Optional[str] = None
    supervisor: Optional[str] = None


class JhaStepResponse(CamelModel):
    id: str
    order_index: int
    label: str
    model_config = ConfigDict(from_attributes=True)


class JhaHazardResponse(CamelModel):
    id: str
    step_id: str
    order_index: int
    hazard: str
    consequence: Optional[str] = None
    controls: list[str]
    model_config = ConfigDict(from_attributes=True)


class JhaCaseResponse(CamelModel):
    id: str
    title: str
    site: Optional[str] = None
    supervisor: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    steps: list[JhaStepResponse]
    hazards: list[JhaHazardResponse]
    model_config = ConfigDict(from_attributes=True)


class RowsExtractRequest(CamelModel):
    job_description: str = Field(min_length=1)


@router.post("", response_model=JhaCaseResponse, status_code=status.HTTP_201_CREATED)
async def create_case(payload: JhaCaseCreate, services: TenantServicesDep, tenant: TenantCtx):
    return await services.jha_service.create_case(
        payload.title, site=payload.site, supervisor=payload.supervisor, created_by=tenant.org_id
    )


@router.get("/{case_id}", response_model=JhaCaseResponse)
async def get_case(case_id: str, services: TenantServicesDep):
    jha_case = await services.jha_service.get_case(case_id)
    if not jha_case:
        raise HTTPException(status_code=404, detail="JHA case not found")
    return jha_case


@router.post(
    "/{case_id}/rows/extract",
    response_model=JobView,
    response_model_exclude_none=True,
    status_code=status.HTTP_202_ACCEPTED,
)
async def extract_rows(case_id: str, payload: RowsExtractRequest, tenant: TenantCtx, jobs: JobManagerDep):
    return jobs.enqueue(JobType.JHA_ROW_EXTRACTION, JhaRowExtractionInput(
        case_id=case_id,
        tenant_connection_ref=tenant.connection_string,
        job_description=payload.job_description,
    ))
