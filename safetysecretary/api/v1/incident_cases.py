from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import ConfigDict, Field

from safetysecretary.api.deps import JobManagerDep
from safetysecretary.auth.security import TenantCtx, TenantServicesDep
from safetysecretary.domain.inputs import (
    IncidentActionCoachingInput,
    IncidentCauseCoachingInput,
    IncidentConsistencyInput,
    IncidentNarrativeInput,
    IncidentRootCauseCoachingInput,
    IncidentTimelineMergeInput,
    IncidentWitnessInput,
)
from safetysecretary.domain.models import CamelModel, JobView
from safetysecretary.domain.states import JobType

router = APIRouter()

ENQUEUE = dict(
    response_model=JobView,
    response_model_exclude_none=True,
    status_code=status.HTTP_202_ACCEPTED,
)


class IncidentCaseCreate(CamelModel):
    title: str = Field(min_length=1)
    incident_type: str = "NEAR_MISS"
    location: Optional[str] = None
    coordinator_role: str = "Coordinator"
    coordinator_name: Optional[str] = None


class PersonCreate(CamelModel):
    role: str = Field(min_length=1)
    name: Optional[str] = None


class AccountCreate(CamelModel):
    person_id: str
    raw_statement: Optional[str] = None


class PersonResponse(CamelModel):
    id: str
    role: str
    name: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class FactResponse(CamelModel):
    id: str
    order_index: int
    text: str
    model_config = ConfigDict(from_attributes=True)


class PersonalEventResponse(CamelModel):
    id: str
    order_index: int
    time_label: Optional[str] = None
    text: str
    model_config = ConfigDict(from_attributes=True)


class AccountResponse(CamelModel):
    id: str
    person_id: str
    raw_statement: Optional[str] = None
    facts: list[FactResponse]
    personal_events: list[PersonalEventResponse]
    model_config = ConfigDict(from_attributes=True)


class TimelineSourceResponse(CamelModel):
    account_id: str
    fact_id: Optional[str] = None
    personal_event_id: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class TimelineEventResponse(CamelModel):
    id: str
    order_index: int
    time_label: Optional[str] = None
    text: str
    confidence: str
    sources: list[TimelineSourceResponse]
    model_config = ConfigDict(from_attributes=True)


class CauseActionResponse(CamelModel):
    id: str
    description: str
    owner_role: Optional[str] = None
    due_date: Optional[datetime] = None
    action_type: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class CauseNodeResponse(CamelModel):
    id: str
    parent_id: Optional[str] = None
    timeline_event_id: Optional[str] = None
    statement: str
    question: Optional[str] = None
    is_root_cause: bool
    actions: list[CauseActionResponse]
    model_config = ConfigDict(from_attributes=True)


class IncidentCaseResponse(CamelModel):
    id: str
    title: str
    incident_type: str
    location: Optional[str] = None
    coordinator_role: str
    coordinator_name: Optional[str] = None
    assistant_narrative: Optional[str] = None
    assistant_draft: Optional[dict[str, Any]] = None
    assistant_draft_updated_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    persons: list[PersonResponse]
    accounts: list[AccountResponse]
    timeline_events: list[TimelineEventResponse]
    cause_nodes: list[CauseNodeResponse]
    model_config = ConfigDict(from_attributes=True)


class NarrativeRequest(CamelModel):
    narrative: str = Field(min_length=1)


class StatementRequest(CamelModel):
    statement: str = Field(min_length=1)


class CauseNodesRequest(CamelModel):
    cause_node_ids: Optional[list[str]] = None


@router.post("", response_model=IncidentCaseResponse, status_code=status.HTTP_201_CREATED)
async def create_case(payload: IncidentCaseCreate, services: TenantServicesDep, tenant: TenantCtx):
    return await services.incident_service.create_case(
        payload.title,
        incident_type=payload.incident_type,
        location=payload.location,
        coordinator_role=payload.coordinator_role,
        coordinator_name=payload.coordinator_name,
        created_by=tenant.org_id,
    )


@router.get("/{case_id}", response_model=IncidentCaseResponse)
async def get_case(case_id: str, services: TenantServicesDep):
    incident = await services.incident_service.get_case(case_id)
    if not incident:
        raise HTTPException(status_code=404, detail="Incident case not found")
    return incident


@router.post("/{case_id}/persons", response_model=PersonResponse, status_code=status.HTTP_201_CREATED)
async def add_person(case_id: str, payload: PersonCreate, services: TenantServicesDep):
    return await services.incident_service.add_person(case_id, payload.role, name=payload.name)


@router.post("/{case_id}/accounts", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
async def add_account(case_id: str, payload: AccountCreate, services: TenantServicesDep):
    return await services.incident_service.add_account(
        case_id, payload.person_id, raw_statement=payload.raw_statement
    )


@router.post("/{case_id}/assistant/narrative", **ENQUEUE)
async def extract_narrative(case_id: str, payload: NarrativeRequest, tenant: TenantCtx, jobs: JobManagerDep):
    return jobs.enqueue(JobType.INCIDENT_NARRATIVE_EXTRACTION, IncidentNarrativeInput(
        case_id=case_id,
        tenant_connection_ref=tenant.connection_string,
        narrative=payload.narrative,
    ))


@router.post("/{case_id}/accounts/{account_id}/extract", **ENQUEUE)
async def extract_witness(
    case_id: str, account_id: str, payload: StatementRequest, tenant: TenantCtx, jobs: JobManagerDep
):
    return jobs.enqueue(JobType.INCIDENT_WITNESS_EXTRACTION, IncidentWitnessInput(
        case_id=case_id,
        tenant_connection_ref=tenant.connection_string,
        account_id=account_id,
        statement=payload.statement,
    ))


@router.post("/{case_id}/timeline/merge", **ENQUEUE)
async def merge_timeline(case_id: str, tenant: TenantCtx, jobs: JobManagerDep):
    return jobs.enqueue(JobType.INCIDENT_TIMELINE_MERGE, IncidentTimelineMergeInput(
        case_id=case_id, tenant_connection_ref=tenant.connection_string
    ))


@router.post("/{case_id}/timeline/consistency", **ENQUEUE)
async def check_consistency(case_id: str, tenant: TenantCtx, jobs: JobManagerDep):
    return jobs.enqueue(JobType.INCIDENT_CONSISTENCY_CHECK, IncidentConsistencyInput(
        case_id=case_id, tenant_connection_ref=tenant.connection_string
    ))


@router.post("/{case_id}/assistant/causes", **ENQUEUE)
async def coach_causes(case_id: str, tenant: TenantCtx, jobs: JobManagerDep):
    return jobs.enqueue(JobType.INCIDENT_CAUSE_COACHING, IncidentCauseCoachingInput(
        case_id=case_id, tenant_connection_ref=tenant.connection_string
    ))


@router.post("/{case_id}/assistant/root-causes", **ENQUEUE)
async def coach_root_causes(
    case_id: str, tenant: TenantCtx, jobs: JobManagerDep, payload: Optional[CauseNodesRequest] = None
):
    return jobs.enqueue(JobType.INCIDENT_ROOT_CAUSE_COACHING, IncidentRootCauseCoachingInput(
        case_id=case_id,
        tenant_connection_ref=tenant.connection_string,
        cause_node_ids=payload.cause_node_ids if payload else None,
    ))


@router.post("/{case_id}/assistant/actions", **ENQUEUE)
async def coach_actions(
    case_id: str, tenant: TenantCtx, jobs: JobManagerDep, payload: Optional[CauseNodesRequest] = None
):
    return jobs.enqueue(JobType.INCIDENT_ACTION_COACHING, IncidentActionCoachingInput(
        case_id=case_id,
        tenant_connection_ref=tenant.connection_string,
        cause_node_ids=payload.cause_node_ids if payload else None,
    ))
