from fastapi import APIRouter, HTTPException

from safetysecretary.api.deps import JobManagerDep
from safetysecretary.auth.security import TenantCtx
from safetysecretary.domain.models import JobView

router = APIRouter()


@router.get("/{job_id}", response_model=JobView, response_model_exclude_none=True)
async def get_job(job_id: str, tenant: TenantCtx, jobs: JobManagerDep):
    # Jobs of other tenants are indistinguishable from unknown ones
    job = jobs.get_job(job_id, tenant_connection_ref=tenant.connection_string)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job
