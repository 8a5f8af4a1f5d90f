from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from safetysecretary.db.session import get_db_session
from safetysecretary.scheduler.service import JobManager
from safetysecretary.tenancy.factory import TenantServiceFactory

# Dependency for registry DB session
DbSession = Annotated[AsyncSession, Depends(get_db_session)]


def get_job_manager(request: Request) -> JobManager:
    return request.app.state.job_manager


def get_service_factory(request: Request) -> TenantServiceFactory:
    return request.app.state.service_factory


JobManagerDep = Annotated[JobManager, Depends(get_job_manager)]
ServiceFactoryDep = Annotated[TenantServiceFactory, Depends(get_service_factory)]
