import asyncio
import time

import pytest

from safetysecretary.auth.security import TenantContext, get_tenant_context
from safetysecretary.domain.inputs import StepExtractionInput
from safetysecretary.main import create_app
from safetysecretary.scheduler.context import HandlerContext
from safetysecretary.scheduler.service import JobManager
from safetysecretary.services.extraction import ExtractionClient
from safetysecretary.tenancy.factory import TenantServiceFactory
from safetysecretary.tenancy.registry import TenantConnectionRegistry


@pytest.fixture
def tenant_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'tenant.db'}"


@pytest.fixture
async def registry():
    registry = TenantConnectionRegistry()
    yield registry
    await registry.disconnect_all()


@pytest.fixture
async def tenant_handle(registry, tenant_url):
    handle = registry.get_handle(tenant_url)
    await handle.create_schema()
    return handle


@pytest.fixture
def factory(registry):
    return TenantServiceFactory(registry)


@pytest.fixture
def services(factory, tenant_handle, tenant_url):
    return factory.get_services(tenant_url)


@pytest.fixture
def extraction():
    # No API key: deterministic offline answers
    return ExtractionClient()


@pytest.fixture
def context(factory, extraction):
    return HandlerContext(services=factory, extraction=extraction)


def step_input(case_id="case-1", ref="postgres://tenantA", description="Lift the box."):
    return StepExtractionInput(case_id=case_id, tenant_connection_ref=ref, description=description)


async def wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
async def app(context, factory, tenant_handle, tenant_url):
    app = create_app()
    manager = JobManager(context)
    app.state.service_factory = factory
    app.state.job_manager = manager
    app.dependency_overrides[get_tenant_context] = lambda: TenantContext("org-1", tenant_url)
    yield app
    await manager.stop()
