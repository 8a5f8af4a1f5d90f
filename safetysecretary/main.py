import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import InterfaceError, OperationalError

from safetysecretary.settings import settings
from safetysecretary.api.v1.incident_cases import router as incident_cases_router
from safetysecretary.api.v1.jha_cases import router as jha_cases_router
from safetysecretary.api.v1.jobs import router as jobs_router
from safetysecretary.api.v1.metrics import router as metrics_router
from safetysecretary.api.v1.ra_cases import router as ra_cases_router
from safetysecretary.domain.errors import NotFoundError, TenantUnavailableError

logger = logging.getLogger(__name__)

TENANT_UNAVAILABLE = {
    "error": "Service temporarily unavailable for your organization.",
    "code": "TENANT_UNAVAILABLE",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    from safetysecretary.db.session import engine
    from safetysecretary.scheduler.context import HandlerContext
    from safetysecretary.scheduler.service import JobManager
    from safetysecretary.services.extraction import ExtractionClient
    from safetysecretary.tenancy.factory import TenantServiceFactory
    from safetysecretary.tenancy.registry import TenantConnectionRegistry

    registry = TenantConnectionRegistry()
    factory = TenantServiceFactory(registry)
    extraction = ExtractionClient.from_settings()
    if extraction.offline:
        logger.warning("OPENAI_API_KEY is not set; extraction jobs use offline heuristics.")

    manager = JobManager(
        HandlerContext(services=factory, extraction=extraction),
        job_timeout=settings.JOB_TIMEOUT_SECONDS,
        retention_seconds=settings.JOB_RETENTION_SECONDS,
        max_retained_jobs=settings.JOB_RETENTION_MAX_JOBS,
    )
    await manager.start()

    app.state.tenant_registry = registry
    app.state.service_factory = factory
    app.state.job_manager = manager

    yield

    # Shutdown
    await manager.stop()
    await extraction.close()
    await registry.disconnect_all()
    await engine.dispose()


async def tenant_unavailable_handler(request: Request, exc: Exception):
    logger.warning(f"Tenant unavailable on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content=TENANT_UNAVAILABLE)


async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


def create_app() -> FastAPI:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title=settings.PROJECT_NAME,
        lifespan=lifespan
    )

    app.add_exception_handler(TenantUnavailableError, tenant_unavailable_handler)
    app.add_exception_handler(OperationalError, tenant_unavailable_handler)
    app.add_exception_handler(InterfaceError, tenant_unavailable_handler)
    app.add_exception_handler(NotFoundError, not_found_handler)

    app.include_router(ra_cases_router, prefix="/api/ra-cases", tags=["risk-assessment"])
    app.include_router(jha_cases_router, prefix="/api/jha-cases", tags=["jha"])
    app.include_router(incident_cases_router, prefix="/api/incident-cases", tags=["incidents"])
    app.include_router(jobs_router, prefix="/api/llm-jobs", tags=["jobs"])
    app.include_router(metrics_router, tags=["metrics"])

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
