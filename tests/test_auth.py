import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from safetysecretary.auth.security import get_tenant_context, hash_api_key
from safetysecretary.db.models import Organization
from safetysecretary.db.session import Base, get_db_session


@pytest.fixture
async def registry_db(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'registry.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def client(app, registry_db, tenant_url):
    async with registry_db() as session:
        session.add_all([
            Organization(slug="acme", name="Acme", api_key_digest=hash_api_key("acme-key"),
                         db_connection_string=tenant_url),
            Organization(slug="suspended", name="Suspended", api_key_digest=hash_api_key("suspended-key"),
                         db_connection_string=tenant_url, status="suspended"),
            Organization(slug="pending", name="Pending", api_key_digest=hash_api_key("pending-key")),
        ])
        await session.commit()

    async def registry_session():
        async with registry_db() as session:
            yield session

    app.dependency_overrides.pop(get_tenant_context)
    app.dependency_overrides[get_db_session] = registry_session
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.mark.asyncio
async def test_known_key_resolves_the_tenant(client):
    resp = await client.post("/api/ra-cases", json={"activityName": "Forklift loading"},
                             headers={"X-API-Key": "acme-key"})

    assert resp.status_code == 201
    case_id = resp.json()["id"]
    resp = await client.get(f"/api/ra-cases/{case_id}", headers={"X-API-Key": "acme-key"})
    assert resp.json()["activityName"] == "Forklift loading"


@pytest.mark.asyncio
async def test_missing_key_is_401(client):
    resp = await client.get("/api/llm-jobs/anything")

    assert resp.status_code == 401
    assert resp.json() == {"detail": "Missing API Key"}


@pytest.mark.asyncio
async def test_unknown_key_is_403(client):
    resp = await client.get("/api/llm-jobs/anything", headers={"X-API-Key": "nope"})

    assert resp.status_code == 403


@pytest.mark.asyncio
@pytest.mark.parametrize("api_key", ["suspended-key", "pending-key"])
async def test_unusable_organizations_are_503(client, api_key):
    resp = await client.get("/api/llm-jobs/anything", headers={"X-API-Key": api_key})

    assert resp.status_code == 503
    assert resp.json()["code"] == "TENANT_UNAVAILABLE"


@pytest.mark.asyncio
async def test_metrics_are_exposed(client):
    await client.post("/api/ra-cases/any/steps/extract", json={"description": "Lift."},
                      headers={"X-API-Key": "acme-key"})

    resp = await client.get("/metrics")

    assert resp.status_code == 200
    assert "llm_job_queue_depth" in resp.text
    assert 'llm_jobs_enqueued_total{type="step-extraction"}' in resp.text
