import httpx
import pytest

from safetysecretary.auth.security import TenantContext, get_tenant_context
from safetysecretary.domain.errors import TenantUnavailableError


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def as_tenant(app, org_id, connection_string):
    app.dependency_overrides[get_tenant_context] = lambda: TenantContext(org_id, connection_string)


@pytest.mark.asyncio
async def test_health_check(client):
    resp = await client.get("/health")

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_enqueue_then_poll_until_completed(app, client):
    resp = await client.post("/api/ra-cases", json={"activityName": "Tank drain", "location": "Plant 2"})
    assert resp.status_code == 201
    case = resp.json()
    assert case["activityName"] == "Tank drain"
    assert case["phase"] == "PROCESS_STEPS"
    assert case["steps"] == []

    resp = await client.post(
        f"/api/ra-cases/{case['id']}/steps/extract",
        json={"description": "Open the valve. Drain the tank. Close the valve."},
    )
    assert resp.status_code == 202
    job = resp.json()
    assert job["status"] == "queued"
    assert job["type"] == "step-extraction"
    assert "createdAt" in job and "updatedAt" in job
    assert "result" not in job and "error" not in job

    await app.state.job_manager.join()

    resp = await client.get(f"/api/llm-jobs/{job['id']}")
    assert resp.status_code == 200
    assert resp.json()["status"] == "completed"
    assert resp.json()["result"] == {"stepsGenerated": 3, "totalSteps": 3}

    resp = await client.get(f"/api/ra-cases/{case['id']}")
    assert [s["activity"] for s in resp.json()["steps"]] == ["Open the valve", "Drain the tank", "Close the valve"]


@pytest.mark.asyncio
async def test_enqueue_for_missing_case_is_accepted_and_fails_later(app, client):
    resp = await client.post("/api/jha-cases/ghost/rows/extract", json={"jobDescription": "Climb the ladder."})
    assert resp.status_code == 202

    await app.state.job_manager.join()
    job = (await client.get(f"/api/llm-jobs/{resp.json()['id']}")).json()
    assert job["status"] == "failed"
    assert job["error"] == "JHA case ghost not found"
    assert "result" not in job


@pytest.mark.asyncio
async def test_unknown_job_is_404(client):
    resp = await client.get("/api/llm-jobs/nonexistent")

    assert resp.status_code == 404
    assert resp.json() == {"detail": "Job not found"}


@pytest.mark.asyncio
async def test_jobs_of_other_tenants_are_hidden(app, client, tenant_url):
    case = (await client.post("/api/ra-cases", json={"activityName": "Tank drain"})).json()
    job = (await client.post(f"/api/ra-cases/{case['id']}/steps/extract", json={"description": "Go."})).json()

    as_tenant(app, "org-2", tenant_url + "?other")
    resp = await client.get(f"/api/llm-jobs/{job['id']}")

    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_missing_case_is_404(client):
    resp = await client.get("/api/ra-cases/ghost")

    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_validation_errors_are_422(client):
    resp = await client.post("/api/ra-cases/any/steps/extract", json={"description": ""})

    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_unavailable_tenant_is_503(app, client):
    def unavailable():
        raise TenantUnavailableError("org-9")

    app.dependency_overrides[get_tenant_context] = unavailable

    resp = await client.get("/api/llm-jobs/anything")

    assert resp.status_code == 503
    assert resp.json()["code"] == "TENANT_UNAVAILABLE"


@pytest.mark.asyncio
async def test_unreachable_tenant_database_is_503(app, client, tmp_path):
    as_tenant(app, "org-3", f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'tenant.db'}")

    resp = await client.post("/api/ra-cases", json={"activityName": "Tank drain"})

    assert resp.status_code == 503
    assert resp.json() == {
        "error": "Service temporarily unavailable for your organization.",
        "code": "TENANT_UNAVAILABLE",
    }


@pytest.mark.asyncio
async def test_unparseable_tenant_reference_is_503(app, client):
    as_tenant(app, "org-4", "conn-A")

    resp = await client.get("/api/ra-cases/case-1")

    assert resp.status_code == 503
    assert resp.json()["code"] == "TENANT_UNAVAILABLE"


@pytest.mark.asyncio
async def test_incident_workflow_over_http(app, client):
    case = (await client.post("/api/incident-cases", json={"title": "Hand injury"})).json()
    person = (await client.post(f"/api/incident-cases/{case['id']}/persons", json={"role": "Operator"})).json()
    account = (await client.post(
        f"/api/incident-cases/{case['id']}/accounts",
        json={"personId": person["id"], "rawStatement": "At 08:10 I started the press. The guard was open"},
    )).json()

    queued = [
        await client.post(
            f"/api/incident-cases/{case['id']}/accounts/{account['id']}/extract",
            json={"statement": "At 08:10 I started the press. The guard was open"},
        ),
        await client.post(f"/api/incident-cases/{case['id']}/timeline/merge"),
        await client.post(f"/api/incident-cases/{case['id']}/assistant/causes"),
        await client.post(f"/api/incident-cases/{case['id']}/assistant/root-causes"),
        await client.post(f"/api/incident-cases/{case['id']}/assistant/actions", json={"causeNodeIds": None}),
    ]
    assert [resp.status_code for resp in queued] == [202] * 5

    await app.state.job_manager.join()

    jobs = [(await client.get(f"/api/llm-jobs/{resp.json()['id']}")).json() for resp in queued]
    assert [job["status"] for job in jobs] == ["completed"] * 5
    assert jobs[1]["result"]["eventsGenerated"] == 2
    assert jobs[4]["result"]["actionsCreated"] == 2

    resp = await client.get(f"/api/incident-cases/{case['id']}")
    incident = resp.json()
    assert len(incident["timelineEvents"]) == 2
    assert len(incident["causeNodes"]) == 4
