import asyncio
from datetime import timedelta

import pytest

from safetysecretary.domain.states import JobStatus, JobType
from safetysecretary.scheduler.service import JobManager

from conftest import step_input, wait_until

STEP = JobType.STEP_EXTRACTION


@pytest.fixture
async def make_manager():
    managers = []

    def build(handler, **kwargs):
        manager = JobManager(context=None, handlers={STEP: handler}, **kwargs)
        managers.append(manager)
        return manager

    yield build
    for manager in managers:
        await manager.stop()


async def echo(ctx, payload):
    return {"description": payload.description}


@pytest.mark.asyncio
async def test_enqueue_returns_queued_before_handler_runs(make_manager):
    started = asyncio.Event()
    release = asyncio.Event()

    async def gated(ctx, payload):
        started.set()
        await release.wait()
        return {"ok": True}

    manager = make_manager(gated)
    view = manager.enqueue(STEP, step_input())

    assert view.status == JobStatus.QUEUED
    assert view.result is None and view.error is None
    assert not started.is_set()

    await started.wait()
    assert manager.get_job(view.id).status == JobStatus.RUNNING

    release.set()
    await manager.join()
    job = manager.get_job(view.id)
    assert job.status == JobStatus.COMPLETED
    assert job.result == {"ok": True}


@pytest.mark.asyncio
async def test_ids_are_unique(make_manager):
    manager = make_manager(echo)
    ids = {manager.enqueue(STEP, step_input()).id for _ in range(50)}
    await manager.join()

    assert len(ids) == 50


@pytest.mark.asyncio
async def test_status_only_moves_forward(make_manager):
    release = asyncio.Event()

    async def gated(ctx, payload):
        await release.wait()
        return {}

    manager = make_manager(gated)
    job_id = manager.enqueue(STEP, step_input()).id
    seen = [manager.get_job(job_id).status]

    await wait_until(lambda: manager.get_job(job_id).status != JobStatus.QUEUED)
    seen.append(manager.get_job(job_id).status)
    release.set()
    await manager.join()
    seen.append(manager.get_job(job_id).status)

    assert seen == [JobStatus.QUEUED, JobStatus.RUNNING, JobStatus.COMPLETED]


@pytest.mark.asyncio
async def test_jobs_run_one_at_a_time_in_enqueue_order(make_manager):
    order = []
    in_flight = 0
    peak = 0

    async def tracked(ctx, payload):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        order.append(payload.description)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return {}

    manager = make_manager(tracked)
    for name in ("A", "B", "C"):
        manager.enqueue(STEP, step_input(description=name))
    await manager.join()

    assert order == ["A", "B", "C"]
    assert peak == 1


@pytest.mark.asyncio
async def test_failure_is_recorded_and_loop_keeps_draining(make_manager):
    async def flaky(ctx, payload):
        if payload.description == "bad":
            raise ValueError("model returned garbage")
        return {"ok": payload.description}

    manager = make_manager(flaky)
    bad = manager.enqueue(STEP, step_input(description="bad"))
    good = manager.enqueue(STEP, step_input(description="good"))
    await manager.join()

    failed = manager.get_job(bad.id)
    assert failed.status == JobStatus.FAILED
    assert failed.error == "model returned garbage"
    assert failed.result is None

    done = manager.get_job(good.id)
    assert done.status == JobStatus.COMPLETED
    assert done.result == {"ok": "good"}
    assert done.error is None


@pytest.mark.asyncio
async def test_error_without_message_uses_exception_name(make_manager):
    async def silent(ctx, payload):
        raise KeyError()

    manager = make_manager(silent)
    job_id = manager.enqueue(STEP, step_input()).id
    await manager.join()

    assert manager.get_job(job_id).error == "KeyError"


@pytest.mark.asyncio
async def test_unknown_job_id_returns_none(make_manager):
    manager = make_manager(echo)
    assert manager.get_job("nonexistent") is None


@pytest.mark.asyncio
async def test_get_job_is_scoped_to_tenant(make_manager):
    manager = make_manager(echo)
    job_id = manager.enqueue(STEP, step_input(ref="tenant-A")).id

    assert manager.get_job(job_id, "tenant-A") is not None
    assert manager.get_job(job_id, "tenant-B") is None
    assert manager.get_job(job_id) is not None


@pytest.mark.asyncio
async def test_handler_returning_none_yields_empty_result(make_manager):
    async def nothing(ctx, payload):
        return None

    manager = make_manager(nothing)
    job_id = manager.enqueue(STEP, step_input()).id
    await manager.join()

    assert manager.get_job(job_id).result == {}


@pytest.mark.asyncio
async def test_timeout_fails_job_and_next_job_runs(make_manager):
    async def slow(ctx, payload):
        if payload.description == "slow":
            await asyncio.sleep(5)
        return {"ok": True}

    manager = make_manager(slow, job_timeout=0.05)
    stuck = manager.enqueue(STEP, step_input(description="slow"))
    after = manager.enqueue(STEP, step_input(description="fast"))
    await asyncio.wait_for(manager.join(), timeout=2)

    timed_out = manager.get_job(stuck.id)
    assert timed_out.status == JobStatus.FAILED
    assert timed_out.error == "Job timed out after 0.05 seconds"
    assert manager.get_job(after.id).status == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_handler_timeout_error_is_not_reported_as_deadline(make_manager):
    async def connect_fails(ctx, payload):
        raise TimeoutError("connect timed out")

    manager = make_manager(connect_fails, job_timeout=5)
    view = manager.enqueue(STEP, step_input())
    await asyncio.wait_for(manager.join(), timeout=2)

    job = manager.get_job(view.id)
    assert job.status == JobStatus.FAILED
    assert job.error == "connect timed out"


@pytest.mark.asyncio
async def test_malformed_mapping_fails_the_job_not_the_caller(make_manager):
    manager = make_manager(echo)
    view = manager.enqueue(STEP, {"caseId": "case-1", "tenantConnectionRef": "tenant-A"})
    assert view.status == JobStatus.QUEUED

    await manager.join()
    job = manager.get_job(view.id)
    assert job.status == JobStatus.FAILED
    assert "description" in job.error


@pytest.mark.asyncio
async def test_mapping_payload_is_validated_into_typed_input(make_manager):
    manager = make_manager(echo)
    job_id = manager.enqueue(
        "step-extraction",
        {"caseId": "case-1", "tenantConnectionRef": "tenant-A", "description": "Lift."},
    ).id
    await manager.join()

    assert manager.get_job(job_id, "tenant-A").result == {"description": "Lift."}


@pytest.mark.asyncio
async def test_unknown_type_is_rejected_synchronously(make_manager):
    manager = make_manager(echo)

    with pytest.raises(ValueError):
        manager.enqueue("summarize-everything", step_input())
    assert len(manager) == 0


@pytest.mark.asyncio
async def test_finished_jobs_are_evicted_beyond_the_cap(make_manager):
    manager = make_manager(echo, max_retained_jobs=2)
    first = [manager.enqueue(STEP, step_input()).id for _ in range(3)]
    await manager.join()

    latest = manager.enqueue(STEP, step_input()).id
    await manager.join()

    assert manager.get_job(first[0]) is None
    assert manager.get_job(first[1]) is not None
    assert manager.get_job(first[2]) is not None
    assert manager.get_job(latest) is not None


@pytest.mark.asyncio
async def test_finished_jobs_are_evicted_by_age(make_manager):
    manager = make_manager(echo, retention_seconds=60)
    old = manager.enqueue(STEP, step_input()).id
    recent = manager.enqueue(STEP, step_input()).id
    await manager.join()

    manager._jobs[old].updated_at -= timedelta(minutes=5)
    manager.enqueue(STEP, step_input())

    assert manager.get_job(old) is None
    assert manager.get_job(recent) is not None


@pytest.mark.asyncio
async def test_unfinished_jobs_are_never_evicted(make_manager):
    release = asyncio.Event()

    async def gated(ctx, payload):
        await release.wait()
        return {}

    manager = make_manager(gated, max_retained_jobs=0)
    running = manager.enqueue(STEP, step_input()).id
    queued = manager.enqueue(STEP, step_input()).id
    await wait_until(lambda: manager.get_job(running).status == JobStatus.RUNNING)

    manager.enqueue(STEP, step_input())

    assert manager.get_job(running) is not None
    assert manager.get_job(queued) is not None
    release.set()


@pytest.mark.asyncio
async def test_stop_fails_the_running_job(make_manager):
    async def forever(ctx, payload):
        await asyncio.Event().wait()

    manager = make_manager(forever)
    job_id = manager.enqueue(STEP, step_input()).id
    await wait_until(lambda: manager.get_job(job_id).status == JobStatus.RUNNING)

    await manager.stop()

    job = manager.get_job(job_id)
    assert job.status == JobStatus.FAILED
    assert job.error == "Job cancelled during shutdown"
    assert not manager.running


@pytest.mark.asyncio
async def test_enqueue_after_stop_does_not_restart_consumer(make_manager):
    manager = make_manager(echo)
    await manager.start()
    await manager.stop()

    job_id = manager.enqueue(STEP, step_input()).id
    await asyncio.sleep(0.02)

    assert not manager.running
    assert manager.get_job(job_id).status == JobStatus.QUEUED

    await manager.start()
    await manager.join()
    assert manager.get_job(job_id).status == JobStatus.COMPLETED
