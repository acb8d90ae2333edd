import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from core.exceptions import SchedulerError
from ingestion.scheduler import (
    CLEANUP_JOB,
    HEALTH_CHECK_JOB,
    RATE_LIMIT_MONITOR_JOB,
    SyncJobConfig,
    SyncScheduler,
)
from models.base import JobState
from schemas.imports import ImportOptions, ImportResult


@pytest_asyncio.fixture
async def runner():
    return AsyncMock(return_value=ImportResult(resource_type="customers", tenant_id="acme"))


@pytest_asyncio.fixture
async def scheduler(runner):
    scheduler = SyncScheduler(runner, cooldown=60, job_timeout=5, order_window_days=7)
    yield scheduler
    scheduler.stop()


@pytest.mark.asyncio
async def test_tenant_job_set(scheduler):
    job_ids = scheduler.schedule_tenant_jobs("acme")

    assert sorted(job_ids) == [
        "customers-sync-acme", "full-sync-acme", "orders-sync-acme", "products-sync-acme"
    ]
    orders = scheduler.get_job("orders-sync-acme")
    assert orders.cron == "*/30 * * * *"
    assert orders.tenant_id == "acme"
    assert orders.state == JobState.IDLE
    assert orders.next_run is not None


@pytest.mark.asyncio
async def test_tenant_override_and_disabled_job(scheduler):
    scheduler.schedule_tenant_jobs("acme", {
        "orders": SyncJobConfig(cron="*/5 * * * *"),
        "full_sync": SyncJobConfig(cron="0 3 * * *", enabled=False),
    })

    assert scheduler.get_job("orders-sync-acme").cron == "*/5 * * * *"
    full = scheduler.get_job("full-sync-acme")
    assert full.enabled is False
    assert full.next_run is None
    assert scheduler.status()["enabled_jobs"] == 3


@pytest.mark.asyncio
async def test_invalid_cron_rejected(scheduler):
    with pytest.raises(SchedulerError):
        scheduler.add_job("bad", "not a cron", AsyncMock())

    with pytest.raises(SchedulerError):
        scheduler.schedule_tenant_jobs("acme", {"inventory": SyncJobConfig(cron="0 * * * *")})


@pytest.mark.asyncio
async def test_execute_sync_job(scheduler, runner):
    scheduler.schedule_tenant_jobs("acme")

    assert await scheduler.execute_job("customers-sync-acme") is True

    job = scheduler.get_job("customers-sync-acme")
    assert job.state == JobState.COMPLETED
    assert job.run_count == 1
    assert job.last_run is not None
    tenant_id, target, options = runner.await_args.args
    assert (tenant_id, target) == ("acme", "customers")
    assert options.batch_size == 100


@pytest.mark.asyncio
async def test_orders_window_recomputed_per_run(scheduler, runner):
    scheduler.schedule_tenant_jobs("acme")
    before = datetime.now(timezone.utc)

    await scheduler.execute_job("orders-sync-acme")

    options = runner.await_args.args[2]
    assert isinstance(options, ImportOptions)
    window_start = before - timedelta(days=7)
    assert abs((options.updated_at_min - window_start).total_seconds()) < 5


@pytest.mark.asyncio
async def test_failed_body_marks_job_failed(scheduler):
    body = AsyncMock(side_effect=RuntimeError("upstream down"))
    scheduler.add_job("flaky", "0 * * * *", body)

    assert await scheduler.execute_job("flaky") is False

    job = scheduler.get_job("flaky")
    assert job.state == JobState.FAILED
    assert job.last_error == "upstream down"


@pytest.mark.asyncio
async def test_partial_import_failure_fails_job(scheduler, runner):
    runner.return_value = ImportResult(resource_type="orders", tenant_id="acme", success=False, errors=2)
    scheduler.schedule_tenant_jobs("acme")

    assert await scheduler.execute_job("orders-sync-acme") is False
    assert scheduler.get_job("orders-sync-acme").state == JobState.FAILED


@pytest.mark.asyncio
async def test_overlapping_run_is_skipped(scheduler):
    release = asyncio.Event()
    calls = []

    async def body():
        calls.append(1)
        await release.wait()

    scheduler.add_job("slow", "0 * * * *", body)

    first = asyncio.create_task(scheduler.execute_job("slow"))
    await asyncio.sleep(0)
    assert scheduler.get_job("slow").state == JobState.RUNNING

    assert await scheduler.execute_job("slow") is False
    release.set()
    assert await first is True
    assert calls == [1]


@pytest.mark.asyncio
async def test_disabled_and_unknown_jobs_do_not_run(scheduler):
    body = AsyncMock()
    scheduler.add_job("paused", "0 * * * *", body, enabled=False)

    assert await scheduler.execute_job("paused") is False
    assert await scheduler.execute_job("missing") is False
    body.assert_not_awaited()

    assert scheduler.enable_job("paused") is True
    assert await scheduler.execute_job("paused") is True
    assert scheduler.disable_job("missing") is False


@pytest.mark.asyncio
async def test_job_deadline(runner):
    scheduler = SyncScheduler(runner, cooldown=60, job_timeout=0.05)

    async def hangs():
        await asyncio.sleep(10)

    scheduler.add_job("hang", "0 * * * *", hangs)

    assert await scheduler.execute_job("hang") is False
    job = scheduler.get_job("hang")
    assert job.state == JobState.FAILED
    assert "deadline" in job.last_error
    scheduler.stop()


@pytest.mark.asyncio
async def test_cooldown_returns_job_to_idle(runner):
    scheduler = SyncScheduler(runner, cooldown=0.01)
    scheduler.add_job("quick", "0 * * * *", AsyncMock())

    await scheduler.execute_job("quick")
    assert scheduler.get_job("quick").state == JobState.COMPLETED

    await asyncio.sleep(0.05)
    assert scheduler.get_job("quick").state == JobState.IDLE
    scheduler.stop()


@pytest.mark.asyncio
async def test_maintenance_jobs_and_status(scheduler):
    scheduler.schedule_maintenance_jobs(
        health_check=AsyncMock(), rate_limit_monitor=AsyncMock(), cleanup=AsyncMock()
    )
    scheduler.schedule_tenant_jobs("acme")
    scheduler.schedule_tenant_jobs("globex")

    status = scheduler.status()

    assert status["total_jobs"] == 11
    assert status["jobs_by_tenant"] == {"global": 3, "acme": 4, "globex": 4}
    assert status["jobs_by_state"][JobState.IDLE.value] == 11
    assert scheduler.get_job(HEALTH_CHECK_JOB).cron == "*/15 * * * *"
    assert scheduler.get_job(RATE_LIMIT_MONITOR_JOB).cron == "*/5 * * * *"
    assert scheduler.get_job(CLEANUP_JOB).cron == "0 0 * * *"


@pytest.mark.asyncio
async def test_remove_tenant_jobs(scheduler):
    scheduler.schedule_tenant_jobs("acme")
    scheduler.schedule_tenant_jobs("globex")

    removed = scheduler.remove_tenant_jobs("acme")

    assert len(removed) == 4
    assert scheduler.jobs_by_tenant("acme") == []
    assert len(scheduler.jobs()) == 4
    assert await scheduler.execute_job("orders-sync-acme") is False


@pytest.mark.asyncio
async def test_start_and_stop(scheduler):
    scheduler.schedule_tenant_jobs("acme")

    scheduler.start()
    assert scheduler.running is True

    scheduler.stop()
    await asyncio.sleep(0)
    assert scheduler.running is False
