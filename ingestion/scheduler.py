"""
Recurring sync and maintenance jobs on APScheduler cron triggers.

Every job runs through ``execute_job``, which guarantees at most one
concurrent run per job, records last/next run times, enforces an execution
deadline and puts the job back to idle after a cooldown.
"""

import asyncio
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from core.config import settings
from core.exceptions import SchedulerError
from core.logging import get_logger
from models.base import JobState
from schemas.imports import ImportOptions, ImportResult, RetryOptions

JobBody = Callable[[], Awaitable[Any]]
ImportRunner = Callable[[str, str, Optional[ImportOptions]], Awaitable[Any]]

HEALTH_CHECK_JOB = "shopify-health-check"
RATE_LIMIT_MONITOR_JOB = "rate-limit-monitor"
CLEANUP_JOB = "cleanup-logs"

# job kind -> (job id prefix, import target)
TENANT_JOB_KINDS = {
    "customers": ("customers-sync", "customers"),
    "products": ("products-sync", "products"),
    "orders": ("orders-sync", "orders"),
    "full_sync": ("full-sync", "all"),
}


@dataclass
class SyncJobConfig:
    cron: str
    enabled: bool = True
    options: ImportOptions = field(default_factory=ImportOptions)


def default_sync_config() -> Dict[str, SyncJobConfig]:
    return {
        "customers": SyncJobConfig(
            cron="0 */6 * * *",
            options=ImportOptions(
                batch_size=100, concurrency=2,
                retry=RetryOptions(max_attempts=3, factor=2, min_timeout=2, max_timeout=10),
            ),
        ),
        "products": SyncJobConfig(
            cron="0 2 * * *",
            options=ImportOptions(
                batch_size=75, concurrency=2,
                retry=RetryOptions(max_attempts=3, factor=2, min_timeout=2, max_timeout=10),
            ),
        ),
        "orders": SyncJobConfig(
            cron="*/30 * * * *",
            options=ImportOptions(
                batch_size=50, concurrency=3,
                retry=RetryOptions(max_attempts=5, factor=2, min_timeout=1, max_timeout=8),
            ),
        ),
        "full_sync": SyncJobConfig(
            cron="0 1 * * 0",
            options=ImportOptions(
                concurrency=2,
                retry=RetryOptions(max_attempts=3, factor=2, min_timeout=3, max_timeout=15),
            ),
        ),
    }


@dataclass
class ScheduledJob:
    """A registry entry: trigger, run state and a cancel handle."""
    id: str
    name: str
    cron: str
    func: JobBody
    trigger: CronTrigger
    description: str = ""
    tenant_id: Optional[str] = None
    state: JobState = JobState.IDLE
    enabled: bool = True
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    last_error: Optional[str] = None
    run_count: int = 0
    _cancel: Optional[Callable[[], None]] = field(default=None, repr=False)

    def cancel(self):
        if self._cancel is not None:
            self._cancel()
            self._cancel = None
        self.enabled = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "cron": self.cron,
            "description": self.description,
            "tenant_id": self.tenant_id,
            "state": self.state.value,
            "enabled": self.enabled,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "last_error": self.last_error,
            "run_count": self.run_count,
        }


def _raise_on_failed_import(job_id: str, result: Any):
    results = result.values() if isinstance(result, dict) else [result]
    failed = [r for r in results if isinstance(r, ImportResult) and not r.success]
    if failed:
        raise SchedulerError(
            f"Sync job {job_id} finished with failures",
            context={
                "job_id": job_id,
                "resources": [r.resource_type for r in failed],
                "errors": sum(r.errors for r in failed),
            }
        )


class SyncScheduler:
    """
    Job registry backed by an AsyncIOScheduler.

    Create it inside a running event loop.

    Args:
        import_runner: async (tenant_id, target, options) -> ImportResult(s)
    """

    def __init__(
        self,
        import_runner: ImportRunner,
        *,
        logger=None,
        timezone_name: Optional[str] = None,
        cooldown: Optional[float] = None,
        job_timeout: Optional[float] = None,
        order_window_days: Optional[int] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.import_runner = import_runner
        self.log = logger or get_logger(__name__)
        self.timezone = timezone_name or settings.SCHEDULER_TIMEZONE
        self.cooldown = settings.JOB_COOLDOWN_SECONDS if cooldown is None else cooldown
        self.job_timeout = settings.JOB_TIMEOUT_SECONDS if job_timeout is None else job_timeout
        self.order_window_days = (
            settings.ORDER_SYNC_WINDOW_DAYS if order_window_days is None else order_window_days
        )
        self.scheduler = scheduler or AsyncIOScheduler(timezone=self.timezone)

        self._jobs: Dict[str, ScheduledJob] = {}
        self._lock = threading.RLock()
        self._reset_handles: Dict[str, asyncio.TimerHandle] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return bool(self.scheduler.running)

    def start(self):
        """Start the scheduler"""
        if not self.scheduler.running:
            self.scheduler.start()
            self.log.info(f"Scheduler started with {len(self._jobs)} jobs")

    def stop(self):
        for handle in self._reset_handles.values():
            handle.cancel()
        self._reset_handles.clear()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.log.info("Scheduler stopped")

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def _next_fire(self, trigger: CronTrigger) -> Optional[datetime]:
        return trigger.get_next_fire_time(None, datetime.now(timezone.utc))

    def add_job(
        self,
        job_id: str,
        cron: str,
        func: JobBody,
        *,
        name: Optional[str] = None,
        description: str = "",
        tenant_id: Optional[str] = None,
        enabled: bool = True,
    ) -> ScheduledJob:
        """Register (or replace) a job. Raises SchedulerError for a bad cron expression."""
        try:
            trigger = CronTrigger.from_crontab(cron, timezone=self.timezone)
        except ValueError as e:
            raise SchedulerError(
                f"Invalid cron expression for {job_id}",
                context={"job_id": job_id, "cron": cron},
                original_exception=e
            )

        with self._lock:
            if job_id in self._jobs:
                self._unschedule(job_id)

            job = ScheduledJob(
                id=job_id,
                name=name or job_id,
                cron=cron,
                func=func,
                trigger=trigger,
                description=description,
                tenant_id=tenant_id,
                enabled=enabled,
                next_run=self._next_fire(trigger) if enabled else None,
            )
            self.scheduler.add_job(
                self.execute_job,
                trigger=trigger,
                args=[job_id],
                id=job_id,
                name=job.name,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=300,
            )
            if not enabled:
                self.scheduler.pause_job(job_id)
            job._cancel = lambda: self._unschedule(job_id)
            self._jobs[job_id] = job

        self.log.info(f"Scheduled job {job_id} ({cron})")
        return job

    def _unschedule(self, job_id: str):
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            pass

    def schedule_tenant_jobs(
        self,
        tenant_id: str,
        config: Optional[Dict[str, SyncJobConfig]] = None,
    ) -> List[str]:
        """Create the per-tenant sync set; entries in ``config`` override the defaults."""
        merged = default_sync_config()
        for kind, override in (config or {}).items():
            if kind not in TENANT_JOB_KINDS:
                raise SchedulerError(f"Unknown sync job kind {kind}", context={"tenant_id": tenant_id})
            merged[kind] = override

        job_ids = []
        for kind, job_config in merged.items():
            prefix, target = TENANT_JOB_KINDS[kind]
            job_id = f"{prefix}-{tenant_id}"
            self.add_job(
                job_id,
                job_config.cron,
                self._sync_body(job_id, tenant_id, target, job_config.options),
                name=f"{kind.replace('_', ' ').title()} sync ({tenant_id})",
                description=f"Sync {target} for tenant {tenant_id}",
                tenant_id=tenant_id,
                enabled=job_config.enabled,
            )
            job_ids.append(job_id)
        return job_ids

    def _sync_body(self, job_id: str, tenant_id: str, target: str, options: ImportOptions) -> JobBody:
        async def body():
            run_options = options
            if target == "orders":
                # rolling window recomputed at every run
                since = datetime.now(timezone.utc) - timedelta(days=self.order_window_days)
                run_options = options.model_copy(update={"updated_at_min": since})
            result = await self.import_runner(tenant_id, target, run_options)
            _raise_on_failed_import(job_id, result)
            return result
        return body

    def schedule_maintenance_jobs(
        self,
        health_check: Optional[JobBody] = None,
        rate_limit_monitor: Optional[JobBody] = None,
        cleanup: Optional[JobBody] = None,
    ) -> List[str]:
        job_ids = []
        if health_check is not None:
            self.add_job(HEALTH_CHECK_JOB, "*/15 * * * *", health_check,
                         name="Health check", description="Check every tenant client")
            job_ids.append(HEALTH_CHECK_JOB)
        if rate_limit_monitor is not None:
            self.add_job(RATE_LIMIT_MONITOR_JOB, "*/5 * * * *", rate_limit_monitor,
                         name="Rate limit monitor", description="Report throttled clients")
            job_ids.append(RATE_LIMIT_MONITOR_JOB)
        if cleanup is not None:
            self.add_job(CLEANUP_JOB, "0 0 * * *", cleanup,
                         name="Cleanup", description="Purge old webhook events")
            job_ids.append(CLEANUP_JOB)
        return job_ids

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_job(self, job_id: str) -> bool:
        """
        Run one job body under the execution wrapper.

        Returns:
            True when the body completed, False when it failed, timed out or
            was skipped (unknown, disabled or already running).
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                self.log.warning(f"Trigger for unknown job {job_id}")
                return False
            if not job.enabled:
                self.log.debug(f"Job {job_id} is disabled, skipping")
                return False
            if job.state == JobState.RUNNING:
                self.log.warning(f"Job {job_id} is still running, skipping this trigger")
                return False

            job.state = JobState.RUNNING
            job.last_run = datetime.now(timezone.utc)
            job.next_run = self._next_fire(job.trigger)
            job.run_count += 1
            run_token = job.run_count
            handle = self._reset_handles.pop(job_id, None)
            if handle is not None:
                handle.cancel()

        log = self.log.bind(job_id=job_id, tenant_id=job.tenant_id)
        log.info("Job started")

        error = None
        try:
            await asyncio.wait_for(job.func(), timeout=self.job_timeout)
        except asyncio.TimeoutError:
            error = f"Job exceeded its {self.job_timeout}s deadline"
        except Exception as e:
            error = str(e)

        with self._lock:
            job.state = JobState.FAILED if error else JobState.COMPLETED
            job.last_error = error

        if error:
            log.error(f"Job failed: {error}")
        else:
            log.info("Job completed")

        self._schedule_reset(job_id, run_token)
        return error is None

    def _schedule_reset(self, job_id: str, run_token: int):
        loop = asyncio.get_running_loop()
        self._reset_handles[job_id] = loop.call_later(
            self.cooldown, self._reset_to_idle, job_id, run_token
        )

    def _reset_to_idle(self, job_id: str, run_token: int):
        with self._lock:
            self._reset_handles.pop(job_id, None)
            job = self._jobs.get(job_id)
            if job is None or job.run_count != run_token:
                return
            if job.state != JobState.RUNNING:
                job.state = JobState.IDLE

    # ------------------------------------------------------------------
    # Registry operations
    # ------------------------------------------------------------------

    def enable_job(self, job_id: str) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            job.enabled = True
            self.scheduler.resume_job(job_id)
            job.next_run = self._next_fire(job.trigger)
        self.log.info(f"Enabled job {job_id}")
        return True

    def disable_job(self, job_id: str) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            job.enabled = False
            job.next_run = None
            try:
                self.scheduler.pause_job(job_id)
            except JobLookupError:
                pass
        self.log.info(f"Disabled job {job_id}")
        return True

    def get_job(self, job_id: str) -> Optional[ScheduledJob]:
        with self._lock:
            return self._jobs.get(job_id)

    def jobs(self) -> List[ScheduledJob]:
        with self._lock:
            return list(self._jobs.values())

    def jobs_by_tenant(self, tenant_id: str) -> List[ScheduledJob]:
        with self._lock:
            return [job for job in self._jobs.values() if job.tenant_id == tenant_id]

    def remove_tenant_jobs(self, tenant_id: str) -> List[str]:
        with self._lock:
            removed = []
            for job in self.jobs_by_tenant(tenant_id):
                job.cancel()
                self._jobs.pop(job.id, None)
                handle = self._reset_handles.pop(job.id, None)
                if handle is not None:
                    handle.cancel()
                removed.append(job.id)
        if removed:
            self.log.info(f"Removed {len(removed)} jobs for tenant {tenant_id}")
        return removed

    def status(self) -> Dict[str, Any]:
        with self._lock:
            jobs = list(self._jobs.values())
        by_state = {state.value: 0 for state in JobState}
        by_tenant: Dict[str, int] = {}
        for job in jobs:
            by_state[job.state.value] += 1
            key = job.tenant_id or "global"
            by_tenant[key] = by_tenant.get(key, 0) + 1
        return {
            "running": self.running,
            "total_jobs": len(jobs),
            "enabled_jobs": sum(1 for j in jobs if j.enabled),
            "running_jobs": by_state[JobState.RUNNING.value],
            "jobs_by_state": by_state,
            "jobs_by_tenant": by_tenant,
        }
