"""
Ingestion coordinator: tenant registry and wiring of client, importer,
webhook receiver and scheduler.
"""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from sqlalchemy import text

from core.config import settings
from core.database import async_session_maker
from core.exceptions import CredentialError, ImportAbortedError, TenantNotFoundError
from core.logging import get_logger
from core.security import FieldEncryptor
from ingestion.client import ClientManager, ShopifyClient
from ingestion.importer import ALL, BatchImporter
from ingestion.loaders.record_loader import RecordLoader
from ingestion.loaders.tenant_repository import TenantRepository
from ingestion.scheduler import SyncJobConfig, SyncScheduler
from ingestion.transformers.shopify_transformer import ShopifyTransformer
from ingestion.webhooks import WebhookReceiver
from models.base import ResourceType
from schemas.api import HealthStatus, RateLimitInfo, SchedulerHealth, TenantSyncStatus
from schemas.imports import ImportOptions
from schemas.tenant import TenantCredential

VALID_TARGETS = {r.value for r in ResourceType} | {ALL}


class IngestionCoordinator:
    """
    Compose the ingestion components for every tenant.

    Lifecycle:
        initialize() loads active tenants, starts the scheduler and schedules
        maintenance plus per-tenant jobs; shutdown() stops the scheduler and
        closes every client.
    """

    def __init__(
        self,
        session_factory=None,
        *,
        encryptor: Optional[FieldEncryptor] = None,
        loader: Optional[RecordLoader] = None,
        tenant_repository: Optional[TenantRepository] = None,
        client_factory: Optional[Callable[[TenantCredential], ShopifyClient]] = None,
        scheduler: Optional[SyncScheduler] = None,
        scheduler_enabled: Optional[bool] = None,
        webhooks_enabled: Optional[bool] = None,
        logger=None,
    ):
        self.log = logger or get_logger(__name__)
        self.session_factory = session_factory or async_session_maker
        self.encryptor = encryptor or FieldEncryptor()
        self.loader = loader or RecordLoader(self.session_factory)
        self.tenants = tenant_repository or TenantRepository(self.session_factory, self.encryptor)
        self.transformer = ShopifyTransformer(self.encryptor.encrypt)
        self.client_factory = client_factory or self._default_client
        self.clients = ClientManager()

        self.scheduler_enabled = (
            settings.SCHEDULER_ENABLED if scheduler_enabled is None else scheduler_enabled
        )
        self.scheduler = scheduler
        self.webhooks = WebhookReceiver(
            self.loader,
            self.transformer,
            self.get_tenant_by_domain,
            enabled=settings.WEBHOOKS_ENABLED if webhooks_enabled is None else webhooks_enabled,
        )

        self._credentials: Dict[str, TenantCredential] = {}
        self._domains: Dict[str, str] = {}
        self._started = time.monotonic()
        self.initialized = False

    @staticmethod
    def _default_client(credential: TenantCredential) -> ShopifyClient:
        return ShopifyClient(credential)

    def _ensure_scheduler(self) -> Optional[SyncScheduler]:
        if self.scheduler is None and self.scheduler_enabled:
            self.scheduler = SyncScheduler(self.import_data)
        return self.scheduler

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self):
        if self.initialized:
            return
        credentials = await self.tenants.list_active()
        for credential in credentials:
            await self._register(credential)
        self.log.info(f"Loaded {len(credentials)} active tenants")

        scheduler = self._ensure_scheduler()
        if scheduler is not None:
            scheduler.schedule_maintenance_jobs(
                health_check=self.run_health_checks,
                rate_limit_monitor=self.monitor_rate_limits,
                cleanup=self.cleanup,
            )
            for credential in credentials:
                scheduler.schedule_tenant_jobs(credential.tenant_id)
            scheduler.start()

        self.initialized = True
        self.log.info("Ingestion coordinator initialized")

    async def shutdown(self):
        if self.scheduler is not None:
            self.scheduler.stop()
        await self.clients.close_all()
        self.initialized = False
        self.log.info("Ingestion coordinator shut down")

    async def _register(self, credential: TenantCredential, client: Optional[ShopifyClient] = None):
        previous = self._credentials.get(credential.tenant_id)
        if previous is not None:
            self._domains.pop(previous.shop_domain, None)
        client = client or self.client_factory(credential)
        await self.clients.add(credential.tenant_id, client)
        self._credentials[credential.tenant_id] = credential
        self._domains[credential.shop_domain] = credential.tenant_id
        return client

    # ------------------------------------------------------------------
    # Tenant lifecycle
    # ------------------------------------------------------------------

    async def add_tenant(
        self,
        tenant_id: str,
        credentials: Union[TenantCredential, Dict[str, Any]],
        sync_config: Optional[Dict[str, SyncJobConfig]] = None,
    ) -> Dict[str, Any]:
        """
        Validate credentials with a health check, then activate the tenant.

        Raises:
            CredentialError: The health check with the supplied credentials failed
        """
        if isinstance(credentials, TenantCredential):
            credential = credentials.model_copy(update={"tenant_id": tenant_id})
        else:
            credential = TenantCredential(**{**credentials, "tenant_id": tenant_id})

        log = self.log.bind(tenant_id=tenant_id)
        client = self.client_factory(credential)
        if not await client.health_check():
            await client.aclose()
            log.warning("Onboarding rejected: health check failed")
            raise CredentialError(
                "Shopify API health check failed for provided credentials",
                context={"tenant_id": tenant_id, "shop_domain": credential.shop_domain}
            )

        await self.tenants.save(credential)
        await self._register(credential, client)

        job_ids: List[str] = []
        scheduler = self._ensure_scheduler()
        if scheduler is not None:
            scheduler.remove_tenant_jobs(tenant_id)
            job_ids = scheduler.schedule_tenant_jobs(tenant_id, sync_config)

        log.info(f"Tenant onboarded ({credential.shop_domain}) with {len(job_ids)} jobs")
        return {"tenant_id": tenant_id, "shop_domain": credential.shop_domain, "jobs": job_ids}

    async def remove_tenant(self, tenant_id: str) -> bool:
        """Drop the client, clear stored credentials and disable/remove the tenant's jobs."""
        known = tenant_id in self._credentials
        deactivated = await self.tenants.deactivate(tenant_id)
        await self.clients.remove(tenant_id)

        credential = self._credentials.pop(tenant_id, None)
        if credential is not None:
            self._domains.pop(credential.shop_domain, None)

        if self.scheduler is not None:
            for job in self.scheduler.jobs_by_tenant(tenant_id):
                self.scheduler.disable_job(job.id)
            self.scheduler.remove_tenant_jobs(tenant_id)

        self.log.info(f"Tenant {tenant_id} offboarded")
        return known or deactivated

    def get_tenant_by_domain(self, shop_domain: str) -> Optional[TenantCredential]:
        tenant_id = self._domains.get((shop_domain or "").strip().lower())
        return self._credentials.get(tenant_id) if tenant_id else None

    def tenant_ids(self) -> List[str]:
        return list(self._credentials)

    # ------------------------------------------------------------------
    # Imports
    # ------------------------------------------------------------------

    def build_importer(self, tenant_id: str) -> BatchImporter:
        client = self.clients.get(tenant_id)
        if client is None:
            raise TenantNotFoundError(
                f"No active client for tenant {tenant_id}",
                context={"tenant_id": tenant_id}
            )
        return BatchImporter(client, self.loader, tenant_id, self.transformer)

    async def import_data(
        self,
        tenant_id: str,
        resource_type: Union[str, ResourceType] = ALL,
        options: Optional[ImportOptions] = None,
    ):
        """
        Run an import for one tenant.

        Raises:
            TenantNotFoundError: No client registered for the tenant
            ImportAbortedError: Unknown resource type, or the run-start health check failed
        """
        target = getattr(resource_type, "value", resource_type)
        if target not in VALID_TARGETS:
            raise ImportAbortedError(
                f"Unknown resource type {target}",
                context={"tenant_id": tenant_id, "valid": sorted(VALID_TARGETS)}
            )
        importer = self.build_importer(tenant_id)
        return await importer.run(target, options)

    async def get_import_stats(self, tenant_id: str) -> Dict[str, Any]:
        """
        Stored record counts and last sync time for one tenant.

        Raises:
            TenantNotFoundError: No client registered for the tenant
        """
        return await self.build_importer(tenant_id).get_import_stats()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def _tenant_status(self, tenant_id: str) -> TenantSyncStatus:
        client = self.clients.get(tenant_id)
        credential = self._credentials.get(tenant_id)
        healthy = await client.health_check() if client else False
        return TenantSyncStatus(
            tenant_id=tenant_id,
            shop_domain=credential.shop_domain if credential else None,
            healthy=healthy,
            counts=await self.loader.count_records(tenant_id),
            last_sync=await self.loader.last_synced_at(tenant_id),
            rate_limit=RateLimitInfo(**client.rate_limit_status()) if client else RateLimitInfo(),
        )

    async def get_sync_status(self) -> List[TenantSyncStatus]:
        return list(await asyncio.gather(*(self._tenant_status(t) for t in self.tenant_ids())))

    async def check_database(self) -> bool:
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            self.log.error(f"Database connection failed: {e}")
            return False

    async def get_health_status(self) -> HealthStatus:
        database_connected = await self.check_database()
        results = await self.clients.health_check_all()
        healthy = sum(1 for ok in results.values() if ok)

        if not database_connected:
            status = "unhealthy"
        elif not results or healthy == len(results):
            status = "healthy"
        elif healthy:
            status = "degraded"
        else:
            status = "unhealthy"

        if self.scheduler is not None:
            sched = self.scheduler.status()
            scheduler = SchedulerHealth(
                enabled=True,
                running=sched["running"],
                total_jobs=sched["total_jobs"],
                enabled_jobs=sched["enabled_jobs"],
                running_jobs=sched["running_jobs"],
            )
        else:
            scheduler = SchedulerHealth(enabled=False)

        return HealthStatus(
            status=status,
            database_connected=database_connected,
            clients=len(results),
            healthy_clients=healthy,
            scheduler=scheduler,
            webhooks_enabled=self.webhooks.enabled,
            uptime_seconds=round(time.monotonic() - self._started, 3),
        )

    async def get_statistics(self) -> Dict[str, Any]:
        per_tenant = {}
        for tenant_id in self.tenant_ids():
            last_sync = await self.loader.last_synced_at(tenant_id)
            per_tenant[tenant_id] = {
                "counts": await self.loader.count_records(tenant_id),
                "last_sync": last_sync.isoformat() if last_sync else None,
            }
        return {
            "tenants": len(self._credentials),
            "records": per_tenant,
            "webhooks": self.webhooks.get_webhook_stats(),
            "scheduler": self.scheduler.status() if self.scheduler else None,
        }

    # ------------------------------------------------------------------
    # Maintenance job bodies
    # ------------------------------------------------------------------

    async def run_health_checks(self) -> Dict[str, bool]:
        results = await self.clients.health_check_all()
        unhealthy = [t for t, ok in results.items() if not ok]
        if unhealthy:
            self.log.warning(f"Unhealthy tenant clients: {unhealthy}")
        else:
            self.log.info(f"All {len(results)} tenant clients healthy")
        return results

    async def monitor_rate_limits(self) -> Dict[str, Dict[str, Any]]:
        report = {}
        for tenant_id, client in self.clients.all().items():
            report[tenant_id] = client.rate_limit_status()
            if client.is_throttled():
                self.log.warning(f"Tenant {tenant_id} is throttled: {report[tenant_id]}")
        return report

    async def cleanup(self) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(days=settings.WEBHOOK_RETENTION_DAYS)
        return await self.loader.purge_webhook_events(cutoff)
