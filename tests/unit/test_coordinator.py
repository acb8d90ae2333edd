"""
Unit tests for the ingestion coordinator (tenant lifecycle, imports, status)
"""

import pytest
import pytest_asyncio
from cryptography.fernet import Fernet
from sqlalchemy import select

from core.exceptions import CredentialError, ImportAbortedError, TenantNotFoundError
from core.security import FieldEncryptor
from ingestion.client import ShopifyClient
from ingestion.coordinator import IngestionCoordinator
from ingestion.scheduler import SyncJobConfig
from models import Customer, Tenant
from schemas.imports import ImportOptions


def shop_routes(customers=None, shop_status=200):
    return {
        "/shop.json": (shop_status, {"shop": {"name": "Acme"}}, {}),
        "/customers.json": {"customers": customers or []},
        "/products.json": {"products": []},
        "/orders.json": {"orders": []},
    }


@pytest.fixture
def encryptor():
    return FieldEncryptor(Fernet.generate_key().decode())


@pytest.fixture
def routes():
    return {"acme.myshopify.com": shop_routes(), "globex.myshopify.com": shop_routes()}


@pytest.fixture
def client_factory(shop_transport, routes):
    def factory(credential):
        return ShopifyClient(
            credential,
            transport=shop_transport(routes[credential.shop_domain]),
            page_delay=0,
        )
    return factory


@pytest_asyncio.fixture
async def coordinator(session_factory, encryptor, client_factory):
    coordinator = IngestionCoordinator(
        session_factory,
        encryptor=encryptor,
        client_factory=client_factory,
        scheduler_enabled=False,
    )
    yield coordinator
    await coordinator.shutdown()


CREDENTIALS = {
    "shop_domain": "https://ACME.myshopify.com/",
    "access_token": "shpat_secret",
    "webhook_secret": "whsec_secret",
}


class TestTenantLifecycle:

    @pytest.mark.asyncio
    async def test_add_tenant(self, coordinator, session_factory, encryptor):
        result = await coordinator.add_tenant("acme", CREDENTIALS)

        assert result == {"tenant_id": "acme", "shop_domain": "acme.myshopify.com", "jobs": []}
        assert "acme" in coordinator.clients
        assert coordinator.get_tenant_by_domain("ACME.myshopify.com").tenant_id == "acme"

        async with session_factory() as session:
            row = (await session.execute(select(Tenant))).scalars().one()
        assert row.is_active is True
        assert row.access_token_encrypted != "shpat_secret"
        assert encryptor.decrypt(row.access_token_encrypted) == "shpat_secret"

    @pytest.mark.asyncio
    async def test_failed_health_check_stores_nothing(self, coordinator, routes, session_factory):
        routes["acme.myshopify.com"] = shop_routes(shop_status=401)

        with pytest.raises(CredentialError) as exc_info:
            await coordinator.add_tenant("acme", CREDENTIALS)

        assert exc_info.value.message == "Shopify API health check failed for provided credentials"
        assert "acme" not in coordinator.clients
        assert await coordinator.tenants.list_active() == []

    @pytest.mark.asyncio
    async def test_reonboarding_keeps_one_active_credential(self, coordinator, session_factory):
        await coordinator.add_tenant("acme", CREDENTIALS)
        await coordinator.add_tenant("acme", {**CREDENTIALS, "access_token": "shpat_rotated"})

        active = await coordinator.tenants.list_active()
        assert [c.access_token for c in active] == ["shpat_rotated"]

        async with session_factory() as session:
            rows = (await session.execute(select(Tenant).order_by(Tenant.id))).scalars().all()
        assert [r.is_active for r in rows] == [False, True]
        assert rows[0].access_token_encrypted is None

    @pytest.mark.asyncio
    async def test_remove_tenant(self, coordinator):
        await coordinator.add_tenant("acme", CREDENTIALS)

        assert await coordinator.remove_tenant("acme") is True

        assert "acme" not in coordinator.clients
        assert coordinator.get_tenant_by_domain("acme.myshopify.com") is None
        assert await coordinator.tenants.list_active() == []
        assert await coordinator.remove_tenant("acme") is False

    @pytest.mark.asyncio
    async def test_initialize_restores_tenants_and_jobs(
        self, session_factory, encryptor, client_factory
    ):
        first = IngestionCoordinator(
            session_factory, encryptor=encryptor, client_factory=client_factory,
            scheduler_enabled=False,
        )
        await first.add_tenant("acme", CREDENTIALS)
        await first.shutdown()

        second = IngestionCoordinator(
            session_factory, encryptor=encryptor, client_factory=client_factory,
            scheduler_enabled=True,
        )
        await second.initialize()
        try:
            assert second.tenant_ids() == ["acme"]
            assert second.scheduler.running is True
            status = second.scheduler.status()
            assert status["jobs_by_tenant"] == {"global": 3, "acme": 4}
        finally:
            await second.shutdown()

    @pytest.mark.asyncio
    async def test_jobs_follow_tenant(self, session_factory, encryptor, client_factory):
        coordinator = IngestionCoordinator(
            session_factory, encryptor=encryptor, client_factory=client_factory,
            scheduler_enabled=True,
        )
        try:
            result = await coordinator.add_tenant(
                "acme", CREDENTIALS, {"orders": SyncJobConfig(cron="*/10 * * * *")}
            )
            assert len(result["jobs"]) == 4
            assert coordinator.scheduler.get_job("orders-sync-acme").cron == "*/10 * * * *"

            await coordinator.remove_tenant("acme")
            assert coordinator.scheduler.jobs_by_tenant("acme") == []
        finally:
            await coordinator.shutdown()


class TestImports:

    @pytest.mark.asyncio
    async def test_import_customers(self, coordinator, routes, session_factory):
        routes["acme.myshopify.com"] = shop_routes(customers=[
            {"id": 1, "email": "a@example.com"},
            {"id": 2, "email": "b@example.com"},
            {"id": 3},
        ])
        await coordinator.add_tenant("acme", CREDENTIALS)

        result = await coordinator.import_data("acme", "customers")

        assert result.imported == 2
        assert result.skipped_invalid == 1
        assert await coordinator.loader.count_records("acme") == {
            "customers": 2, "products": 0, "orders": 0
        }
        async with session_factory() as session:
            emails = (await session.execute(select(Customer.email_encrypted))).scalars().all()
        assert all(e and "@" not in e for e in emails)

    @pytest.mark.asyncio
    async def test_import_all(self, coordinator):
        await coordinator.add_tenant("acme", CREDENTIALS)

        results = await coordinator.import_data("acme", options=ImportOptions(dry_run=True))

        assert set(results) == {"customers", "products", "orders"}

    @pytest.mark.asyncio
    async def test_unknown_tenant_and_resource(self, coordinator):
        with pytest.raises(TenantNotFoundError):
            await coordinator.import_data("nobody", "customers")

        await coordinator.add_tenant("acme", CREDENTIALS)
        with pytest.raises(ImportAbortedError):
            await coordinator.import_data("acme", "inventory")

    @pytest.mark.asyncio
    async def test_import_stats(self, coordinator, routes):
        routes["acme.myshopify.com"] = shop_routes(customers=[{"id": 1, "email": "a@example.com"}])
        await coordinator.add_tenant("acme", CREDENTIALS)
        await coordinator.import_data("acme", "customers")

        stats = await coordinator.get_import_stats("acme")

        assert stats["tenant_id"] == "acme"
        assert stats["counts"] == {"customers": 1, "products": 0, "orders": 0}
        assert stats["last_sync"] is not None

        with pytest.raises(TenantNotFoundError):
            await coordinator.get_import_stats("nobody")


class TestStatus:

    @pytest.mark.asyncio
    async def test_healthy_without_tenants(self, coordinator):
        health = await coordinator.get_health_status()

        assert health.status == "healthy"
        assert health.database_connected is True
        assert health.clients == 0
        assert health.scheduler.enabled is False

    @pytest.mark.asyncio
    async def test_degraded_when_some_clients_fail(self, coordinator, routes):
        await coordinator.add_tenant("acme", CREDENTIALS)
        await coordinator.add_tenant("globex", {**CREDENTIALS, "shop_domain": "globex.myshopify.com"})
        routes["globex.myshopify.com"]["/shop.json"] = (500, {"errors": "down"}, {})

        health = await coordinator.get_health_status()

        assert health.status == "degraded"
        assert health.clients == 2
        assert health.healthy_clients == 1

    @pytest.mark.asyncio
    async def test_sync_status_and_statistics(self, coordinator):
        await coordinator.add_tenant("acme", CREDENTIALS)

        statuses = await coordinator.get_sync_status()
        stats = await coordinator.get_statistics()

        assert [s.tenant_id for s in statuses] == ["acme"]
        assert statuses[0].healthy is True
        assert statuses[0].rate_limit.bucket_size == 40
        assert stats["tenants"] == 1
        assert stats["records"]["acme"]["counts"]["orders"] == 0

    @pytest.mark.asyncio
    async def test_maintenance_bodies(self, coordinator):
        await coordinator.add_tenant("acme", CREDENTIALS)

        assert await coordinator.run_health_checks() == {"acme": True}
        report = await coordinator.monitor_rate_limits()
        assert report["acme"]["throttled"] is False
        assert await coordinator.cleanup() == 0
