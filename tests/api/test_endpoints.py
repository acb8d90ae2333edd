"""
API endpoint tests
"""

import asyncio
import json

import pytest
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from api.dependencies import get_coordinator
from api.main import app
from core.config import settings
from core.database import create_tables
from core.security import FieldEncryptor
from ingestion.client import ShopifyClient
from ingestion.coordinator import IngestionCoordinator
from ingestion.webhooks import compute_signature

TENANT = {
    "tenant_id": "acme",
    "shop_domain": "acme.myshopify.com",
    "access_token": "shpat_test",
    "webhook_secret": "whsec_test",
}


@pytest.fixture
def shop():
    """Mutable route table shared by every client the coordinator builds"""
    return {
        "/shop.json": {"shop": {"name": "Acme"}},
        "/customers.json": {"customers": [{"id": 1, "email": "a@example.com"}]},
        "/products.json": {"products": []},
        "/orders.json": {"orders": []},
    }


@pytest.fixture
def coordinator(tmp_path, shop, shop_transport):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}", poolclass=NullPool)
    asyncio.run(create_tables(engine))
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    coordinator = IngestionCoordinator(
        session_factory,
        encryptor=FieldEncryptor(Fernet.generate_key().decode()),
        client_factory=lambda credential: ShopifyClient(
            credential, transport=shop_transport(shop), page_delay=0
        ),
        scheduler_enabled=False,
    )
    yield coordinator

    asyncio.run(coordinator.shutdown())
    asyncio.run(engine.dispose())


@pytest.fixture
def client(coordinator):
    """Create test client with the coordinator override"""
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    yield TestClient(app)
    app.dependency_overrides.clear()


def webhook_headers(body, topic, secret="whsec_test"):
    return {
        "Content-Type": "application/json",
        "X-Shopify-Topic": topic,
        "X-Shopify-Shop-Domain": "acme.myshopify.com",
        "X-Shopify-Hmac-Sha256": compute_signature(body, secret),
    }


def test_root_endpoint(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["endpoints"]["webhooks"] == settings.WEBHOOK_PATH


def test_health_endpoint(client):
    response = client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["database_connected"] is True
    assert data["scheduler"]["enabled"] is False
    assert "X-Request-ID" in response.headers


def test_request_id_is_propagated(client):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_create_tenant(client):
    response = client.post("/tenants", json=TENANT)

    assert response.status_code == 201
    assert response.json() == {
        "tenant_id": "acme", "shop_domain": "acme.myshopify.com", "active": True, "jobs": []
    }


def test_create_tenant_with_bad_credentials(client, shop):
    shop["/shop.json"] = (401, {"errors": "Invalid API key"}, {})

    response = client.post("/tenants", json=TENANT)

    assert response.status_code == 400
    assert "health check failed" in response.json()["detail"]


def test_create_tenant_with_unknown_job_kind(client):
    response = client.post("/tenants", json={**TENANT, "sync": {"inventory": {"cron": "0 * * * *"}}})
    assert response.status_code == 400


def test_delete_tenant(client):
    client.post("/tenants", json=TENANT)

    assert client.delete("/tenants/acme").status_code == 200
    assert client.delete("/tenants/acme").status_code == 404


def test_import_endpoint(client, coordinator):
    client.post("/tenants", json=TENANT)

    response = client.post("/tenants/acme/import", json={"resource_type": "customers"})

    assert response.status_code == 200
    result = response.json()["results"]["customers"]
    assert result["imported"] == 1
    assert result["success"] is True
    counts = asyncio.run(coordinator.loader.count_records("acme"))
    assert counts["customers"] == 1


def test_import_errors(client):
    assert client.post("/tenants/nobody/import", json={}).status_code == 404
    assert client.post("/tenants/acme/import", json={"resource_type": "inventory"}).status_code == 400


def test_import_aborted_when_shop_unreachable(client, shop):
    client.post("/tenants", json=TENANT)
    shop["/shop.json"] = (503, {"errors": "unavailable"}, {})

    response = client.post("/tenants/acme/import", json={"resource_type": "all"})

    assert response.status_code == 409


def test_webhook_accepted_and_processed(client, coordinator):
    client.post("/tenants", json=TENANT)
    body = json.dumps({"id": 77, "email": "hook@example.com"}).encode()

    response = client.post(settings.WEBHOOK_PATH, content=body,
                           headers=webhook_headers(body, "customers/create"))

    assert response.status_code == 200
    assert response.json()["received"] is True
    # background task runs before the test client returns
    stats = coordinator.webhooks.get_webhook_stats("acme")
    assert stats["processed"] == 1
    counts = asyncio.run(coordinator.loader.count_records("acme"))
    assert counts["customers"] == 1


def test_webhook_rejected(client):
    client.post("/tenants", json=TENANT)
    body = b'{"id": 77}'

    bad_signature = client.post(settings.WEBHOOK_PATH, content=body,
                                headers=webhook_headers(body, "customers/create", secret="nope"))
    missing = client.post(settings.WEBHOOK_PATH, content=body)

    assert bad_signature.status_code == 401
    assert missing.status_code == 400


def test_sync_endpoints(client):
    client.post("/tenants", json=TENANT)

    status = client.get("/sync/status")
    assert status.status_code == 200
    assert status.json()[0]["tenant_id"] == "acme"

    stats = client.get("/sync/stats")
    assert stats.json()["tenants"] == 1

    # scheduler disabled in this app instance
    assert client.get("/sync/jobs").status_code == 503


def test_api_key_required_when_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", "secret-key")

    assert client.get("/sync/status").status_code == 401
    assert client.get("/sync/status", headers={"X-API-Key": "secret-key"}).status_code == 200
    # health and webhooks stay open
    assert client.get("/health").status_code == 200


def test_tenant_stats_endpoint(client):
    client.post("/tenants", json=TENANT)
    client.post("/tenants/acme/import", json={"resource_type": "customers"})

    response = client.get("/tenants/acme/stats")

    assert response.status_code == 200
    assert response.json()["counts"]["customers"] == 1
    assert client.get("/tenants/nobody/stats").status_code == 404
