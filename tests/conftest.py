"""
Pytest configuration and fixtures
"""

import json

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from models import Base
from schemas.tenant import TenantCredential

API_PREFIX = "/admin/api/2024-01"


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """File-backed SQLite engine; every test gets a fresh schema"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def fake_encrypt():
    """Reversible stand-in for the Fernet hook so assertions can read values"""
    return lambda v: None if v is None else f"enc:{v}"


@pytest.fixture
def credential():
    return TenantCredential(
        tenant_id="acme",
        shop_domain="acme.myshopify.com",
        access_token="shpat_test",
        webhook_secret="whsec_test",
        api_version="2024-01",
    )


@pytest.fixture
def shop_transport():
    """
    Build an httpx.MockTransport serving canned Admin API responses.

    ``routes`` maps a resource path ("/shop.json", "/customers.json") to
    either a JSON body or a (status, body, headers) tuple. Requests are
    recorded on ``transport.requests``.
    """
    def factory(routes, call_limit="1/40"):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            path = request.url.path
            if path.startswith(API_PREFIX):
                path = path[len(API_PREFIX):]
            route = routes.get(path)
            if route is None:
                return httpx.Response(404, json={"errors": "Not Found"})
            if callable(route):
                route = route(request)
            if isinstance(route, tuple):
                status, body, headers = route
            else:
                status, body, headers = 200, route, {}
            headers = {"X-Shopify-Shop-Api-Call-Limit": call_limit, **headers}
            if isinstance(body, (dict, list)):
                return httpx.Response(status, content=json.dumps(body), headers={
                    "Content-Type": "application/json", **headers
                })
            return httpx.Response(status, content=body or b"", headers=headers)

        transport = httpx.MockTransport(handler)
        transport.requests = requests
        return transport

    return factory


@pytest.fixture
def customer_payload():
    return {
        "id": 1001,
        "email": "  Jane.Doe@Example.COM ",
        "first_name": "Jane",
        "last_name": "Doe",
        "phone": "+1 (555) 123-4567",
        "accepts_marketing": True,
        "orders_count": 3,
        "total_spent": "149.90",
        "currency": "USD",
        "state": "enabled",
        "verified_email": True,
        "tags": "vip, newsletter ,",
        "default_address": {"city": "Berlin", "country_code": "DE"},
        "created_at": "2024-01-10T09:00:00Z",
        "updated_at": "2024-01-12T09:00:00Z",
    }


@pytest.fixture
def product_payload():
    return {
        "id": 2001,
        "title": "  Linen Shirt ",
        "body_html": "<p>Soft</p><script>alert('x')</script>",
        "handle": "linen-shirt",
        "vendor": "Acme",
        "product_type": "Shirts",
        "status": "active",
        "tags": ["summer", "linen"],
        "variants": [
            {"id": 1, "price": "39.00", "inventory_quantity": 5},
            {"id": 2, "price": "45.50", "inventory_quantity": 2},
            {"id": 3, "price": "", "inventory_quantity": None},
        ],
        "image": {"id": 9, "src": "https://cdn.example.com/shirt.png"},
        "created_at": "2024-01-01T00:00:00Z",
        "updated_at": "2024-01-02T00:00:00Z",
    }


@pytest.fixture
def order_payload():
    return {
        "id": 3001,
        "order_number": 1001,
        "name": "#1001",
        "email": "Jane.Doe@example.com",
        "created_at": "2024-01-15T10:00:00Z",
        "updated_at": "2024-01-16T10:00:00Z",
        "total_price": "84.50",
        "subtotal_price": "80.00",
        "total_tax": "4.50",
        "currency": "USD",
        "financial_status": "paid",
        "fulfillment_status": None,
        "customer": {"id": 1001},
        "shipping_address": {"city": "Berlin"},
        "line_items": [
            {"id": 41, "product_id": 2001, "variant_id": 1, "title": "Linen Shirt",
             "quantity": 1, "price": "39.00"},
            {"id": 42, "product_id": 2001, "variant_id": 2, "title": "Linen Shirt",
             "quantity": None, "price": "41.00"},
        ],
    }
