"""
The import path and the webhook path write the same rows for the same record
"""

import json

import pytest
from sqlalchemy import inspect, select

from ingestion.importer import BatchImporter
from ingestion.loaders.record_loader import RecordLoader
from ingestion.transformers.shopify_transformer import ShopifyTransformer
from ingestion.webhooks import WebhookReceiver, compute_signature
from models import Customer, Order, OrderEvent, OrderLineItem
from models.base import WebhookEventStatus

VOLATILE = {"id", "synced_at", "created_at", "updated_at"}


class SinglePageClient:
    def __init__(self, resource, items):
        self.resource = resource
        self.items = items

    async def health_check(self):
        return True

    async def iter_pages(self, resource, params=None):
        if resource == self.resource:
            yield list(self.items)

    def is_throttled(self):
        return False

    def wait_time(self):
        return 0.0


async def snapshot(session_factory, model):
    async with session_factory() as session:
        rows = (await session.execute(select(model))).scalars().all()
    result = []
    for row in rows:
        attrs = inspect(row).mapper.column_attrs
        result.append({a.key: getattr(row, a.key) for a in attrs if a.key not in VOLATILE})
    return sorted(result, key=lambda r: (r.get("external_id") or "", r.get("event_type") or ""))


@pytest.fixture
def loader(session_factory):
    return RecordLoader(session_factory)


@pytest.fixture
def transformer(fake_encrypt):
    return ShopifyTransformer(fake_encrypt)


@pytest.fixture
def receiver(loader, transformer, credential):
    return WebhookReceiver(loader, transformer, lambda domain: credential)


async def via_import(loader, transformer, resource, payload):
    importer = BatchImporter(SinglePageClient(resource, [payload]), loader, "acme", transformer)
    result = await importer.import_resource(resource)
    assert result.imported == 1


async def via_webhook(receiver, topic, payload):
    body = json.dumps(payload).encode()
    headers = {
        "X-Shopify-Topic": topic,
        "X-Shopify-Shop-Domain": "acme.myshopify.com",
        "X-Shopify-Hmac-Sha256": compute_signature(body, "whsec_test"),
    }
    receipt = await receiver.receive(headers, body)
    assert receipt.accepted
    assert await receiver.process_event(receipt.event) == WebhookEventStatus.PROCESSED


@pytest.mark.asyncio
async def test_customer_import_then_webhook(loader, transformer, receiver, session_factory, customer_payload):
    await via_import(loader, transformer, "customers", customer_payload)
    imported = await snapshot(session_factory, Customer)

    await via_webhook(receiver, "customers/update", customer_payload)

    assert len(imported) == 1
    assert await snapshot(session_factory, Customer) == imported


@pytest.mark.asyncio
async def test_order_webhook_then_import(loader, transformer, receiver, session_factory, order_payload):
    await via_webhook(receiver, "orders/create", order_payload)
    from_webhook = [
        await snapshot(session_factory, model) for model in (Order, OrderLineItem, OrderEvent)
    ]

    await via_import(loader, transformer, "orders", order_payload)
    from_import = [
        await snapshot(session_factory, model) for model in (Order, OrderLineItem, OrderEvent)
    ]

    orders, line_items, events = from_import
    assert len(orders) == 1
    assert len(line_items) == 2
    assert len(events) == 1
    assert from_import == from_webhook
