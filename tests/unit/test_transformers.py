"""
Unit tests for the record transformer
"""

import json
from decimal import Decimal

import pytest

from core.exceptions import ValidationError
from ingestion.transformers.shopify_transformer import (
    DELETE,
    UPSERT,
    ShopifyTransformer,
    clean_phone,
    normalize_email,
    sanitize_html,
    split_tags,
)
from models.base import OrderEventType, OrderStatus, ResourceType
from schemas.records import CustomerRecord, OrderAggregate, ProductRecord


@pytest.fixture
def transformer(fake_encrypt):
    return ShopifyTransformer(fake_encrypt)


class TestHelpers:

    def test_normalize_email(self):
        assert normalize_email("  A@B.COM ") == "a@b.com"
        assert normalize_email("") is None
        assert normalize_email(None) is None

    def test_clean_phone(self):
        assert clean_phone("+1 (555) 123-4567") == "+15551234567"
        assert clean_phone("555.123+4567") == "5551234567"
        assert clean_phone("ext") is None

    def test_sanitize_html(self):
        html = "<p>Hi</p><SCRIPT type='text/javascript'>\nsteal()\n</script><b>x</b>"
        assert sanitize_html(html) == "<p>Hi</p><b>x</b>"
        assert sanitize_html(None) is None

    def test_split_tags(self):
        assert split_tags("a, b ,, c") == ["a", "b", "c"]
        assert split_tags(["x", " "]) == ["x"]
        assert split_tags(None) == []


class TestCustomerTransform:

    def test_maps_and_encrypts_pii(self, transformer, customer_payload):
        record = transformer.transform_customer(customer_payload, "acme")

        assert isinstance(record, CustomerRecord)
        assert record.external_id == "1001"
        assert record.tenant_id == "acme"
        assert record.email_encrypted == "enc:jane.doe@example.com"
        assert record.phone_encrypted == "enc:+15551234567"
        assert record.first_name_encrypted == "enc:Jane"
        assert json.loads(record.default_address_encrypted[len("enc:"):]) == {
            "city": "Berlin", "country_code": "DE"
        }
        assert record.total_spent == Decimal("149.90")
        assert record.tags == ["vip", "newsletter"]
        assert record.accepts_marketing is True

    def test_null_counters_default(self, transformer, customer_payload):
        customer_payload.update(total_spent=None, orders_count=None, verified_email=None)

        record = transformer.transform_customer(customer_payload, "acme")

        assert record.total_spent == Decimal("0")
        assert record.orders_count == 0
        assert record.verified_email is False

    @pytest.mark.parametrize("change", [
        {"email": None},
        {"email": "not-an-email"},
        {"id": None},
        {"id": "abc"},
    ])
    def test_invalid_customer(self, transformer, customer_payload, change):
        customer_payload.update(change)

        with pytest.raises(ValidationError) as exc_info:
            transformer.transform_customer(customer_payload, "acme")

        assert exc_info.value.context["resource_type"] == "customers"
        assert exc_info.value.context["errors"]
        assert transformer.validate(ResourceType.CUSTOMERS, customer_payload) is False

    def test_non_object_record(self, transformer):
        with pytest.raises(ValidationError):
            transformer.parse(ResourceType.CUSTOMERS, ["not", "a", "dict"])


class TestProductTransform:

    def test_derived_fields(self, transformer, product_payload):
        record = transformer.transform_product(product_payload, "acme")

        assert isinstance(record, ProductRecord)
        assert record.title == "Linen Shirt"
        assert record.body_html == "<p>Soft</p>"
        assert record.price_min == Decimal("39.00")
        assert record.price_max == Decimal("45.50")
        assert record.total_inventory == 7
        assert record.variants_count == 3
        assert record.image_url == "https://cdn.example.com/shirt.png"
        assert record.tags == ["summer", "linen"]

    def test_product_without_variants(self, transformer, product_payload):
        product_payload.update(variants=None, image=None)

        record = transformer.transform_product(product_payload, "acme")

        assert record.price_min is None
        assert record.total_inventory == 0
        assert record.variants_count == 0

    def test_blank_title_is_invalid(self, transformer, product_payload):
        product_payload["title"] = "   "
        assert transformer.validate(ResourceType.PRODUCTS, product_payload) is False


class TestOrderTransform:

    def test_aggregate(self, transformer, order_payload):
        aggregate = transformer.transform(ResourceType.ORDERS, order_payload, "acme")

        assert isinstance(aggregate, OrderAggregate)
        order = aggregate.order
        assert aggregate.external_id == "3001"
        assert order.customer_external_id == "1001"
        assert order.total_price == Decimal("84.50")
        assert order.item_count == 2
        assert order.status == OrderStatus.PENDING.value
        assert order.email_encrypted == "enc:jane.doe@example.com"

        assert [li.external_id for li in aggregate.line_items] == ["41", "42"]
        assert all(li.order_external_id == "3001" for li in aggregate.line_items)
        assert aggregate.line_items[1].quantity == 1

        assert [e.event_type for e in aggregate.events] == [OrderEventType.CREATED.value]

    def test_fulfilled_order_events(self, transformer, order_payload):
        order_payload["fulfillment_status"] = "fulfilled"

        aggregate = transformer.transform_order_aggregate(order_payload, "acme")

        assert aggregate.order.status == OrderStatus.FULFILLED.value
        assert [e.event_type for e in aggregate.events] == [
            OrderEventType.CREATED.value, OrderEventType.FULFILLED.value
        ]

    def test_cancelled_order_events(self, transformer, order_payload):
        order_payload.update(cancelled_at="2024-01-17T08:00:00Z", cancel_reason="customer")

        aggregate = transformer.transform_order_aggregate(order_payload, "acme")

        assert aggregate.order.status == OrderStatus.CANCELLED.value
        cancelled = aggregate.events[-1]
        assert cancelled.event_type == OrderEventType.CANCELLED.value
        assert cancelled.description == "Order cancelled: customer"

    def test_cancel_without_reason(self, transformer, order_payload):
        order_payload["cancelled_at"] = "2024-01-17T08:00:00Z"

        events = transformer.derive_order_events(order_payload, "acme")

        assert events[-1].description == "Order cancelled: No reason provided"

    @pytest.mark.parametrize("field", ["total_price", "created_at", "id"])
    def test_required_order_fields(self, transformer, order_payload, field):
        del order_payload[field]
        with pytest.raises(ValidationError):
            transformer.transform_order(order_payload, "acme")

    def test_line_item_without_id_rejects_order(self, transformer, order_payload):
        del order_payload["line_items"][0]["id"]
        assert transformer.validate(ResourceType.ORDERS, order_payload) is False


class TestBatchAndWebhook:

    def test_transform_batch_flattens_orders(self, transformer, order_payload):
        invalid = {"id": 9, "created_at": "2024-01-01T00:00:00Z"}

        batch = transformer.transform_batch(ResourceType.ORDERS, [order_payload, invalid], "acme")

        assert len(batch.primary) == 1
        assert len(batch.children) == 2
        assert len(batch.derived_events) == 1
        assert batch.skipped == 1

    def test_webhook_upsert(self, transformer, customer_payload):
        resource, action, record = transformer.transform_webhook(
            "customers/update", customer_payload, "acme"
        )
        assert resource == ResourceType.CUSTOMERS
        assert action == UPSERT
        assert record.external_id == "1001"

    def test_webhook_delete_only_needs_id(self, transformer):
        assert transformer.transform_webhook("products/delete", {"id": 55}, "acme") == (
            ResourceType.PRODUCTS, DELETE, "55"
        )
        with pytest.raises(ValidationError):
            transformer.transform_webhook("orders/delete", {}, "acme")

    def test_webhook_unknown_topic(self, transformer):
        assert transformer.transform_webhook("app/uninstalled", {"id": 1}, "acme") is None
