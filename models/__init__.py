"""
SQLAlchemy ORM models for database tables.

This package defines the tenant-scoped store written by the ingestion
pipeline:

Models:
    base: Base declarative class, column type variants and shared enums
    tenant: Tenant credentials (encrypted token and webhook secret)
    customer: Customers (PII encrypted, aggregates in clear)
    product: Products with variant-derived price range and inventory
    order: Orders plus their line items and lifecycle events
    webhook_event: Inbound notifications and their processing state

Database Schema:
    Every synced record is unique on (external_id, tenant_id). JSON columns
    use JSONB on PostgreSQL and JSON elsewhere so the same metadata runs
    against SQLite in tests.

Usage:
    from models import Customer, Order, OrderLineItem
    from models.base import ResourceType, WebhookEventStatus
"""

from models.base import Base, ResourceType, JobState, OrderStatus, OrderEventType, WebhookEventStatus
from models.tenant import Tenant
from models.customer import Customer
from models.product import Product
from models.order import Order, OrderLineItem, OrderEvent
from models.webhook_event import WebhookEvent

__all__ = [
    "Base",
    "ResourceType",
    "JobState",
    "OrderStatus",
    "OrderEventType",
    "WebhookEventStatus",
    "Tenant",
    "Customer",
    "Product",
    "Order",
    "OrderLineItem",
    "OrderEvent",
    "WebhookEvent",
]
