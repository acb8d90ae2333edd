from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, Numeric, Text, Index, UniqueConstraint
)
from models.base import Base, IdType, JSONType, utcnow


class Order(Base):
    """
    Tenant-scoped order (composite record parent).

    Line items and lifecycle events are children keyed by
    (order_external_id, tenant_id); they are always replaced together with
    the parent in one transaction.
    """
    __tablename__ = "orders"

    id = Column(IdType, primary_key=True, autoincrement=True)
    external_id = Column(String(64), nullable=False)
    tenant_id = Column(String(100), nullable=False, index=True)

    customer_external_id = Column(String(64), nullable=True, index=True)
    order_number = Column(Integer, nullable=True)
    name = Column(String(100), nullable=True)

    # PII (encrypted)
    email_encrypted = Column(Text, nullable=True)
    phone_encrypted = Column(Text, nullable=True)
    note_encrypted = Column(Text, nullable=True)
    billing_address_encrypted = Column(Text, nullable=True)
    shipping_address_encrypted = Column(Text, nullable=True)

    # Money
    currency = Column(String(3), nullable=True)
    total_price = Column(Numeric(14, 2), nullable=False)
    subtotal_price = Column(Numeric(14, 2), nullable=True)
    total_tax = Column(Numeric(14, 2), nullable=True)
    total_discounts = Column(Numeric(14, 2), nullable=True)
    total_weight = Column(Integer, nullable=True)
    item_count = Column(Integer, nullable=False, default=0)

    # Status
    status = Column(String(20), nullable=False, index=True)
    financial_status = Column(String(30), nullable=True, index=True)
    fulfillment_status = Column(String(30), nullable=True)
    cancel_reason = Column(String(50), nullable=True)
    tags = Column(JSONType, nullable=True)
    gateway = Column(String(100), nullable=True)
    test = Column(Boolean, nullable=False, default=False)
    source_name = Column(String(100), nullable=True)
    landing_site = Column(String(2048), nullable=True)
    referring_site = Column(String(2048), nullable=True)

    source_created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    source_updated_at = Column(DateTime(timezone=True), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    synced_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("external_id", "tenant_id", name="uq_order_external_tenant"),
    )

    def __repr__(self):
        return f"<Order(external_id={self.external_id}, name={self.name}, status={self.status})>"


class OrderLineItem(Base):
    """Order line item"""
    __tablename__ = "order_line_items"

    id = Column(IdType, primary_key=True, autoincrement=True)
    external_id = Column(String(64), nullable=False)
    tenant_id = Column(String(100), nullable=False)
    order_external_id = Column(String(64), nullable=False)

    product_external_id = Column(String(64), nullable=True, index=True)
    variant_external_id = Column(String(64), nullable=True)
    title = Column(String(500), nullable=False)
    variant_title = Column(String(255), nullable=True)
    sku = Column(String(255), nullable=True)
    vendor = Column(String(255), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    price = Column(Numeric(14, 2), nullable=False)
    total_discount = Column(Numeric(14, 2), nullable=True)
    grams = Column(Integer, nullable=True)
    requires_shipping = Column(Boolean, nullable=False, default=True)
    taxable = Column(Boolean, nullable=False, default=True)
    fulfillment_status = Column(String(30), nullable=True)
    fulfillable_quantity = Column(Integer, nullable=True)

    __table_args__ = (
        Index("idx_line_item_order", "order_external_id", "tenant_id"),
    )


class OrderEvent(Base):
    """Synthetic order lifecycle event derived from the source record"""
    __tablename__ = "order_events"

    id = Column(IdType, primary_key=True, autoincrement=True)
    tenant_id = Column(String(100), nullable=False)
    order_external_id = Column(String(64), nullable=False)

    event_type = Column(String(20), nullable=False)
    description = Column(String(500), nullable=True)
    event_metadata = Column("metadata", JSONType, nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_order_event_order", "order_external_id", "tenant_id"),
    )
