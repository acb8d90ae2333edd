"""
Internal, tenant-scoped records produced by the transformer.

Field names match the ORM column names, so ``to_row()`` feeds an insert
statement directly.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from models.base import OrderEventType, OrderStatus


class InternalRecord(BaseModel):
    external_id: str = Field(..., min_length=1)
    tenant_id: str = Field(..., min_length=1)

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump()

    class Config:
        use_enum_values = True


class CustomerRecord(InternalRecord):
    email_encrypted: Optional[str] = None
    first_name_encrypted: Optional[str] = None
    last_name_encrypted: Optional[str] = None
    phone_encrypted: Optional[str] = None
    note_encrypted: Optional[str] = None
    default_address_encrypted: Optional[str] = None

    accepts_marketing: bool = False
    marketing_opt_in_level: Optional[str] = None
    orders_count: int = 0
    total_spent: Decimal = Decimal("0")
    currency: Optional[str] = None
    state: Optional[str] = None
    verified_email: bool = False
    tax_exempt: bool = False
    tags: List[str] = Field(default_factory=list)
    last_order_id: Optional[str] = None
    last_order_name: Optional[str] = None

    source_created_at: Optional[datetime] = None
    source_updated_at: Optional[datetime] = None


class ProductRecord(InternalRecord):
    title: str
    handle: Optional[str] = None
    body_html: Optional[str] = None
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    status: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    price_min: Optional[Decimal] = None
    price_max: Optional[Decimal] = None
    total_inventory: int = 0
    variants_count: int = 0
    image_url: Optional[str] = None

    published_at: Optional[datetime] = None
    source_created_at: Optional[datetime] = None
    source_updated_at: Optional[datetime] = None


class OrderRecord(InternalRecord):
    customer_external_id: Optional[str] = None
    order_number: Optional[int] = None
    name: Optional[str] = None

    email_encrypted: Optional[str] = None
    phone_encrypted: Optional[str] = None
    note_encrypted: Optional[str] = None
    billing_address_encrypted: Optional[str] = None
    shipping_address_encrypted: Optional[str] = None

    currency: Optional[str] = None
    total_price: Decimal
    subtotal_price: Optional[Decimal] = None
    total_tax: Optional[Decimal] = None
    total_discounts: Optional[Decimal] = None
    total_weight: Optional[int] = None
    item_count: int = 0

    status: OrderStatus
    financial_status: Optional[str] = None
    fulfillment_status: Optional[str] = None
    cancel_reason: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    gateway: Optional[str] = None
    test: bool = False
    source_name: Optional[str] = None
    landing_site: Optional[str] = None
    referring_site: Optional[str] = None

    source_created_at: datetime
    source_updated_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None


class LineItemRecord(InternalRecord):
    order_external_id: str
    product_external_id: Optional[str] = None
    variant_external_id: Optional[str] = None
    title: str
    variant_title: Optional[str] = None
    sku: Optional[str] = None
    vendor: Optional[str] = None
    quantity: int = 1
    price: Decimal = Decimal("0")
    total_discount: Optional[Decimal] = None
    grams: Optional[int] = None
    requires_shipping: bool = True
    taxable: bool = True
    fulfillment_status: Optional[str] = None
    fulfillable_quantity: Optional[int] = None


class OrderEventRecord(BaseModel):
    tenant_id: str
    order_external_id: str
    event_type: OrderEventType
    description: Optional[str] = None
    event_metadata: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump()

    class Config:
        use_enum_values = True


class OrderAggregate(BaseModel):
    """An order together with the children written atomically alongside it."""
    order: OrderRecord
    line_items: List[LineItemRecord] = Field(default_factory=list)
    events: List[OrderEventRecord] = Field(default_factory=list)

    @property
    def external_id(self) -> str:
        return self.order.external_id

    @property
    def tenant_id(self) -> str:
        return self.order.tenant_id


class TransformedBatch(BaseModel):
    primary: List[InternalRecord] = Field(default_factory=list)
    children: List[LineItemRecord] = Field(default_factory=list)
    derived_events: List[OrderEventRecord] = Field(default_factory=list)
    skipped: int = 0
