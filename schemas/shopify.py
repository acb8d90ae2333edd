"""
Strict schemas for records received from the storefront platform.

Only the fields the pipeline maps are declared; anything else in the payload
is ignored. A payload that fails these models is never persisted.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator


def _blank_to_none(v):
    if isinstance(v, str) and not v.strip():
        return None
    return v


class ShopifyModel(BaseModel):
    class Config:
        extra = "ignore"
        populate_by_name = True


class ShopifyAddress(ShopifyModel):
    address1: Optional[str] = None
    address2: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    province_code: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    zip: Optional[str] = None
    phone: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None


class ShopifyCustomer(ShopifyModel):
    id: int = Field(..., gt=0)
    email: str = Field(..., min_length=3)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    note: Optional[str] = None
    accepts_marketing: bool = False
    marketing_opt_in_level: Optional[str] = None
    orders_count: int = 0
    total_spent: Decimal = Decimal("0")
    currency: Optional[str] = None
    state: Optional[str] = None
    verified_email: bool = False
    tax_exempt: bool = False
    tags: Optional[Union[str, List[str]]] = None
    last_order_id: Optional[int] = None
    last_order_name: Optional[str] = None
    default_address: Optional[ShopifyAddress] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("email")
    @classmethod
    def email_has_at(cls, v):
        if "@" not in v:
            raise ValueError("email must contain '@'")
        return v

    @field_validator("total_spent", mode="before")
    @classmethod
    def missing_total_is_zero(cls, v):
        return Decimal("0") if v is None else v

    @field_validator("orders_count", mode="before")
    @classmethod
    def missing_count_is_zero(cls, v):
        return 0 if v is None else v

    @field_validator("accepts_marketing", "verified_email", "tax_exempt", mode="before")
    @classmethod
    def null_flags(cls, v):
        return False if v is None else v

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def blank_dates(cls, v):
        return _blank_to_none(v)


class ShopifyVariant(ShopifyModel):
    id: Optional[int] = None
    title: Optional[str] = None
    sku: Optional[str] = None
    price: Optional[Decimal] = None
    inventory_quantity: Optional[int] = None

    @field_validator("price", mode="before")
    @classmethod
    def blank_price(cls, v):
        return _blank_to_none(v)


class ShopifyImage(ShopifyModel):
    id: Optional[int] = None
    src: Optional[str] = None


class ShopifyProduct(ShopifyModel):
    id: int = Field(..., gt=0)
    title: str = Field(..., min_length=1)
    body_html: Optional[str] = None
    handle: Optional[str] = None
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    status: Optional[str] = None
    tags: Optional[Union[str, List[str]]] = None
    variants: List[ShopifyVariant] = Field(default_factory=list)
    image: Optional[ShopifyImage] = None
    published_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("title cannot be blank")
        return v

    @field_validator("variants", mode="before")
    @classmethod
    def null_variants(cls, v):
        return v or []

    @field_validator("published_at", "created_at", "updated_at", mode="before")
    @classmethod
    def blank_dates(cls, v):
        return _blank_to_none(v)


class ShopifyLineItem(ShopifyModel):
    id: int = Field(..., gt=0)
    product_id: Optional[int] = None
    variant_id: Optional[int] = None
    title: str = ""
    name: Optional[str] = None
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

    @field_validator("total_discount", mode="before")
    @classmethod
    def blank_discount(cls, v):
        return _blank_to_none(v)

    @field_validator("requires_shipping", "taxable", mode="before")
    @classmethod
    def null_flags(cls, v):
        return True if v is None else v

    @field_validator("quantity", mode="before")
    @classmethod
    def null_quantity(cls, v):
        return 1 if v is None else v


class ShopifyOrderCustomer(ShopifyModel):
    id: Optional[int] = None


class ShopifyOrder(ShopifyModel):
    id: int = Field(..., gt=0)
    created_at: datetime
    total_price: Decimal
    updated_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    order_number: Optional[int] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    note: Optional[str] = None
    currency: Optional[str] = None
    subtotal_price: Optional[Decimal] = None
    total_tax: Optional[Decimal] = None
    total_discounts: Optional[Decimal] = None
    total_weight: Optional[int] = None
    financial_status: Optional[str] = None
    fulfillment_status: Optional[str] = None
    cancel_reason: Optional[str] = None
    tags: Optional[Union[str, List[str]]] = None
    gateway: Optional[str] = None
    test: bool = False
    browser_ip: Optional[str] = None
    landing_site: Optional[str] = None
    referring_site: Optional[str] = None
    source_name: Optional[str] = None
    customer: Optional[ShopifyOrderCustomer] = None
    billing_address: Optional[ShopifyAddress] = None
    shipping_address: Optional[ShopifyAddress] = None
    line_items: List[ShopifyLineItem] = Field(default_factory=list)

    @field_validator("line_items", mode="before")
    @classmethod
    def null_line_items(cls, v):
        return v or []

    @field_validator("test", mode="before")
    @classmethod
    def null_test(cls, v):
        return False if v is None else v

    @field_validator(
        "updated_at", "processed_at", "cancelled_at", "closed_at",
        "subtotal_price", "total_tax", "total_discounts",
        mode="before",
    )
    @classmethod
    def blank_optional(cls, v):
        return _blank_to_none(v)


EXTERNAL_SCHEMAS: Dict[str, Any] = {
    "customers": ShopifyCustomer,
    "products": ShopifyProduct,
    "orders": ShopifyOrder,
}
