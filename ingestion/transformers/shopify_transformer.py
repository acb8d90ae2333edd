"""
Map storefront records onto tenant-scoped internal records.

The transformer is a pure mapping layer: no I/O and no state. PII goes
through the injected ``encrypt`` callable, so the cipher choice lives with
the caller.
"""

import json
import re
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import BaseModel, ValidationError as PydanticValidationError

from core.exceptions import DataFormatError, ValidationError
from core.logging import get_logger
from models.base import OrderEventType, OrderStatus, ResourceType
from schemas.records import (
    CustomerRecord,
    LineItemRecord,
    OrderAggregate,
    OrderEventRecord,
    OrderRecord,
    ProductRecord,
    TransformedBatch,
)
from schemas.shopify import (
    EXTERNAL_SCHEMAS,
    ShopifyAddress,
    ShopifyCustomer,
    ShopifyLineItem,
    ShopifyOrder,
    ShopifyProduct,
)

Encryptor = Callable[[Optional[str]], Optional[str]]

UPSERT = "upsert"
DELETE = "delete"

# topic -> (resource, action)
WEBHOOK_TOPICS: Dict[str, Tuple[ResourceType, str]] = {
    "customers/create": (ResourceType.CUSTOMERS, UPSERT),
    "customers/update": (ResourceType.CUSTOMERS, UPSERT),
    "customers/delete": (ResourceType.CUSTOMERS, DELETE),
    "products/create": (ResourceType.PRODUCTS, UPSERT),
    "products/update": (ResourceType.PRODUCTS, UPSERT),
    "products/delete": (ResourceType.PRODUCTS, DELETE),
    "orders/create": (ResourceType.ORDERS, UPSERT),
    "orders/updated": (ResourceType.ORDERS, UPSERT),
    "orders/paid": (ResourceType.ORDERS, UPSERT),
    "orders/fulfilled": (ResourceType.ORDERS, UPSERT),
    "orders/cancelled": (ResourceType.ORDERS, UPSERT),
    "orders/delete": (ResourceType.ORDERS, DELETE),
}

_SCRIPT_RE = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)
_PHONE_RE = re.compile(r"[^\d+]")


# ============================================================================
# Cleaning helpers
# ============================================================================

def normalize_email(email: Optional[str]) -> Optional[str]:
    if not email:
        return None
    return email.strip().lower() or None


def clean_phone(phone: Optional[str]) -> Optional[str]:
    """Keep digits and a leading '+'."""
    if not phone:
        return None
    cleaned = _PHONE_RE.sub("", phone.strip())
    if cleaned.startswith("+"):
        cleaned = "+" + cleaned[1:].replace("+", "")
    else:
        cleaned = cleaned.replace("+", "")
    return cleaned or None


def sanitize_html(html: Optional[str]) -> Optional[str]:
    """Strip <script> blocks from product descriptions."""
    if html is None:
        return None
    return _SCRIPT_RE.sub("", html)


def split_tags(tags: Union[str, List[str], None]) -> List[str]:
    if not tags:
        return []
    if isinstance(tags, str):
        tags = tags.split(",")
    return [str(t).strip() for t in tags if str(t).strip()]


def derive_order_status(order: ShopifyOrder) -> OrderStatus:
    if order.cancelled_at is not None:
        return OrderStatus.CANCELLED
    if order.fulfillment_status == "fulfilled" or order.closed_at is not None:
        return OrderStatus.FULFILLED
    return OrderStatus.PENDING


def _str_id(value: Optional[int]) -> Optional[str]:
    return str(value) if value is not None else None


class ShopifyTransformer:
    """
    Validate and map external records.

    Handles:
    - Structural validation against strict external schemas
    - Field mapping and derived fields (price range, inventory, item count)
    - PII redirection through the encryption hook
    - Composite orders (line items + lifecycle events)
    """

    def __init__(self, encrypt: Encryptor, logger=None):
        self.encrypt = encrypt
        self.log = logger or get_logger(__name__)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def parse(self, resource: ResourceType, record: Union[Dict[str, Any], BaseModel]) -> BaseModel:
        """
        Parse a raw payload into its strict external schema.

        Raises:
            ValidationError: The record is missing required fields or carries
                             values (ids, money, dates) that cannot be parsed
        """
        resource = ResourceType(resource)
        schema = EXTERNAL_SCHEMAS[resource.value]
        if isinstance(record, schema):
            return record
        if not isinstance(record, dict):
            raise ValidationError(
                f"Expected an object for {resource.value}, got {type(record).__name__}",
                context={"resource_type": resource.value}
            )
        try:
            return schema.model_validate(record)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid {resource.value} record",
                context={
                    "resource_type": resource.value,
                    "external_id": record.get("id"),
                    "errors": [
                        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                        for err in e.errors()
                    ],
                },
            )

    def validate(self, resource: ResourceType, record: Dict[str, Any]) -> bool:
        try:
            self.parse(resource, record)
            return True
        except ValidationError:
            return False

    # ------------------------------------------------------------------
    # Mapping
    # ------------------------------------------------------------------

    def _encrypt_address(self, address: Optional[ShopifyAddress]) -> Optional[str]:
        if address is None:
            return None
        data = address.model_dump(exclude_none=True)
        if not data:
            return None
        return self.encrypt(json.dumps(data, sort_keys=True))

    def transform_customer(self, record, tenant_id: str) -> CustomerRecord:
        customer: ShopifyCustomer = self.parse(ResourceType.CUSTOMERS, record)
        return self._build(
            CustomerRecord,
            external_id=str(customer.id),
            tenant_id=tenant_id,
            email_encrypted=self.encrypt(normalize_email(customer.email)),
            first_name_encrypted=self.encrypt(customer.first_name),
            last_name_encrypted=self.encrypt(customer.last_name),
            phone_encrypted=self.encrypt(clean_phone(customer.phone)),
            note_encrypted=self.encrypt(customer.note),
            default_address_encrypted=self._encrypt_address(customer.default_address),
            accepts_marketing=customer.accepts_marketing,
            marketing_opt_in_level=customer.marketing_opt_in_level,
            orders_count=customer.orders_count,
            total_spent=customer.total_spent,
            currency=customer.currency,
            state=customer.state,
            verified_email=customer.verified_email,
            tax_exempt=customer.tax_exempt,
            tags=split_tags(customer.tags),
            last_order_id=_str_id(customer.last_order_id),
            last_order_name=customer.last_order_name,
            source_created_at=customer.created_at,
            source_updated_at=customer.updated_at,
        )

    def transform_product(self, record, tenant_id: str) -> ProductRecord:
        product: ShopifyProduct = self.parse(ResourceType.PRODUCTS, record)

        prices = [v.price for v in product.variants if v.price is not None]
        inventory = sum(v.inventory_quantity or 0 for v in product.variants)

        return self._build(
            ProductRecord,
            external_id=str(product.id),
            tenant_id=tenant_id,
            title=product.title,
            handle=product.handle,
            body_html=sanitize_html(product.body_html),
            vendor=product.vendor,
            product_type=product.product_type,
            status=product.status,
            tags=split_tags(product.tags),
            price_min=min(prices) if prices else None,
            price_max=max(prices) if prices else None,
            total_inventory=inventory,
            variants_count=len(product.variants),
            image_url=product.image.src if product.image else None,
            published_at=product.published_at,
            source_created_at=product.created_at,
            source_updated_at=product.updated_at,
        )

    def transform_order(self, record, tenant_id: str) -> OrderRecord:
        order: ShopifyOrder = self.parse(ResourceType.ORDERS, record)
        return self._build(
            OrderRecord,
            external_id=str(order.id),
            tenant_id=tenant_id,
            customer_external_id=_str_id(order.customer.id) if order.customer else None,
            order_number=order.order_number,
            name=order.name,
            email_encrypted=self.encrypt(normalize_email(order.email)),
            phone_encrypted=self.encrypt(clean_phone(order.phone)),
            note_encrypted=self.encrypt(order.note),
            billing_address_encrypted=self._encrypt_address(order.billing_address),
            shipping_address_encrypted=self._encrypt_address(order.shipping_address),
            currency=order.currency,
            total_price=order.total_price,
            subtotal_price=order.subtotal_price,
            total_tax=order.total_tax,
            total_discounts=order.total_discounts,
            total_weight=order.total_weight,
            item_count=len(order.line_items),
            status=derive_order_status(order),
            financial_status=order.financial_status,
            fulfillment_status=order.fulfillment_status,
            cancel_reason=order.cancel_reason,
            tags=split_tags(order.tags),
            gateway=order.gateway,
            test=order.test,
            source_name=order.source_name,
            landing_site=order.landing_site,
            referring_site=order.referring_site,
            source_created_at=order.created_at,
            source_updated_at=order.updated_at,
            processed_at=order.processed_at,
            cancelled_at=order.cancelled_at,
            closed_at=order.closed_at,
        )

    def transform_line_item(self, item: ShopifyLineItem, order_external_id: str,
                            tenant_id: str) -> LineItemRecord:
        return self._build(
            LineItemRecord,
            external_id=str(item.id),
            tenant_id=tenant_id,
            order_external_id=order_external_id,
            product_external_id=_str_id(item.product_id),
            variant_external_id=_str_id(item.variant_id),
            title=item.title or item.name or "",
            variant_title=item.variant_title,
            sku=item.sku,
            vendor=item.vendor,
            quantity=item.quantity,
            price=item.price,
            total_discount=item.total_discount,
            grams=item.grams,
            requires_shipping=item.requires_shipping,
            taxable=item.taxable,
            fulfillment_status=item.fulfillment_status,
            fulfillable_quantity=item.fulfillable_quantity,
        )

    def derive_order_events(self, record, tenant_id: str) -> List[OrderEventRecord]:
        """
        Synthetic lifecycle events for an order.

        Always "created"; "fulfilled" when a fulfillment status is present;
        "cancelled" when the order carries a cancellation time.
        """
        order: ShopifyOrder = self.parse(ResourceType.ORDERS, record)
        order_id = str(order.id)
        events = [
            OrderEventRecord(
                tenant_id=tenant_id,
                order_external_id=order_id,
                event_type=OrderEventType.CREATED,
                description="Order created",
                event_metadata={
                    "source": "shopify_sync",
                    "financial_status": order.financial_status,
                    "fulfillment_status": order.fulfillment_status,
                },
                occurred_at=order.created_at,
            )
        ]
        if order.fulfillment_status:
            events.append(OrderEventRecord(
                tenant_id=tenant_id,
                order_external_id=order_id,
                event_type=OrderEventType.FULFILLED,
                description=f"Order fulfillment status: {order.fulfillment_status}",
                event_metadata={"fulfillment_status": order.fulfillment_status},
                occurred_at=order.updated_at or order.created_at,
            ))
        if order.cancelled_at is not None:
            events.append(OrderEventRecord(
                tenant_id=tenant_id,
                order_external_id=order_id,
                event_type=OrderEventType.CANCELLED,
                description=f"Order cancelled: {order.cancel_reason or 'No reason provided'}",
                event_metadata={"cancel_reason": order.cancel_reason},
                occurred_at=order.cancelled_at,
            ))
        return events

    def transform_order_aggregate(self, record, tenant_id: str) -> OrderAggregate:
        order: ShopifyOrder = self.parse(ResourceType.ORDERS, record)
        order_record = self.transform_order(order, tenant_id)
        return OrderAggregate(
            order=order_record,
            line_items=[
                self.transform_line_item(item, order_record.external_id, tenant_id)
                for item in order.line_items
            ],
            events=self.derive_order_events(order, tenant_id),
        )

    def transform(self, resource: ResourceType, record, tenant_id: str):
        """Transform one record; orders come back as an OrderAggregate."""
        resource = ResourceType(resource)
        if resource == ResourceType.CUSTOMERS:
            return self.transform_customer(record, tenant_id)
        if resource == ResourceType.PRODUCTS:
            return self.transform_product(record, tenant_id)
        return self.transform_order_aggregate(record, tenant_id)

    def transform_batch(self, resource: ResourceType, records: Iterable[Dict[str, Any]],
                        tenant_id: str) -> TransformedBatch:
        """
        Transform many records, flattening composite orders.

        Invalid records are counted in ``skipped`` and left out.
        """
        batch = TransformedBatch()
        for record in records:
            try:
                result = self.transform(resource, record, tenant_id)
            except ValidationError as e:
                self.log.debug(f"Skipping invalid record: {e}")
                batch.skipped += 1
                continue
            if isinstance(result, OrderAggregate):
                batch.primary.append(result.order)
                batch.children.extend(result.line_items)
                batch.derived_events.extend(result.events)
            else:
                batch.primary.append(result)
        return batch

    def transform_webhook(self, topic: str, payload: Dict[str, Any], tenant_id: str):
        """
        Map a notification onto (resource, action, result).

        ``result`` is the transformed record for upserts and the external id
        for deletes. Returns None for topics with no mapping.

        Raises:
            ValidationError: Payload fails the resource schema (or has no id on delete)
        """
        mapping = WEBHOOK_TOPICS.get(topic)
        if mapping is None:
            return None
        resource, action = mapping
        if action == DELETE:
            external_id = payload.get("id") if isinstance(payload, dict) else None
            if external_id in (None, ""):
                raise ValidationError(
                    f"Delete notification without id for {topic}",
                    context={"topic": topic}
                )
            return resource, action, str(external_id)
        return resource, action, self.transform(resource, payload, tenant_id)

    @staticmethod
    def _build(model, **fields):
        try:
            return model(**fields)
        except PydanticValidationError as e:
            raise DataFormatError(
                f"Cannot build {model.__name__}",
                context={"external_id": fields.get("external_id"), "errors": str(e)},
                original_exception=e
            )
