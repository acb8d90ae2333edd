"""
Idempotent persistence of internal records (INSERT ... ON CONFLICT DO UPDATE)
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from core.exceptions import DatabaseError, UpsertError
from core.logging import get_logger
from models import Customer, Order, OrderEvent, OrderLineItem, Product, WebhookEvent
from models.base import ResourceType, WebhookEventStatus, utcnow
from schemas.records import CustomerRecord, OrderAggregate, ProductRecord

CONFLICT_KEY = ["external_id", "tenant_id"]

MODELS = {
    ResourceType.CUSTOMERS: Customer,
    ResourceType.PRODUCTS: Product,
    ResourceType.ORDERS: Order,
}


class RecordLoader:
    """
    Write contract for synced records.

    Ensures:
    - One row per (external_id, tenant_id); repeated writes update in place
    - An order, its line items and its events change in one transaction
    - Every call opens its own session, so concurrent importer workers
      never share one

    Args:
        session_factory: async_sessionmaker bound to the target engine
    """

    def __init__(self, session_factory, logger=None):
        self.session_factory = session_factory
        self.log = logger or get_logger(__name__)

    @staticmethod
    def _insert(session, model):
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert(model)
        if dialect == "sqlite":
            return sqlite.insert(model)
        raise DatabaseError(
            f"Upsert not supported for dialect {dialect}",
            context={"table_name": model.__tablename__}
        )

    async def _upsert_row(self, session, model, row: Dict[str, Any]):
        row = dict(row)
        row["synced_at"] = utcnow()
        stmt = self._insert(session, model).values(**row)
        stmt = stmt.on_conflict_do_update(
            index_elements=CONFLICT_KEY,
            set_={k: stmt.excluded[k] for k in row if k not in CONFLICT_KEY},
        )
        await session.execute(stmt)

    async def _upsert_simple(self, model, record) -> None:
        try:
            async with self.session_factory.begin() as session:
                await self._upsert_row(session, model, record.to_row())
        except SQLAlchemyError as e:
            raise DatabaseError(
                f"Upsert into {model.__tablename__} failed",
                context={
                    "operation": "UPSERT",
                    "table_name": model.__tablename__,
                    "external_id": record.external_id,
                    "tenant_id": record.tenant_id,
                },
                original_exception=e
            )

    async def upsert_customer(self, record: CustomerRecord) -> None:
        await self._upsert_simple(Customer, record)

    async def upsert_product(self, record: ProductRecord) -> None:
        await self._upsert_simple(Product, record)

    async def upsert_order(self, aggregate: OrderAggregate) -> None:
        """
        Upsert an order and replace its children atomically.

        The parent upsert, the child deletes and the child inserts share one
        transaction; a failure anywhere rolls all of them back.
        """
        order = aggregate.order
        if order.external_id != aggregate.external_id:
            raise UpsertError("Aggregate identity mismatch", context={"external_id": order.external_id})

        try:
            async with self.session_factory.begin() as session:
                await self._upsert_row(session, Order, order.to_row())
                await self._delete_children(session, order.external_id, order.tenant_id)

                if aggregate.line_items:
                    await session.execute(
                        insert(OrderLineItem),
                        [item.to_row() for item in aggregate.line_items],
                    )
                if aggregate.events:
                    await session.execute(
                        insert(OrderEvent),
                        [event.to_row() for event in aggregate.events],
                    )
        except SQLAlchemyError as e:
            raise DatabaseError(
                "Order upsert failed",
                context={
                    "operation": "UPSERT",
                    "table_name": Order.__tablename__,
                    "external_id": order.external_id,
                    "tenant_id": order.tenant_id,
                    "line_items": len(aggregate.line_items),
                },
                original_exception=e
            )

    async def upsert(self, resource: ResourceType, transformed) -> None:
        resource = ResourceType(resource)
        if resource == ResourceType.CUSTOMERS:
            await self.upsert_customer(transformed)
        elif resource == ResourceType.PRODUCTS:
            await self.upsert_product(transformed)
        else:
            await self.upsert_order(transformed)

    @staticmethod
    async def _delete_children(session, order_external_id: str, tenant_id: str):
        await session.execute(delete(OrderLineItem).where(
            OrderLineItem.order_external_id == order_external_id,
            OrderLineItem.tenant_id == tenant_id,
        ))
        await session.execute(delete(OrderEvent).where(
            OrderEvent.order_external_id == order_external_id,
            OrderEvent.tenant_id == tenant_id,
        ))

    # ------------------------------------------------------------------
    # Reads and deletes
    # ------------------------------------------------------------------

    async def exists(self, resource: ResourceType, external_id: str, tenant_id: str) -> bool:
        model = MODELS[ResourceType(resource)]
        async with self.session_factory() as session:
            result = await session.execute(
                select(model.id).where(
                    model.external_id == str(external_id),
                    model.tenant_id == tenant_id,
                ).limit(1)
            )
            return result.scalar_one_or_none() is not None

    async def delete(self, resource: ResourceType, external_id: str, tenant_id: str) -> bool:
        resource = ResourceType(resource)
        model = MODELS[resource]
        try:
            async with self.session_factory.begin() as session:
                if resource == ResourceType.ORDERS:
                    await self._delete_children(session, str(external_id), tenant_id)
                result = await session.execute(delete(model).where(
                    model.external_id == str(external_id),
                    model.tenant_id == tenant_id,
                ))
                deleted = result.rowcount > 0
        except SQLAlchemyError as e:
            raise DatabaseError(
                f"Delete from {model.__tablename__} failed",
                context={"operation": "DELETE", "external_id": external_id, "tenant_id": tenant_id},
                original_exception=e
            )
        self.log.info(f"Deleted {resource.value} {external_id} for tenant {tenant_id}: {deleted}")
        return deleted

    async def delete_customer(self, external_id: str, tenant_id: str) -> bool:
        return await self.delete(ResourceType.CUSTOMERS, external_id, tenant_id)

    async def delete_product(self, external_id: str, tenant_id: str) -> bool:
        return await self.delete(ResourceType.PRODUCTS, external_id, tenant_id)

    async def delete_order(self, external_id: str, tenant_id: str) -> bool:
        return await self.delete(ResourceType.ORDERS, external_id, tenant_id)

    async def count_records(self, tenant_id: str) -> Dict[str, int]:
        counts = {}
        async with self.session_factory() as session:
            for resource, model in MODELS.items():
                result = await session.execute(
                    select(func.count(model.id)).where(model.tenant_id == tenant_id)
                )
                counts[resource.value] = result.scalar_one()
        return counts

    async def last_synced_at(self, tenant_id: str) -> Optional[datetime]:
        latest = None
        async with self.session_factory() as session:
            for model in MODELS.values():
                result = await session.execute(
                    select(func.max(model.synced_at)).where(model.tenant_id == tenant_id)
                )
                value = result.scalar_one_or_none()
                if value is not None and (latest is None or value > latest):
                    latest = value
        return latest

    async def fetch_order_children(self, external_id: str, tenant_id: str) -> Dict[str, List]:
        async with self.session_factory() as session:
            items = await session.execute(select(OrderLineItem).where(
                OrderLineItem.order_external_id == external_id,
                OrderLineItem.tenant_id == tenant_id,
            ))
            events = await session.execute(select(OrderEvent).where(
                OrderEvent.order_external_id == external_id,
                OrderEvent.tenant_id == tenant_id,
            ))
            return {"line_items": list(items.scalars()), "events": list(events.scalars())}

    # ------------------------------------------------------------------
    # Webhook events
    # ------------------------------------------------------------------

    async def record_webhook_event(
        self,
        topic: str,
        tenant_id: str,
        shop_domain: str,
        payload: Any,
        delivery_id: Optional[str] = None,
    ) -> WebhookEvent:
        """Durably store a verified notification as RECEIVED."""
        event = WebhookEvent(
            id=str(uuid.uuid4()),
            topic=topic,
            tenant_id=tenant_id,
            shop_domain=shop_domain,
            payload=payload,
            delivery_id=delivery_id,
            status=WebhookEventStatus.RECEIVED.value,
            received_at=utcnow(),
        )
        try:
            async with self.session_factory.begin() as session:
                session.add(event)
        except SQLAlchemyError as e:
            raise DatabaseError(
                "Failed to record webhook event",
                context={"operation": "INSERT", "table_name": WebhookEvent.__tablename__, "topic": topic},
                original_exception=e
            )
        return event

    async def mark_webhook_event(self, event_id: str, status: WebhookEventStatus,
                                 error: Optional[str] = None) -> None:
        async with self.session_factory.begin() as session:
            await session.execute(
                update(WebhookEvent)
                .where(WebhookEvent.id == event_id)
                .values(
                    status=WebhookEventStatus(status).value,
                    error=error[:2000] if error else None,
                    processed_at=utcnow(),
                )
            )

    async def get_webhook_event(self, event_id: str) -> Optional[WebhookEvent]:
        async with self.session_factory() as session:
            return await session.get(WebhookEvent, event_id)

    async def purge_webhook_events(self, older_than: datetime) -> int:
        """Delete handled notifications received before ``older_than``."""
        async with self.session_factory.begin() as session:
            result = await session.execute(
                delete(WebhookEvent).where(
                    WebhookEvent.received_at < older_than,
                    WebhookEvent.status != WebhookEventStatus.RECEIVED.value,
                )
            )
            purged = result.rowcount or 0
        self.log.info(f"Purged {purged} webhook events older than {older_than.isoformat()}")
        return purged
