"""
Inbound webhook receiver.

Per request: required headers -> tenant lookup by shop domain -> HMAC
verification -> durable RECEIVED record -> acknowledgement. The payload is
processed afterwards, off the request path, and the stored event is moved
once to PROCESSED, FAILED or IGNORED. Nothing is retried automatically.
"""

import base64
import hashlib
import hmac
import inspect
import json
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from core.exceptions import DatabaseError, ValidationError
from core.logging import get_logger
from ingestion.loaders.record_loader import RecordLoader
from ingestion.transformers.shopify_transformer import DELETE, WEBHOOK_TOPICS, ShopifyTransformer
from models.base import WebhookEventStatus
from schemas.tenant import TenantCredential

TOPIC_HEADER = "x-shopify-topic"
DOMAIN_HEADER = "x-shopify-shop-domain"
SIGNATURE_HEADER = "x-shopify-hmac-sha256"
DELIVERY_HEADER = "x-shopify-webhook-id"

REQUIRED_HEADERS = (TOPIC_HEADER, DOMAIN_HEADER, SIGNATURE_HEADER)


def compute_signature(raw_body: bytes, secret: str) -> str:
    """base64(HMAC-SHA256(raw_body, secret))"""
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(raw_body: bytes, secret: str, signature: str) -> bool:
    """Constant-time comparison of the supplied and expected signatures."""
    if not secret or not signature:
        return False
    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().encode("ascii", "ignore"))


@dataclass
class ReceivedEvent:
    id: str
    topic: str
    tenant_id: str
    shop_domain: str
    payload: Any
    received_at: datetime
    delivery_id: Optional[str] = None


@dataclass
class WebhookReceipt:
    status_code: int
    body: Dict[str, Any]
    event: Optional[ReceivedEvent] = None

    @property
    def accepted(self) -> bool:
        return self.status_code == 200 and self.event is not None


TenantResolver = Callable[[str], Any]
Handler = Callable[[ReceivedEvent], Awaitable[Any]]


@dataclass
class _Counters:
    received: int = 0
    processed: int = 0
    failed: int = 0
    ignored: int = 0
    rejected: int = 0
    last_received_at: Optional[datetime] = None
    topics: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


class WebhookReceiver:
    """
    Verify, record and dispatch inbound notifications.

    Args:
        loader: Persistence write contract (also stores webhook events)
        transformer: Maps payloads with the same rules as the importer
        tenant_resolver: shop_domain -> TenantCredential or None (sync or async)
    """

    def __init__(
        self,
        loader: RecordLoader,
        transformer: ShopifyTransformer,
        tenant_resolver: TenantResolver,
        *,
        enabled: bool = True,
        logger=None,
    ):
        self.loader = loader
        self.transformer = transformer
        self.tenant_resolver = tenant_resolver
        self.enabled = enabled
        self.log = logger or get_logger(__name__)
        self._handlers: Dict[str, Handler] = {}
        self._stats: Dict[str, _Counters] = defaultdict(_Counters)

        for topic in WEBHOOK_TOPICS:
            self.register_handler(topic, self._apply_to_store)

    def register_handler(self, topic: str, handler: Handler):
        self._handlers[topic] = handler

    def handler_for(self, topic: str) -> Optional[Handler]:
        return self._handlers.get(topic)

    async def _resolve(self, shop_domain: str) -> Optional[TenantCredential]:
        tenant = self.tenant_resolver(shop_domain)
        if inspect.isawaitable(tenant):
            tenant = await tenant
        return tenant

    # ------------------------------------------------------------------
    # Request path
    # ------------------------------------------------------------------

    async def receive(self, headers: Mapping[str, str], raw_body: bytes) -> WebhookReceipt:
        if not self.enabled:
            return WebhookReceipt(503, {"error": "Webhooks are disabled"})

        lowered = {k.lower(): v for k, v in headers.items()}
        missing = [h for h in REQUIRED_HEADERS if not lowered.get(h)]
        if missing:
            self.log.warning(f"Rejected webhook with missing headers: {missing}")
            return WebhookReceipt(400, {"error": "Missing required webhook headers", "missing": missing})

        topic = lowered[TOPIC_HEADER]
        shop_domain = lowered[DOMAIN_HEADER].strip().lower()
        signature = lowered[SIGNATURE_HEADER]
        log = self.log.bind(topic=topic, shop_domain=shop_domain)

        tenant = await self._resolve(shop_domain)
        if tenant is None:
            log.warning("Rejected webhook for unknown shop")
            return WebhookReceipt(404, {"error": "Unknown shop domain"})

        stats = self._stats[tenant.tenant_id]
        if not verify_signature(raw_body, tenant.webhook_secret or "", signature):
            stats.rejected += 1
            log.warning(f"Rejected webhook with invalid signature for tenant {tenant.tenant_id}")
            return WebhookReceipt(401, {"error": "Invalid webhook signature"})

        try:
            payload = json.loads(raw_body or b"null")
        except ValueError:
            stats.rejected += 1
            log.warning("Rejected webhook with malformed JSON body")
            return WebhookReceipt(400, {"error": "Malformed JSON body"})

        try:
            row = await self.loader.record_webhook_event(
                topic=topic,
                tenant_id=tenant.tenant_id,
                shop_domain=shop_domain,
                payload=payload,
                delivery_id=lowered.get(DELIVERY_HEADER),
            )
        except DatabaseError as e:
            log.error(f"Could not record webhook event: {e}")
            return WebhookReceipt(500, {"error": "Failed to record webhook event"})

        event = ReceivedEvent(
            id=row.id,
            topic=topic,
            tenant_id=tenant.tenant_id,
            shop_domain=shop_domain,
            payload=payload,
            received_at=row.received_at,
            delivery_id=row.delivery_id,
        )
        stats.received += 1
        stats.topics[topic] += 1
        stats.last_received_at = datetime.now(timezone.utc)

        log.info(f"Accepted webhook {event.id} for tenant {tenant.tenant_id}")
        return WebhookReceipt(
            200,
            {"received": True, "topic": topic, "timestamp": datetime.now(timezone.utc).isoformat()},
            event,
        )

    # ------------------------------------------------------------------
    # Background processing
    # ------------------------------------------------------------------

    async def process_event(self, event: ReceivedEvent) -> WebhookEventStatus:
        """Run the topic handler once and record the final state of the event."""
        log = self.log.bind(topic=event.topic, tenant_id=event.tenant_id, event_id=event.id)
        stats = self._stats[event.tenant_id]

        handler = self._handlers.get(event.topic)
        if handler is None:
            log.info("No handler registered, ignoring")
            stats.ignored += 1
            await self._mark(event, WebhookEventStatus.IGNORED, None, log)
            return WebhookEventStatus.IGNORED

        try:
            await handler(event)
        except Exception as e:
            log.error(f"Webhook processing failed: {e}")
            stats.failed += 1
            await self._mark(event, WebhookEventStatus.FAILED, str(e), log)
            return WebhookEventStatus.FAILED

        stats.processed += 1
        await self._mark(event, WebhookEventStatus.PROCESSED, None, log)
        log.info("Webhook processed")
        return WebhookEventStatus.PROCESSED

    async def _mark(self, event, status, error, log):
        try:
            await self.loader.mark_webhook_event(event.id, status, error)
        except Exception as e:
            log.error(f"Could not mark webhook event as {status.value}: {e}")

    async def _apply_to_store(self, event: ReceivedEvent):
        """Default handler: same transform + upsert contract as the importer."""
        mapped = self.transformer.transform_webhook(event.topic, event.payload, event.tenant_id)
        if mapped is None:
            raise ValidationError(f"Unmapped topic {event.topic}", context={"topic": event.topic})
        resource, action, result = mapped
        if action == DELETE:
            await self.loader.delete(resource, result, event.tenant_id)
        else:
            await self.loader.upsert(resource, result)

    def get_webhook_stats(self, tenant_id: Optional[str] = None) -> Dict[str, Any]:
        def as_dict(c: _Counters) -> Dict[str, Any]:
            return {
                "received": c.received,
                "processed": c.processed,
                "failed": c.failed,
                "ignored": c.ignored,
                "rejected": c.rejected,
                "last_received_at": c.last_received_at.isoformat() if c.last_received_at else None,
                "topics": dict(c.topics),
            }

        if tenant_id is not None:
            return as_dict(self._stats.get(tenant_id, _Counters()))
        return {
            "enabled": self.enabled,
            "handlers": sorted(self._handlers),
            "tenants": {t: as_dict(c) for t, c in self._stats.items()},
        }
