from sqlalchemy import Column, String, DateTime, Text, Index
from models.base import Base, JSONType, WebhookEventStatus, utcnow
import uuid


class WebhookEvent(Base):
    """
    Inbound notification, written as RECEIVED before it is acknowledged and
    moved once to PROCESSED / FAILED / IGNORED by the background processor.
    """
    __tablename__ = "webhook_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    delivery_id = Column(String(100), nullable=True, index=True)
    topic = Column(String(100), nullable=False, index=True)
    tenant_id = Column(String(100), nullable=False, index=True)
    shop_domain = Column(String(255), nullable=False)
    payload = Column(JSONType, nullable=False)

    status = Column(String(20), nullable=False, default=WebhookEventStatus.RECEIVED.value, index=True)
    error = Column(Text, nullable=True)

    received_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_webhook_tenant_status", "tenant_id", "status"),
    )

    def __repr__(self):
        return f"<WebhookEvent(id={self.id}, topic={self.topic}, status={self.status})>"
