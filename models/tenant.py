from sqlalchemy import Column, String, Boolean, DateTime, Index
from models.base import Base, IdType, utcnow


class Tenant(Base):
    """
    Tenant credential for one storefront.

    The access token and webhook secret are stored Fernet-encrypted. At most
    one row per tenant_id is active at a time; deactivated rows are kept
    with their secrets cleared.
    """
    __tablename__ = "tenants"

    id = Column(IdType, primary_key=True, autoincrement=True)
    tenant_id = Column(String(100), nullable=False, index=True)
    shop_domain = Column(String(255), nullable=False, index=True)
    api_version = Column(String(20), nullable=False)

    access_token_encrypted = Column(String(1024), nullable=True)
    webhook_secret_encrypted = Column(String(1024), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
    deactivated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_tenant_active", "tenant_id", "is_active"),
    )

    def __repr__(self):
        return f"<Tenant(tenant_id={self.tenant_id}, shop_domain={self.shop_domain}, active={self.is_active})>"
