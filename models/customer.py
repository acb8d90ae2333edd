from sqlalchemy import Column, String, Integer, Boolean, DateTime, Numeric, Text, UniqueConstraint
from models.base import Base, IdType, JSONType, utcnow


class Customer(Base):
    """
    Tenant-scoped customer.

    PII columns (*_encrypted) only ever hold ciphertext produced by the
    field encryptor; aggregates (orders_count, total_spent) stay in clear.
    """
    __tablename__ = "customers"

    id = Column(IdType, primary_key=True, autoincrement=True)
    external_id = Column(String(64), nullable=False)
    tenant_id = Column(String(100), nullable=False, index=True)

    # PII (encrypted)
    email_encrypted = Column(Text, nullable=True)
    first_name_encrypted = Column(Text, nullable=True)
    last_name_encrypted = Column(Text, nullable=True)
    phone_encrypted = Column(Text, nullable=True)
    note_encrypted = Column(Text, nullable=True)
    default_address_encrypted = Column(Text, nullable=True)

    # Clear fields
    accepts_marketing = Column(Boolean, nullable=False, default=False)
    marketing_opt_in_level = Column(String(50), nullable=True)
    orders_count = Column(Integer, nullable=False, default=0)
    total_spent = Column(Numeric(14, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=True)
    state = Column(String(30), nullable=True)
    verified_email = Column(Boolean, nullable=False, default=False)
    tax_exempt = Column(Boolean, nullable=False, default=False)
    tags = Column(JSONType, nullable=True)
    last_order_id = Column(String(64), nullable=True)
    last_order_name = Column(String(100), nullable=True)

    source_created_at = Column(DateTime(timezone=True), nullable=True)
    source_updated_at = Column(DateTime(timezone=True), nullable=True)
    synced_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("external_id", "tenant_id", name="uq_customer_external_tenant"),
    )

    def __repr__(self):
        return f"<Customer(external_id={self.external_id}, tenant_id={self.tenant_id})>"
