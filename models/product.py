from sqlalchemy import Column, String, Integer, DateTime, Numeric, Text, UniqueConstraint
from models.base import Base, IdType, JSONType, utcnow


class Product(Base):
    """Tenant-scoped product with variant-derived price range and inventory."""
    __tablename__ = "products"

    id = Column(IdType, primary_key=True, autoincrement=True)
    external_id = Column(String(64), nullable=False)
    tenant_id = Column(String(100), nullable=False, index=True)

    title = Column(String(500), nullable=False)
    handle = Column(String(255), nullable=True)
    body_html = Column(Text, nullable=True)
    vendor = Column(String(255), nullable=True, index=True)
    product_type = Column(String(255), nullable=True, index=True)
    status = Column(String(30), nullable=True)
    tags = Column(JSONType, nullable=True)

    # Derived from variants
    price_min = Column(Numeric(14, 2), nullable=True)
    price_max = Column(Numeric(14, 2), nullable=True)
    total_inventory = Column(Integer, nullable=False, default=0)
    variants_count = Column(Integer, nullable=False, default=0)
    image_url = Column(String(2048), nullable=True)

    published_at = Column(DateTime(timezone=True), nullable=True)
    source_created_at = Column(DateTime(timezone=True), nullable=True)
    source_updated_at = Column(DateTime(timezone=True), nullable=True)
    synced_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("external_id", "tenant_id", name="uq_product_external_tenant"),
    )

    def __repr__(self):
        return f"<Product(external_id={self.external_id}, title={self.title})>"
