"""
Tenant credential schema
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from core.config import settings


class TenantCredential(BaseModel):
    """Plaintext credential held in memory by the coordinator."""
    tenant_id: str = Field(..., min_length=1, max_length=100)
    shop_domain: str = Field(..., min_length=3, max_length=255)
    access_token: str = Field(..., min_length=1)
    webhook_secret: Optional[str] = None
    api_version: str = Field(default_factory=lambda: settings.SHOPIFY_API_VERSION)
    is_active: bool = True

    @field_validator("shop_domain")
    @classmethod
    def clean_domain(cls, v):
        v = v.strip().lower()
        for prefix in ("https://", "http://"):
            if v.startswith(prefix):
                v = v[len(prefix):]
        return v.rstrip("/")

    @property
    def base_url(self) -> str:
        return f"https://{self.shop_domain}/admin/api/{self.api_version}"

    def __repr__(self):
        return f"TenantCredential(tenant_id={self.tenant_id!r}, shop_domain={self.shop_domain!r})"

    __str__ = __repr__
