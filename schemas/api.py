"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime, timezone

from schemas.imports import ImportOptions


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Tenant Schemas
# ============================================================================

class SyncJobSettings(BaseModel):
    """Per-resource schedule override for a tenant"""
    enabled: bool = True
    cron: Optional[str] = None
    options: Optional[ImportOptions] = None


class TenantCreateRequest(BaseModel):
    """Onboard (or re-onboard) a tenant"""
    tenant_id: str = Field(..., min_length=1, max_length=100)
    shop_domain: str = Field(..., min_length=3, max_length=255)
    access_token: str = Field(..., min_length=1)
    webhook_secret: Optional[str] = None
    api_version: Optional[str] = None
    sync: Dict[str, SyncJobSettings] = Field(
        default_factory=dict,
        description="Schedule overrides keyed by customers, products, orders or full_sync",
    )

    class Config:
        json_schema_extra = {
            "example": {
                "tenant_id": "acme",
                "shop_domain": "acme.myshopify.com",
                "access_token": "shpat_xxx",
                "webhook_secret": "whsec_xxx",
                "sync": {"orders": {"cron": "*/15 * * * *"}},
            }
        }


class TenantResponse(BaseModel):
    tenant_id: str
    shop_domain: str
    active: bool
    jobs: List[str] = Field(default_factory=list)


class ImportRequest(BaseModel):
    resource_type: str = Field("all", description="customers, products, orders or all")
    options: Optional[ImportOptions] = None


# ============================================================================
# Status Schemas
# ============================================================================

class RateLimitInfo(BaseModel):
    calls_made: int = 0
    bucket_size: int = 0
    utilization: float = 0.0
    throttled: bool = False
    wait_seconds: float = 0.0


class TenantSyncStatus(BaseModel):
    tenant_id: str
    shop_domain: Optional[str] = None
    healthy: bool
    counts: Dict[str, int] = Field(default_factory=dict)
    last_sync: Optional[datetime] = None
    rate_limit: RateLimitInfo = Field(default_factory=RateLimitInfo)


class SchedulerHealth(BaseModel):
    enabled: bool
    running: bool = False
    total_jobs: int = 0
    enabled_jobs: int = 0
    running_jobs: int = 0


class HealthStatus(BaseModel):
    """Health check response model"""
    status: str = Field(..., description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=_now)
    database_connected: bool = True
    clients: int = 0
    healthy_clients: int = 0
    scheduler: SchedulerHealth
    webhooks_enabled: bool = True
    uptime_seconds: float = 0.0

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "database_connected": True,
                "clients": 2,
                "healthy_clients": 2,
                "scheduler": {"enabled": True, "running": True, "total_jobs": 11,
                              "enabled_jobs": 11, "running_jobs": 0},
                "webhooks_enabled": True,
                "uptime_seconds": 3600.0,
            }
        }
