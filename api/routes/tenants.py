"""
Tenant onboarding, offboarding and on-demand imports
"""

from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, status
import logging

from api.dependencies import get_coordinator, verify_api_key
from core.exceptions import (
    CredentialError,
    ImportAbortedError,
    SchedulerError,
    TenantNotFoundError,
)
from ingestion.coordinator import VALID_TARGETS, IngestionCoordinator
from ingestion.scheduler import SyncJobConfig, TENANT_JOB_KINDS, default_sync_config
from schemas.api import ImportRequest, SyncJobSettings, TenantCreateRequest, TenantResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/tenants", tags=["Tenants"], dependencies=[Depends(verify_api_key)])


def to_sync_config(sync: Dict[str, SyncJobSettings]) -> Optional[Dict[str, SyncJobConfig]]:
    """Fill unset fields of each override from the default schedule."""
    if not sync:
        return None
    defaults = default_sync_config()
    config = {}
    for kind, override in sync.items():
        if kind not in TENANT_JOB_KINDS:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Unknown sync job kind {kind}. Valid: {sorted(TENANT_JOB_KINDS)}",
            )
        base = defaults[kind]
        config[kind] = SyncJobConfig(
            cron=override.cron or base.cron,
            enabled=override.enabled,
            options=override.options or base.options,
        )
    return config


@router.post("", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
async def create_tenant(
    request: TenantCreateRequest,
    coordinator: IngestionCoordinator = Depends(get_coordinator),
):
    """
    Onboard a tenant.

    The credentials are validated with a live health check before anything
    is stored; re-onboarding an existing tenant replaces its credentials.
    """
    credentials = request.model_dump(exclude={"tenant_id", "sync"}, exclude_none=True)
    try:
        result = await coordinator.add_tenant(
            request.tenant_id, credentials, to_sync_config(request.sync)
        )
    except (CredentialError, SchedulerError) as e:
        logger.warning(f"Tenant {request.tenant_id} rejected: {e.message}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)

    return TenantResponse(
        tenant_id=result["tenant_id"],
        shop_domain=result["shop_domain"],
        active=True,
        jobs=result["jobs"],
    )


@router.delete("/{tenant_id}")
async def delete_tenant(
    tenant_id: str,
    coordinator: IngestionCoordinator = Depends(get_coordinator),
):
    """Offboard a tenant: stored credentials are cleared and its jobs removed."""
    if not await coordinator.remove_tenant(tenant_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Tenant {tenant_id} not found",
        )
    return {"tenant_id": tenant_id, "removed": True}


@router.post("/{tenant_id}/import")
async def run_import(
    tenant_id: str,
    request: ImportRequest,
    coordinator: IngestionCoordinator = Depends(get_coordinator),
):
    """Run an import now and return its result(s)."""
    if request.resource_type not in VALID_TARGETS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid resource type. Valid: {sorted(VALID_TARGETS)}",
        )
    try:
        result = await coordinator.import_data(tenant_id, request.resource_type, request.options)
    except TenantNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except ImportAbortedError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message)

    if isinstance(result, dict):
        return {
            "tenant_id": tenant_id,
            "results": {k: r.model_dump(mode="json") for k, r in result.items()},
        }
    return {"tenant_id": tenant_id, "results": {result.resource_type: result.model_dump(mode="json")}}


@router.get("/{tenant_id}/stats")
async def get_tenant_stats(
    tenant_id: str,
    coordinator: IngestionCoordinator = Depends(get_coordinator),
):
    """Stored record counts and last sync time for a tenant."""
    try:
        return await coordinator.get_import_stats(tenant_id)
    except TenantNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
