"""
Sync status, scheduled job management and statistics
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from api.dependencies import get_coordinator, verify_api_key
from ingestion.coordinator import IngestionCoordinator
from schemas.api import TenantSyncStatus

router = APIRouter(prefix="/sync", tags=["Sync"], dependencies=[Depends(verify_api_key)])


def _require_scheduler(coordinator: IngestionCoordinator):
    if coordinator.scheduler is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Scheduler is disabled",
        )
    return coordinator.scheduler


@router.get("/status", response_model=List[TenantSyncStatus])
async def sync_status(coordinator: IngestionCoordinator = Depends(get_coordinator)):
    """Per-tenant record counts, last sync time, client health and rate-limit state."""
    return await coordinator.get_sync_status()


@router.get("/jobs")
async def list_jobs(coordinator: IngestionCoordinator = Depends(get_coordinator)):
    scheduler = _require_scheduler(coordinator)
    return {
        "status": scheduler.status(),
        "jobs": [job.to_dict() for job in scheduler.jobs()],
    }


@router.post("/jobs/{job_id}/enable")
async def enable_job(job_id: str, coordinator: IngestionCoordinator = Depends(get_coordinator)):
    scheduler = _require_scheduler(coordinator)
    if not scheduler.enable_job(job_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Job {job_id} not found")
    return scheduler.get_job(job_id).to_dict()


@router.post("/jobs/{job_id}/disable")
async def disable_job(job_id: str, coordinator: IngestionCoordinator = Depends(get_coordinator)):
    scheduler = _require_scheduler(coordinator)
    if not scheduler.disable_job(job_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Job {job_id} not found")
    return scheduler.get_job(job_id).to_dict()


@router.get("/stats")
async def sync_stats(coordinator: IngestionCoordinator = Depends(get_coordinator)):
    """Record counts per tenant, webhook counters and scheduler summary."""
    return await coordinator.get_statistics()
