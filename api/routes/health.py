"""
Health check endpoint with database, client and scheduler status
"""

from fastapi import APIRouter, Depends
import logging

from api.dependencies import get_coordinator
from ingestion.coordinator import IngestionCoordinator
from schemas.api import HealthStatus

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthStatus)
async def health_check(coordinator: IngestionCoordinator = Depends(get_coordinator)):
    """
    Health check endpoint.

    Returns:
    - Database connectivity
    - Tenant client health (healthy, degraded when some clients fail)
    - Scheduler and webhook status
    """
    health = await coordinator.get_health_status()
    if health.status != "healthy":
        logger.warning(f"Health check reported {health.status}")
    return health
