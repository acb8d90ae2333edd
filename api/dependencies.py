"""
FastAPI dependencies
"""

import hmac
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from core.config import settings
from ingestion.coordinator import IngestionCoordinator
from ingestion.webhooks import WebhookReceiver


def get_coordinator(request: Request) -> IngestionCoordinator:
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ingestion service is not initialized",
        )
    return coordinator


def get_webhook_receiver(
    coordinator: IngestionCoordinator = Depends(get_coordinator),
) -> WebhookReceiver:
    return coordinator.webhooks


def verify_api_key(x_api_key: Optional[str] = Header(None)):
    """Protect management routes when API_KEY is configured."""
    if not settings.API_KEY:
        return
    if not x_api_key or not hmac.compare_digest(x_api_key, settings.API_KEY):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
