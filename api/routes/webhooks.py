"""
Inbound webhook endpoint
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse

from api.dependencies import get_webhook_receiver
from core.config import settings
from ingestion.webhooks import WebhookReceiver

router = APIRouter(tags=["Webhooks"])


@router.post(settings.WEBHOOK_PATH)
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    receiver: WebhookReceiver = Depends(get_webhook_receiver),
):
    """
    Receive a platform notification.

    Responds as soon as the event is verified and recorded; processing runs
    as a background task after the response is sent.
    """
    raw_body = await request.body()
    receipt = await receiver.receive(request.headers, raw_body)
    if receipt.accepted:
        background_tasks.add_task(receiver.process_event, receipt.event)
    return JSONResponse(status_code=receipt.status_code, content=receipt.body)
