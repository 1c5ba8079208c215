"""
Webhook endpoints.

Receives signed deliveries from the payment provider and the training
provider. All processing happens in the WebhookDispatcher; these handlers
only hand over the raw body and translate its result into a response.
"""
from datetime import datetime

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.deps import get_notifier
from app.core.rate_limit import limiter
from app.db.base import get_db
from app.services.notifications import Notifier
from app.services.webhook_dispatcher import WebhookDispatcher

router = APIRouter()


@router.post("/payment")
@limiter.limit("200/minute")
async def payment_webhook(
    request: Request,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Handle payment provider webhooks for subscription and payment events.

    Processes events:
    - subscription.created / updated / cancelled / activated / renewed / active
    - payment.succeeded / failed / refunded

    Non-2xx responses make the provider redeliver.
    """
    raw_body = await request.body()
    result = await WebhookDispatcher(db, notifier).handle_payment_webhook(raw_body, request.headers)
    return JSONResponse(status_code=result.status_code, content=result.body)


@router.get("/payment")
async def payment_webhook_status():
    """Liveness probe used when registering the endpoint with the provider."""
    return {
        "message": "Payment webhook endpoint is active",
        "timestamp": datetime.utcnow().isoformat(),
    }


@router.post("/training")
@limiter.limit("200/minute")
async def training_webhook(
    request: Request,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Handle training provider status callbacks.

    Query parameters ``userId``, ``modelId`` and ``fileName`` are set by us when
    the training is submitted.
    """
    raw_body = await request.body()
    result = await WebhookDispatcher(db, notifier).handle_training_webhook(
        raw_body, request.headers, dict(request.query_params)
    )
    return JSONResponse(status_code=result.status_code, content=result.body)
