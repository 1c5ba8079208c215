"""
Webhook dispatcher.

Runs every inbound provider delivery through the same pipeline:
signature verification, JSON parsing, idempotency check in the event store,
domain handler, and the outcome recorded back on the event. The HTTP status
returned tells the provider whether to redeliver.
"""
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.webhook_signature import WebhookSecretError, verify_webhook_signature
from app.models import TrainingJob
from app.services.event_store import WebhookEventStore
from app.services.notifications import Notifier
from app.services.subscription_ledger import SubscriptionLedger
from app.services.training_tracker import TrainingJobTracker

logger = logging.getLogger(__name__)

SUBSCRIPTION_EVENTS = {
    "subscription.created",
    "subscription.updated",
    "subscription.cancelled",
    "subscription.activated",
    "subscription.renewed",
    "subscription.active",
}

PAYMENT_EVENTS = {
    "payment.succeeded",
    "payment.failed",
    "payment.refunded",
}


@dataclass
class DispatchResult:
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)


def _parse_json(raw_body: bytes) -> Optional[Dict[str, Any]]:
    try:
        payload = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


class WebhookDispatcher:
    """Entry point for payment and training provider webhooks."""

    def __init__(
        self,
        db: Session,
        notifier: Notifier,
        payment_secret: Optional[str] = None,
        training_secret: Optional[str] = None,
        tolerance_seconds: Optional[int] = None,
    ):
        self.db = db
        self.notifier = notifier
        self.payment_secret = payment_secret if payment_secret is not None else settings.payment_webhook_secret
        self.training_secret = training_secret if training_secret is not None else settings.training_webhook_secret
        self.tolerance_seconds = (
            tolerance_seconds if tolerance_seconds is not None else settings.webhook_tolerance_seconds
        )
        self.events = WebhookEventStore(db)

    def _verify(self, source: str, raw_body: bytes, headers: Mapping[str, str], secret: str):
        """Return (webhook_id, None) when the delivery is authentic, else (None, DispatchResult)."""
        if not secret:
            logger.error(f"{source} webhook secret not configured")
            return None, DispatchResult(503, {"detail": f"{source.capitalize()} webhook secret not configured"})

        try:
            result = verify_webhook_signature(
                raw_body, headers, secret, tolerance_seconds=self.tolerance_seconds
            )
        except WebhookSecretError as e:
            logger.error(f"{source} webhook secret is invalid: {str(e)}")
            return None, DispatchResult(503, {"detail": f"{source.capitalize()} webhook secret is invalid"})

        if not result.valid:
            logger.warning(f"Rejected {source} webhook {result.webhook_id}: {result.reason}")
            return None, DispatchResult(401, {"detail": "Invalid webhook signature", "reason": result.reason})

        return result.webhook_id, None

    async def handle_payment_webhook(self, raw_body: bytes, headers: Mapping[str, str]) -> DispatchResult:
        """
        Process a payment provider delivery.

        Returns:
            200 when processed or already processed, 401 on signature failure,
            400 on an invalid body or a handler error, 503 when unconfigured
        """
        webhook_id, rejection = self._verify("payment", raw_body, headers, self.payment_secret)
        if rejection:
            return rejection

        payload = _parse_json(raw_body)
        if payload is None or not payload.get("type"):
            logger.error(f"Invalid payment webhook payload for {webhook_id}")
            return DispatchResult(400, {"error": "Invalid webhook payload"})

        event_type = payload["type"]
        logger.info(f"Received payment webhook {webhook_id}: {event_type}")

        recorded = self.events.record_if_new(webhook_id, event_type, payload, source="payment")
        if recorded.record.processed:
            return DispatchResult(200, {"message": "Webhook already processed"})

        data = payload.get("data") or {}
        ledger = SubscriptionLedger(self.db)
        try:
            if event_type in SUBSCRIPTION_EVENTS:
                ledger.apply_subscription_event(event_type, data)
            elif event_type in PAYMENT_EVENTS:
                ledger.apply_payment_event(event_type, data)
            else:
                logger.info(f"Unhandled payment webhook event type: {event_type}")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error processing payment webhook {webhook_id} ({event_type}): {str(e)}", exc_info=True)
            self.events.mark_failed(webhook_id, str(e))
            return DispatchResult(400, {"error": "Webhook processing failed", "details": str(e)})

        self.events.mark_processed(webhook_id)
        return DispatchResult(200, {"message": "Webhook processed successfully"})

    async def handle_training_webhook(
        self,
        raw_body: bytes,
        headers: Mapping[str, str],
        query: Optional[Mapping[str, str]] = None,
    ) -> DispatchResult:
        """
        Process a training provider callback.

        The ``userId``, ``modelId`` and ``fileName`` query parameters set when
        the training was submitted are logged and cross-checked, never trusted.

        Returns:
            200 with trainingJobId, updatedStatus and progress; 404 for an
            unknown job; 401 on signature failure
        """
        query = query or {}
        webhook_id, rejection = self._verify("training", raw_body, headers, self.training_secret)
        if rejection:
            return rejection

        payload = _parse_json(raw_body)
        if payload is None:
            logger.error(f"Invalid training webhook payload for {webhook_id}")
            return DispatchResult(400, {"message": "Invalid webhook payload"})

        external_job_id = payload.get("id")
        status = payload.get("status")
        logger.info(
            f"Received training webhook {webhook_id}: job={external_job_id} status={status} "
            f"userId={query.get('userId')} modelId={query.get('modelId')} fileName={query.get('fileName')}"
        )

        tracker = TrainingJobTracker(self.db, self.notifier)
        job = tracker.get_by_external_id(external_job_id) if external_job_id else None
        if job is None:
            logger.error(f"Training record not found for job ID: {external_job_id}")
            return DispatchResult(404, {"message": "Training record not found"})

        if query.get("userId") and query["userId"] != str(job.user_id):
            logger.warning(
                f"Training webhook for job {external_job_id} names user {query['userId']}, "
                f"job belongs to {job.user_id}"
            )

        recorded = self.events.record_if_new(webhook_id, f"training.{status}", payload, source="training")
        if recorded.record.processed:
            return DispatchResult(200, self._training_body(external_job_id, job))

        try:
            job = await tracker.apply_callback(payload)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error processing training webhook {webhook_id}: {str(e)}", exc_info=True)
            self.events.mark_failed(webhook_id, str(e))
            return DispatchResult(500, {"message": "Error in webhook"})

        self.events.mark_processed(webhook_id)
        return DispatchResult(200, self._training_body(external_job_id, job))

    @staticmethod
    def _training_body(external_job_id: str, job: TrainingJob) -> Dict[str, Any]:
        return {
            "message": "Webhook processed successfully",
            "trainingJobId": external_job_id,
            "updatedStatus": job.status,
            "progress": job.progress,
        }
