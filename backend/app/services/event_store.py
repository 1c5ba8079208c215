"""
Webhook event store.

Durable log of every inbound webhook delivery keyed by the provider's event id.
The unique key is what makes redelivery safe: only one delivery of an id can
ever insert the row.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.db.base import insert_or_ignore
from app.models import WebhookEvent

logger = logging.getLogger(__name__)


@dataclass
class RecordResult:
    """Result of record_if_new: whether this delivery inserted the row, and the row."""

    is_new: bool
    record: WebhookEvent


class WebhookEventStore:
    """Idempotency log for inbound webhook events."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, event_id: str) -> Optional[WebhookEvent]:
        return self.db.query(WebhookEvent).filter(WebhookEvent.external_event_id == event_id).first()

    def record_if_new(
        self,
        event_id: str,
        event_type: str,
        payload: Dict[str, Any],
        source: str = "payment",
    ) -> RecordResult:
        """
        Record a delivery, collapsing duplicates of the same event id.

        Args:
            event_id: Provider-assigned event id (webhook-id header)
            event_type: Event type from the envelope
            payload: Parsed JSON payload
            source: "payment" or "training"

        Returns:
            RecordResult; is_new is False when the id was already recorded,
            including when a concurrent delivery won the insert race
        """
        inserted = insert_or_ignore(
            self.db,
            WebhookEvent,
            {
                "external_event_id": event_id,
                "source": source,
                "event_type": event_type,
                "payload": payload,
                "processed": False,
                "attempts": 1,
                "received_at": datetime.utcnow(),
            },
            index_elements=["external_event_id"],
        )
        self.db.commit()

        record = self.get(event_id)
        if record is None:
            raise RuntimeError(f"Webhook event {event_id} missing after insert")

        if not inserted:
            record.attempts = (record.attempts or 0) + 1
            self.db.commit()
            logger.info(
                f"Duplicate delivery of webhook event {event_id} "
                f"(processed={record.processed}, attempts={record.attempts})"
            )

        return RecordResult(is_new=inserted, record=record)

    def mark_processed(self, event_id: str) -> None:
        record = self.get(event_id)
        if record is None:
            logger.warning(f"Cannot mark unknown webhook event {event_id} as processed")
            return
        record.processed = True
        record.processing_error = None
        record.processed_at = datetime.utcnow()
        self.db.commit()

    def mark_failed(self, event_id: str, error: str) -> None:
        """Store the handler error; the row stays unprocessed so a redelivery retries it."""
        record = self.get(event_id)
        if record is None:
            logger.warning(f"Cannot mark unknown webhook event {event_id} as failed")
            return
        record.processed = False
        record.processing_error = error
        record.processed_at = datetime.utcnow()
        self.db.commit()
