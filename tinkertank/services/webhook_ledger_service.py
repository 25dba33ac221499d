"""Service for logging webhook deliveries and their processing outcome."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.webhook_event import WebhookEvent
from ..repositories.factory import RepositoryFactory
from .base import BaseService

PROCESSED = "processed"
FAILED = "failed"
RECEIVED = "received"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class WebhookLedgerService(BaseService):
    """Business logic for webhook ledger entries."""

    def __init__(self, db: Session) -> None:
        super().__init__(db)
        self.repository = RepositoryFactory.create_webhook_event_repository(db)

    @BaseService.measure_operation("webhook_ledger.log_received")
    def log_received(
        self,
        *,
        source: str,
        event_type: str,
        event_id: str,
        payload: dict[str, Any],
    ) -> WebhookEvent:
        """
        Log a received webhook before processing.

        Redeliveries of a known event id bump ``attempts`` on the existing row.
        """
        existing = self.repository.find_by_source_and_event_id(source, event_id)
        if existing is not None:
            return self._bump(existing)

        try:
            return self.repository.create(
                source=source,
                event_type=event_type or "unknown",
                event_id=event_id,
                payload=payload,
                status=RECEIVED,
                attempts=1,
                received_at=_now_utc(),
            )
        except RepositoryException as exc:
            # Another worker logged the same delivery first
            if isinstance(exc.__cause__, IntegrityError):
                existing = self.repository.find_by_source_and_event_id(source, event_id)
                if existing is not None:
                    return self._bump(existing)
            raise

    def _bump(self, event: WebhookEvent) -> WebhookEvent:
        event.attempts = (event.attempts or 0) + 1
        self.repository.flush()
        return event

    @staticmethod
    def is_processed(event: WebhookEvent) -> bool:
        return event.status == PROCESSED

    @BaseService.measure_operation("webhook_ledger.mark_processed")
    def mark_processed(
        self, event: WebhookEvent, *, related_order_id: str | None = None
    ) -> WebhookEvent:
        event.status = PROCESSED
        event.processing_error = None
        event.processed_at = _now_utc()
        if related_order_id:
            event.related_order_id = related_order_id
        self.repository.flush()
        return event

    @BaseService.measure_operation("webhook_ledger.mark_failed")
    def mark_failed(
        self, event: WebhookEvent, *, error: str, related_order_id: str | None = None
    ) -> WebhookEvent:
        event.status = FAILED
        event.processing_error = error
        event.processed_at = _now_utc()
        if related_order_id:
            event.related_order_id = related_order_id
        self.repository.flush()
        return event

    def list_failed(self, *, since_hours: int = 24, limit: int = 50) -> list[WebhookEvent]:
        return self.repository.get_failed_events(since_hours=since_hours, limit=limit)
