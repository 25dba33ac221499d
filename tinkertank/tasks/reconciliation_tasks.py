# tinkertank/tasks/reconciliation_tasks.py
"""
Celery tasks wrapping the ``BackfillService`` sweeps.

Each task opens its own session, retries transient database disconnects,
and returns a JSON-serialisable summary.
"""

import logging
from typing import Any, Callable, Dict

from sqlalchemy.orm import Session

from ..database import SessionLocal, with_db_retry
from ..services.backfill_service import BackfillService
from .celery_app import celery_app

logger = logging.getLogger(__name__)


def _run(op_name: str, sweep: Callable[[BackfillService], Any]) -> Dict[str, Any]:
    def _once() -> Dict[str, Any]:
        db: Session = SessionLocal()
        try:
            return sweep(BackfillService(db)).to_dict()
        finally:
            db.close()

    result = with_db_retry(op_name, _once)
    logger.info("Sweep finished", extra={"op": op_name, **result})
    return result


@celery_app.task(name="tinkertank.tasks.reconciliation_tasks.reconcile_pending_orders")
def reconcile_pending_orders(min_age_minutes: int = 10, limit: int = 100) -> Dict[str, Any]:
    return _run(
        "reconcile_pending_orders",
        lambda service: service.reconcile_pending_orders(
            min_age_minutes=min_age_minutes, limit=limit
        ),
    )


@celery_app.task(name="tinkertank.tasks.reconciliation_tasks.reconcile_paid_orders")
def reconcile_paid_orders(limit: int = 100) -> Dict[str, Any]:
    return _run("reconcile_paid_orders", lambda service: service.reconcile_paid_orders(limit=limit))


@celery_app.task(name="tinkertank.tasks.reconciliation_tasks.backfill_event_links")
def backfill_event_links(limit: int = 500) -> Dict[str, Any]:
    return _run("backfill_event_links", lambda service: service.backfill_event_links(limit=limit))
