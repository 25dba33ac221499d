"""
Celery Beat schedule for remediation sweeps.

Pending orders are checked against the gateway every 15 minutes; bookings
without a calendar event are backfilled hourly; paid orders with unbooked
items are re-reconciled every 30 minutes.
"""

from typing import Any, Dict

from celery.schedules import crontab

CELERYBEAT_SCHEDULE: Dict[str, Dict[str, Any]] = {
    "reconcile-pending-orders": {
        "task": "tinkertank.tasks.reconciliation_tasks.reconcile_pending_orders",
        "schedule": crontab(minute="*/15"),
    },
    "reconcile-paid-orders": {
        "task": "tinkertank.tasks.reconciliation_tasks.reconcile_paid_orders",
        "schedule": crontab(minute="5,35"),
    },
    "backfill-event-links": {
        "task": "tinkertank.tasks.reconciliation_tasks.backfill_event_links",
        "schedule": crontab(minute=20),
    },
}


def get_beat_schedule() -> Dict[str, Dict[str, Any]]:
    return dict(CELERYBEAT_SCHEDULE)
