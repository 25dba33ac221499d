#!/usr/bin/env python
# tinkertank/commands/reconcile.py
"""
Reconciliation remediation commands.

Usage:
    python -m tinkertank.commands.reconcile pending            # Settle PENDING orders
    python -m tinkertank.commands.reconcile paid               # Re-reconcile PAID orders
    python -m tinkertank.commands.reconcile backfill-events    # Link bookings to events
    python -m tinkertank.commands.reconcile order <order_id>   # Reconcile one order
"""

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from tinkertank.core.exceptions import DomainException
from tinkertank.database import SessionLocal
from tinkertank.services.backfill_service import BackfillService
from tinkertank.services.reconciliation_service import ReconciliationService

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m tinkertank.commands.reconcile",
        description="Booking reconciliation remediation",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    pending = sub.add_parser("pending", help="Confirm PENDING orders with the payment gateway")
    pending.add_argument("--min-age-minutes", type=int, default=10)
    pending.add_argument("--limit", type=int, default=100)

    paid = sub.add_parser("paid", help="Re-run reconciliation for PAID orders missing bookings")
    paid.add_argument("--limit", type=int, default=100)

    backfill = sub.add_parser("backfill-events", help="Attach events to unlinked bookings")
    backfill.add_argument("--limit", type=int, default=500)
    backfill.add_argument(
        "--from-day", dest="from_day_key", help="Skip bookings before this local day (YYYY-MM-DD)"
    )

    order = sub.add_parser("order", help="Reconcile a single PAID order")
    order.add_argument("order_id")
    return parser


def run(args: argparse.Namespace, db: Session) -> Dict[str, Any]:
    if args.command == "order":
        result = ReconciliationService(db).reconcile(args.order_id)
        return {
            "order_id": result.order_id,
            "items": [item.to_dict() for item in result.items],
        }

    service = BackfillService(db)
    if args.command == "pending":
        return service.reconcile_pending_orders(
            min_age_minutes=args.min_age_minutes, limit=args.limit
        ).to_dict()
    if args.command == "paid":
        return service.reconcile_paid_orders(limit=args.limit).to_dict()
    return service.backfill_event_links(
        limit=args.limit, from_day_key=args.from_day_key
    ).to_dict()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    db = SessionLocal()
    try:
        summary = run(args, db)
    except DomainException as exc:
        logger.error(f"{args.command} failed: {exc.message}")
        print(json.dumps(exc.to_dict(), indent=2, default=str))
        return 1
    finally:
        db.close()
    print(json.dumps(summary, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
