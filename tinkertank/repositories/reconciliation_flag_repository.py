"""Repository for reconciliation flags."""

from datetime import datetime, timezone
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.reconciliation_flag import FlagKind, ReconciliationFlag
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ReconciliationFlagRepository(BaseRepository[ReconciliationFlag]):
    def __init__(self, db: Session):
        super().__init__(db, ReconciliationFlag)

    def get_for_booking(self, booking_id: str, kind: FlagKind) -> Optional[ReconciliationFlag]:
        return self.find_one_by(booking_id=booking_id, kind=kind.value)

    def get_or_create(
        self,
        *,
        booking_id: str,
        kind: FlagKind,
        order_id: Optional[str] = None,
        order_item_id: Optional[str] = None,
        detail: Optional[Dict[str, Any]] = None,
    ) -> ReconciliationFlag:
        """Return the flag for (booking, kind), creating it once; a resolved flag is reopened."""
        existing = self.get_for_booking(booking_id, kind)
        if existing is None:
            try:
                return self.create_in_savepoint(
                    booking_id=booking_id,
                    kind=kind.value,
                    order_id=order_id,
                    order_item_id=order_item_id,
                    detail=detail or {},
                )
            except IntegrityError:
                existing = self.get_for_booking(booking_id, kind)
                if existing is None:
                    raise
        if existing.resolved_at is not None:
            existing.resolved_at = None
            existing.detail = detail or existing.detail
            self.flush()
        return existing

    def resolve(self, booking_id: str, kind: FlagKind) -> bool:
        flag = self.get_for_booking(booking_id, kind)
        if flag is None or flag.resolved_at is not None:
            return False
        self.mark_resolved(flag)
        return True

    def mark_resolved(self, flag: ReconciliationFlag) -> ReconciliationFlag:
        if flag.resolved_at is None:
            flag.resolved_at = datetime.now(timezone.utc)
            self.flush()
        return flag

    def list_unresolved(
        self, *, kind: Optional[FlagKind] = None, limit: int = 100
    ) -> List[ReconciliationFlag]:
        query = self._build_query().filter(ReconciliationFlag.resolved_at.is_(None))
        if kind is not None:
            query = query.filter(ReconciliationFlag.kind == kind.value)
        query = query.order_by(ReconciliationFlag.created_at, ReconciliationFlag.id).limit(limit)
        return self._execute_query(query)

    def list_for_order(self, order_id: str) -> List[ReconciliationFlag]:
        query = (
            self._build_query()
            .filter(ReconciliationFlag.order_id == order_id)
            .order_by(ReconciliationFlag.created_at, ReconciliationFlag.id)
        )
        return self._execute_query(query)

    def resolve_open_for_booking(self, booking_id: str) -> int:
        flags = self._execute_query(
            self._build_query().filter(
                ReconciliationFlag.booking_id == booking_id,
                ReconciliationFlag.resolved_at.is_(None),
            )
        )
        for flag in flags:
            self.mark_resolved(flag)
        return len(flags)
