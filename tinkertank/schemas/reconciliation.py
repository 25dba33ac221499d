"""Reconciliation result and operator flag schemas."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from ._strict_base import StrictModel


class ReconciledItemResponse(StrictModel):
    order_item_id: str
    booking_id: Optional[str] = None
    event_id: Optional[str] = None
    status: str
    issues: List[Dict[str, Any]] = []


class ReconciliationResultResponse(StrictModel):
    order_id: str
    items: List[ReconciledItemResponse]
    reconciled_at: Optional[datetime] = None


class ReconciliationFlagResponse(StrictModel):
    id: str
    kind: str
    order_id: Optional[str] = None
    order_item_id: Optional[str] = None
    booking_id: str
    detail: Dict[str, Any]
    created_at: datetime
    resolved_at: Optional[datetime] = None


class ReconciliationFlagListResponse(StrictModel):
    flags: List[ReconciliationFlagResponse]
    count: int


class BackfillResultResponse(StrictModel):
    scanned: int
    linked: List[str]
    still_unlinked: List[str]
    needs_review: List[str]
