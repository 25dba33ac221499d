# tinkertank/routes/admin.py
"""
Operator endpoints: template and event management, generation, and
reconciliation remediation.

Authentication is handled in front of the service and is not enforced here.
"""

from datetime import datetime, timezone
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ..api.dependencies import (
    get_backfill_service,
    get_event_expansion_service,
    get_reconciliation_service,
    handle_domain_exception,
)
from ..core.exceptions import DomainException
from ..models.reconciliation_flag import FlagKind
from ..schemas.calendar import CalendarEventResponse
from ..schemas.reconciliation import (
    BackfillResultResponse,
    ReconciliationFlagListResponse,
    ReconciliationFlagResponse,
    ReconciliationResultResponse,
)
from ..schemas.templates import (
    EventCreate,
    GenerationResultResponse,
    RecurringTemplateCreate,
    RecurringTemplateResponse,
)
from ..services.backfill_service import BackfillService
from ..services.event_expansion_service import EventExpansionService
from ..services.reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin"])


@router.post(
    "/templates",
    response_model=RecurringTemplateResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_template(
    payload: RecurringTemplateCreate,
    service: EventExpansionService = Depends(get_event_expansion_service),
) -> RecurringTemplateResponse:
    try:
        template = service.create_template(payload)
    except DomainException as exc:
        handle_domain_exception(exc)
    return RecurringTemplateResponse.model_validate(template)


@router.post("/templates/{template_id}/generate", response_model=GenerationResultResponse)
def generate_template_events(
    template_id: str,
    service: EventExpansionService = Depends(get_event_expansion_service),
) -> GenerationResultResponse:
    """Create the events a template still needs. Safe to call repeatedly."""
    try:
        result = service.generate(template_id)
    except DomainException as exc:
        handle_domain_exception(exc)
    return GenerationResultResponse(
        template_id=result.template_id,
        created=result.created,
        skipped=result.skipped,
        created_count=result.created_count,
        generated_at=datetime.now(timezone.utc),
    )


@router.post(
    "/events",
    response_model=CalendarEventResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_event(
    payload: EventCreate,
    service: EventExpansionService = Depends(get_event_expansion_service),
) -> CalendarEventResponse:
    try:
        event = service.create_event(payload)
    except DomainException as exc:
        handle_domain_exception(exc)
    return CalendarEventResponse.from_event(event)


@router.get("/reconciliation/flags", response_model=ReconciliationFlagListResponse)
def list_flags(
    kind: Optional[FlagKind] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> ReconciliationFlagListResponse:
    """Unresolved operator flags, oldest first."""
    flags = service.list_open_flags(kind=kind, limit=limit)
    items = [ReconciliationFlagResponse.model_validate(flag) for flag in flags]
    return ReconciliationFlagListResponse(flags=items, count=len(items))


@router.post(
    "/reconciliation/flags/{flag_id}/resolve", response_model=ReconciliationFlagResponse
)
def resolve_flag(
    flag_id: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> ReconciliationFlagResponse:
    """Close a flag after manual review."""
    try:
        flag = service.resolve_flag(flag_id)
    except DomainException as exc:
        handle_domain_exception(exc)
    return ReconciliationFlagResponse.model_validate(flag)


@router.post("/reconciliation/backfill-events", response_model=BackfillResultResponse)
def backfill_events(
    limit: int = Query(500, ge=1, le=5000),
    service: BackfillService = Depends(get_backfill_service),
) -> BackfillResultResponse:
    try:
        result = service.backfill_event_links(limit=limit)
    except DomainException as exc:
        handle_domain_exception(exc)
    return BackfillResultResponse(**result.to_dict())


@router.post("/orders/{order_id}/reconcile", response_model=ReconciliationResultResponse)
def reconcile_order(
    order_id: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> ReconciliationResultResponse:
    try:
        result = service.reconcile(order_id)
    except DomainException as exc:
        handle_domain_exception(exc)
    return ReconciliationResultResponse(
        order_id=result.order_id,
        items=[item.to_dict() for item in result.items],
        reconciled_at=result.reconciled_at,
    )
