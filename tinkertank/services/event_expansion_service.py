# tinkertank/services/event_expansion_service.py
"""
Event Expansion Service for the TinkerTank booking backend.

Materialises calendar events from recurring templates. Every decision about
which calendar day an occurrence belongs to is made on local day keys in the
location's own timezone; UTC instants are only computed at the end from the
local wall-clock session times.

Generation is idempotent: days that already hold an event for the template
are skipped up front, and the (template, location, local day) unique
constraint turns any concurrent duplicate insert into a skip.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time
import logging
from typing import List, Optional, Set, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.constants import closure_name
from ..core.exceptions import (
    BusinessRuleException,
    LocationUnavailableException,
    NotFoundException,
    TemplateWindowInvalidException,
)
from ..core.timezone_utils import (
    get_timezone,
    is_same_local_day,
    is_weekend_day,
    iter_local_day_keys,
    local_time_to_utc,
    parse_day_key,
)
from ..models.event import Event, EventType, RecurringTemplate
from ..models.location import Location
from ..models.product import Product
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.templates import EventCreate, RecurringTemplateCreate
from .base import BaseService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventDraft:
    """A concrete occurrence ready to be inserted."""

    template_id: str
    title: str
    event_type: str
    product_id: str
    location_id: str
    local_day_key: str
    start_datetime: datetime
    end_datetime: datetime
    max_capacity: Optional[int] = None
    description: Optional[str] = None


@dataclass
class GenerationResult:
    template_id: str
    created: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def created_count(self) -> int:
        return len(self.created)


def _validate_window(start_date: date, end_date: date, start_time: time, end_time: time) -> None:
    if start_date > end_date:
        raise TemplateWindowInvalidException(
            "Template start date must not be after its end date",
            details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )
    if end_time <= start_time:
        raise TemplateWindowInvalidException(
            "Session end time must be after its start time",
            details={"start_time": start_time.isoformat(), "end_time": end_time.isoformat()},
        )


def _require_active_location(location: Optional[Location], location_id: str) -> Location:
    if location is None:
        raise LocationUnavailableException(location_id, reason="Location not found")
    if not location.is_active:
        raise LocationUnavailableException(location_id)
    # Fail on a bad zone name before any day is enumerated
    get_timezone(location.timezone)
    return location


class EventExpansionService(BaseService):
    """Expands recurring templates into calendar events and creates ad-hoc events."""

    def __init__(self, db: Session):
        super().__init__(db)
        self.event_repository = RepositoryFactory.create_event_repository(db)
        self.template_repository = RepositoryFactory.create_template_repository(db)
        self.location_repository = RepositoryFactory.create_location_repository(db)
        self.product_repository = RepositoryFactory.create_base_repository(db, Product)

    def _plan(self, template: RecurringTemplate) -> Tuple[List[EventDraft], List[str]]:
        """Return drafts still to be created and day keys already generated."""
        _validate_window(
            template.start_date, template.end_date, template.start_time, template.end_time
        )
        location = _require_active_location(
            template.location or self.location_repository.get_by_id(template.location_id),
            template.location_id,
        )
        if not template.is_active:
            return [], []

        tz_name = location.timezone
        weekdays: Optional[Set[int]] = (
            set(template.weekdays) if template.weekdays is not None else None
        )
        is_camp = template.event_type == EventType.CAMP.value
        existing = self.event_repository.get_day_keys_for_template(template.id, location.id)

        drafts: List[EventDraft] = []
        already: List[str] = []
        for day_key in iter_local_day_keys(template.start_date, template.end_date):
            if not location.allows_day(day_key):
                continue
            # The day key is already a local calendar date, so its weekday is the local weekday
            weekday = parse_day_key(day_key).weekday()
            if weekdays is not None and weekday not in weekdays:
                continue
            if is_camp and is_weekend_day(day_key):
                continue
            if template.skip_closure_dates and closure_name(day_key):
                continue
            if day_key in existing:
                already.append(day_key)
                continue

            start_utc = local_time_to_utc(day_key, template.start_time, tz_name)
            end_utc = local_time_to_utc(day_key, template.end_time, tz_name)
            if not (start_utc < end_utc and is_same_local_day(start_utc, end_utc, tz_name)):
                logger.warning(
                    "Skipping occurrence that does not fit in one local day",
                    extra={"template_id": template.id, "day_key": day_key},
                )
                continue

            drafts.append(
                EventDraft(
                    template_id=template.id,
                    title=template.name,
                    event_type=template.event_type,
                    product_id=template.product_id,
                    location_id=location.id,
                    local_day_key=day_key,
                    start_datetime=start_utc,
                    end_datetime=end_utc,
                    max_capacity=template.max_capacity,
                    description=template.description,
                )
            )
        return drafts, already

    def expand(self, template: RecurringTemplate) -> List[EventDraft]:
        """
        Compute the events a template still needs, without writing anything.

        Raises:
            TemplateWindowInvalidException: If the date window or session times are inverted
            LocationUnavailableException: If the template's location is missing or inactive
            InvalidTimezoneException: If the location's timezone cannot be resolved
        """
        drafts, _ = self._plan(template)
        return drafts

    @BaseService.measure_operation("generate_template_events")
    def generate(self, template_id: str) -> GenerationResult:
        """
        Insert the events a template still needs.

        Safe to run repeatedly or concurrently; each insert runs in its own
        savepoint and a uniqueness violation counts as already generated.
        """
        template = self.template_repository.get_by_id(template_id)
        if template is None:
            raise NotFoundException(
                "Recurring template not found",
                code="TEMPLATE_NOT_FOUND",
                details={"template_id": template_id},
            )

        result = GenerationResult(template_id=template_id)
        with self.transaction():
            drafts, already = self._plan(template)
            result.skipped.extend(already)
            for draft in drafts:
                try:
                    self.event_repository.create_in_savepoint(
                        template_id=draft.template_id,
                        title=draft.title,
                        description=draft.description,
                        event_type=draft.event_type,
                        product_id=draft.product_id,
                        location_id=draft.location_id,
                        local_day_key=draft.local_day_key,
                        start_datetime=draft.start_datetime,
                        end_datetime=draft.end_datetime,
                        max_capacity=draft.max_capacity,
                    )
                    result.created.append(draft.local_day_key)
                except IntegrityError:
                    result.skipped.append(draft.local_day_key)

        prometheus_metrics.record_event_generation("created", len(result.created))
        prometheus_metrics.record_event_generation("skipped", len(result.skipped))
        self.logger.info(
            "Generated template events",
            extra={
                "template_id": template_id,
                "created": len(result.created),
                "skipped": len(result.skipped),
            },
        )
        return result

    @BaseService.measure_operation("create_template")
    def create_template(self, data: RecurringTemplateCreate) -> RecurringTemplate:
        _validate_window(data.start_date, data.end_date, data.start_time, data.end_time)
        _require_active_location(
            self.location_repository.get_by_id(data.location_id), data.location_id
        )
        product = self.product_repository.get_by_id(data.product_id)
        if product is None:
            raise NotFoundException(
                "Product not found",
                code="PRODUCT_NOT_FOUND",
                details={"product_id": data.product_id},
            )

        with self.transaction():
            template = self.template_repository.create(
                name=data.name,
                description=data.description,
                event_type=data.event_type.value,
                product_id=data.product_id,
                location_id=data.location_id,
                start_date=data.start_date,
                end_date=data.end_date,
                start_time=data.start_time,
                end_time=data.end_time,
                weekdays=sorted(set(data.weekdays)) if data.weekdays is not None else None,
                skip_closure_dates=data.skip_closure_dates,
                max_capacity=data.max_capacity,
            )
        self.log_operation("create_template", template_id=template.id)
        return template

    @BaseService.measure_operation("create_event")
    def create_event(self, data: EventCreate) -> Event:
        """Create a one-off event on a single local day at a location."""
        location = _require_active_location(
            self.location_repository.get_by_id(data.location_id), data.location_id
        )
        if data.end_time <= data.start_time:
            raise TemplateWindowInvalidException(
                "Session end time must be after its start time",
                details={
                    "start_time": data.start_time.isoformat(),
                    "end_time": data.end_time.isoformat(),
                },
            )

        day_key = data.day.isoformat()
        closed = closure_name(day_key)
        if closed:
            raise BusinessRuleException(
                f"{day_key} is a closure day ({closed})",
                code="CLOSURE_DAY",
                details={"day_key": day_key, "closure": closed},
            )
        if data.event_type == EventType.CAMP and is_weekend_day(day_key):
            raise BusinessRuleException(
                "Camps only run on weekdays",
                code="CAMP_WEEKEND",
                details={"day_key": day_key},
            )
        if not location.allows_day(day_key):
            raise LocationUnavailableException(
                location.id, reason=f"{location.name} is not available on {day_key}"
            )

        start_utc = local_time_to_utc(day_key, data.start_time, location.timezone)
        end_utc = local_time_to_utc(day_key, data.end_time, location.timezone)

        with self.transaction():
            event = self.event_repository.create(
                title=data.title,
                description=data.description,
                event_type=data.event_type.value,
                product_id=data.product_id,
                location_id=location.id,
                template_id=None,
                local_day_key=day_key,
                start_datetime=start_utc,
                end_datetime=end_utc,
                max_capacity=data.max_capacity,
            )
        self.log_operation("create_event", event_id=event.id, day_key=day_key)
        return event
