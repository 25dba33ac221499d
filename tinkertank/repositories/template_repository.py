"""Repository for recurring event templates."""

from typing import List

from sqlalchemy.orm import Query, Session, joinedload

from ..models.event import RecurringTemplate
from .base_repository import BaseRepository


class RecurringTemplateRepository(BaseRepository[RecurringTemplate]):
    def __init__(self, db: Session):
        super().__init__(db, RecurringTemplate)

    def _apply_eager_loading(self, query: Query) -> Query:
        return query.options(
            joinedload(RecurringTemplate.location),
            joinedload(RecurringTemplate.product),
        )

    def list_active(self) -> List[RecurringTemplate]:
        query = (
            self._apply_eager_loading(self._build_query())
            .filter(RecurringTemplate.is_active.is_(True))
            .order_by(RecurringTemplate.start_date, RecurringTemplate.id)
        )
        return self._execute_query(query)
