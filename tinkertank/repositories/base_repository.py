# tinkertank/repositories/base_repository.py
"""
Base Repository Pattern for the TinkerTank booking backend.

Repositories flush, they never commit. The service layer owns the
transaction boundary, and uniqueness violations raised inside a savepoint
surface as ``IntegrityError`` so services can fetch the row that won.
"""

import logging
from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import RepositoryException

T = TypeVar("T")

logger = logging.getLogger(__name__)


class BaseRepository(Generic[T]):
    """
    Shared lookups and inserts for one mapped model.

    Attributes:
        db: SQLAlchemy session
        model: SQLAlchemy model class
    """

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    def _fail(self, action: str, exc: SQLAlchemyError) -> RepositoryException:
        self.logger.error("Error %s %s: %s", action, self.model.__name__, exc)
        return RepositoryException(f"Failed {action} {self.model.__name__}: {exc}")

    def get_by_id(self, id: str, load_relationships: bool = True) -> Optional[T]:
        query = self._build_query().filter(self.model.id == id)
        if load_relationships:
            query = self._apply_eager_loading(query)
        try:
            return query.first()
        except SQLAlchemyError as exc:
            raise self._fail("loading", exc) from exc

    def create(self, **kwargs: Any) -> T:
        """
        Add and flush a new row.

        Any database error rolls the session back and is re-raised as
        ``RepositoryException`` with the original error as its cause.
        """
        entity = self.model(**kwargs)
        try:
            self.db.add(entity)
            self.db.flush()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise self._fail("creating", exc) from exc
        return entity

    def create_in_savepoint(self, **kwargs: Any) -> T:
        """Insert inside ``begin_nested``; an ``IntegrityError`` undoes only the savepoint."""
        entity = self.model(**kwargs)
        try:
            with self.db.begin_nested():
                self.db.add(entity)
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            raise self._fail("creating", exc) from exc
        return entity

    def flush(self) -> None:
        self.db.flush()

    def find_one_by(self, **kwargs: Any) -> Optional[T]:
        try:
            return self._build_query().filter_by(**kwargs).first()
        except SQLAlchemyError as exc:
            raise self._fail("finding", exc) from exc

    def _apply_eager_loading(self, query: Query) -> Query:
        """Override to eager load relationships for ``get_by_id`` and list queries."""
        return query

    def _build_query(self) -> Query:
        return self.db.query(self.model)

    def _execute_query(self, query: Query) -> List[T]:
        try:
            return query.all()
        except SQLAlchemyError as exc:
            raise self._fail("querying", exc) from exc

    def _execute_scalar(self, query: Query) -> Any:
        try:
            return query.scalar()
        except SQLAlchemyError as exc:
            raise self._fail("querying", exc) from exc
