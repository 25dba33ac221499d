# tinkertank/services/base.py
"""
Base Service Pattern for the TinkerTank booking backend.

Services own the transaction boundary: repositories flush, services commit
or roll back. Every public operation worth watching is wrapped with
``measure_operation`` so its latency and outcome reach Prometheus.
"""

from contextlib import contextmanager
from functools import wraps
import logging
import time
from typing import Any, Callable, Iterator, TypeVar, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import ServiceException
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

SLOW_OPERATION_THRESHOLD_S = 1.0


class BaseService:
    """Base class for service layer components."""

    def __init__(self, db: Session):
        self.db = db
        self.logger = logging.getLogger(self.__class__.__name__)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Commit on clean exit, roll back on any error.

        Usage:
            with self.transaction():
                self.booking_repository.create(...)

        Database errors are re-raised as ``ServiceException``; domain errors
        pass through unchanged after the rollback.
        """
        try:
            yield self.db
            self.db.commit()
        except SQLAlchemyError as exc:
            self.logger.error("Transaction failed: %s", exc)
            self.db.rollback()
            raise ServiceException(f"Database operation failed: {exc}") from exc
        except Exception:
            self.db.rollback()
            raise

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """
        Record duration and outcome of a service method.

        Usage:
            @BaseService.measure_operation("reconcile_order")
            def reconcile(self, order_id):
                ...
        """

        def decorator(func: F) -> F:
            @wraps(func)
            def wrapper(self, *args, **kwargs):
                started = time.perf_counter()
                status = "error"
                try:
                    result = func(self, *args, **kwargs)
                    status = "success"
                    return result
                finally:
                    elapsed = time.perf_counter() - started
                    if elapsed > SLOW_OPERATION_THRESHOLD_S:
                        self.logger.warning(
                            "Slow operation %s took %.2fs", operation_name, elapsed
                        )
                    prometheus_metrics.record_service_operation(
                        service=self.__class__.__name__,
                        operation=operation_name,
                        duration=elapsed,
                        status=status,
                    )

            return cast(F, wrapper)

        return decorator

    def log_operation(self, operation: str, **context: Any) -> None:
        self.logger.info("Operation: %s", operation, extra={"operation": operation, **context})
