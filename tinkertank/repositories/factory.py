# tinkertank/repositories/factory.py
"""
Repository Factory for the TinkerTank booking backend.

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from .base_repository import BaseRepository

# Avoid circular imports
if TYPE_CHECKING:
    from .booking_repository import BookingRepository
    from .event_repository import EventRepository
    from .location_repository import LocationRepository
    from .order_repository import OrderRepository
    from .reconciliation_flag_repository import ReconciliationFlagRepository
    from .student_repository import StudentRepository
    from .template_repository import RecurringTemplateRepository
    from .webhook_event_repository import WebhookEventRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation to ensure consistent initialization
    and makes it easy to swap implementations if needed.
    """

    @staticmethod
    def create_base_repository(db: Session, model) -> BaseRepository:
        """
        Create a generic base repository for any model.

        Args:
            db: Database session
            model: SQLAlchemy model class

        Returns:
            BaseRepository instance
        """
        return BaseRepository(db, model)

    @staticmethod
    def create_booking_repository(db: Session) -> "BookingRepository":
        """Create repository for booking operations."""
        from .booking_repository import BookingRepository

        return BookingRepository(db)

    @staticmethod
    def create_event_repository(db: Session) -> "EventRepository":
        """Create repository for calendar events."""
        from .event_repository import EventRepository

        return EventRepository(db)

    @staticmethod
    def create_template_repository(db: Session) -> "RecurringTemplateRepository":
        from .template_repository import RecurringTemplateRepository

        return RecurringTemplateRepository(db)

    @staticmethod
    def create_location_repository(db: Session) -> "LocationRepository":
        from .location_repository import LocationRepository

        return LocationRepository(db)

    @staticmethod
    def create_order_repository(db: Session) -> "OrderRepository":
        """Create repository for orders and their items."""
        from .order_repository import OrderRepository

        return OrderRepository(db)

    @staticmethod
    def create_reconciliation_flag_repository(db: Session) -> "ReconciliationFlagRepository":
        from .reconciliation_flag_repository import ReconciliationFlagRepository

        return ReconciliationFlagRepository(db)

    @staticmethod
    def create_student_repository(db: Session) -> "StudentRepository":
        from .student_repository import StudentRepository

        return StudentRepository(db)

    @staticmethod
    def create_webhook_event_repository(db: Session) -> "WebhookEventRepository":
        from .webhook_event_repository import WebhookEventRepository

        return WebhookEventRepository(db)
