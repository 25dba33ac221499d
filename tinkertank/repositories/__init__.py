# tinkertank/repositories/__init__.py
"""
Repository Pattern Implementation for the TinkerTank booking backend.

This package provides the repository layer for data access,
separating business logic from database queries.

Usage:
    from tinkertank.repositories import RepositoryFactory

    # In a service:
    repository = RepositoryFactory.create_booking_repository(db)
    booking = repository.find_active_for_slot(...)
"""

from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .event_repository import EventRepository
from .factory import RepositoryFactory
from .location_repository import LocationRepository
from .order_repository import OrderRepository
from .reconciliation_flag_repository import ReconciliationFlagRepository
from .student_repository import StudentRepository
from .template_repository import RecurringTemplateRepository
from .webhook_event_repository import WebhookEventRepository

__all__ = [
    "BaseRepository",
    "BookingRepository",
    "EventRepository",
    "LocationRepository",
    "OrderRepository",
    "ReconciliationFlagRepository",
    "RecurringTemplateRepository",
    "RepositoryFactory",
    "StudentRepository",
    "WebhookEventRepository",
]
