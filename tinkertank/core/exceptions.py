# tinkertank/core/exceptions.py
"""
Domain-specific exceptions for the TinkerTank booking backend.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, "code": self.code, "details": self.details}

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.to_dict())


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = 422


class ServiceException(DomainException):
    """Raised when a service operation fails."""


class RepositoryException(DomainException):
    """Raised when a data access operation fails."""


# Scheduling


class InvalidTimezoneException(ValidationException):
    """Raised when a timezone name cannot be resolved."""

    def __init__(self, timezone_name: Optional[str]) -> None:
        super().__init__(
            f"Unknown timezone: {timezone_name!r}",
            code="INVALID_TIMEZONE",
            details={"timezone": timezone_name},
        )


class TemplateWindowInvalidException(ValidationException):
    """Raised when a recurring template has an empty or inverted window."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="TEMPLATE_WINDOW_INVALID", details=details)


class LocationUnavailableException(BusinessRuleException):
    """Raised when a location is inactive or cannot be resolved."""

    def __init__(self, location_id: Optional[str], reason: str = "Location is not active") -> None:
        super().__init__(
            reason,
            code="LOCATION_UNAVAILABLE",
            details={"location_id": location_id},
        )


class EventNotFoundException(NotFoundException):
    """
    No calendar event backs a booking.

    Recoverable: the booking stays valid and the link can be backfilled.
    """

    def __init__(self, product_id: str, location_id: str, day_key: str) -> None:
        super().__init__(
            f"No calendar event for product {product_id} at {location_id} on {day_key}",
            code="EVENT_NOT_FOUND",
            details={"product_id": product_id, "location_id": location_id, "day_key": day_key},
        )


# Bookings and orders


class DuplicateBookingConflictException(ConflictException):
    """Raised when the store rejects a second active booking for the same slot."""

    def __init__(self, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            "An active booking already exists for this student, product and day",
            code="DUPLICATE_BOOKING",
            details=details,
        )


class ReconciliationInProgressException(ConflictException):
    """Raised when another caller holds the reconciliation lock for an order."""

    def __init__(self, order_id: str) -> None:
        super().__init__(
            "Order reconciliation already in progress, retry shortly",
            code="RECONCILIATION_IN_PROGRESS",
            details={"order_id": order_id},
        )


class OrderNotPaidException(BusinessRuleException):
    """Raised when reconciliation is requested for an order that is not PAID."""

    def __init__(self, order_id: str, order_status: str) -> None:
        super().__init__(
            "Only paid orders can be reconciled",
            code="ORDER_NOT_PAID",
            details={"order_id": order_id, "status": order_status},
        )


class InvalidPaymentTransitionException(BusinessRuleException):
    """Raised when an order status change is not allowed by the payment state machine."""

    def __init__(self, order_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Cannot move order from {current} to {target}",
            code="INVALID_PAYMENT_TRANSITION",
            details={"order_id": order_id, "from": current, "to": target},
        )


class InvalidBookingTransitionException(BusinessRuleException):
    """Raised when an operator status change is not allowed for a booking."""

    def __init__(self, booking_id: str, current: str, target: str) -> None:
        super().__init__(
            f"Cannot move booking from {current} to {target}",
            code="INVALID_BOOKING_TRANSITION",
            details={"booking_id": booking_id, "from": current, "to": target},
        )


# Payments


class PaymentNotConfirmedException(ConflictException):
    """The gateway has not confirmed the payment yet; callers retry later."""

    def __init__(self, payment_intent_id: str, gateway_status: Optional[str]) -> None:
        super().__init__(
            "Payment has not been confirmed yet",
            code="PAYMENT_NOT_CONFIRMED",
            details={"payment_intent_id": payment_intent_id, "gateway_status": gateway_status},
        )


class PaymentGatewayUnavailableException(ServiceException):
    """Transient gateway failure (timeouts, rate limits); never proof of payment failure."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="PAYMENT_GATEWAY_UNAVAILABLE", details=details)
