# tinkertank/routes/cart.py
"""
Cart endpoints.

The cart session travels in the ``X-Cart-Session`` header; the cart itself is
held server-side by the cart storage backend.
"""

import logging

from fastapi import APIRouter, Depends

from ..api.dependencies import get_cart_service, get_cart_session_id, handle_domain_exception
from ..core.exceptions import DomainException
from ..schemas.cart import (
    CartItemCreate,
    CartResponse,
    CartState,
    CartStudentCreate,
    CartValidation,
)
from ..services.cart_service import CartService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["cart"])


def _respond(service: CartService, cart: CartState) -> CartResponse:
    return CartResponse(session_id=cart.session_id, items=cart.items, summary=service.summary(cart))


@router.get("", response_model=CartResponse)
def get_cart(
    session_id: str = Depends(get_cart_session_id),
    service: CartService = Depends(get_cart_service),
) -> CartResponse:
    return _respond(service, service.get(session_id))


@router.delete("", response_model=CartResponse)
def clear_cart(
    session_id: str = Depends(get_cart_session_id),
    service: CartService = Depends(get_cart_service),
) -> CartResponse:
    return _respond(service, service.clear(session_id))


@router.post("/items", response_model=CartResponse)
def add_item(
    payload: CartItemCreate,
    session_id: str = Depends(get_cart_session_id),
    service: CartService = Depends(get_cart_service),
) -> CartResponse:
    try:
        cart = service.add_item(session_id, payload)
    except DomainException as exc:
        handle_domain_exception(exc)
    return _respond(service, cart)


@router.delete("/items/{item_id}", response_model=CartResponse)
def remove_item(
    item_id: str,
    session_id: str = Depends(get_cart_session_id),
    service: CartService = Depends(get_cart_service),
) -> CartResponse:
    try:
        cart = service.remove_item(session_id, item_id)
    except DomainException as exc:
        handle_domain_exception(exc)
    return _respond(service, cart)


@router.post("/items/{item_id}/students", response_model=CartResponse)
def add_student(
    item_id: str,
    payload: CartStudentCreate,
    session_id: str = Depends(get_cart_session_id),
    service: CartService = Depends(get_cart_service),
) -> CartResponse:
    try:
        cart = service.add_student(session_id, item_id, payload)
    except DomainException as exc:
        handle_domain_exception(exc)
    return _respond(service, cart)


@router.delete("/items/{item_id}/students/{student_id}", response_model=CartResponse)
def remove_student(
    item_id: str,
    student_id: str,
    session_id: str = Depends(get_cart_session_id),
    service: CartService = Depends(get_cart_service),
) -> CartResponse:
    try:
        cart = service.remove_student(session_id, item_id, student_id)
    except DomainException as exc:
        handle_domain_exception(exc)
    return _respond(service, cart)


@router.get("/validate", response_model=CartValidation)
def validate_cart(
    session_id: str = Depends(get_cart_session_id),
    service: CartService = Depends(get_cart_service),
) -> CartValidation:
    return service.validate(service.get(session_id))
