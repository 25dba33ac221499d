# tinkertank/main.py
"""
FastAPI application for the TinkerTank booking backend.

Run with:
    uvicorn tinkertank.main:app --reload
"""

import logging

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from .core.config import settings
from .core.exceptions import DomainException
from .routes import admin, admin_bookings, calendar, cart, health, orders, stripe_webhooks

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)

API_TITLE = "TinkerTank Bookings API"
API_VERSION = "0.1.0"

app = FastAPI(
    title=API_TITLE,
    description="Calendar, cart, checkout and booking reconciliation for TinkerTank camps",
    version=API_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
)


@app.exception_handler(DomainException)
async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    """Domain errors that escape a route keep the same shape as handled ones."""
    if exc.status_code >= 500:
        logger.error(
            "Unhandled domain error",
            extra={"path": request.url.path, "code": exc.code, "error": exc.message},
        )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})


api = APIRouter(prefix="/api")
api.include_router(calendar.router, prefix="/calendar")
api.include_router(cart.router, prefix="/cart")
api.include_router(orders.router, prefix="/orders")
api.include_router(admin.router, prefix="/admin")
api.include_router(admin_bookings.router, prefix="/admin")

app.include_router(api)
app.include_router(stripe_webhooks.router)
app.include_router(health.router)

logger.info("Application configured", extra={"environment": settings.environment})
