# tinkertank/routes/health.py
"""
Health check and Prometheus metrics endpoints.

Both are unauthenticated, so load balancers and scrapers can reach them.
"""

from datetime import datetime, timezone
import logging
from typing import Dict

from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..database import get_db
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


class HealthCheckResponse(BaseModel):
    status: str
    service: str
    environment: str
    timestamp: datetime
    checks: Dict[str, bool]


@router.get("/health", response_model=HealthCheckResponse)
def health_check(db: Session = Depends(get_db)) -> HealthCheckResponse:
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        db_ok = False

    return HealthCheckResponse(
        status="healthy" if db_ok else "degraded",
        service="TinkerTank Bookings API",
        environment=settings.environment,
        timestamp=datetime.now(timezone.utc),
        checks={"database": db_ok},
    )


@router.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    payload, content_type = prometheus_metrics.render()
    return Response(content=payload, media_type=content_type)
