"""
Health endpoint: database reachability and tracking state.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from tripcore.api.database import get_session
from tripcore.api.models import HealthResponse

router = APIRouter(prefix="/api", tags=["health"])
logger = logging.getLogger(__name__)


@router.get("/health", response_model=HealthResponse)
async def health():
    """Health check endpoint."""
    from tripcore.api.main import app_state

    database = "ok"
    session = get_session()
    try:
        session.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Database health check failed")
        database = "unavailable"
    finally:
        session.close()

    tracking = app_state.get("tracking_service")
    return HealthResponse(
        status="ok" if database == "ok" else "degraded",
        database=database,
        tracking=tracking.is_tracking() if tracking else False,
    )
