"""
Rate Lowry Backend — Health Check Route
=========================================

Status levels:
    healthy:   database reachable, image host usable
    degraded:  database reachable, image host circuit open or unconfigured
    unhealthy: database unreachable (HTTP 503)
"""

import logging
import time

from fastapi import APIRouter, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from rate_lowry import __version__
from rate_lowry.database import engine
from rate_lowry.schemas.common import HealthResponse
from rate_lowry.services.image_host_service import image_host_service
from rate_lowry.services.write_buffer import review_write_buffer

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get("/health", response_model=HealthResponse, summary="Service health check")
async def health_check(response: Response) -> HealthResponse:
    db_status = "connected"
    overall = "healthy"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    image_host = image_host_service.status
    if image_host != "available" and overall == "healthy":
        overall = "degraded"

    if overall == "unhealthy":
        response.status_code = 503

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        image_host=image_host,
        write_buffer_depth=review_write_buffer.depth,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
