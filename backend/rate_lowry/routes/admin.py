"""
Rate Lowry Backend — Admin Routes
===================================

Maintenance endpoints for development and staging. Every route here answers
403 when ENVIRONMENT=production.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rate_lowry.config import settings
from rate_lowry.database import get_db_session
from rate_lowry.exceptions import ForbiddenError
from rate_lowry.schemas.common import ErrorResponse
from rate_lowry.schemas.review import ClearReviewsResponse
from rate_lowry.services.food_item_service import food_item_service
from rate_lowry.services.review_service import review_service

logger = logging.getLogger(__name__)


def require_non_production() -> None:
    if settings.is_production:
        raise ForbiddenError()


router = APIRouter(
    prefix="/api/admin",
    tags=["Admin"],
    dependencies=[Depends(require_non_production)],
)


@router.delete(
    "/reviews",
    response_model=ClearReviewsResponse,
    responses={403: {"model": ErrorResponse}},
    summary="Delete every review",
)
async def clear_reviews(db: AsyncSession = Depends(get_db_session)) -> ClearReviewsResponse:
    deleted = await review_service.clear_reviews(db)
    food_item_service.invalidate()
    return ClearReviewsResponse(
        message=f"{deleted} reviews deleted successfully",
        deleted_count=deleted,
    )
