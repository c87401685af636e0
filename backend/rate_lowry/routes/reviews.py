"""
Rate Lowry Backend — Review Routes
====================================

Thin HTTP layer over ReviewService: query/body parsing and status codes.
Every business rule lives in the service.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from rate_lowry.database import get_db_session
from rate_lowry.schemas.common import ErrorResponse
from rate_lowry.schemas.review import (
    ReviewCreate,
    ReviewCreateResponse,
    ReviewDeleteResponse,
    ReviewResponse,
)
from rate_lowry.services.review_service import review_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reviews", tags=["Reviews"])


@router.get(
    "",
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    summary="List active reviews for a food item and/or station",
)
async def list_reviews(
    food_item: Optional[str] = Query(default=None, alias="foodItem"),
    station: Optional[str] = Query(default=None),
    fields: Optional[str] = Query(
        default=None,
        description="Comma-separated camelCase fields to return, e.g. `rating,comment`",
    ),
    db: AsyncSession = Depends(get_db_session),
) -> List[Dict[str, Any]]:
    return await review_service.list_reviews(
        db=db, food_item=food_item, station=station, fields=fields
    )


@router.get(
    "/{review_id}",
    response_model=ReviewResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Fetch one review, including soft-deleted ones",
)
async def get_review(
    review_id: str,
    db: AsyncSession = Depends(get_db_session),
) -> ReviewResponse:
    return await review_service.get_review(db=db, review_id=review_id)


@router.post(
    "",
    status_code=201,
    response_model=ReviewCreateResponse,
    responses={
        400: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        503: {"description": "Write buffer full or save timed out", "model": ErrorResponse},
    },
    summary="Submit a review",
)
async def create_review(
    payload: ReviewCreate,
    db: AsyncSession = Depends(get_db_session),
) -> ReviewCreateResponse:
    return await review_service.create_review(db=db, submission=payload)


@router.delete(
    "/{review_id}",
    response_model=ReviewDeleteResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Soft-delete a review",
)
async def delete_review(
    review_id: str,
    db: AsyncSession = Depends(get_db_session),
) -> ReviewDeleteResponse:
    return await review_service.delete_review(db=db, review_id=review_id)
