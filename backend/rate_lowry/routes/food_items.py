"""Food item aggregate route (GET /api/foodItems)."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from rate_lowry.database import get_db_session
from rate_lowry.schemas.common import ErrorResponse
from rate_lowry.schemas.review import FoodItemListResponse
from rate_lowry.services.food_item_service import food_item_service

router = APIRouter(prefix="/api", tags=["Food Items"])


@router.get(
    "/foodItems",
    response_model=FoodItemListResponse,
    responses={500: {"model": ErrorResponse}},
    summary="Per-item review aggregates",
    description=(
        "Review count, average rating and newest photo for every (food item, station) "
        "pair with active reviews. Served from a cache for up to five minutes; pass "
        "`refresh=true` to recompute."
    ),
)
async def list_food_items(
    station: Optional[str] = Query(default=None, description="Station name, or `all`"),
    refresh: bool = Query(default=False),
    db: AsyncSession = Depends(get_db_session),
) -> FoodItemListResponse:
    return await food_item_service.list_food_items(db=db, station=station, refresh=refresh)
