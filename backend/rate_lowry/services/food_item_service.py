"""
Rate Lowry Backend — Food Item Aggregation Service
====================================================

What:  Derives per-(food_item, station) summaries from active reviews and
       serves them through a short-lived cache.
Who:   GET /api/foodItems.

Aggregation:
    SELECT food_item, station, COUNT(*), AVG(rating)
      FROM reviews WHERE is_active [AND station = :station]
     GROUP BY food_item, station
    plus one query for the newest non-null image per pair.

Results are ordered by review count, then average rating (both descending),
then food item name so equal rows come back in a stable order.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rate_lowry.config import settings
from rate_lowry.exceptions import DatabaseError
from rate_lowry.models.review import Review
from rate_lowry.schemas.review import FoodItemListResponse, FoodItemSummary
from rate_lowry.services.cache import TTLCache

logger = logging.getLogger(__name__)

ALL_STATIONS = "all"


def cache_key(station: Optional[str]) -> str:
    return f"foodItems_{station or ALL_STATIONS}"


class FoodItemService:
    def __init__(self, cache: Optional[TTLCache] = None):
        self.cache = cache if cache is not None else TTLCache(ttl=settings.food_items_cache_ttl)

    async def list_food_items(
        self,
        db: AsyncSession,
        station: Optional[str] = None,
        refresh: bool = False,
    ) -> FoodItemListResponse:
        """
        Food item summaries, optionally for one station.

        A cached payload younger than the TTL is returned as-is with
        from_cache=True. refresh=True bypasses the cache and does not
        populate it.
        """
        if station is not None:
            station = station.strip()
        if not station or station.lower() == ALL_STATIONS:
            station = None

        key = cache_key(station)
        if not refresh:
            entry = self.cache.get(key)
            if entry is not None:
                logger.debug("Food item cache hit: %s", key)
                return entry.value.model_copy(
                    update={"from_cache": True, "cached_at": entry.stored_at}
                )

        items = await self.aggregate(db, station)
        response = FoodItemListResponse(
            food_items=items,
            total=len(items),
            generated_at=datetime.now(timezone.utc),
        )
        if not refresh:
            self.cache.set(key, response)
        logger.info("Aggregated %d food items (station=%s, refresh=%s)", len(items), station or ALL_STATIONS, refresh)
        return response

    async def aggregate(self, db: AsyncSession, station: Optional[str] = None) -> List[FoodItemSummary]:
        """Run the group-by over active reviews. Never touches the cache."""
        stats_query = (
            select(
                Review.food_item,
                Review.station,
                func.count(Review.id).label("review_count"),
                func.avg(Review.rating).label("avg_rating"),
            )
            .where(Review.is_active.is_(True))
            .group_by(Review.food_item, Review.station)
        )
        image_query = (
            select(Review.food_item, Review.station, Review.image_url)
            .where(Review.is_active.is_(True), Review.image_url.is_not(None))
            .order_by(Review.created_at.desc())
        )
        if station:
            stats_query = stats_query.where(Review.station == station)
            image_query = image_query.where(Review.station == station)

        try:
            stats = (await db.execute(stats_query)).all()
            image_rows = (await db.execute(image_query)).all()
        except SQLAlchemyError as e:
            logger.error("Food item aggregation failed: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not load food items. Please try again.",
                context={"station": station, "error_type": type(e).__name__},
            )

        # Rows arrive newest first, so the first image seen per pair wins
        latest_images: Dict[Tuple[str, str], str] = {}
        for food_item, row_station, image_url in image_rows:
            latest_images.setdefault((food_item, row_station), image_url)

        items = [
            FoodItemSummary(
                food_item=row.food_item,
                station=row.station,
                avg_rating=round(float(row.avg_rating), 1),
                review_count=row.review_count,
                image_url=latest_images.get((row.food_item, row.station)),
            )
            for row in stats
        ]
        items.sort(key=lambda item: (-item.review_count, -item.avg_rating, item.food_item))
        return items

    def invalidate(self) -> None:
        """Forget every cached aggregation (after a bulk clear)."""
        self.cache.clear()


# ── Singleton Instance ────────────────────────────────────────────────────
food_item_service = FoodItemService()
