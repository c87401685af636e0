"""
Rate Lowry Backend — Review Service
=====================================

What:  Business rules for creating, listing, fetching, soft-deleting and
       bulk-clearing reviews.
Who:   Called by the reviews and admin routers, and by the CLI.

Write Path (POST /api/reviews):
    validate ──▶ admission control ──┬──▶ direct INSERT + commit
                                     └──▶ ReviewWriteBuffer.enqueue()
    Either way the response is only produced after the row is committed.

Admission Control:
    A submission goes to the write buffer when
      1. the buffer already holds pending rows (it must not overtake them), or
      2. `max_concurrent_direct_writes` direct inserts are already in flight.
    Otherwise it is inserted directly with a single-row INSERT.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rate_lowry.config import settings
from rate_lowry.exceptions import DatabaseError, NotFoundError, ValidationError
from rate_lowry.models.review import DEFAULT_REVIEWER, Review
from rate_lowry.schemas.review import (
    ReviewCreate,
    ReviewCreateResponse,
    ReviewDeleteResponse,
    ReviewResponse,
)
from rate_lowry.services.write_buffer import ReviewWriteBuffer, review_write_buffer

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5

# camelCase field name → ReviewResponse attribute, for ?fields= projections
PROJECTABLE_FIELDS: Dict[str, str] = {
    field.alias or name: name for name, field in ReviewResponse.model_fields.items()
}

# Listing payloads leave out the image URL unless it is asked for
DEFAULT_PROJECTION: Set[str] = {
    "id", "food_item", "station", "rating", "comment", "reviewer", "created_at",
}


def parse_review_id(review_id: str) -> uuid.UUID:
    """Parse a path/query identifier, rejecting malformed values with 400."""
    try:
        return uuid.UUID(str(review_id))
    except (TypeError, ValueError):
        raise ValidationError(
            message=f"'{review_id}' is not a valid review ID",
            field="id",
        )


class ReviewService:
    """
    Review operations.

    Holds the only piece of per-instance state in the write path: the
    count of direct inserts currently in flight, used by admission control.
    """

    def __init__(
        self,
        write_buffer: ReviewWriteBuffer = review_write_buffer,
        max_concurrent_direct_writes: int = settings.max_concurrent_direct_writes,
    ):
        self.write_buffer = write_buffer
        self.max_concurrent_direct_writes = max_concurrent_direct_writes
        self._direct_in_flight = 0

    @property
    def direct_writes_in_flight(self) -> int:
        return self._direct_in_flight

    # ── Validation ────────────────────────────────────────────────────────

    def build_row(self, submission: ReviewCreate) -> Dict[str, Any]:
        """
        Validate a submission and turn it into a full reviews row.

        Raises:
            ValidationError: a required field is missing or blank, or the
                             rating is outside 1-5.
        """
        food_item = (submission.food_item or "").strip()
        station = (submission.station or "").strip()
        comment = (submission.comment or "").strip()
        rating = submission.rating

        if not food_item or not station or rating is None or not comment:
            raise ValidationError(
                message="Food item, station, rating, and comment are required",
                context={"required": ["foodItem", "station", "rating", "comment"]},
            )

        if not MIN_RATING <= rating <= MAX_RATING:
            raise ValidationError(
                message=f"Rating must be between {MIN_RATING} and {MAX_RATING}",
                field="rating",
                context={"rating": rating},
            )

        return {
            "id": uuid.uuid4(),
            "food_item": food_item,
            "station": station,
            "rating": rating,
            "comment": comment,
            "reviewer": (submission.reviewer or "").strip() or DEFAULT_REVIEWER,
            "image_url": (submission.image_url or "").strip() or None,
            "created_at": datetime.now(timezone.utc),
            "is_active": True,
            "deleted_at": None,
        }

    # ── Create ────────────────────────────────────────────────────────────

    def should_buffer(self) -> bool:
        """Admission control: True when the next write must go through the buffer."""
        return (
            self.write_buffer.depth > 0
            or self._direct_in_flight >= self.max_concurrent_direct_writes
        )

    async def create_review(self, db: AsyncSession, submission: ReviewCreate) -> ReviewCreateResponse:
        """
        Validate and persist a review.

        Returns:
            ReviewCreateResponse; `queued` is True when the row went through
            the write buffer.

        Raises:
            ValidationError:      invalid submission (nothing is written)
            WriteBufferFullError: buffer at capacity
            WriteTimeoutError:    buffered row missed its deadline
            DatabaseError:        insert or batch insert failed
        """
        row = self.build_row(submission)

        if self.should_buffer():
            review = await self.write_buffer.enqueue(row)
            logger.info(
                "Review %s saved via write buffer (%s @ %s, rating=%d)",
                review.id, review.food_item, review.station, review.rating,
            )
            return self._created(review, queued=True)

        self._direct_in_flight += 1
        try:
            review = Review(**row)
            db.add(review)
            await db.flush()
            # Committed here so the 201 is only sent for a durable row
            await db.commit()
        except SQLAlchemyError as e:
            logger.error("Direct review insert failed: %s", str(e), exc_info=True)
            await db.rollback()
            raise DatabaseError(
                message="Failed to save your review. Please try again.",
                context={"review_id": str(row["id"]), "error_type": type(e).__name__},
            )
        finally:
            self._direct_in_flight -= 1

        logger.info(
            "Review %s saved directly (%s @ %s, rating=%d)",
            review.id, review.food_item, review.station, review.rating,
        )
        return self._created(review, queued=False)

    @staticmethod
    def _created(review: Review, queued: bool) -> ReviewCreateResponse:
        return ReviewCreateResponse(
            review_id=review.id,
            review=ReviewResponse.model_validate(review),
            queued=queued,
        )

    # ── Read ──────────────────────────────────────────────────────────────

    def resolve_projection(self, fields: Optional[str]) -> Set[str]:
        """
        Map a comma-separated camelCase field list to ReviewResponse attributes.

        `id` is always included. An empty/absent list selects
        DEFAULT_PROJECTION.
        """
        if not fields or not fields.strip():
            return set(DEFAULT_PROJECTION)

        requested = [f.strip() for f in fields.split(",") if f.strip()]
        unknown = [f for f in requested if f not in PROJECTABLE_FIELDS]
        if unknown:
            raise ValidationError(
                message=f"Unknown review field(s): {', '.join(unknown)}",
                field="fields",
                context={"allowed": sorted(PROJECTABLE_FIELDS)},
            )
        return {PROJECTABLE_FIELDS[f] for f in requested} | {"id"}

    async def list_reviews(
        self,
        db: AsyncSession,
        food_item: Optional[str] = None,
        station: Optional[str] = None,
        fields: Optional[str] = None,
        limit: int = settings.reviews_page_limit,
    ) -> List[Dict[str, Any]]:
        """
        Active reviews matching the filters, newest first.

        At least one of food_item / station is required. Each item is a
        camelCase dict restricted to the requested projection.
        """
        if not food_item and not station:
            raise ValidationError(
                message="At least one filter (foodItem or station) is required",
                context={"filters": ["foodItem", "station"]},
            )

        include = self.resolve_projection(fields)

        query = select(Review).where(Review.is_active.is_(True))
        if food_item:
            query = query.where(Review.food_item == food_item)
        if station:
            query = query.where(Review.station == station)
        query = query.order_by(Review.created_at.desc()).limit(limit)

        try:
            result = await db.execute(query)
            reviews = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("Database error listing reviews: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not retrieve reviews. Please try again.",
                context={"error_type": type(e).__name__},
            )

        return [
            ReviewResponse.model_validate(review).model_dump(
                mode="json", by_alias=True, include=include
            )
            for review in reviews
        ]

    async def get_review(self, db: AsyncSession, review_id: str) -> ReviewResponse:
        """
        Fetch one review by ID, whether active or soft-deleted.

        Raises:
            ValidationError: malformed ID
            NotFoundError:   no such review
        """
        rid = parse_review_id(review_id)
        try:
            review = await db.get(Review, rid)
        except SQLAlchemyError as e:
            logger.error("Database error fetching review %s: %s", rid, str(e))
            raise DatabaseError(
                message="Could not retrieve the review. Please try again.",
                context={"review_id": str(rid)},
            )

        if review is None:
            raise NotFoundError(resource="review", resource_id=str(rid))
        return ReviewResponse.model_validate(review)

    # ── Delete ────────────────────────────────────────────────────────────

    async def delete_review(self, db: AsyncSession, review_id: str) -> ReviewDeleteResponse:
        """
        Soft-delete a review: is_active=False, deleted_at=now.

        Deleting an already-deleted review changes nothing and reports
        `already_deleted=True`; the first deleted_at is preserved.
        """
        rid = parse_review_id(review_id)
        try:
            review = await db.get(Review, rid)
            if review is None:
                raise NotFoundError(resource="review", resource_id=str(rid))

            if not review.is_active:
                return ReviewDeleteResponse(
                    message="Review was already deleted",
                    already_deleted=True,
                )

            review.is_active = False
            review.deleted_at = datetime.now(timezone.utc)
            # Committed here so the 200 is only sent for a durable delete
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("Database error deleting review %s: %s", rid, str(e), exc_info=True)
            raise DatabaseError(
                message="Could not delete the review. Please try again.",
                context={"review_id": str(rid)},
            )

        logger.info("Review %s soft-deleted", rid)
        return ReviewDeleteResponse(message="Review deleted successfully")

    async def clear_reviews(self, db: AsyncSession) -> int:
        """Hard-delete every review. Returns the number of rows removed."""
        try:
            result = await db.execute(delete(Review))
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("Database error clearing reviews: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Failed to clear reviews",
                context={"error_type": type(e).__name__},
            )
        deleted = result.rowcount or 0
        logger.warning("Bulk clear removed %d reviews", deleted)
        return deleted


# ── Singleton Instance ────────────────────────────────────────────────────
review_service = ReviewService()
