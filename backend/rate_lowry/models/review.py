"""
Rate Lowry Backend — Review SQLAlchemy Model
==============================================

What:  ORM model for the `reviews` table.
Who:   Written by ReviewService (direct inserts) and ReviewWriteBuffer
       (batched inserts); read by ReviewService and FoodItemService.

Table Design:
    - One row per review. (food_item, station) is NOT unique: a dish
      collects many reviews.
    - is_active / deleted_at implement soft delete. Rows are only
      hard-removed by the administrative bulk clear.
    - created_at is UTC.

Indexes mirror the read paths:
    - food_item, station: review listing filters
    - (station, is_active): food item aggregation per station
    - (food_item, station): detail page lookups
    - created_at DESC: newest-first ordering
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column

from rate_lowry.database import Base

DEFAULT_REVIEWER = "Anonymous"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Review(Base):
    """
    A single rating of a food item at a station.

    Lifecycle:
        1. Created active (is_active=True) by a submission
        2. Optionally soft-deleted: is_active=False, deleted_at set once
        3. Never updated otherwise
    """

    __tablename__ = "reviews"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    food_item: Mapped[str] = mapped_column(String(200), nullable=False)
    station: Mapped[str] = mapped_column(String(100), nullable=False)

    rating: Mapped[int] = mapped_column(Integer, nullable=False)

    comment: Mapped[str] = mapped_column(Text, nullable=False)

    reviewer: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        default=DEFAULT_REVIEWER,
        server_default=text(f"'{DEFAULT_REVIEWER}'"),
    )

    # Hosted image URL returned by /api/upload; NULL when no photo
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True, default=None)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    # ── Soft Delete ───────────────────────────────────────────────────────
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=true(),
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=None,
    )

    __table_args__ = (
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_reviews_rating_range"),
        Index("idx_reviews_food_item", "food_item"),
        Index("idx_reviews_station", "station"),
        Index("idx_reviews_station_active", "station", "is_active"),
        Index("idx_reviews_food_item_station", "food_item", "station"),
        Index("idx_reviews_created_at", created_at.desc()),
    )

    def __repr__(self) -> str:
        return (
            f"<Review(id={self.id}, food_item='{self.food_item}', "
            f"station='{self.station}', rating={self.rating}, active={self.is_active})>"
        )
