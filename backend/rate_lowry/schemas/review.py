"""
Rate Lowry Backend — Review & Food Item Schemas
=================================================

What:  API contracts for review submission, listing, deletion and the
       derived food item summaries.

ReviewCreate is deliberately permissive (every field optional) so the
service layer can reject incomplete submissions with the same message the
submission form expects, instead of FastAPI's generic field errors.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import Field

from rate_lowry.schemas.common import CamelModel


# ══════════════════════════════════════════════════════════════════════════
# Requests
# ══════════════════════════════════════════════════════════════════════════


class ReviewCreate(CamelModel):
    """Body of POST /api/reviews."""
    food_item: Optional[str] = Field(default=None, max_length=200)
    station: Optional[str] = Field(default=None, max_length=100)
    rating: Optional[int] = Field(default=None, description="Integer from 1 to 5")
    comment: Optional[str] = Field(default=None, max_length=5000)
    reviewer: Optional[str] = Field(default=None, max_length=100, description="Defaults to Anonymous")
    image_url: Optional[str] = Field(default=None, max_length=500, description="URL from /api/upload")


# ══════════════════════════════════════════════════════════════════════════
# Responses
# ══════════════════════════════════════════════════════════════════════════


class ReviewResponse(CamelModel):
    """Full representation of a stored review, soft-deleted or not."""
    id: uuid.UUID
    food_item: str
    station: str
    rating: int
    comment: str
    reviewer: str
    image_url: Optional[str] = None
    created_at: datetime
    is_active: bool
    deleted_at: Optional[datetime] = None


class ReviewCreateResponse(CamelModel):
    """
    Returned with 201 by POST /api/reviews.

    queued tells whether the row went through the write buffer rather than
    a direct insert; both paths only answer once the row is committed.
    """
    success: bool = True
    review_id: uuid.UUID
    review: ReviewResponse
    queued: bool = False


class ReviewDeleteResponse(CamelModel):
    success: bool = True
    message: str
    already_deleted: bool = False


class ClearReviewsResponse(CamelModel):
    success: bool = True
    message: str
    deleted_count: int


class FoodItemSummary(CamelModel):
    """Aggregate over the active reviews of one (food_item, station) pair."""
    food_item: str
    station: str
    avg_rating: float = Field(description="Mean rating rounded to one decimal")
    review_count: int
    image_url: Optional[str] = Field(default=None, description="Most recent review photo")


class FoodItemListResponse(CamelModel):
    """
    Returned by GET /api/foodItems.

    from_cache / cached_at describe whether this payload came out of the
    in-process cache and when it was computed.
    """
    food_items: List[FoodItemSummary]
    total: int
    generated_at: datetime
    from_cache: bool = False
    cached_at: Optional[datetime] = None
