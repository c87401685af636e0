"""
Rate Lowry Backend — Maintenance CLI
======================================

Usage:
    python -m rate_lowry.cli init-stations
    python -m rate_lowry.cli clear-reviews
    python -m rate_lowry.cli generate-test-data --count 5000

Each command runs in one transaction against DATABASE_URL.
"""

import argparse
import asyncio
import logging
import random
import sys
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, insert, select

from rate_lowry.config import settings
from rate_lowry.database import async_session_factory, dispose_engine
from rate_lowry.exceptions import RateLowryError
from rate_lowry.models.review import Review
from rate_lowry.services.review_service import review_service
from rate_lowry.services.station_service import station_service

logger = logging.getLogger("rate_lowry.cli")

TEST_DATA_BATCH_SIZE = 1000
# Share of generated reviews that start out soft-deleted
TEST_DATA_INACTIVE_RATIO = 0.05

TEST_STATIONS = ["Main Line", "Grill", "Pizza", "International", "Deli", "Salad Bar", "Dessert"]
TEST_FOOD_ITEMS = [
    "Burger", "Pizza", "Salad", "Sandwich", "Pasta", "Tacos", "Ice Cream", "Soup",
    "Fries", "Chicken Tenders", "Stir Fry", "Sushi", "Curry", "Pancakes",
]
TEST_COMMENTS = [
    "Really enjoyed this dish!",
    "Not my favorite, but decent.",
    "Absolutely delicious, will get again!",
    "Portion size was too small for the price.",
    "Great flavor but a bit too salty.",
    "Perfect comfort food on a cold day.",
    "Wish they'd serve this more often.",
    "Consistently good every time.",
    "Was expecting better based on others' reviews.",
    "A solid choice when nothing else looks appealing.",
]


def build_test_review(i: int, now: datetime, rng: random.Random) -> Dict[str, Any]:
    """Synthetic review; item and station cycle with i, dates span 90 days."""
    is_active = rng.random() >= TEST_DATA_INACTIVE_RATIO
    created_at = now - timedelta(days=i % 90)
    return {
        "id": uuid.uuid4(),
        "food_item": TEST_FOOD_ITEMS[i % len(TEST_FOOD_ITEMS)],
        "station": TEST_STATIONS[i % len(TEST_STATIONS)],
        "rating": rng.randint(1, 5),
        "comment": TEST_COMMENTS[i % len(TEST_COMMENTS)],
        "reviewer": f"Tester-{rng.randrange(1000)}",
        "image_url": None,
        "created_at": created_at,
        "is_active": is_active,
        "deleted_at": None if is_active else now,
    }


async def init_stations() -> None:
    async with async_session_factory() as session:
        counts = await station_service.init_stations(session)
        await session.commit()
    print(f"Inserted {counts['stations']} stations")
    print(f"Updated {counts['reviews_updated']} reviews with current station names")


async def clear_reviews() -> None:
    async with async_session_factory() as session:
        deleted = await review_service.clear_reviews(session)
        await session.commit()
    print(f"{deleted} reviews deleted successfully")


async def generate_test_data(count: int, seed: Optional[int] = None) -> int:
    """
    Top the reviews table up to `count` rows. Returns how many were added.
    """
    rng = random.Random(seed)
    async with async_session_factory() as session:
        existing = await session.scalar(select(func.count(Review.id))) or 0
        if existing >= count:
            print(f"Database already contains {existing} reviews; nothing to generate.")
            return 0

        remaining = count - existing
        now = datetime.now(timezone.utc)
        batch: List[Dict[str, Any]] = []
        for i in range(remaining):
            batch.append(build_test_review(i, now, rng))
            if len(batch) == TEST_DATA_BATCH_SIZE or i == remaining - 1:
                await session.execute(insert(Review), batch)
                print(f"Inserted batch of {len(batch)} reviews")
                batch = []
        await session.commit()

    print(f"Test data generation complete: {existing + remaining} reviews total")
    return remaining


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m rate_lowry.cli",
        description="Rate Lowry database maintenance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m rate_lowry.cli init-stations
  python -m rate_lowry.cli generate-test-data --count 10000
        """,
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-stations", help="Reset stations to the Lowry list and remap legacy names")
    sub.add_parser("clear-reviews", help="Delete every review")

    gen = sub.add_parser("generate-test-data", help="Insert synthetic reviews")
    gen.add_argument("--count", type=int, default=1000, help="Target total number of reviews")
    gen.add_argument("--seed", type=int, default=None, help="Random seed for reproducible data")
    return parser


async def run(args: argparse.Namespace) -> None:
    try:
        if args.command == "init-stations":
            await init_stations()
        elif args.command == "clear-reviews":
            if settings.is_production:
                raise RateLowryError("clear-reviews is disabled in production")
            await clear_reviews()
        elif args.command == "generate-test-data":
            await generate_test_data(args.count, args.seed)
    finally:
        await dispose_engine()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stdout,
    )

    try:
        asyncio.run(run(args))
    except RateLowryError as e:
        logger.error("%s", e.message)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
