"""
Rate Lowry Backend — Station Service
======================================

What:  Station reference data: listing, adding, and (re)seeding the Lowry
       station list.
Who:   The stations router and `python -m rate_lowry.cli init-stations`.
"""

import logging
from typing import Dict, List

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rate_lowry.exceptions import DatabaseError, ValidationError
from rate_lowry.models.review import Review
from rate_lowry.models.station import Station
from rate_lowry.schemas.station import StationCreate, StationCreateResponse, StationResponse

logger = logging.getLogger(__name__)

DEFAULT_STATIONS: List[str] = [
    "Garden & Provisions",
    "Hearth 66",
    "Globe Wooster",
    "Lemongrass",
    "Zone",
    "The Garden",
    "The Kitchen Table",
    "Mom's Kitchen",
]

# Station names used by older reviews → current counter names
LEGACY_STATION_MAP: Dict[str, str] = {
    "Global Kitchen": "Globe Wooster",
    "The Grill": "Hearth 66",
    "Salad Bar": "Garden & Provisions",
    "Pizza": "The Kitchen Table",
    "Desserts": "Mom's Kitchen",
}


class StationService:

    async def list_stations(self, db: AsyncSession) -> List[StationResponse]:
        """All stations by name; the default list when none are stored."""
        try:
            result = await db.execute(select(Station).order_by(Station.name))
            stations = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("Database error listing stations: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not retrieve stations. Please try again.",
                context={"error_type": type(e).__name__},
            )

        if not stations:
            logger.debug("Stations table empty; serving default station list")
            return [StationResponse(name=name) for name in sorted(DEFAULT_STATIONS)]
        return [StationResponse.model_validate(s) for s in stations]

    async def create_station(self, db: AsyncSession, payload: StationCreate) -> StationCreateResponse:
        name = (payload.name or "").strip()
        if not name:
            raise ValidationError(message="Station name is required", field="name")

        try:
            existing = await db.scalar(
                select(func.count(Station.id)).where(Station.name == name)
            )
            if existing:
                raise ValidationError(
                    message=f"Station '{name}' already exists",
                    field="name",
                )

            station = Station(name=name)
            db.add(station)
            await db.commit()
        except IntegrityError:
            # Lost a race with a concurrent insert of the same name
            await db.rollback()
            raise ValidationError(message=f"Station '{name}' already exists", field="name")
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("Database error creating station: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not create the station. Please try again.",
                context={"name": name},
            )

        logger.info("Station created: %s (%s)", station.name, station.id)
        return StationCreateResponse(station_id=station.id)

    async def init_stations(self, db: AsyncSession) -> Dict[str, int]:
        """
        Replace the stations table with DEFAULT_STATIONS and rename legacy
        station names on existing reviews.

        Returns counts: {"stations": inserted, "reviews_updated": remapped}.
        """
        await db.execute(delete(Station))
        db.add_all([Station(name=name) for name in DEFAULT_STATIONS])

        remapped = 0
        for old_name, new_name in LEGACY_STATION_MAP.items():
            result = await db.execute(
                update(Review).where(Review.station == old_name).values(station=new_name)
            )
            remapped += result.rowcount or 0

        await db.flush()
        logger.info(
            "Stations initialised: %d stations, %d reviews remapped",
            len(DEFAULT_STATIONS),
            remapped,
        )
        return {"stations": len(DEFAULT_STATIONS), "reviews_updated": remapped}


# ── Singleton Instance ────────────────────────────────────────────────────
station_service = StationService()
