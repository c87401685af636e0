"""Station routes (GET/POST /api/stations)."""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rate_lowry.database import get_db_session
from rate_lowry.schemas.common import ErrorResponse
from rate_lowry.schemas.station import StationCreate, StationCreateResponse, StationResponse
from rate_lowry.services.station_service import station_service

router = APIRouter(prefix="/api/stations", tags=["Stations"])


@router.get("", response_model=List[StationResponse], summary="List stations")
async def list_stations(db: AsyncSession = Depends(get_db_session)) -> List[StationResponse]:
    return await station_service.list_stations(db)


@router.post(
    "",
    status_code=201,
    response_model=StationCreateResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Add a station",
)
async def create_station(
    payload: StationCreate,
    db: AsyncSession = Depends(get_db_session),
) -> StationCreateResponse:
    return await station_service.create_station(db, payload)
