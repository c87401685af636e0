"""Station request/response schemas."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import Field

from rate_lowry.schemas.common import CamelModel


class StationCreate(CamelModel):
    name: Optional[str] = Field(default=None, max_length=100)


class StationResponse(CamelModel):
    # Built-in defaults (served while the table is empty) have no id yet
    id: Optional[uuid.UUID] = None
    name: str
    created_at: Optional[datetime] = None


class StationCreateResponse(CamelModel):
    success: bool = True
    station_id: uuid.UUID

