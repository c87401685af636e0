"""
Rate Lowry Backend — Station SQLAlchemy Model
===============================================

Reference data: the serving counters of the dining hall. Seeded once by
`python -m rate_lowry.cli init-stations`; names are unique.
"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from rate_lowry.database import Base
from rate_lowry.models.review import utcnow


class Station(Base):
    __tablename__ = "stations"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    def __repr__(self) -> str:
        return f"<Station(id={self.id}, name='{self.name}')>"
