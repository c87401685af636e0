"""ORM models. Importing this package registers every table on Base.metadata."""

from rate_lowry.models.review import Review
from rate_lowry.models.station import Station

__all__ = ["Review", "Station"]
