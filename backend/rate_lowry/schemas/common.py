"""
Rate Lowry Backend — Shared Schemas
=====================================

What:  Base model with the camelCase wire convention, plus the error and
       health payloads used across routers.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """
    Base for every API schema.

    Python attributes stay snake_case; JSON keys are camelCase
    (food_item ⇄ foodItem). populate_by_name lets services build models
    with either spelling; from_attributes lets them validate ORM rows.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ErrorResponse(BaseModel):
    """
    Standardized error body returned by every exception handler.

    Example:
        {
            "error": "validation_error",
            "message": "Rating must be between 1 and 5",
            "details": {"field": "rating"},
            "request_id": "a1b2c3d4"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(CamelModel):
    """Returned by GET /health."""
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    image_host: str = Field(description="Image host circuit state: available, circuit_open, unconfigured")
    write_buffer_depth: int = Field(description="Reviews waiting in the write buffer")
    uptime_seconds: float = Field(description="Seconds since service started")
