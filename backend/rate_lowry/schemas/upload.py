"""Image upload response schema."""

from pydantic import Field

from rate_lowry.schemas.common import CamelModel


class UploadResponse(CamelModel):
    """Returned by POST /api/upload."""
    success: bool = True
    image_url: str = Field(description="HTTPS URL of the hosted image")
    image_public_id: str = Field(description="Image host identifier")
