"""
Rate Lowry Backend — Upload Route
===================================

POST /api/upload takes one multipart field, `image`, and returns the
hosted URL to put in a review's `imageUrl`.
"""

import logging
from typing import Optional

from fastapi import APIRouter, File, UploadFile

from rate_lowry.exceptions import ValidationError
from rate_lowry.schemas.common import ErrorResponse
from rate_lowry.schemas.upload import UploadResponse
from rate_lowry.services.upload_service import upload_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Upload"])


@router.post(
    "/upload",
    response_model=UploadResponse,
    responses={
        400: {"description": "Missing, empty, oversized or non-image file", "model": ErrorResponse},
        503: {"description": "Image host unavailable", "model": ErrorResponse},
    },
    summary="Upload a review photo",
)
async def upload_image(image: Optional[UploadFile] = File(default=None)) -> UploadResponse:
    if image is None:
        raise ValidationError(message="No image file provided", field="image")

    try:
        content = await image.read()
    finally:
        await image.close()

    return await upload_service.upload_image(
        filename=image.filename,
        content_type=image.content_type,
        content=content,
    )
