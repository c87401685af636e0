"""
Rate Lowry Backend — Upload Orchestration
===========================================

What:  Runs the photo upload workflow for POST /api/upload.
How:   validate → stage locally → upload to image host → remove staged copy.

The staged copy is removed whether or not the upload succeeds.
"""

import logging
from typing import Optional

from rate_lowry.schemas.upload import UploadResponse
from rate_lowry.services.file_service import FileService, file_service
from rate_lowry.services.image_host_service import ImageHostService, image_host_service

logger = logging.getLogger(__name__)


class UploadService:
    def __init__(
        self,
        files: FileService = file_service,
        image_host: ImageHostService = image_host_service,
    ):
        self.files = files
        self.image_host = image_host

    async def upload_image(
        self,
        filename: Optional[str],
        content_type: Optional[str],
        content: bytes,
    ) -> UploadResponse:
        """
        Raises:
            ValidationError:         empty, too large, not an image, or refused by the image host
            FileStorageError:        type detection or staging failed
            CircuitBreakerOpenError: image host circuit open
            ImageHostError:          image host unreachable or unconfigured
        """
        self.files.validate_size(len(content))
        extension = self.files.validate_content_type(content, content_type)
        logger.debug("Upload %r accepted as %s", filename, extension)

        staged_path = await self.files.stage_file(content, extension)
        try:
            result = await self.image_host.upload_image(staged_path)
        finally:
            await self.files.cleanup_file(staged_path)

        logger.info("Photo uploaded: %s", result["public_id"])
        return UploadResponse(
            image_url=result["secure_url"],
            image_public_id=result["public_id"],
        )


# ── Singleton Instance ────────────────────────────────────────────────────
upload_service = UploadService()
