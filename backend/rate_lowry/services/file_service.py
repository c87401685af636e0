"""
Rate Lowry Backend — Upload Staging Service
=============================================

What:  Validates uploaded review photos and stages them on local disk until
       they are handed to the image host.
Who:   Called by UploadService for POST /api/upload.
When:  Before the image host upload; the staged copy is removed right after.

Validation:
    1. Size: non-empty and at most `max_upload_size` bytes.
    2. Content type is sniffed from the bytes with libmagic and must be one
       of ALLOWED_MIME_TYPES. The client-declared type and the filename are
       not trusted; browser canvas uploads arrive named `blob`.
    Staged files get a UUID name, so no user input reaches the filesystem.
"""

import logging
import os
import uuid
from pathlib import Path
from typing import Dict, Optional

import aiofiles
import magic

from rate_lowry.config import settings
from rate_lowry.exceptions import FileStorageError, ValidationError

logger = logging.getLogger(__name__)

# ── Allowed File Types ────────────────────────────────────────────────────
# Sniffed content type → extension the staged copy is written with
ALLOWED_MIME_TYPES: Dict[str, str] = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}


class FileService:
    """
    Upload validation plus a scratch directory for staged files.

    Staged files live flat under `<storage_root>/uploads/`; they only exist
    for the duration of one upload request.
    """

    def __init__(self, storage_root: Optional[str] = None, max_size: Optional[int] = None):
        self.storage_root = Path(storage_root or settings.storage_root).resolve()
        self.staging_dir = self.storage_root / "uploads"
        self.max_size = max_size or settings.max_upload_size

    def validate_content_type(self, content: bytes, declared_type: Optional[str] = None) -> str:
        """
        Detect the real type from the file's magic bytes.

        Args:
            content:       Raw upload bytes
            declared_type: Client-supplied Content-Type (logged only)

        Returns:
            The extension to stage the file with.

        Raises:
            ValidationError:  detected type is not an allowed image
            FileStorageError: libmagic could not inspect the bytes
        """
        try:
            mime_type = magic.from_buffer(content, mime=True)
        except magic.MagicException as e:
            logger.error("MIME type detection failed: %s", str(e))
            raise FileStorageError(
                message="Could not verify file type. Please try again.",
                context={"error": str(e)},
            )

        extension = ALLOWED_MIME_TYPES.get(mime_type)
        if extension is None:
            raise ValidationError(
                message="Only image files (JPEG, PNG, GIF, WebP) are allowed",
                field="image",
                context={
                    "detected_type": mime_type,
                    "declared_type": declared_type,
                    "allowed": list(ALLOWED_MIME_TYPES),
                },
            )

        if declared_type and declared_type.split(";")[0].strip().lower() != mime_type:
            logger.debug("Upload declared as %s but detected as %s", declared_type, mime_type)
        return extension

    def validate_size(self, size: int) -> None:
        if size == 0:
            raise ValidationError(message="Uploaded file is empty", field="image")

        if size > self.max_size:
            max_mb = self.max_size / (1024 * 1024)
            raise ValidationError(
                message=f"File size ({size / (1024 * 1024):.1f}MB) exceeds maximum of {max_mb:.0f}MB.",
                field="image",
                context={"max_size_bytes": self.max_size, "actual_size": size},
            )

    async def stage_file(self, content: bytes, extension: str) -> str:
        """
        Write validated bytes to the staging directory.

        Returns:
            Absolute path of the staged file.
        """
        path = self.staging_dir / f"{uuid.uuid4()}{extension}"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(content)
        except OSError as e:
            logger.error("Failed to stage upload at %s: %s", path, str(e))
            raise FileStorageError(
                message="Failed to process uploaded image. Please try again.",
                context={"os_error": str(e)},
            )

        logger.debug("Staged upload %s (%d bytes)", path.name, len(content))
        return str(path)

    async def cleanup_file(self, file_path: str) -> None:
        """
        Remove a staged file. Missing files are ignored; other failures are
        logged, never raised, so they cannot mask the upload outcome.
        """
        try:
            path = Path(file_path)
            if path.exists():
                os.remove(path)
                logger.debug("Removed staged upload %s", path.name)
        except OSError as e:
            logger.warning("Failed to remove staged upload %s: %s", file_path, str(e))


# ── Singleton Instance ────────────────────────────────────────────────────
file_service = FileService()
