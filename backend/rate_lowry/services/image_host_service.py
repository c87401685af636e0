"""
Rate Lowry Backend — Image Host (Cloudinary) Service
======================================================

What:  Uploads staged review photos to Cloudinary and returns the hosted URL.
Who:   Called by UploadService; its circuit state is reported by /health.
When:  After the file is validated and staged locally.

Resilience Strategy:
    1. Tenacity retry with exponential backoff + jitter for transient
       failures (network errors, 5xx, 429).
    2. Circuit breaker so a dead image host fails requests immediately
       instead of tying up handlers for the whole retry cycle.
    3. 4xx answers are permanent and never retried. A rejected file is the
       client's fault (ValidationError, 400); 401/403 mean our credentials
       are wrong (ImageHostError, 503). Neither trips the breaker.

Upload Request:
    POST {upload_url}/{cloud_name}/image/upload (multipart)
        file, api_key, timestamp, folder, format=jpg,
        transformation=c_limit,w_800,h_600,q_90,b_white,
        signature = sha1("folder=..&format=..&timestamp=..&transformation=.." + secret)
"""

import hashlib
import logging
import time
import uuid
from pathlib import Path
from typing import Dict, Optional

import aiofiles
import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from rate_lowry.config import settings
from rate_lowry.exceptions import CircuitBreakerOpenError, ImageHostError, ValidationError

logger = logging.getLogger(__name__)

# Resize to fit 800x600, re-encode at quality 90 on a white background
UPLOAD_TRANSFORMATION = "c_limit,w_800,h_600,q_90,b_white"
UPLOAD_FORMAT = "jpg"


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Circuit breaker for outbound calls.

    State Machine:
        CLOSED → failure_count reaches threshold → OPEN
        OPEN → recovery_timeout elapsed → HALF_OPEN (one trial call)
        HALF_OPEN → success → CLOSED; failure → OPEN

    Not thread-safe; one instance per worker process on the event loop.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        True if a call may proceed.

        Raises:
            CircuitBreakerOpenError while OPEN and still inside the recovery window.
        """
        if self.state == self.OPEN:
            elapsed = time.time() - (self.last_failure_time or 0)
            if elapsed < self.recovery_timeout:
                raise CircuitBreakerOpenError(recovery_time=int(self.recovery_timeout - elapsed) or 1)
            logger.info("Circuit breaker HALF_OPEN after %.1fs", elapsed)
            self.state = self.HALF_OPEN
        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker CLOSED (image host recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker back to OPEN (trial call failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning("Circuit breaker OPEN after %d consecutive failures", self.failure_count)
            self.state = self.OPEN


class TransientImageHostError(Exception):
    """Retryable upstream answer (5xx / 429)."""

    def __init__(self, status_code: int):
        super().__init__(f"Image host returned HTTP {status_code}")
        self.status_code = status_code


# ══════════════════════════════════════════════════════════════════════════
# Image Host Service
# ══════════════════════════════════════════════════════════════════════════

class ImageHostService:
    """
    Signed Cloudinary uploads over httpx.

    Args:
        transport: Optional httpx transport; tests inject httpx.MockTransport.
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.cloud_name = settings.cloudinary_cloud_name
        self.api_key = settings.cloudinary_api_key
        self.api_secret = settings.cloudinary_api_secret
        self.folder = settings.cloudinary_folder
        self.upload_url = settings.cloudinary_upload_url.rstrip("/")
        self.timeout = settings.image_host_timeout
        self._transport = transport

        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.cloud_name and self.api_key and self.api_secret)

    @property
    def status(self) -> str:
        """Reported by /health: available, circuit_open or unconfigured."""
        if not self.is_configured:
            return "unconfigured"
        if self.circuit_breaker.state == CircuitBreaker.OPEN:
            return "circuit_open"
        return "available"

    def sign(self, params: Dict[str, str]) -> str:
        """Cloudinary signature: sha1 of the sorted `k=v` pairs joined by & plus the secret."""
        to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params) if params[k] != "")
        return hashlib.sha1((to_sign + self.api_secret).encode("utf-8")).hexdigest()

    async def upload_image(self, image_path: str) -> Dict[str, str]:
        """
        Upload a staged image.

        Returns:
            {"secure_url": ..., "public_id": ...}

        Raises:
            CircuitBreakerOpenError: circuit is open
            ValidationError:         the host refused the file itself
            ImageHostError:          not configured, credentials refused, or failed after retries
        """
        request_id = str(uuid.uuid4())[:8]

        if not self.is_configured:
            raise ImageHostError(
                message="Image uploads are not configured on this server",
                context={"request_id": request_id},
            )

        self.circuit_breaker.can_execute()

        try:
            async with aiofiles.open(image_path, "rb") as f:
                content = await f.read()
        except OSError as e:
            logger.error("[%s] Could not read staged image %s: %s", request_id, image_path, str(e))
            raise ImageHostError(
                message="Failed to upload image",
                context={"request_id": request_id},
            )

        logger.info("[%s] Uploading %s (%d bytes) to image host", request_id, Path(image_path).name, len(content))

        try:
            result = await self._upload_with_retry(content, Path(image_path).name, request_id)
        except (ImageHostError, ValidationError):
            # Rejected by the host; the host itself is healthy
            raise
        except (httpx.HTTPError, TransientImageHostError) as e:
            self.circuit_breaker.record_failure()
            logger.error("[%s] Image upload failed after %d attempts: %s", request_id, settings.retry_max_attempts, str(e))
            raise ImageHostError(
                message="Failed to upload image. Please try again later.",
                retry_after=self.circuit_breaker.recovery_timeout,
                context={"request_id": request_id, "attempts": settings.retry_max_attempts},
            )

        self.circuit_breaker.record_success()
        return result

    @retry(
        retry=retry_if_exception_type((httpx.TransportError, TransientImageHostError)),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            multiplier=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=settings.retry_jitter,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _upload_with_retry(self, content: bytes, filename: str, request_id: str) -> Dict[str, str]:
        params = {
            "folder": self.folder,
            "format": UPLOAD_FORMAT,
            "timestamp": str(int(time.time())),
            "transformation": UPLOAD_TRANSFORMATION,
        }
        data = dict(params, api_key=self.api_key, signature=self.sign(params))
        url = f"{self.upload_url}/{self.cloud_name}/image/upload"

        start_time = time.time()
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(url, data=data, files={"file": (filename, content)})
        duration_ms = (time.time() - start_time) * 1000

        if response.status_code == 429 or response.status_code >= 500:
            logger.warning("[%s] Image host HTTP %d after %.0fms", request_id, response.status_code, duration_ms)
            raise TransientImageHostError(response.status_code)

        if response.status_code >= 400:
            try:
                detail = response.json().get("error", {}).get("message", "")
            except ValueError:
                detail = response.text[:200]
            context = {"request_id": request_id, "status_code": response.status_code, "detail": detail}
            if response.status_code in (401, 403):
                logger.error("[%s] Image host refused our credentials (HTTP %d): %s", request_id, response.status_code, detail)
                raise ImageHostError(message="Failed to upload image", context=context)

            logger.warning("[%s] Image host rejected upload (HTTP %d): %s", request_id, response.status_code, detail)
            raise ValidationError(
                message=f"Image was rejected by the image host: {detail or 'invalid image'}",
                field="image",
                context=context,
            )

        body = response.json()
        logger.info("[%s] Image uploaded in %.0fms: %s", request_id, duration_ms, body.get("public_id"))
        return {"secure_url": body["secure_url"], "public_id": body["public_id"]}


# ── Singleton Instance ────────────────────────────────────────────────────
image_host_service = ImageHostService()
