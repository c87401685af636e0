"""
Rate Lowry Backend — Upload Tests
===================================

File validation and staging, the Cloudinary client (via httpx.MockTransport),
the circuit breaker, and the /api/upload route.
"""

import time
from pathlib import Path
from urllib.parse import parse_qs

import httpx
import pytest

from rate_lowry.exceptions import CircuitBreakerOpenError, ImageHostError, ValidationError
from rate_lowry.services.file_service import FileService
from rate_lowry.services.image_host_service import (
    UPLOAD_TRANSFORMATION,
    CircuitBreaker,
    ImageHostService,
)
from rate_lowry.services.upload_service import UploadService

PNG_BYTES = (
    b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR\x00\x00\x00\x01\x00\x00\x00\x01"
    b"\x08\x02\x00\x00\x00\x90wS\xde"
)
GIF_BYTES = b"GIF89a\x01\x00\x01\x00\x80\x00\x00\x00\x00\x00\xff\xff\xff;"
WEBP_BYTES = b"RIFF\x24\x00\x00\x00WEBPVP8 \x18\x00\x00\x00" + b"\x00" * 24
SHELL_SCRIPT_BYTES = b"#!/bin/sh\nrm -rf /tmp/lowry\n"

CLOUDINARY_OK = {
    "public_id": "rate-lowry/abc123",
    "secure_url": "https://res.cloudinary.com/demo-cloud/image/upload/rate-lowry/abc123.jpg",
}


def host_with(handler) -> ImageHostService:
    return ImageHostService(transport=httpx.MockTransport(handler))


class TestFileValidation:

    def setup_method(self):
        self.service = FileService(max_size=1024)

    def test_jpeg_detected_from_bytes(self, sample_image_bytes):
        assert self.service.validate_content_type(sample_image_bytes, "image/jpeg") == ".jpg"

    @pytest.mark.parametrize("content,ext", [
        (PNG_BYTES, ".png"),
        (GIF_BYTES, ".gif"),
        (WEBP_BYTES, ".webp"),
    ])
    def test_other_image_types_detected(self, content, ext):
        assert self.service.validate_content_type(content) == ext

    def test_declared_type_is_not_trusted(self):
        with pytest.raises(ValidationError, match="Only image files") as exc_info:
            self.service.validate_content_type(SHELL_SCRIPT_BYTES, "image/jpeg")
        assert exc_info.value.context["declared_type"] == "image/jpeg"

    def test_mislabelled_image_is_accepted_by_content(self):
        assert self.service.validate_content_type(PNG_BYTES, "image/jpeg") == ".png"

    def test_non_image_rejected(self):
        with pytest.raises(ValidationError, match="Only image files"):
            self.service.validate_content_type(b"%PDF-1.4\n%\xe2\xe3\xcf\xd3\n", "application/pdf")

    def test_empty_file_rejected(self):
        with pytest.raises(ValidationError, match="empty"):
            self.service.validate_size(0)

    def test_size_limit_inclusive(self):
        self.service.validate_size(1024)
        with pytest.raises(ValidationError, match="exceeds maximum"):
            self.service.validate_size(1025)

    async def test_stage_and_cleanup(self, tmp_path, sample_image_bytes):
        service = FileService(storage_root=str(tmp_path))

        path = await service.stage_file(sample_image_bytes, ".jpg")

        assert Path(path).read_bytes() == sample_image_bytes
        assert Path(path).parent == tmp_path / "uploads"
        await service.cleanup_file(path)
        assert not Path(path).exists()
        # Already gone: no error
        await service.cleanup_file(path)


class TestCircuitBreaker:

    def test_opens_after_threshold(self):
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60)
        breaker.record_failure()
        assert breaker.can_execute()
        breaker.record_failure()

        assert breaker.state == CircuitBreaker.OPEN
        with pytest.raises(CircuitBreakerOpenError):
            breaker.can_execute()

    def test_half_open_then_closed_on_success(self):
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=10)
        breaker.record_failure()
        breaker.last_failure_time = time.time() - 11

        assert breaker.can_execute()
        assert breaker.state == CircuitBreaker.HALF_OPEN
        breaker.record_success()
        assert breaker.state == CircuitBreaker.CLOSED
        assert breaker.failure_count == 0

    def test_half_open_failure_reopens(self):
        breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=10)
        breaker.state = CircuitBreaker.HALF_OPEN
        breaker.record_failure()
        assert breaker.state == CircuitBreaker.OPEN


class TestImageHostService:

    async def test_signed_upload(self, tmp_path, sample_image_bytes):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = request.content
            return httpx.Response(200, json=CLOUDINARY_OK)

        image = tmp_path / "x.jpg"
        image.write_bytes(sample_image_bytes)
        host = host_with(handler)

        result = await host.upload_image(str(image))

        assert result == CLOUDINARY_OK
        assert seen["url"] == "https://api.cloudinary.com/v1_1/demo-cloud/image/upload"
        assert UPLOAD_TRANSFORMATION.encode() in seen["body"]
        assert b'name="signature"' in seen["body"]
        assert sample_image_bytes in seen["body"]

    def test_signature_matches_cloudinary_scheme(self):
        host = host_with(lambda request: httpx.Response(200))
        host.api_secret = "abcd"
        params = {"timestamp": "1315060510", "public_id": "sample_image", "eager": "w_400,h_300,c_pad|w_260,h_200,c_crop"}

        # Reference example from the Cloudinary signature documentation
        assert host.sign(params) == "bfd09f95f331f558cbd1320e67aa8d488770583e"

    async def test_server_errors_are_retried_then_fail(self, tmp_path, sample_image_bytes):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(502)

        image = tmp_path / "x.jpg"
        image.write_bytes(sample_image_bytes)
        host = host_with(handler)

        with pytest.raises(ImageHostError):
            await host.upload_image(str(image))

        assert len(calls) == 3
        assert host.circuit_breaker.failure_count == 1

    async def test_transient_error_then_success(self, tmp_path, sample_image_bytes):
        responses = iter([httpx.Response(503), httpx.Response(200, json=CLOUDINARY_OK)])
        image = tmp_path / "x.jpg"
        image.write_bytes(sample_image_bytes)
        host = host_with(lambda request: next(responses))

        assert (await host.upload_image(str(image)))["public_id"] == "rate-lowry/abc123"
        assert host.circuit_breaker.failure_count == 0

    async def test_client_error_not_retried(self, tmp_path, sample_image_bytes):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, json={"error": {"message": "Invalid image file"}})

        image = tmp_path / "x.jpg"
        image.write_bytes(sample_image_bytes)
        host = host_with(handler)

        with pytest.raises(ValidationError, match="Invalid image file") as exc_info:
            await host.upload_image(str(image))

        assert len(calls) == 1
        assert exc_info.value.context["status_code"] == 400
        assert host.circuit_breaker.state == CircuitBreaker.CLOSED
        assert host.circuit_breaker.failure_count == 0

    async def test_refused_credentials_are_host_error(self, tmp_path, sample_image_bytes):
        image = tmp_path / "x.jpg"
        image.write_bytes(sample_image_bytes)
        host = host_with(lambda request: httpx.Response(401, json={"error": {"message": "Invalid Signature"}}))

        with pytest.raises(ImageHostError):
            await host.upload_image(str(image))
        assert host.circuit_breaker.failure_count == 0

    async def test_open_circuit_fails_fast(self, tmp_path):
        host = host_with(lambda request: pytest.fail("no request expected"))
        host.circuit_breaker.state = CircuitBreaker.OPEN
        host.circuit_breaker.last_failure_time = time.time()

        with pytest.raises(CircuitBreakerOpenError):
            await host.upload_image(str(tmp_path / "x.jpg"))
        assert host.status == "circuit_open"

    async def test_unconfigured_host_rejects(self, tmp_path):
        host = host_with(lambda request: httpx.Response(200, json=CLOUDINARY_OK))
        host.api_secret = ""

        assert host.status == "unconfigured"
        with pytest.raises(ImageHostError, match="not configured"):
            await host.upload_image(str(tmp_path / "x.jpg"))


class TestUploadRoute:

    @pytest.fixture
    def staging(self, tmp_path, monkeypatch):
        from rate_lowry.routes import upload as upload_route

        files = FileService(storage_root=str(tmp_path))
        state = {"handler": lambda request: httpx.Response(200, json=CLOUDINARY_OK)}
        host = host_with(lambda request: state["handler"](request))
        monkeypatch.setattr(upload_route, "upload_service", UploadService(files=files, image_host=host))
        state["dir"] = tmp_path / "uploads"
        return state

    async def test_upload_returns_hosted_url_and_removes_staged_file(self, client, staging, sample_image_bytes):
        response = await client.post(
            "/api/upload",
            files={"image": ("dinner.jpg", sample_image_bytes, "image/jpeg")},
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "imageUrl": CLOUDINARY_OK["secure_url"],
            "imagePublicId": CLOUDINARY_OK["public_id"],
        }
        assert list(staging["dir"].iterdir()) == []

    async def test_missing_file_is_400(self, client, staging):
        response = await client.post("/api/upload", data={"other": "x"})

        assert response.status_code == 400
        assert response.json()["message"] == "No image file provided"

    async def test_wrong_type_is_400(self, client, staging):
        response = await client.post(
            "/api/upload",
            files={"image": ("notes.txt", b"hello", "text/plain")},
        )
        assert response.status_code == 400

    async def test_host_failure_is_503_and_staged_file_removed(self, client, staging, sample_image_bytes):
        staging["handler"] = lambda request: httpx.Response(500)

        response = await client.post(
            "/api/upload",
            files={"image": ("dinner.png", sample_image_bytes, "image/png")},
        )

        assert response.status_code == 503
        assert response.json()["error"] == "image_host_error"
        assert list(staging["dir"].iterdir()) == []

    async def test_real_image_named_blob_is_accepted(self, client, staging, sample_image_bytes):
        response = await client.post(
            "/api/upload",
            files={"image": ("blob", sample_image_bytes, "application/octet-stream")},
        )

        assert response.status_code == 200
        assert response.json()["imageUrl"] == CLOUDINARY_OK["secure_url"]

    async def test_non_image_labelled_as_jpeg_is_400(self, client, staging):
        staging["handler"] = lambda request: pytest.fail("no upload expected")

        response = await client.post(
            "/api/upload",
            files={"image": ("evil.jpg", SHELL_SCRIPT_BYTES, "image/jpeg")},
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Only image files (JPEG, PNG, GIF, WebP) are allowed"
        assert not staging["dir"].exists()

    async def test_image_refused_by_host_is_400_without_retry_after(self, client, staging, sample_image_bytes):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, json={"error": {"message": "Invalid image file"}})

        staging["handler"] = handler

        response = await client.post(
            "/api/upload",
            files={"image": ("dinner.jpg", sample_image_bytes, "image/jpeg")},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"
        assert "Retry-After" not in response.headers
        assert len(calls) == 1
