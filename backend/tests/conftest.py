"""
Rate Lowry Backend — Test Configuration (conftest.py)
=======================================================

Environment is set before anything from rate_lowry is imported, because
the settings singleton and the engine are built at import time.

Fixtures:
    db_tables:          create/drop every table in a throwaway SQLite file
    db_session:         AsyncSession on that database
    client:             HTTPX AsyncClient on the ASGI app, write buffer running
    make_review_row:    factory for complete reviews rows
    sample_image_bytes: minimal JPEG bytes
"""

import os
import tempfile
import uuid
from datetime import datetime, timedelta, timezone

_TEST_DIR = tempfile.mkdtemp(prefix="rate_lowry_test_")

os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR}/test.db"
os.environ["STORAGE_ROOT"] = os.path.join(_TEST_DIR, "storage")
os.environ["ENVIRONMENT"] = "development"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["RATE_LIMIT_REQUESTS"] = "10000"
os.environ["WRITE_BUFFER_FLUSH_INTERVAL"] = "0.05"
os.environ["RETRY_MIN_WAIT"] = "0"
os.environ["RETRY_MAX_WAIT"] = "0"
os.environ["RETRY_JITTER"] = "0"
os.environ["CLOUDINARY_CLOUD_NAME"] = "demo-cloud"
os.environ["CLOUDINARY_API_KEY"] = "123456"
os.environ["CLOUDINARY_API_SECRET"] = "test-secret"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from rate_lowry.database import Base, async_session_factory, engine  # noqa: E402
from rate_lowry import models  # noqa: E402,F401


@pytest_asyncio.fixture
async def db_tables():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # Pooled connections belong to this test's event loop
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_tables):
    async with async_session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(db_tables):
    """
    API client against the real app and database.

    ASGITransport does not run the lifespan, so the write buffer is started
    here and the aggregation cache is emptied between tests.
    """
    from rate_lowry.main import app
    from rate_lowry.services.food_item_service import food_item_service
    from rate_lowry.services.write_buffer import review_write_buffer

    food_item_service.invalidate()
    review_write_buffer.start()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await review_write_buffer.stop()
    food_item_service.invalidate()


@pytest.fixture
def make_review_row():
    """
    Build a full reviews row; keyword arguments override defaults.

    `age_minutes` shifts created_at into the past so ordering is explicit.
    """
    def _make(age_minutes: int = 0, **overrides):
        row = {
            "id": uuid.uuid4(),
            "food_item": "Pancakes",
            "station": "Hearth 66",
            "rating": 4,
            "comment": "Fluffy and warm",
            "reviewer": "Anonymous",
            "image_url": None,
            "created_at": datetime.now(timezone.utc) - timedelta(minutes=age_minutes),
            "is_active": True,
            "deleted_at": None,
        }
        row.update(overrides)
        return row

    return _make


@pytest.fixture
def sample_image_bytes():
    # SOI + JFIF APP0 header + EOI
    return (
        b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00"
        b"\xff\xd9"
    )
