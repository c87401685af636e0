"""
Rate Lowry Backend — Review Write Buffer Tests
================================================

Runs the buffer against the SQLite test database. Flusher timing is kept
short (or the flusher is left stopped and flush() is driven by hand) so
each test controls exactly when batches are written.
"""

import asyncio

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from rate_lowry.database import async_session_factory
from rate_lowry.exceptions import DatabaseError, WriteBufferFullError, WriteTimeoutError
from rate_lowry.models.review import Review
from rate_lowry.services.write_buffer import ReviewWriteBuffer


async def count_reviews() -> int:
    async with async_session_factory() as session:
        return await session.scalar(select(func.count(Review.id)))


class RecordingBuffer(ReviewWriteBuffer):
    """Keeps the size of every batch it writes."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.batch_sizes = []

    async def _insert_batch(self, batch):
        self.batch_sizes.append(len(batch))
        return await super()._insert_batch(batch)


class FailingBuffer(ReviewWriteBuffer):
    async def _insert_batch(self, batch):
        raise OperationalError("INSERT INTO reviews", {}, Exception("disk I/O error"))


class GatedBuffer(ReviewWriteBuffer):
    """Holds every batch INSERT until `release` is set."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.release = asyncio.Event()
        self.insert_started = asyncio.Event()

    async def _insert_batch(self, batch):
        self.insert_started.set()
        await self.release.wait()
        return await super()._insert_batch(batch)


async def start_enqueue(buffer, row, **kwargs) -> asyncio.Task:
    task = asyncio.create_task(buffer.enqueue(row, **kwargs))
    # Let the task run up to its await on the future
    await asyncio.sleep(0)
    return task


@pytest.mark.usefixtures("db_tables")
class TestFlushing:

    async def test_enqueued_review_is_committed_by_timer(self, make_review_row):
        buffer = ReviewWriteBuffer(batch_size=10, flush_interval=0.02, enqueue_timeout=5)
        buffer.start()
        try:
            row = make_review_row()
            review = await buffer.enqueue(row)
        finally:
            await buffer.stop()

        assert review.id == row["id"]
        assert await count_reviews() == 1
        assert buffer.depth == 0

    async def test_full_batch_flushes_without_waiting_for_timer(self, make_review_row):
        buffer = RecordingBuffer(batch_size=3, flush_interval=60, enqueue_timeout=5)
        # Flusher deliberately not started: only the batch trigger can write
        results = await asyncio.wait_for(
            asyncio.gather(*(buffer.enqueue(make_review_row()) for _ in range(3))),
            timeout=5,
        )

        assert len(results) == 3
        assert buffer.batch_sizes == [3]
        assert await count_reviews() == 3

    async def test_flush_writes_in_batches_of_batch_size(self, make_review_row):
        buffer = RecordingBuffer(batch_size=10, flush_interval=60, max_size=100, enqueue_timeout=5)
        # Hold the batch trigger off while rows accumulate
        buffer._flushing = True
        tasks = [await start_enqueue(buffer, make_review_row()) for _ in range(25)]
        buffer._flushing = False

        inserted = await buffer.flush()
        await asyncio.gather(*tasks)

        assert inserted == 25
        assert buffer.batch_sizes == [10, 10, 5]
        assert await count_reviews() == 25

    async def test_flush_with_nothing_pending_is_noop(self):
        buffer = ReviewWriteBuffer()
        assert await buffer.flush() == 0

    async def test_stop_drains_pending_rows(self, make_review_row):
        buffer = ReviewWriteBuffer(batch_size=10, flush_interval=60, enqueue_timeout=5)
        buffer.start()
        tasks = [await start_enqueue(buffer, make_review_row()) for _ in range(4)]
        assert buffer.depth == 4

        await buffer.stop()
        reviews = await asyncio.gather(*tasks)

        assert len(reviews) == 4
        assert buffer.depth == 0
        assert not buffer.is_running
        assert await count_reviews() == 4


@pytest.mark.usefixtures("db_tables")
class TestBackpressure:

    async def test_enqueue_rejected_when_buffer_full(self, make_review_row):
        buffer = ReviewWriteBuffer(batch_size=10, flush_interval=60, max_size=2, enqueue_timeout=5)
        tasks = [await start_enqueue(buffer, make_review_row()) for _ in range(2)]

        with pytest.raises(WriteBufferFullError) as exc_info:
            await buffer.enqueue(make_review_row())
        assert exc_info.value.retry_after >= 1

        await buffer.flush()
        await asyncio.gather(*tasks)
        assert await count_reviews() == 2

    async def test_timed_out_row_is_discarded_and_never_written(self, make_review_row):
        buffer = ReviewWriteBuffer(batch_size=10, flush_interval=60, enqueue_timeout=5)

        with pytest.raises(WriteTimeoutError):
            await buffer.enqueue(make_review_row(), timeout=0.05)

        assert buffer.depth == 0
        assert await buffer.flush() == 0
        assert await count_reviews() == 0

    async def test_row_inside_running_insert_outlives_its_deadline(self, make_review_row):
        buffer = GatedBuffer(batch_size=1, flush_interval=60, enqueue_timeout=5)
        row = make_review_row()

        task = await start_enqueue(buffer, row, timeout=0.05)
        await asyncio.wait_for(buffer.insert_started.wait(), timeout=5)
        await asyncio.sleep(0.15)
        assert not task.done()

        buffer.release.set()
        review = await asyncio.wait_for(task, timeout=5)

        assert review.id == row["id"]
        assert await count_reviews() == 1

    async def test_cancelled_caller_row_is_not_written(self, make_review_row):
        buffer = ReviewWriteBuffer(batch_size=10, flush_interval=60, enqueue_timeout=5)
        task = await start_enqueue(buffer, make_review_row())
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert buffer.depth == 0
        await buffer.flush()
        assert await count_reviews() == 0


@pytest.mark.usefixtures("db_tables")
class TestBatchFailure:

    async def test_every_caller_in_failed_flush_gets_database_error(self, make_review_row):
        buffer = FailingBuffer(batch_size=10, flush_interval=60, enqueue_timeout=5)
        tasks = [await start_enqueue(buffer, make_review_row()) for _ in range(3)]

        assert await buffer.flush() == 0
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, DatabaseError) for r in results)
        assert buffer.depth == 0
        assert not buffer.is_flushing

    async def test_buffer_accepts_new_rows_after_failure(self, make_review_row):
        buffer = FailingBuffer(batch_size=10, flush_interval=60, enqueue_timeout=5)
        task = await start_enqueue(buffer, make_review_row())
        await buffer.flush()
        with pytest.raises(DatabaseError):
            await task

        follow_up = await start_enqueue(buffer, make_review_row())
        assert buffer.depth == 1
        follow_up.cancel()
        with pytest.raises(asyncio.CancelledError):
            await follow_up
