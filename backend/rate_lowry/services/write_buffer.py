"""
Rate Lowry Backend — Review Write Buffer
==========================================

What:  Process-local buffer that absorbs bursts of review submissions and
       writes them with one multi-row INSERT per batch.
Who:   ReviewService enqueues rows here when admission control decides a
       submission should not be written directly. The application lifespan
       starts and stops the flusher task.

Flow:
    enqueue(row) ──▶ [pending rows + futures] ──(timer / batch full)──▶ flush()
                                                                         │
        caller awaits its future ◀── resolved with the inserted Review ◀─┘

Policies:
    - Bounded: at most `max_size` pending rows; beyond that enqueue raises
      WriteBufferFullError.
    - Deadline: a caller waits at most `enqueue_timeout` seconds while its
      row is still pending. A row that times out is removed and never
      inserted. A row already handed to an in-flight INSERT is awaited to
      completion instead.
    - At-most-once: when a batch INSERT fails, every row of that flush
      (the failing batch and everything still pending) is dropped and its
      caller receives DatabaseError. Nothing is retried.
    - Single flusher: the `_flushing` flag keeps flushes from overlapping.
      All buffer mutation happens on the event loop thread.

The buffer is per process. Several uvicorn workers each own an independent
buffer; nothing is coordinated between them.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession

from rate_lowry.config import settings
from rate_lowry.database import async_session_factory
from rate_lowry.exceptions import DatabaseError, WriteBufferFullError, WriteTimeoutError
from rate_lowry.models.review import Review

logger = logging.getLogger(__name__)


@dataclass
class PendingWrite:
    """One buffered review row and the future its caller is waiting on."""
    row: Dict[str, Any]
    future: "asyncio.Future[Review]"


class ReviewWriteBuffer:
    """
    Bounded in-memory queue of review inserts with a timer-driven flusher.

    Args:
        session_factory: Callable returning an AsyncSession context manager.
                         Each batch gets its own session and transaction.
        batch_size:      Rows per multi-row INSERT.
        flush_interval:  Seconds between flusher wake-ups.
        max_size:        Pending rows allowed before enqueue is rejected.
        enqueue_timeout: Default seconds a caller waits for a pending row.
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = async_session_factory,
        batch_size: int = settings.write_buffer_batch_size,
        flush_interval: float = settings.write_buffer_flush_interval,
        max_size: int = settings.write_buffer_max_size,
        enqueue_timeout: float = settings.write_buffer_enqueue_timeout,
    ):
        self._session_factory = session_factory
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.max_size = max_size
        self.enqueue_timeout = enqueue_timeout

        self._pending: List[PendingWrite] = []
        self._flushing = False
        self._flusher_task: Optional[asyncio.Task] = None
        # Strong references to flushes running as background tasks
        self._flush_tasks: Set[asyncio.Task] = set()

    # ── Introspection ─────────────────────────────────────────────────────

    @property
    def depth(self) -> int:
        """Rows currently waiting to be written."""
        return len(self._pending)

    @property
    def is_flushing(self) -> bool:
        return self._flushing

    @property
    def is_running(self) -> bool:
        return self._flusher_task is not None and not self._flusher_task.done()

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def start(self) -> None:
        """Launch the periodic flusher on the running event loop."""
        if self.is_running:
            return
        self._flusher_task = asyncio.create_task(
            self._run_flusher(), name="review-write-buffer-flusher"
        )
        logger.info(
            "Review write buffer started (batch_size=%d, interval=%.2fs, max_size=%d)",
            self.batch_size,
            self.flush_interval,
            self.max_size,
        )

    async def stop(self) -> None:
        """
        Stop the flusher and drain whatever is still pending.

        Called from the shutdown hook so accepted submissions are written
        before the process exits.
        """
        if self._flusher_task is not None:
            self._flusher_task.cancel()
            try:
                await self._flusher_task
            except asyncio.CancelledError:
                pass
            self._flusher_task = None

        while self._flush_tasks or self._pending:
            if self._flush_tasks:
                await asyncio.gather(*list(self._flush_tasks), return_exceptions=True)
            else:
                await self.flush()

        logger.info("Review write buffer stopped")

    async def _run_flusher(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            # Shielded so stop() never cancels a batch halfway through its INSERT
            await asyncio.shield(self._spawn_flush())

    # ── Enqueue ───────────────────────────────────────────────────────────

    async def enqueue(self, row: Dict[str, Any], timeout: Optional[float] = None) -> Review:
        """
        Buffer one review row and wait until it is committed.

        Args:
            row:     Complete column mapping for the reviews table, including
                     the pre-generated `id`.
            timeout: Seconds to wait while the row is still pending
                     (defaults to `enqueue_timeout`).

        Returns:
            The inserted Review (a detached instance built from the row).

        Raises:
            WriteBufferFullError: The buffer already holds `max_size` rows.
            WriteTimeoutError:    The row was still pending at the deadline;
                                  it has been removed and will not be written.
            DatabaseError:        The batch containing this row failed.
        """
        if len(self._pending) >= self.max_size:
            logger.warning("Review write buffer full (%d rows); rejecting submission", self.max_size)
            raise WriteBufferFullError(
                retry_after=max(1, math.ceil(self.flush_interval)),
                context={"depth": len(self._pending)},
            )

        loop = asyncio.get_running_loop()
        entry = PendingWrite(row=row, future=loop.create_future())
        self._pending.append(entry)
        logger.debug("Review %s buffered (depth=%d)", row.get("id"), len(self._pending))

        if len(self._pending) >= self.batch_size and not self._flushing:
            self._spawn_flush()

        wait_for = self.enqueue_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(asyncio.shield(entry.future), wait_for)
        except asyncio.TimeoutError:
            if self._discard(entry):
                logger.warning(
                    "Buffered review %s timed out after %.2fs and was discarded",
                    row.get("id"),
                    wait_for,
                )
                raise WriteTimeoutError(timeout=wait_for, context={"review_id": str(row.get("id"))})
            # Already inside an INSERT; its outcome is imminent
            return await entry.future
        except asyncio.CancelledError:
            self._discard(entry)
            raise

    def _discard(self, entry: PendingWrite) -> bool:
        """Remove a still-pending entry. Returns False if a flush already took it."""
        try:
            self._pending.remove(entry)
        except ValueError:
            return False
        if not entry.future.done():
            entry.future.cancel()
        return True

    def _spawn_flush(self) -> asyncio.Task:
        task = asyncio.create_task(self.flush())
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_tasks.discard)
        return task

    # ── Flush ─────────────────────────────────────────────────────────────

    async def flush(self) -> int:
        """
        Drain the buffer in batches of `batch_size`.

        Returns:
            Number of rows inserted by this call (0 when another flush is
            running or nothing is pending).
        """
        if self._flushing or not self._pending:
            return 0

        self._flushing = True
        inserted = 0
        batch: List[PendingWrite] = []
        logger.info("Flushing review write buffer: %d pending", len(self._pending))

        try:
            while self._pending:
                batch = self._pending[: self.batch_size]
                del self._pending[: self.batch_size]
                batch = [entry for entry in batch if not entry.future.done()]
                if not batch:
                    continue

                reviews = await self._insert_batch(batch)
                for entry, review in zip(batch, reviews):
                    if not entry.future.done():
                        entry.future.set_result(review)
                inserted += len(batch)
                logger.info("Review batch written: %d rows", len(batch))
                batch = []

        except Exception as e:
            dropped = batch + self._pending
            self._pending = []
            logger.error(
                "Review batch insert failed; dropping %d buffered reviews: %s",
                len(dropped),
                str(e),
                exc_info=True,
            )
            for entry in dropped:
                if not entry.future.done():
                    entry.future.set_exception(
                        DatabaseError(
                            message="Failed to save your review. Please try again.",
                            context={
                                "review_id": str(entry.row.get("id")),
                                "error_type": type(e).__name__,
                            },
                        )
                    )
        finally:
            self._flushing = False

        return inserted

    async def _insert_batch(self, batch: List[PendingWrite]) -> List[Review]:
        """One multi-row INSERT for the whole batch, committed in its own transaction."""
        rows = [entry.row for entry in batch]
        async with self._session_factory() as session:
            await session.execute(insert(Review), rows)
            await session.commit()
        return [Review(**row) for row in rows]


# ── Singleton Instance ────────────────────────────────────────────────────
# Shared by every request in this process; started/stopped by the lifespan
review_write_buffer = ReviewWriteBuffer()
