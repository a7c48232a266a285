# ============================================================================
# src/bloodwork_analysis/core/work_queue.py
# ============================================================================
"""
Work Queue

In-process asyncio queue with at-least-once delivery:
- A work item is acknowledged only when its handler returns
- A failing handler gets the item again after an exponential backoff
  (base * 2^(attempt-1)), up to max_attempts deliveries
- Errors flagged retryable=False skip the remaining attempts
- After the last attempt, on_exhausted is called with the final error

Items are keyed by job id: enqueueing a job that is already pending or
in flight is a no-op.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from ..config.queue_config import queue_settings

logger = logging.getLogger(__name__)


@dataclass
class WorkItem:
    job_id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    attempts: int = 0
    last_error: Optional[str] = None
    enqueued_at: float = field(default_factory=time.time)
    removed: bool = False


Handler = Callable[[WorkItem], Awaitable[Any]]
ExhaustedHandler = Callable[[WorkItem, BaseException], Awaitable[None]]


class WorkQueue:
    """
    Single logical queue, no priorities.

    Config options:
        max_attempts: Deliveries per item (default: QUEUE_MAX_ATTEMPTS)
        backoff_seconds: Base redelivery delay (default: QUEUE_BACKOFF_SECONDS)
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.max_attempts = max(1, self.config.get('max_attempts', queue_settings.QUEUE_MAX_ATTEMPTS))
        self.backoff_seconds = self.config.get('backoff_seconds', queue_settings.QUEUE_BACKOFF_SECONDS)

        self._queue: asyncio.Queue = asyncio.Queue()
        self._pending: Dict[str, WorkItem] = {}
        self._in_flight: Set[str] = set()
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._idle = asyncio.Event()
        self._idle.set()

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------
    def enqueue(self, job_id: str, payload: Optional[Dict[str, Any]] = None) -> Optional[WorkItem]:
        """Add a job. Returns None when the job is already pending or in flight."""
        if job_id in self._pending or job_id in self._in_flight:
            logger.debug(f"Job {job_id} already queued, skipping enqueue")
            return None

        item = WorkItem(job_id=job_id, payload=dict(payload or {}))
        self._pending[job_id] = item
        self._queue.put_nowait(item)
        self._update_idle()
        logger.debug(f"Enqueued job {job_id} (depth={self.depth})")
        return item

    def remove(self, job_id: str) -> bool:
        """
        Best-effort removal of a job that has not been picked up yet.

        Returns:
            True if a pending item was removed, False if it was unknown or
            already in flight
        """
        item = self._pending.pop(job_id, None)
        if item is None:
            return False

        item.removed = True
        timer = self._timers.pop(job_id, None)
        if timer is not None:
            timer.cancel()
        self._update_idle()
        logger.info(f"Removed job {job_id} from queue")
        return True

    @property
    def depth(self) -> int:
        """Items waiting for delivery, including those in backoff."""
        return len(self._pending)

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------
    async def get(self) -> WorkItem:
        """Next deliverable item; marks it in flight and counts the attempt."""
        while True:
            item = await self._queue.get()
            self._queue.task_done()
            if item.removed:
                continue
            self._pending.pop(item.job_id, None)
            self._in_flight.add(item.job_id)
            item.attempts += 1
            return item

    async def consume(self, handler: Handler, on_exhausted: Optional[ExhaustedHandler] = None):
        """Deliver items to handler until cancelled."""
        while True:
            item = await self.get()
            try:
                await handler(item)
            except asyncio.CancelledError:
                self._release(item)
                raise
            except Exception as e:
                # Still in flight until the retry is scheduled or the job is failed
                try:
                    await self._handle_failure(item, e, on_exhausted)
                finally:
                    self._release(item)
            else:
                self._release(item)

    async def wait_idle(self):
        """Wait until nothing is pending, in backoff or in flight."""
        await self._idle.wait()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _release(self, item: WorkItem):
        self._in_flight.discard(item.job_id)
        self._update_idle()

    async def _handle_failure(self, item: WorkItem, error: Exception, on_exhausted: Optional[ExhaustedHandler]):
        item.last_error = str(error)
        retryable = getattr(error, 'retryable', True)

        if retryable and item.attempts < self.max_attempts:
            delay = self.backoff_seconds * (2 ** (item.attempts - 1))
            logger.warning(
                f"Job {item.job_id} attempt {item.attempts}/{self.max_attempts} failed: {error}. "
                f"Retrying in {delay:.1f}s"
            )
            self._schedule_retry(item, delay)
            return

        logger.error(f"Job {item.job_id} failed after {item.attempts} attempt(s): {error}")
        if on_exhausted is not None:
            try:
                await on_exhausted(item, error)
            except Exception as e:
                logger.error(f"Exhausted handler failed for job {item.job_id}: {e}")

    def _schedule_retry(self, item: WorkItem, delay: float):
        self._pending[item.job_id] = item
        loop = asyncio.get_running_loop()
        self._timers[item.job_id] = loop.call_later(delay, self._requeue, item)
        self._update_idle()

    def _requeue(self, item: WorkItem):
        self._timers.pop(item.job_id, None)
        if item.removed:
            return
        self._queue.put_nowait(item)

    def _update_idle(self):
        if self._pending or self._in_flight:
            self._idle.clear()
        else:
            self._idle.set()
