"""
Sliding-window rate limiter for Strava API calls.

Strava allows roughly 100 requests per 15 minutes and 1000 per day. Every
outbound call is submitted here, waits in a single FIFO and is only
executed once every configured window has room for it.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from ..utils.config import PostingConfig
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

Operation = Callable[[], Awaitable[Any]]


class RateWindow:
    """Timestamps of recent calls inside one sliding window."""

    def __init__(self, name: str, limit: int, window_seconds: float, label: Optional[str] = None):
        if limit <= 0:
            raise ValueError("Window limit must be positive")
        if window_seconds <= 0:
            raise ValueError("Window duration must be positive")

        self.name = name
        self.limit = limit
        self.window_seconds = window_seconds
        self.label = label or f"{window_seconds:g} seconds"
        self.timestamps: Deque[float] = deque()

    def _is_active(self, timestamp: float, now: float) -> bool:
        return now - timestamp < self.window_seconds

    def purge(self, now: float) -> int:
        """Drop timestamps that have left the window. Returns how many were dropped."""
        dropped = 0
        while self.timestamps and not self._is_active(self.timestamps[0], now):
            self.timestamps.popleft()
            dropped += 1
        return dropped

    def count(self, now: float) -> int:
        return sum(1 for ts in self.timestamps if self._is_active(ts, now))

    def oldest(self, now: float) -> Optional[float]:
        for ts in self.timestamps:
            if self._is_active(ts, now):
                return ts
        return None

    def is_saturated(self, now: float) -> bool:
        return self.count(now) >= self.limit

    def time_until_slot(self, now: float) -> float:
        """Seconds until the oldest active call leaves the window (0 if not saturated)."""
        if not self.is_saturated(now):
            return 0.0
        oldest = self.oldest(now)
        if oldest is None:
            return 0.0
        return max(oldest + self.window_seconds - now, 0.0)

    def record(self, now: float) -> None:
        self.timestamps.append(now)

    def clear(self) -> None:
        self.timestamps.clear()


@dataclass
class PendingCall:
    """A submitted operation waiting for admission."""
    operation: Operation
    context: Dict[str, Any]
    future: asyncio.Future
    submitted_at: float = field(default_factory=time.monotonic)


class SlidingWindowRateLimiter:
    """
    FIFO admission of async calls under several independent call budgets.

    A single drain task executes queued calls one at a time. When any window
    is saturated the drain sleeps until the oldest call in the most
    constrained window expires, then re-checks, since more than one slot may
    have opened meanwhile. Failed calls are logged and handed back to their
    caller; they never stop the drain and are never retried here.
    """

    def __init__(
        self,
        windows: List[RateWindow],
        spacing_seconds: float = 0.1,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the rate limiter.

        Args:
            windows: Budgets that must all admit a call before it runs
            spacing_seconds: Pause after every executed call
            clock: Monotonic time source in seconds
        """
        if not windows:
            raise ValueError("At least one rate window is required")

        self.windows = list(windows)
        self.spacing_seconds = spacing_seconds
        self.clock = clock

        self._queue: Deque[PendingCall] = deque()
        self._draining = False
        self._drain_task: Optional[asyncio.Task] = None
        self.executed_count = 0
        self.failed_count = 0

    @classmethod
    def from_config(cls, posting: PostingConfig) -> 'SlidingWindowRateLimiter':
        """Build the short-term and daily windows from configuration."""
        return cls(
            windows=[
                RateWindow("short", posting.short_window.limit,
                           posting.short_window.window_seconds, posting.short_window.label),
                RateWindow("daily", posting.daily_window.limit,
                           posting.daily_window.window_seconds, posting.daily_window.label),
            ],
            spacing_seconds=posting.spacing_seconds
        )

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    @property
    def is_draining(self) -> bool:
        return self._draining

    def can_admit(self) -> bool:
        """Purge expired timestamps and check that every window has room."""
        now = self.clock()
        for window in self.windows:
            window.purge(now)
        return all(not window.is_saturated(now) for window in self.windows)

    def next_admission_delay(self) -> float:
        """Seconds until the next call could be admitted; never negative."""
        now = self.clock()
        return max((window.time_until_slot(now) for window in self.windows), default=0.0)

    async def submit(self, operation: Operation, context: Optional[Dict[str, Any]] = None) -> Any:
        """
        Queue an operation and wait for its outcome.

        Args:
            operation: Zero-argument callable returning an awaitable
            context: Free-form details included in log messages

        Returns:
            Whatever the operation returns

        Raises:
            Exception: Whatever the operation raised
        """
        loop = asyncio.get_running_loop()
        call = PendingCall(operation=operation, context=dict(context or {}), future=loop.create_future())
        self._queue.append(call)

        logger.debug(f"Call queued for admission (queue length {len(self._queue)}): {call.context}")

        self._ensure_draining()
        return await call.future

    def _ensure_draining(self) -> None:
        if self._draining:
            return
        self._draining = True
        self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        try:
            while self._queue:
                if not self.can_admit():
                    wait_time = self.next_admission_delay()
                    now = self.clock()
                    usage = ", ".join(f"{w.name} {w.count(now)}/{w.limit}" for w in self.windows)
                    logger.warning(
                        f"Rate limit reached, waiting {wait_time:.1f}s before next request "
                        f"(queue length {len(self._queue)}, {usage})"
                    )
                    await asyncio.sleep(max(wait_time, 0.001))
                    continue

                call = self._queue.popleft()
                if call.future.done():
                    # Caller gave up while waiting
                    continue

                await self._execute(call)

                if self.spacing_seconds > 0:
                    await asyncio.sleep(self.spacing_seconds)
        finally:
            # reset() may already have handed the guard to a newer drain
            if self._drain_task is asyncio.current_task():
                self._draining = False
                self._drain_task = None

    async def _execute(self, call: PendingCall) -> None:
        now = self.clock()
        for window in self.windows:
            window.record(now)
        self.executed_count += 1

        logger.debug(
            "API request recorded: " +
            ", ".join(f"{w.name} {w.count(now)}/{w.limit}" for w in self.windows)
        )

        try:
            result = await call.operation()
        except asyncio.CancelledError:
            if not call.future.done():
                call.future.cancel()
            raise
        except Exception as e:
            self.failed_count += 1
            logger.error(f"Rate-limited request failed: {e} (context: {call.context})")
            if not call.future.done():
                call.future.set_exception(e)
        else:
            if not call.future.done():
                call.future.set_result(result)

    def stats(self) -> Dict[str, Any]:
        """Current usage per window, queue length and wait estimate; read only."""
        now = self.clock()
        saturated = [window for window in self.windows if window.is_saturated(now)]

        return {
            'windows': {
                window.name: {
                    'used': window.count(now),
                    'limit': window.limit,
                    'window': window.label,
                }
                for window in self.windows
            },
            'queue_length': len(self._queue),
            'can_admit': not saturated,
            'wait_seconds': max((w.time_until_slot(now) for w in saturated), default=0.0),
            'executed': self.executed_count,
            'failed': self.failed_count,
        }

    def reset(self) -> None:
        """Clear all windows and abandon queued calls. Operational recovery only."""
        for window in self.windows:
            window.clear()

        abandoned = len(self._queue)
        while self._queue:
            call = self._queue.popleft()
            if not call.future.done():
                call.future.cancel()

        if self._drain_task is not None and not self._drain_task.done():
            self._drain_task.cancel()
        self._drain_task = None
        self._draining = False

        logger.info(f"Rate limiter reset ({abandoned} queued calls abandoned)")
