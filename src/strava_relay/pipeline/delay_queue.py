"""
Per-activity delay queue.

Each pending activity owns one cancellable event-loop timer. Updates arriving
during the delay refresh the stored payload without moving the deadline, so
an activity that is edited right after upload is still posted on time but
with its latest details.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from ..utils.error_handling import DuplicateQueueItemError
from ..utils.logging_config import get_logger

logger = get_logger(__name__)


class QueueStatus(Enum):
    QUEUED = "queued"
    DISPATCHING = "dispatching"


@dataclass
class QueueItem:
    """One activity waiting for its delay to elapse."""
    item_id: int
    subject_id: int
    payload: Dict[str, Any]
    enqueued_at: datetime
    scheduled_at: datetime
    deadline: float  # event loop time at which the timer fires
    status: QueueStatus = QueueStatus.QUEUED
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'item_id': self.item_id,
            'subject_id': self.subject_id,
            'status': self.status.value,
            'enqueued_at': self.enqueued_at.isoformat(),
            'scheduled_at': self.scheduled_at.isoformat(),
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


Dispatcher = Callable[[QueueItem], Awaitable[Any]]


class DelayQueue:
    """
    Holds at most one entry per activity id, each with its own timer.

    When a timer fires the entry is removed and handed to the dispatcher in
    a background task. A delay of zero disables queueing: ``enqueue`` then
    dispatches straight away and returns the dispatch result.
    """

    def __init__(self, dispatcher: Dispatcher, delay_seconds: float):
        """
        Initialize the delay queue.

        Args:
            dispatcher: Coroutine function run for every item whose delay elapsed
            delay_seconds: Delay applied to every enqueued item (0 = immediate)
        """
        if delay_seconds < 0:
            raise ValueError("delay_seconds cannot be negative")

        self.dispatcher = dispatcher
        self.delay_seconds = delay_seconds

        self._items: Dict[int, QueueItem] = {}
        self._timers: Dict[int, asyncio.TimerHandle] = {}
        self._in_flight: Dict[int, QueueItem] = {}
        self._tasks: Set[asyncio.Task] = set()

    @property
    def immediate(self) -> bool:
        return self.delay_seconds == 0

    def _check_admission(self, item_id: int) -> None:
        if item_id in self._items:
            raise DuplicateQueueItemError(
                f"Activity {item_id} is already queued; use update_in_place", item_id=item_id
            )
        if item_id in self._in_flight:
            raise DuplicateQueueItemError(f"Activity {item_id} is already being dispatched", item_id=item_id)

    async def enqueue(self, item_id: int, subject_id: int, payload: Optional[Dict[str, Any]] = None) -> Any:
        """
        Schedule an activity for dispatch after the configured delay.

        Args:
            item_id: Activity id
            subject_id: Owning athlete id
            payload: Webhook metadata to keep with the entry

        Returns:
            The dispatch result in immediate mode, otherwise None

        Raises:
            DuplicateQueueItemError: If ``item_id`` is already queued or dispatching
        """
        if self.immediate:
            logger.info(f"Posting activity {item_id} for athlete {subject_id} immediately (no delay configured)")
            return await self.dispatch_now(item_id, subject_id, payload)

        self._check_admission(item_id)

        loop = asyncio.get_running_loop()
        now = datetime.now(timezone.utc)
        item = QueueItem(
            item_id=item_id,
            subject_id=subject_id,
            payload=dict(payload or {}),
            enqueued_at=now,
            scheduled_at=now + timedelta(seconds=self.delay_seconds),
            deadline=loop.time() + self.delay_seconds
        )
        self._items[item_id] = item
        self._timers[item_id] = loop.call_at(item.deadline, self._on_timer, item_id)

        logger.info(
            f"Activity {item_id} for athlete {subject_id} queued for delayed posting "
            f"at {item.scheduled_at.isoformat()} ({self.delay_seconds / 60:g} minutes)"
        )
        return None

    async def dispatch_now(self, item_id: int, subject_id: int, payload: Optional[Dict[str, Any]] = None) -> Any:
        """
        Dispatch an activity right away, bypassing the delay.

        The item counts as dispatching until the dispatcher returns, so no
        second dispatch for the same id can start meanwhile.

        Returns:
            The dispatcher's result

        Raises:
            DuplicateQueueItemError: If ``item_id`` is already queued or dispatching
        """
        self._check_admission(item_id)

        now = datetime.now(timezone.utc)
        item = QueueItem(
            item_id=item_id,
            subject_id=subject_id,
            payload=dict(payload or {}),
            enqueued_at=now,
            scheduled_at=now,
            deadline=asyncio.get_running_loop().time(),
            status=QueueStatus.DISPATCHING
        )
        self._in_flight[item_id] = item
        try:
            return await self.dispatcher(item)
        finally:
            if self._in_flight.get(item_id) is item:
                del self._in_flight[item_id]

    def update_in_place(self, item_id: int, payload: Optional[Dict[str, Any]] = None) -> bool:
        """
        Replace the payload of a queued entry, keeping its schedule.

        Returns:
            False if no queued entry exists for ``item_id``
        """
        item = self._items.get(item_id)
        if item is None or item.status is not QueueStatus.QUEUED:
            return False

        item.payload = dict(payload or {})
        item.updated_at = datetime.now(timezone.utc)

        logger.debug(
            f"Updated queued activity {item_id} with new webhook data "
            f"(still scheduled for {item.scheduled_at.isoformat()})"
        )
        return True

    def cancel(self, item_id: int) -> bool:
        """
        Drop a pending entry and its timer.

        Returns:
            False if nothing was pending for ``item_id``
        """
        timer = self._timers.pop(item_id, None)
        if timer is not None:
            timer.cancel()

        removed = self._items.pop(item_id, None) is not None
        if removed:
            logger.debug(f"Removed activity {item_id} from queue")
        return removed

    def _on_timer(self, item_id: int) -> None:
        self._timers.pop(item_id, None)
        item = self._items.pop(item_id, None)
        if item is None:
            logger.warning(f"Queued activity {item_id} not found when its timer fired")
            return

        item.status = QueueStatus.DISPATCHING
        self._in_flight[item_id] = item

        task = asyncio.get_running_loop().create_task(self._run_dispatch(item))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_dispatch(self, item: QueueItem) -> Any:
        try:
            logger.info(f"Processing queued activity {item.item_id} for athlete {item.subject_id}")
            return await self.dispatcher(item)
        except Exception as e:
            logger.error(f"Unhandled error dispatching queued activity {item.item_id}: {e}")
            return None
        finally:
            if self._in_flight.get(item.item_id) is item:
                del self._in_flight[item.item_id]

    def get(self, item_id: int) -> Optional[QueueItem]:
        return self._items.get(item_id)

    def is_dispatching(self, item_id: int) -> bool:
        return item_id in self._in_flight

    def is_pending(self, item_id: int) -> bool:
        """True while ``item_id`` is queued or being dispatched."""
        return item_id in self._items or item_id in self._in_flight

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    def stats(self) -> Dict[str, Any]:
        """Queue size and timing summary; read only."""
        items = list(self._items.values())
        oldest = min((item.enqueued_at for item in items), default=None)
        nearest = min((item.scheduled_at for item in items), default=None)

        return {
            'total_queued': len(items),
            'dispatching': len(self._in_flight),
            'oldest_enqueued_at': oldest.isoformat() if oldest else None,
            'next_scheduled_at': nearest.isoformat() if nearest else None,
            'delay_minutes': self.delay_seconds / 60,
        }

    def shutdown(self) -> None:
        """Cancel every timer and forget every pending entry without dispatching."""
        logger.info(
            f"Shutting down activity queue ({len(self._items)} queued, "
            f"{len(self._in_flight)} dispatching)"
        )

        for timer in self._timers.values():
            timer.cancel()

        self._timers.clear()
        self._items.clear()

        logger.info("Activity queue shutdown complete")
