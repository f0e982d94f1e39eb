"""
Ledger of activities that have already been relayed or filtered out.
"""

from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Dict

from ..utils.logging_config import get_logger

logger = get_logger(__name__)


def make_key(subject_id: int, item_id: int) -> str:
    """Composite key of athlete and activity."""
    return f"{subject_id}-{item_id}"


class DedupLedger:
    """
    Insertion-ordered set of dispatched activity keys with bounded retention.

    Once the ledger grows past ``max_size`` the oldest keys are evicted until
    ``retain_ratio * max_size`` remain.
    """

    def __init__(self, max_size: int = 10000, retain_ratio: float = 0.8):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        if not 0 < retain_ratio <= 1:
            raise ValueError("retain_ratio must be in (0, 1]")

        self.max_size = max_size
        self.retain_ratio = retain_ratio
        self._entries: "OrderedDict[str, datetime]" = OrderedDict()
        self.evictions = 0

    def contains(self, subject_id: int, item_id: int) -> bool:
        return make_key(subject_id, item_id) in self._entries

    def record(self, subject_id: int, item_id: int) -> bool:
        """
        Mark an activity as done.

        Returns:
            False if the key was already recorded
        """
        key = make_key(subject_id, item_id)
        if key in self._entries:
            return False

        self._entries[key] = datetime.now(timezone.utc)
        self._enforce_retention()
        return True

    def _enforce_retention(self) -> None:
        if len(self._entries) <= self.max_size:
            return

        keep = max(int(self.max_size * self.retain_ratio), 1)
        previous_size = len(self._entries)
        while len(self._entries) > keep:
            self._entries.popitem(last=False)
            self.evictions += 1

        logger.debug(f"Trimmed dedup ledger from {previous_size} to {len(self._entries)} entries")

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict[str, Any]:
        return {
            'size': len(self._entries),
            'max_size': self.max_size,
            'evictions': self.evictions,
        }
