"""
Pending buffer holding records while the store is unreachable.
"""

import logging
from collections import deque
from typing import Deque, Iterable, List

from ...processors.base import TransferRecord

logger = logging.getLogger(__name__)


class PendingBuffer:
    """Bounded FIFO of records awaiting persistence."""

    def __init__(self, capacity: int = 1000):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got: {capacity}")
        self.capacity = capacity
        self.dropped = 0
        self._records: Deque[TransferRecord] = deque()

    def extend(self, records: Iterable[TransferRecord]) -> int:
        """
        Append records in order.

        Records that do not fit are dropped and counted; backfill can
        recover them once the store is back.

        Returns:
            int: Number of records accepted
        """
        accepted = 0
        overflow = 0
        for record in records:
            if len(self._records) >= self.capacity:
                overflow += 1
                continue
            self._records.append(record)
            accepted += 1

        if overflow:
            self.dropped += overflow
            logger.warning(
                f"Pending buffer full ({self.capacity}), dropped {overflow} record(s); "
                f"{self.dropped} dropped in total"
            )
        return accepted

    def drain(self) -> List[TransferRecord]:
        """Remove and return every buffered record, oldest first."""
        records = list(self._records)
        self._records.clear()
        return records

    def restore(self, records: List[TransferRecord]) -> List[TransferRecord]:
        """
        Put a failed flush back at the front, keeping the capacity bound.

        Returns:
            List of records that no longer fit and were dropped
        """
        room = self.capacity - len(self._records)
        kept = records[:max(room, 0)]
        lost = len(records) - len(kept)
        self._records.extendleft(reversed(kept))
        if lost:
            self.dropped += lost
            logger.warning(f"Pending buffer full on restore, dropped {lost} record(s)")
        return records[len(kept):]

    def __len__(self) -> int:
        return len(self._records)

    def __bool__(self) -> bool:
        return bool(self._records)
