"""
Bounded window of recently claimed signatures.
"""

from collections import OrderedDict


class DedupWindow:
    """
    Fixed-capacity insertion-ordered set; the oldest entry is evicted first.

    Only suppresses redundant concurrent fetches. Storage idempotency is
    what keeps the stored data duplicate-free.
    """

    def __init__(self, capacity: int = 10000):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got: {capacity}")
        self.capacity = capacity
        self._entries: "OrderedDict[str, None]" = OrderedDict()

    def add(self, signature: str) -> bool:
        """Claim ``signature``; False if it is already in the window."""
        if signature in self._entries:
            return False
        self._entries[signature] = None
        while len(self._entries) > self.capacity:
            self._entries.popitem(last=False)
        return True

    def discard(self, signature: str) -> None:
        self._entries.pop(signature, None)

    def __contains__(self, signature: object) -> bool:
        return signature in self._entries

    def __len__(self) -> int:
        return len(self._entries)
