"""
Base types for the indexer orchestrator.
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class IndexerError(Exception):
    """Base exception for indexer lifecycle errors."""
    pass


class StartupError(IndexerError):
    """Raised when the indexer cannot start: store or node unusable."""
    pass


@dataclass
class IndexerStats:
    """Read-only snapshot of the indexer state."""
    running: bool
    last_checkpoint: Optional[int]
    session_inserted_count: int
    pending_buffer_size: int
    reconnect_attempts: int
    connection_state: str = "disconnected"
    dedup_window_size: int = 0
    decode_queue_size: int = 0
    dropped_records: int = 0
    dropped_signatures: int = 0
    last_slot: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert stats to dictionary."""
        return asdict(self)
