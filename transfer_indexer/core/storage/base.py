"""
Base classes and interfaces for storage implementations.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Sequence
import logging

from ...processors.base import TransferRecord

logger = logging.getLogger(__name__)

CHECKPOINT_KEY = "last_processed_slot"


class StorageError(Exception):
    """Base exception for storage-related errors."""
    pass


class ConnectionError(StorageError):
    """Raised when connection to storage backend fails."""
    pass


class DataError(StorageError):
    """Raised when data operations fail."""
    pass


class StorageBase(ABC):
    """
    Abstract base class for storage implementations.
    All storage backends must implement these methods.
    """

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize storage backend with configuration.

        Args:
            config: Configuration dictionary for the storage backend
        """
        self.config = config
        self.is_connected = False

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to the storage backend."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the storage backend."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check if the storage backend is healthy and accessible.

        Returns:
            bool: True if healthy, False otherwise
        """
        pass

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.disconnect()


class TransferStorageInterface(ABC):
    """Interface for transfer record storage."""

    @abstractmethod
    async def insert_batch(self, records: Sequence[TransferRecord]) -> int:
        """
        Insert records in one atomic unit.

        Records whose identity already exists are skipped. Every newly
        created row updates the per-party aggregates inside the same unit.

        Args:
            records: Transfer records to insert

        Returns:
            int: Number of rows newly created

        Raises:
            ConnectionError: Store unreachable, nothing written
            DataError: Statement failed, whole batch rolled back
        """
        pass

    @abstractmethod
    async def count_transfers(self) -> int:
        """Total number of stored transfer rows."""
        pass


class CheckpointInterface(ABC):
    """Interface for the monotonic slot checkpoint."""

    @abstractmethod
    async def get_checkpoint(self) -> Optional[int]:
        """
        Get the highest processed slot.

        Returns:
            Stored slot or None if no checkpoint exists yet
        """
        pass

    @abstractmethod
    async def set_checkpoint(self, slot: int) -> bool:
        """
        Store ``slot`` if it exceeds the stored value.

        Args:
            slot: Candidate slot

        Returns:
            bool: True if the checkpoint advanced
        """
        pass


class IndexerStorage(StorageBase, TransferStorageInterface, CheckpointInterface):
    """Everything the indexer needs from a backend."""

    async def ensure_schema(self) -> None:
        """Create backend structures if missing. No-op by default."""
        return None
