"""
Storage abstraction layer for the transfer indexer.

Backends:
- PostgreSQL for durable transfers, wallet aggregates and the checkpoint
- In-memory for dry runs and tests

Usage:
    from transfer_indexer.core.storage import create_storage

    storage = create_storage(config)
    await storage.connect()
    inserted = await storage.insert_batch(records)
    await storage.set_checkpoint(max(r.slot for r in records))
"""

from .base import (
    CHECKPOINT_KEY,
    CheckpointInterface,
    ConnectionError,
    DataError,
    IndexerStorage,
    StorageBase,
    StorageError,
    TransferStorageInterface,
)
from .manager import create_storage
from .memory import MemoryStorage, WalletStats
from .postgres import PostgresStorage

__all__ = [
    "CHECKPOINT_KEY",
    "StorageBase",
    "StorageError",
    "ConnectionError",
    "DataError",
    "TransferStorageInterface",
    "CheckpointInterface",
    "IndexerStorage",
    "PostgresStorage",
    "MemoryStorage",
    "WalletStats",
    "create_storage",
]
