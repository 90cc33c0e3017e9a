"""
Indexer orchestration for the transfer indexer.

Usage:
    from transfer_indexer.core.indexer import TransferIndexer

    indexer = TransferIndexer.from_config(get_config())
    await indexer.initialize()
    await indexer.start_realtime_indexing()
    result = await indexer.run_backfill(1000)
    print(indexer.get_stats().to_dict())
"""

from .base import IndexerError, IndexerStats, StartupError
from .buffer import PendingBuffer
from .dedup import DedupWindow
from .indexer import TransferIndexer

__all__ = [
    'IndexerError',
    'StartupError',
    'IndexerStats',
    'PendingBuffer',
    'DedupWindow',
    'TransferIndexer',
]
