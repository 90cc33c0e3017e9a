"""
In-process storage backend.

Same contract as PostgresStorage, kept in dictionaries. Used for dry runs
(``STORAGE_BACKEND=memory``) and by the test suite.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Sequence, Set, Tuple

from ...processors.base import TransferRecord
from .base import ConnectionError, DataError, IndexerStorage

logger = logging.getLogger(__name__)


@dataclass
class WalletStats:
    """Running totals for one address."""
    address: str
    total_transactions: int = 0
    transactions_as_sender: int = 0
    transactions_as_receiver: int = 0
    total_volume: Decimal = Decimal(0)
    volume_sent: Decimal = Decimal(0)
    volume_received: Decimal = Decimal(0)
    unique_counterparties: int = 0
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None
    counterparties: Set[str] = field(default_factory=set)

    def apply(self, record: TransferRecord, sent: bool, received: bool) -> None:
        self.total_transactions += 1
        self.total_volume += record.amount_display
        if sent:
            self.transactions_as_sender += 1
            self.volume_sent += record.amount_display
        if received:
            self.transactions_as_receiver += 1
            self.volume_received += record.amount_display
        if self.first_seen is None or record.block_time < self.first_seen:
            self.first_seen = record.block_time
        if self.last_seen is None or record.block_time > self.last_seen:
            self.last_seen = record.block_time

    def add_counterparty(self, address: str) -> None:
        if address != self.address and address not in self.counterparties:
            self.counterparties.add(address)
            self.unique_counterparties += 1


class MemoryStorage(IndexerStorage):
    """
    Dictionary-backed storage.

    Batches are staged against copies and committed only when every record
    went through, so a failing batch leaves nothing behind.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config or {})
        self.transfers: Dict[Tuple[str, int], TransferRecord] = {}
        self.wallet_stats: Dict[str, WalletStats] = {}
        self.checkpoint: Optional[int] = None
        self.aggregate_updates = 0
        self.available = True

    async def connect(self) -> None:
        if not self.available:
            raise ConnectionError("Memory storage marked unavailable")
        self.is_connected = True
        logger.info("Memory storage ready")

    async def disconnect(self) -> None:
        self.is_connected = False

    async def health_check(self) -> bool:
        return self.is_connected and self.available

    def _require_available(self) -> None:
        if not self.is_connected or not self.available:
            raise ConnectionError("Memory storage unavailable")

    async def insert_batch(self, records: Sequence[TransferRecord]) -> int:
        if not records:
            return 0
        self._require_available()

        staged: Dict[Tuple[str, int], TransferRecord] = {}
        stats: Dict[str, WalletStats] = {}
        updates = 0

        def stats_for(address: str) -> WalletStats:
            if address not in stats:
                current = self.wallet_stats.get(address)
                stats[address] = (
                    replace(current, counterparties=set(current.counterparties))
                    if current else WalletStats(address=address)
                )
            return stats[address]

        for record in records:
            if not isinstance(record, TransferRecord):
                raise DataError(f"Unsupported record type: {type(record).__name__}")
            key = record.identity
            if key in self.transfers or key in staged:
                continue
            staged[key] = record

            if record.from_address == record.to_address:
                stats_for(record.from_address).apply(record, sent=True, received=True)
                updates += 1
                continue

            sender = stats_for(record.from_address)
            receiver = stats_for(record.to_address)
            sender.apply(record, sent=True, received=False)
            receiver.apply(record, sent=False, received=True)
            sender.add_counterparty(record.to_address)
            receiver.add_counterparty(record.from_address)
            updates += 1

        self.transfers.update(staged)
        self.wallet_stats.update(stats)
        self.aggregate_updates += updates
        return len(staged)

    async def count_transfers(self) -> int:
        self._require_available()
        return len(self.transfers)

    async def get_checkpoint(self) -> Optional[int]:
        self._require_available()
        return self.checkpoint

    async def set_checkpoint(self, slot: int) -> bool:
        self._require_available()
        if self.checkpoint is not None and slot <= self.checkpoint:
            return False
        self.checkpoint = int(slot)
        return True
