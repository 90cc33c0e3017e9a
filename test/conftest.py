import pytest

from transfer_indexer.core.indexer import TransferIndexer
from transfer_indexer.core.storage import MemoryStorage
from transfer_indexer.ledger import LedgerConnectionManager, RateLimitedDispatcher
from transfer_indexer.ledger.tests.fakes import FakeLedgerClient
from transfer_indexer.processors import TransferParser
from transfer_indexer.processors.tests.fixtures import MINT


@pytest.fixture
def ledger_client():
    return FakeLedgerClient(slot=5_000)


@pytest.fixture
def indexer(ledger_client):
    # In-memory store and scripted node, no network
    return TransferIndexer(
        MemoryStorage(),
        LedgerConnectionManager(lambda: ledger_client, health_interval=3600),
        RateLimitedDispatcher(max_concurrent=2, delay=0),
        TransferParser(MINT, 6),
        backfill_page_delay=0,
        flush_interval=3600,
        drain_timeout=1,
    )
