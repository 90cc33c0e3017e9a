"""
Tests for the transfer indexer orchestrator.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from transfer_indexer.core.indexer import StartupError, TransferIndexer
from transfer_indexer.core.storage import DataError, MemoryStorage
from transfer_indexer.ledger import ConnectionState, LedgerConnectionManager, RateLimitedDispatcher
from transfer_indexer.ledger.tests.fakes import FakeLedgerClient, signature_history
from transfer_indexer.processors import TransferParser
from transfer_indexer.processors.tests.fixtures import MINT, OWNER_A, OWNER_B, simple_transfer_tx


@pytest.fixture
def client():
    return FakeLedgerClient(slot=10_000)


@pytest.fixture
def storage():
    return MemoryStorage()


def build_indexer(storage, client_factory, base_delay=5.0, **overrides):
    options = dict(
        backfill_page_delay=0,
        backfill_retry_delay=0,
        decode_workers=2,
        flush_interval=3600,
        drain_timeout=1,
    )
    options.update(overrides)
    return TransferIndexer(
        storage,
        LedgerConnectionManager(client_factory, health_interval=3600, base_delay=base_delay),
        RateLimitedDispatcher(max_concurrent=3, delay=0),
        TransferParser(MINT, 6),
        **options,
    )


@pytest.fixture
def indexer(client, storage):
    return build_indexer(storage, lambda: client)


async def settle(indexer):
    await asyncio.wait_for(indexer.queue.join(), timeout=1)


class TestInitialize:
    """Fatal-startup checks and checkpoint handling."""

    @pytest.mark.asyncio
    async def test_fresh_store_creates_checkpoint(self, indexer, storage):
        assert await indexer.initialize() is None

        assert await storage.get_checkpoint() == 10_000
        assert indexer.last_checkpoint == 10_000

    @pytest.mark.asyncio
    async def test_resumes_from_stored_checkpoint(self, indexer, storage):
        await storage.connect()
        await storage.set_checkpoint(9_000)

        assert await indexer.initialize() == 9_000
        assert indexer.startup_checkpoint == 9_000
        assert await storage.get_checkpoint() == 9_000

    @pytest.mark.asyncio
    async def test_store_unavailable(self, indexer, storage):
        storage.available = False
        with pytest.raises(StartupError):
            await indexer.initialize()

    @pytest.mark.asyncio
    async def test_node_unavailable(self, indexer, client):
        client.fail_connect = True
        with pytest.raises(StartupError):
            await indexer.initialize()


class TestRealtimePath:
    """Subscription events through decode workers into storage."""

    @pytest.mark.asyncio
    async def test_end_to_end_single_transfer(self, indexer, client, storage):
        client.transactions["sigE2E"] = simple_transfer_tx(1_500_000, slot=1000)
        await indexer.start()

        client.push("sigE2E")
        await settle(indexer)

        assert await storage.count_transfers() == 1
        record = storage.transfers[("sigE2E", 0)]
        assert record.amount_display == Decimal("1.5")
        assert (record.from_address, record.to_address, record.slot) == (OWNER_A, OWNER_B, 1000)
        assert indexer.get_stats().session_inserted_count == 1

        # same transaction again through both entry points
        client.push("sigE2E")
        await settle(indexer)
        assert await indexer.persist([record]) == 0
        assert await storage.count_transfers() == 1
        assert storage.aggregate_updates == 1

        await indexer.stop()

    @pytest.mark.asyncio
    async def test_start_and_stop_are_idempotent(self, indexer, client):
        await indexer.start()
        await indexer.start()
        assert len(client.subscriptions) == 1

        await indexer.stop()
        await indexer.stop()

        assert indexer.running is False
        assert client.unsubscribed == [1]
        assert indexer.connection.state == ConnectionState.CLOSED
        assert client.closed is True

    @pytest.mark.asyncio
    async def test_failed_fetch_releases_signature(self, indexer, client):
        client.fetch_failures["sigBad"] = RuntimeError("boom")
        await indexer.start()

        client.push("sigBad")
        await settle(indexer)

        assert "sigBad" not in indexer.dedup
        assert indexer.running is True
        await indexer.stop()

    @pytest.mark.asyncio
    async def test_checkpoint_follows_persisted_slots(self, indexer, client, storage):
        client.transactions["sigNew"] = simple_transfer_tx(slot=12_000)
        await indexer.start()

        client.push("sigNew")
        await settle(indexer)

        assert await storage.get_checkpoint() == 12_000
        assert indexer.get_stats().last_checkpoint == 12_000
        await indexer.stop()


class TestPendingBuffer:
    """Records survive a store outage."""

    @pytest.mark.asyncio
    async def test_outage_buffers_then_flushes(self, indexer, client, storage):
        client.transactions["sigOut"] = simple_transfer_tx(slot=11_000)
        await indexer.initialize()

        storage.available = False
        assert await indexer.process_signature("sigOut") == 0
        assert len(indexer.pending) == 1
        assert indexer.get_stats().pending_buffer_size == 1

        storage.available = True
        assert await indexer.flush_pending() == 1
        assert len(indexer.pending) == 0
        assert await storage.get_checkpoint() == 11_000
        assert indexer.session_inserted_count == 1

    @pytest.mark.asyncio
    async def test_buffer_flushed_before_next_batch(self, indexer, client, storage):
        client.transactions["sig1"] = simple_transfer_tx(slot=11_000)
        client.transactions["sig2"] = simple_transfer_tx(slot=11_001)
        await indexer.initialize()

        storage.available = False
        await indexer.process_signature("sig1")
        storage.available = True
        await indexer.process_signature("sig2")

        assert await storage.count_transfers() == 2
        assert len(indexer.pending) == 0

    @pytest.mark.asyncio
    async def test_data_error_drops_records(self, indexer, client, storage):
        client.transactions["sigDrop"] = simple_transfer_tx()
        await indexer.initialize()
        storage.insert_batch = AsyncMock(side_effect=DataError("bad row"))

        assert await indexer.process_signature("sigDrop") == 0
        assert len(indexer.pending) == 0

    @pytest.mark.asyncio
    async def test_data_error_releases_signature_for_backfill(self, indexer, client, storage):
        client.history = signature_history(3)
        client.transactions = {i.signature: simple_transfer_tx(slot=i.slot) for i in client.history}
        await indexer.initialize()

        storage.insert_batch = AsyncMock(side_effect=DataError("bad row"))
        assert await indexer.process_signature("sig0001") == 0
        assert "sig0001" not in indexer.dedup

        del storage.insert_batch
        result = await indexer.run_backfill(10)

        assert result.skipped_in_flight == 0
        assert ("sig0001", 0) in storage.transfers
        assert await storage.count_transfers() == 3

    @pytest.mark.asyncio
    async def test_overflow_releases_signature_for_backfill(self, client, storage):
        indexer = build_indexer(storage, lambda: client, pending_buffer_size=1)
        client.history = signature_history(2)
        client.transactions = {i.signature: simple_transfer_tx(slot=i.slot) for i in client.history}
        await indexer.initialize()

        storage.available = False
        await indexer.process_signature("sig0000")
        await indexer.process_signature("sig0001")

        assert len(indexer.pending) == 1
        assert indexer.pending.dropped == 1
        assert "sig0000" in indexer.dedup
        assert "sig0001" not in indexer.dedup

        storage.available = True
        assert await indexer.flush_pending() == 1
        result = await indexer.run_backfill(10)

        assert result.skipped_in_flight == 1
        assert await storage.count_transfers() == 2


class TestShutdown:
    """Graceful stop: buffered records, drain timeout."""

    @pytest.mark.asyncio
    async def test_stop_flushes_pending_buffer(self, indexer, client, storage):
        client.transactions["sigBuf"] = simple_transfer_tx(slot=11_000)
        await indexer.start()

        storage.available = False
        assert await indexer.process_signature("sigBuf") == 0
        assert len(indexer.pending) == 1

        storage.available = True
        await indexer.stop()

        assert len(indexer.pending) == 0
        assert ("sigBuf", 0) in storage.transfers
        assert await storage.get_checkpoint() == 11_000

    @pytest.mark.asyncio
    async def test_stop_abandons_slow_decode_after_drain_timeout(self, client, storage):
        indexer = build_indexer(storage, lambda: client, drain_timeout=0.05)
        client.transactions["sigSlow"] = simple_transfer_tx()
        client.fetch_delay = 30
        await indexer.start()

        client.push("sigSlow")
        await asyncio.sleep(0.01)
        assert client.fetch_calls == ["sigSlow"]

        await asyncio.wait_for(indexer.stop(), timeout=5)

        assert indexer.running is False
        assert indexer._workers == []
        assert await storage.count_transfers() == 0
        assert "sigSlow" not in indexer.dedup


class TestReconnect:
    """Connection recovery wired through the orchestrator."""

    @pytest.mark.asyncio
    async def test_new_handle_is_resubscribed(self, storage):
        first = FakeLedgerClient(slot=10_000)
        second = FakeLedgerClient(slot=10_001)
        clients = iter([first, second])
        indexer = build_indexer(storage, lambda: next(clients), base_delay=0)
        await indexer.start()

        first.fail_get_slot = True
        assert await indexer.connection.check_and_recover() is False

        assert first.closed is True
        assert indexer.connection.client is second
        assert indexer.subscriber.subscribed is True

        second.transactions["sigAfter"] = simple_transfer_tx(slot=12_000)
        second.push("sigAfter")
        await settle(indexer)

        assert ("sigAfter", 0) in storage.transfers
        assert second.fetch_calls == ["sigAfter"]
        await indexer.stop()

    @pytest.mark.asyncio
    async def test_failed_reconnect_drops_subscription(self, storage):
        first = FakeLedgerClient()
        second = FakeLedgerClient()
        second.fail_connect = True
        clients = iter([first, second])
        indexer = build_indexer(storage, lambda: next(clients), base_delay=0)
        await indexer.start()
        assert indexer.subscriber.subscribed is True

        first.fail_get_slot = True
        await indexer.connection.check_and_recover()

        assert indexer.connection.state == ConnectionState.RECONNECTING
        assert indexer.connection.client is None
        assert indexer.subscriber.subscribed is False
        await indexer.stop()



class TestBackfill:
    """On-demand and startup backfill through the orchestrator."""

    @pytest.mark.asyncio
    async def test_run_backfill_counts_inserts(self, indexer, client, storage):
        client.history = signature_history(30)
        client.transactions = {i.signature: simple_transfer_tx(slot=i.slot) for i in client.history}
        await indexer.initialize()

        first = await indexer.run_backfill(20)
        second = await indexer.run_backfill(20, before=first.last_cursor)

        assert (first.scanned, second.scanned) == (20, 10)
        assert indexer.session_inserted_count == 30
        assert await storage.count_transfers() == 30

    @pytest.mark.asyncio
    async def test_catch_up_stops_at_prior_checkpoint(self, indexer, client, storage):
        client.history = signature_history(50, newest_slot=10_000)
        client.transactions = {i.signature: simple_transfer_tx(slot=i.slot) for i in client.history}
        await storage.connect()
        await storage.set_checkpoint(9_990)
        await indexer.initialize()

        result = await indexer.catch_up()

        assert result.scanned == 10
        assert await storage.count_transfers() == 10

    @pytest.mark.asyncio
    async def test_backfill_and_realtime_overlap(self, indexer, client, storage):
        """A signature seen by both paths is stored once."""
        client.history = signature_history(5)
        client.transactions = {i.signature: simple_transfer_tx(slot=i.slot) for i in client.history}
        await indexer.start()

        client.push("sig0000")
        await settle(indexer)
        await indexer.run_backfill(5)

        assert await storage.count_transfers() == 5
        assert client.fetch_calls.count("sig0000") == 1
        await indexer.stop()


class TestStats:
    """Test the stats snapshot."""

    @pytest.mark.asyncio
    async def test_stats_fields(self, indexer):
        await indexer.initialize()
        stats = indexer.get_stats().to_dict()

        for key in ("running", "last_checkpoint", "session_inserted_count",
                    "pending_buffer_size", "reconnect_attempts"):
            assert key in stats
        assert stats["running"] is False
        assert stats["connection_state"] == "connected"
