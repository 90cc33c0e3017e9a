"""
Tests for the ledger connection manager.
"""

from unittest.mock import AsyncMock, patch

import pytest

from transfer_indexer.ledger import (
    ConnectionError,
    ConnectionState,
    LedgerConnectionManager,
    backoff_delay,
)
from transfer_indexer.ledger.tests.fakes import FakeLedgerClient


class TestBackoffDelay:
    """Test the exponential backoff schedule."""

    def test_schedule_in_milliseconds(self):
        delays = [backoff_delay(n, 5000, 60000) for n in range(1, 6)]
        assert delays == [5000, 10000, 20000, 40000, 60000]

    def test_capped_for_long_outages(self):
        assert backoff_delay(500, 5.0, 60.0) == 60.0

    def test_invalid_attempt(self):
        with pytest.raises(ValueError):
            backoff_delay(0)


class ClientPool:
    """Factory handing out fresh fake clients and remembering them."""

    def __init__(self):
        self.created = []
        self.fail_connect = False

    def __call__(self):
        client = FakeLedgerClient(slot=100 + len(self.created))
        client.fail_connect = self.fail_connect
        self.created.append(client)
        return client


@pytest.fixture
def pool():
    return ClientPool()


@pytest.fixture
def manager(pool):
    return LedgerConnectionManager(pool, health_interval=0.01, health_timeout=1, base_delay=5, max_delay=60)


class TestConnect:
    """Test opening the handle."""

    @pytest.mark.asyncio
    async def test_connect(self, manager, pool):
        client = await manager.connect()

        assert client is pool.created[0]
        assert manager.state == ConnectionState.CONNECTED
        assert await manager.health_check() == 100
        assert manager.slot == 100

    @pytest.mark.asyncio
    async def test_connect_failure_closes_client(self, manager, pool):
        pool.fail_connect = True

        with pytest.raises(ConnectionError):
            await manager.connect()
        assert pool.created[0].closed is True
        assert manager.client is None

    @pytest.mark.asyncio
    async def test_closed_stream_fails_health(self, manager, pool):
        await manager.connect()
        pool.created[0].stream_is_closed = True

        with pytest.raises(ConnectionError):
            await manager.health_check()


class TestReconnect:
    """Test the reconnect state machine."""

    @pytest.mark.asyncio
    async def test_failed_probe_replaces_handle(self, manager, pool):
        await manager.connect()
        pool.created[0].fail_get_slot = True
        disconnected, reconnected = [], []

        async def on_disconnect(client):
            disconnected.append(client)

        async def on_reconnect(client):
            reconnected.append(client)

        manager.on_disconnect(on_disconnect)
        manager.on_reconnect(on_reconnect)

        with patch("transfer_indexer.ledger.connection.asyncio.sleep", AsyncMock()) as sleep:
            healthy = await manager.check_and_recover()

        assert healthy is False
        sleep.assert_awaited_once_with(5)
        assert disconnected == [pool.created[0]]
        assert reconnected == [pool.created[1]]
        assert pool.created[0].closed is True
        assert manager.client is pool.created[1]
        assert manager.reconnect_attempts == 1

        assert await manager.check_and_recover() is True
        assert manager.reconnect_attempts == 0
        assert manager.state == ConnectionState.CONNECTED

    @pytest.mark.asyncio
    async def test_backoff_grows_while_node_is_down(self, manager, pool):
        await manager.connect()
        pool.created[0].fail_get_slot = True
        pool.fail_connect = True

        with patch("transfer_indexer.ledger.connection.asyncio.sleep", AsyncMock()) as sleep:
            for _ in range(5):
                await manager.check_and_recover()

        assert [c.args[0] for c in sleep.await_args_list] == [5, 10, 20, 40, 60]
        assert manager.state == ConnectionState.RECONNECTING
        assert manager.reconnect_attempts == 5

    @pytest.mark.asyncio
    async def test_hook_errors_are_ignored(self, manager, pool):
        await manager.connect()
        pool.created[0].fail_get_slot = True
        manager.on_disconnect(AsyncMock(side_effect=RuntimeError("boom")))

        with patch("transfer_indexer.ledger.connection.asyncio.sleep", AsyncMock()):
            await manager.check_and_recover()

        assert manager.state == ConnectionState.CONNECTED


class TestClose:
    """Test terminal shutdown."""

    @pytest.mark.asyncio
    async def test_close_is_terminal(self, manager, pool):
        await manager.connect()
        manager.start_monitoring()

        await manager.close()

        assert manager.state == ConnectionState.CLOSED
        assert pool.created[0].closed is True
        with pytest.raises(ConnectionError):
            await manager.connect()
