"""
Ledger connection manager.

Owns the current client handle, probes it on a fixed interval and replaces
it with exponential backoff when a probe fails.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from .base import ConnectionError, LedgerClientBase

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], LedgerClientBase]
Hook = Callable[[LedgerClientBase], Awaitable[None]]


def backoff_delay(attempt: int, base: float = 5.0, maximum: float = 60.0) -> float:
    """
    Delay before reconnect ``attempt`` (1-based).

    ``min(base * 2**(attempt-1), maximum)``; with the defaults:
    5, 10, 20, 40, 60, 60, ...
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got: {attempt}")
    # cap the exponent so long outages do not build huge integers
    return min(base * 2 ** min(attempt - 1, 32), maximum)


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class LedgerConnectionManager:
    """
    Single owner of the ledger client handle.

    Usage:
        manager = LedgerConnectionManager(lambda: SolanaRpcClient(url))
        manager.on_reconnect(resubscribe)
        await manager.connect()
        manager.start_monitoring()
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        health_interval: float = 30.0,
        health_timeout: float = 10.0,
        base_delay: float = 5.0,
        max_delay: float = 60.0,
    ):
        self.client_factory = client_factory
        self.health_interval = health_interval
        self.health_timeout = health_timeout
        self.base_delay = base_delay
        self.max_delay = max_delay

        self.client: Optional[LedgerClientBase] = None
        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0
        self.slot: Optional[int] = None

        self._disconnect_hooks: List[Hook] = []
        self._reconnect_hooks: List[Hook] = []
        self._monitor_task: Optional[asyncio.Task] = None

    def on_disconnect(self, hook: Hook) -> None:
        """Run ``hook(old_client)`` before a failed handle is closed."""
        self._disconnect_hooks.append(hook)

    def on_reconnect(self, hook: Hook) -> None:
        """Run ``hook(new_client)`` after a replacement handle is up."""
        self._reconnect_hooks.append(hook)

    @property
    def connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    async def connect(self) -> LedgerClientBase:
        """
        Create and open a client handle.

        Raises:
            ConnectionError: If the handle cannot be opened
        """
        if self.state == ConnectionState.CLOSED:
            raise ConnectionError("Connection manager is closed")

        if self.state != ConnectionState.RECONNECTING:
            self.state = ConnectionState.CONNECTING

        client = self.client_factory()
        try:
            await client.connect()
        except Exception as e:
            await self._close_quietly(client)
            raise ConnectionError(f"Failed to connect to ledger node: {e}")

        self.client = client
        self.state = ConnectionState.CONNECTED
        return client

    async def health_check(self) -> int:
        """
        Probe the current handle.

        Returns:
            int: Current slot reported by the node

        Raises:
            ConnectionError: If there is no handle, the stream closed or the probe failed
        """
        if self.client is None:
            raise ConnectionError("No ledger client")
        if self.client.stream_closed:
            raise ConnectionError("Subscription stream closed")
        try:
            slot = await asyncio.wait_for(self.client.get_slot(), timeout=self.health_timeout)
        except Exception as e:
            raise ConnectionError(f"Health probe failed: {e!r}")
        self.slot = slot
        return slot

    async def check_and_recover(self) -> bool:
        """
        One health-loop tick.

        Returns:
            bool: True if the handle was healthy
        """
        try:
            await self.health_check()
        except ConnectionError as e:
            logger.warning(f"Ledger connection unhealthy: {e}")
            await self._reconnect()
            return False

        if self.reconnect_attempts:
            logger.info(f"Ledger connection healthy again after {self.reconnect_attempts} attempt(s)")
        self.reconnect_attempts = 0
        self.state = ConnectionState.CONNECTED
        return True

    async def _reconnect(self) -> None:
        self.reconnect_attempts += 1
        self.state = ConnectionState.RECONNECTING

        old = self.client
        if old is not None:
            for hook in self._disconnect_hooks:
                try:
                    await hook(old)
                except Exception as e:
                    logger.debug(f"Disconnect hook failed: {e}")
            await self._close_quietly(old)
            self.client = None

        delay = backoff_delay(self.reconnect_attempts, self.base_delay, self.max_delay)
        logger.info(f"Reconnecting in {delay:.1f}s (attempt {self.reconnect_attempts})")
        await asyncio.sleep(delay)

        if self.state == ConnectionState.CLOSED:
            return

        try:
            client = await self.connect()
        except ConnectionError as e:
            self.state = ConnectionState.RECONNECTING
            logger.error(f"Reconnect attempt {self.reconnect_attempts} failed: {e}")
            return

        for hook in self._reconnect_hooks:
            try:
                await hook(client)
            except Exception as e:
                logger.error(f"Reconnect hook failed: {e}")
        logger.info("Ledger connection re-established")

    async def _monitor(self) -> None:
        while self.state != ConnectionState.CLOSED:
            await asyncio.sleep(self.health_interval)
            if self.state == ConnectionState.CLOSED:
                break
            try:
                await self.check_and_recover()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Unexpected error in ledger health loop")

    def start_monitoring(self) -> None:
        """Start the fixed-interval health loop."""
        if self._monitor_task is None or self._monitor_task.done():
            self._monitor_task = asyncio.create_task(self._monitor())

    async def stop_monitoring(self) -> None:
        if self._monitor_task is not None:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None

    async def close(self) -> None:
        """Terminal shutdown; the manager cannot reconnect afterwards."""
        self.state = ConnectionState.CLOSED
        await self.stop_monitoring()
        if self.client is not None:
            await self._close_quietly(self.client)
            self.client = None

    @staticmethod
    async def _close_quietly(client: LedgerClientBase) -> None:
        try:
            await client.close()
        except Exception as e:
            logger.debug(f"Ignoring error while closing ledger client: {e}")
