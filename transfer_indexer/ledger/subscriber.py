"""
Event subscriber feeding realtime signatures into the decode queue.
"""

import asyncio
import logging
from typing import Optional

from .base import LedgerClientBase, LogNotification
from .connection import LedgerConnectionManager

logger = logging.getLogger(__name__)


class EventSubscriber:
    """
    Registers a log subscription for ``mention`` on the current handle.

    The push callback never awaits: it filters failed transactions and puts
    the signature on a bounded queue. A full queue drops the signature;
    the backfill scanner recovers it later.
    """

    def __init__(self, connection: LedgerConnectionManager, mention: str, queue: asyncio.Queue):
        self.connection = connection
        self.mention = mention
        self.queue = queue

        self.subscription_id: Optional[int] = None
        self._client: Optional[LedgerClientBase] = None
        self._accepting = False

        self.received = 0
        self.discarded_failed = 0
        self.dropped = 0

    @property
    def subscribed(self) -> bool:
        return self.subscription_id is not None

    async def subscribe(self, client: Optional[LedgerClientBase] = None) -> int:
        """
        Subscribe on ``client`` (default: the connection's current handle).

        Returns:
            int: Subscription id
        """
        client = client or self.connection.client
        if client is None:
            raise RuntimeError("Cannot subscribe without a ledger client")

        self._accepting = True
        self.subscription_id = await client.logs_subscribe(self.mention, self.handle_notification)
        self._client = client
        logger.info(f"Subscribed to logs mentioning {self.mention} (id={self.subscription_id})")
        return self.subscription_id

    async def detach(self, client: LedgerClientBase) -> None:
        """Disconnect hook: forget the subscription living on a failed handle."""
        if self._client is client and self.subscription_id is not None:
            logger.info(f"Dropping subscription {self.subscription_id} with the failed ledger handle")
            self.subscription_id = None
            self._client = None

    async def resubscribe(self, client: LedgerClientBase) -> None:
        """Reconnect hook: the old subscription died with the old handle."""
        self.subscription_id = None
        self._client = None
        if self._accepting:
            await self.subscribe(client)

    async def unsubscribe(self) -> None:
        """Cancel the subscription; safe to call repeatedly or when never subscribed."""
        subscription_id, client = self.subscription_id, self._client
        self.subscription_id = None
        self._client = None
        if subscription_id is None or client is None:
            return
        try:
            await client.logs_unsubscribe(subscription_id)
            logger.info(f"Unsubscribed from logs (id={subscription_id})")
        except Exception as e:
            logger.warning(f"Failed to unsubscribe {subscription_id}: {e}")

    def pause(self) -> None:
        """Stop accepting notifications."""
        self._accepting = False

    def handle_notification(self, notification: LogNotification) -> None:
        if not self._accepting:
            return
        self.received += 1

        if notification.failed:
            self.discarded_failed += 1
            return

        try:
            self.queue.put_nowait(notification.signature)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                f"Decode queue full, dropping {notification.signature[:16]}... "
                f"({self.dropped} dropped so far)"
            )
