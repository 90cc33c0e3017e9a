"""
Base classes for ledger node clients.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
import logging

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base exception for ledger node errors."""
    pass


class ConnectionError(LedgerError):
    """Raised when a client handle cannot be established or kept."""
    pass


class RpcError(LedgerError):
    """Raised when the node answers a request with an error."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class TransientRpcError(RpcError):
    """Timeouts, rate limiting and node-behind answers; worth retrying."""
    pass


@dataclass
class SignatureInfo:
    """One entry of ``getSignaturesForAddress``."""
    signature: str
    slot: int
    err: Optional[Any] = None
    block_time: Optional[datetime] = None
    confirmation_status: Optional[str] = None

    @property
    def failed(self) -> bool:
        """Check if the transaction failed on chain."""
        return self.err is not None

    @classmethod
    def from_rpc_item(cls, item: Dict[str, Any]) -> "SignatureInfo":
        block_time = item.get("blockTime")
        return cls(
            signature=item["signature"],
            slot=int(item.get("slot") or 0),
            err=item.get("err"),
            block_time=datetime.fromtimestamp(block_time, tz=timezone.utc) if block_time else None,
            confirmation_status=item.get("confirmationStatus"),
        )


@dataclass
class LogNotification:
    """A pushed ``logsNotification`` for one transaction."""
    subscription_id: Optional[int]
    signature: str
    err: Optional[Any] = None
    slot: Optional[int] = None
    logs: List[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.err is not None

    @classmethod
    def from_rpc_message(cls, message: Dict[str, Any]) -> "LogNotification":
        """
        Build from a raw websocket message.

        Raises:
            ValueError: If the message carries no signature
        """
        params = message.get("params") or {}
        result = params.get("result") or {}
        value = result.get("value") or {}
        signature = value.get("signature")
        if not signature:
            raise ValueError("logsNotification without signature")
        slot = (result.get("context") or {}).get("slot")
        return cls(
            subscription_id=params.get("subscription"),
            signature=signature,
            err=value.get("err"),
            slot=int(slot) if slot is not None else None,
            logs=list(value.get("logs") or []),
        )


NotificationCallback = Callable[[LogNotification], None]


class LedgerClientBase(ABC):
    """
    Abstract client for one ledger node.

    A client is one handle: request/response calls plus at most one push
    stream carrying log subscriptions.
    """

    def __init__(self, rpc_url: str, commitment: str = "confirmed"):
        """
        Initialize client.

        Args:
            rpc_url: JSON-RPC endpoint URL
            commitment: Commitment level used for every request
        """
        self.rpc_url = rpc_url
        self.commitment = commitment
        self.logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")

    @abstractmethod
    async def connect(self) -> None:
        """Open the request session and the push stream."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release every resource held by the handle."""
        pass

    @abstractmethod
    async def get_slot(self) -> int:
        """
        Get the node's current slot.

        Returns:
            int: Current slot
        """
        pass

    @abstractmethod
    async def get_signatures_for_address(
        self,
        address: str,
        before: Optional[str] = None,
        limit: int = 20,
    ) -> List[SignatureInfo]:
        """
        List transaction signatures mentioning ``address``, newest first.

        Args:
            address: Account to list
            before: Only signatures older than this one
            limit: Page size

        Returns:
            List[SignatureInfo]: Page of signatures, empty when exhausted
        """
        pass

    @abstractmethod
    async def get_parsed_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        """
        Fetch one transaction in parsed form.

        Returns:
            Transaction document or None if the node does not have it
        """
        pass

    @abstractmethod
    async def logs_subscribe(self, mention: str, callback: NotificationCallback) -> int:
        """
        Subscribe to log notifications for transactions mentioning ``mention``.

        The callback is invoked synchronously from the stream reader.

        Returns:
            int: Subscription id
        """
        pass

    @abstractmethod
    async def logs_unsubscribe(self, subscription_id: int) -> bool:
        """Cancel a log subscription."""
        pass

    @property
    def stream_closed(self) -> bool:
        """True when a push stream was opened and has since closed."""
        return False
