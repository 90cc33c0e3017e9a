"""
Ledger node access: client, connection management, subscription and backfill.
"""

from .backfill import BackfillResult, BackfillScanner
from .base import (
    ConnectionError,
    LedgerClientBase,
    LedgerError,
    LogNotification,
    RpcError,
    SignatureInfo,
    TransientRpcError,
)
from .connection import ConnectionState, LedgerConnectionManager, backoff_delay
from .dispatcher import RateLimitedDispatcher
from .rpc_client import SolanaRpcClient
from .subscriber import EventSubscriber

__all__ = [
    'LedgerError',
    'ConnectionError',
    'RpcError',
    'TransientRpcError',
    'SignatureInfo',
    'LogNotification',
    'LedgerClientBase',
    'SolanaRpcClient',
    'RateLimitedDispatcher',
    'ConnectionState',
    'LedgerConnectionManager',
    'backoff_delay',
    'EventSubscriber',
    'BackfillScanner',
    'BackfillResult',
]
