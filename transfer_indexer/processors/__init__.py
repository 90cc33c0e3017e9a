"""
Transaction processors.

Turn fetched ledger transactions into normalized TransferRecords.
"""

from .base import TransferRecord
from .transfer_parser import TransferParser, parse_transaction, to_display_amount

__all__ = [
    "TransferRecord",
    "TransferParser",
    "parse_transaction",
    "to_display_amount",
]
