"""
Base types for transaction processors.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Tuple
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferRecord:
    """
    One normalized token transfer.

    A transaction can yield several records; ``transfer_index`` is the
    position of the originating instruction in the flattened instruction
    list, so ``(signature, transfer_index)`` identifies a record.
    """
    signature: str
    transfer_index: int
    from_address: str
    to_address: str
    amount: int
    amount_display: Decimal
    token_mint: str
    block_time: datetime
    slot: int

    @property
    def identity(self) -> Tuple[str, int]:
        """Storage identity of the record."""
        return (self.signature, self.transfer_index)

    def to_row(self) -> Tuple[Any, ...]:
        """Column values in ``transfers`` insert order."""
        return (
            self.signature,
            self.transfer_index,
            self.from_address,
            self.to_address,
            self.amount,
            self.amount_display,
            self.token_mint,
            self.block_time,
            self.slot,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert record to a JSON-friendly dictionary."""
        return {
            'signature': self.signature,
            'transfer_index': self.transfer_index,
            'from_address': self.from_address,
            'to_address': self.to_address,
            'amount': str(self.amount),
            'amount_display': str(self.amount_display),
            'token_mint': self.token_mint,
            'block_time': self.block_time.isoformat(),
            'slot': self.slot,
        }
