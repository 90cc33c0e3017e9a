"""
Token transfer extraction from jsonParsed Solana transactions.

Pure functions only: no I/O, no logging above debug level. The input is the
``result`` object of a ``getTransaction`` call made with
``encoding=jsonParsed``.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional
import logging

from .base import TransferRecord

logger = logging.getLogger(__name__)

TOKEN_PROGRAM = "spl-token"
TRANSFER_TYPES = frozenset({"transfer", "transferChecked"})


def _account_key(entry: Any) -> Optional[str]:
    """Account keys come back as plain strings or ``{"pubkey": ...}`` objects."""
    if isinstance(entry, dict):
        return entry.get("pubkey")
    return entry


def _iter_instructions(tx: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
    """Top-level instructions first, then every inner set in order."""
    message = (tx.get("transaction") or {}).get("message") or {}
    for ix in message.get("instructions") or []:
        yield ix
    for inner in (tx.get("meta") or {}).get("innerInstructions") or []:
        for ix in inner.get("instructions") or []:
            yield ix


def _parse_amount(info: Dict[str, Any], ix_type: str) -> int:
    if ix_type == "transferChecked":
        raw = (info.get("tokenAmount") or {}).get("amount")
    else:
        raw = info.get("amount")
    try:
        return int(raw)
    except (TypeError, ValueError):
        return 0


def _balance_tables(tx: Dict[str, Any], token_mint: str):
    """
    Build account -> mint and account -> owner lookups from the token
    balance snapshots. Post balances win over pre balances.
    """
    meta = tx.get("meta") or {}
    message = (tx.get("transaction") or {}).get("message") or {}
    keys = [_account_key(k) for k in message.get("accountKeys") or []]

    mints: Dict[str, str] = {}
    owners: Dict[str, str] = {}
    for snapshot in ("preTokenBalances", "postTokenBalances"):
        for bal in meta.get(snapshot) or []:
            index = bal.get("accountIndex")
            if index is None or index >= len(keys) or not keys[index]:
                continue
            account = keys[index]
            if bal.get("mint"):
                mints[account] = bal["mint"]
            if bal.get("mint") == token_mint and bal.get("owner"):
                owners[account] = bal["owner"]
    return mints, owners


def to_display_amount(amount: int, decimals: int) -> Decimal:
    """Convert base units to display units, e.g. 1500000 @ 6 -> 1.5."""
    return Decimal(amount).scaleb(-decimals)


def parse_transaction(
    signature: str,
    tx: Optional[Dict[str, Any]],
    token_mint: str,
    decimals: int,
) -> List[TransferRecord]:
    """
    Extract transfers of ``token_mint`` from one fetched transaction.

    Args:
        signature: Transaction signature
        tx: ``getTransaction`` result (jsonParsed encoding)
        token_mint: Only transfers of this mint are kept
        decimals: Decimal precision of the mint

    Returns:
        List of TransferRecord, possibly empty, in instruction order
    """
    records: List[TransferRecord] = []
    if not tx:
        return records

    meta = tx.get("meta")
    if not meta or meta.get("err") is not None:
        return records

    block_time = tx.get("blockTime")
    if not block_time:
        logger.debug(f"Skipping {signature[:16]}...: no block time")
        return records

    slot = int(tx.get("slot") or 0)
    timestamp = datetime.fromtimestamp(block_time, tz=timezone.utc)
    mints, owners = _balance_tables(tx, token_mint)

    for position, ix in enumerate(_iter_instructions(tx)):
        parsed = ix.get("parsed")
        if ix.get("program") != TOKEN_PROGRAM or not isinstance(parsed, dict):
            continue

        ix_type = parsed.get("type")
        info = parsed.get("info")
        if ix_type not in TRANSFER_TYPES or not isinstance(info, dict):
            continue

        amount = _parse_amount(info, ix_type)
        if amount <= 0:
            continue

        source = info.get("source") or ""
        destination = info.get("destination") or ""

        mint = info.get("mint") or mints.get(source) or mints.get(destination)
        if mint != token_mint:
            continue

        sender = (
            owners.get(source)
            or info.get("authority")
            or info.get("multisigAuthority")
            or source
        )
        receiver = owners.get(destination) or destination
        if not sender or not receiver:
            continue

        records.append(
            TransferRecord(
                signature=signature,
                transfer_index=position,
                from_address=sender,
                to_address=receiver,
                amount=amount,
                amount_display=to_display_amount(amount, decimals),
                token_mint=token_mint,
                block_time=timestamp,
                slot=slot,
            )
        )

    return records


class TransferParser:
    """Parser bound to one tracked mint."""

    def __init__(self, token_mint: str, decimals: int):
        self.token_mint = token_mint
        self.decimals = decimals

    def parse(self, signature: str, tx: Optional[Dict[str, Any]]) -> List[TransferRecord]:
        return parse_transaction(signature, tx, self.token_mint, self.decimals)

    def __repr__(self) -> str:
        return f"TransferParser(mint={self.token_mint}, decimals={self.decimals})"
