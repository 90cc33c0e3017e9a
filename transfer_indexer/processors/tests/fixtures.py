"""
Builders for jsonParsed transaction documents used across the test suite.
"""

from typing import Any, Dict, List, Optional

MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
OTHER_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"

OWNER_A = "OwnerA1111111111111111111111111111111111111"
OWNER_B = "OwnerB1111111111111111111111111111111111111"
OWNER_C = "OwnerC1111111111111111111111111111111111111"
OWNER_D = "OwnerD1111111111111111111111111111111111111"

TOKEN_ACCOUNT_A = "TokenAcctA11111111111111111111111111111111"
TOKEN_ACCOUNT_B = "TokenAcctB11111111111111111111111111111111"
TOKEN_ACCOUNT_C = "TokenAcctC11111111111111111111111111111111"
TOKEN_ACCOUNT_D = "TokenAcctD11111111111111111111111111111111"

ACCOUNT_KEYS = [TOKEN_ACCOUNT_A, TOKEN_ACCOUNT_B, TOKEN_ACCOUNT_C, TOKEN_ACCOUNT_D]

BLOCK_TIME = 1700000000


def transfer_ix(
    source: str,
    destination: str,
    amount: Any,
    authority: Optional[str] = None,
    checked: bool = False,
    mint: Optional[str] = None,
) -> Dict[str, Any]:
    """One parsed spl-token transfer instruction."""
    info: Dict[str, Any] = {"source": source, "destination": destination}
    if authority:
        info["authority"] = authority
    if checked:
        info["tokenAmount"] = {"amount": str(amount), "decimals": 6}
        info["mint"] = mint or MINT
        ix_type = "transferChecked"
    else:
        info["amount"] = str(amount)
        if mint:
            info["mint"] = mint
        ix_type = "transfer"
    return {
        "program": "spl-token",
        "programId": "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA",
        "parsed": {"type": ix_type, "info": info},
    }


def balance(index: int, mint: str, owner: str, amount: int = 0) -> Dict[str, Any]:
    return {
        "accountIndex": index,
        "mint": mint,
        "owner": owner,
        "uiTokenAmount": {"amount": str(amount), "decimals": 6},
    }


def default_balances() -> List[Dict[str, Any]]:
    """A and B hold the tracked mint, C and D another one."""
    return [
        balance(0, MINT, OWNER_A),
        balance(1, MINT, OWNER_B),
        balance(2, OTHER_MINT, OWNER_C),
        balance(3, OTHER_MINT, OWNER_D),
    ]


def make_tx(
    instructions: Optional[List[Dict[str, Any]]] = None,
    inner: Optional[List[List[Dict[str, Any]]]] = None,
    slot: int = 1000,
    block_time: Optional[int] = BLOCK_TIME,
    err: Any = None,
    pre_balances: Optional[List[Dict[str, Any]]] = None,
    post_balances: Optional[List[Dict[str, Any]]] = None,
    account_keys: Optional[List[Any]] = None,
) -> Dict[str, Any]:
    """A ``getTransaction`` result in jsonParsed encoding."""
    keys = account_keys if account_keys is not None else [
        {"pubkey": key, "signer": False, "writable": True} for key in ACCOUNT_KEYS
    ]
    return {
        "slot": slot,
        "blockTime": block_time,
        "meta": {
            "err": err,
            "innerInstructions": [
                {"index": i, "instructions": ixs} for i, ixs in enumerate(inner or [])
            ],
            "preTokenBalances": pre_balances if pre_balances is not None else default_balances(),
            "postTokenBalances": post_balances if post_balances is not None else default_balances(),
        },
        "transaction": {
            "message": {
                "accountKeys": keys,
                "instructions": instructions or [],
            },
            "signatures": ["sig"],
        },
    }


def simple_transfer_tx(amount: int = 1_500_000, slot: int = 1000) -> Dict[str, Any]:
    """A single A -> B transfer of the tracked mint."""
    return make_tx([transfer_ix(TOKEN_ACCOUNT_A, TOKEN_ACCOUNT_B, amount, authority=OWNER_A)], slot=slot)
