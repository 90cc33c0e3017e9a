"""
Ledger node configuration for the transfer indexer.
"""

from dataclasses import dataclass

from .base import BaseConfig

USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


@dataclass
class LedgerConfig(BaseConfig):
    """Solana node endpoints and the tracked token."""

    # Node endpoints
    SOLANA_RPC_URL: str = BaseConfig.get_env(
        "SOLANA_RPC_URL", "https://api.mainnet-beta.solana.com"
    )
    SOLANA_WS_URL: str = BaseConfig.get_env("SOLANA_WS_URL", "")

    # Tracked asset
    TOKEN_MINT: str = BaseConfig.get_env("TOKEN_MINT", BaseConfig.get_env("USDC_MINT", USDC_MINT))
    TOKEN_DECIMALS: int = BaseConfig.get_env_int("TOKEN_DECIMALS", 6)

    # Request settings
    COMMITMENT: str = BaseConfig.get_env("COMMITMENT", "confirmed")
    RPC_TIMEOUT: float = BaseConfig.get_env_float("RPC_TIMEOUT", 30.0)
    WS_HEARTBEAT: float = BaseConfig.get_env_float("WS_HEARTBEAT", 20.0)

    @property
    def ws_url(self) -> str:
        """Websocket endpoint, derived from the RPC URL when not set."""
        if self.SOLANA_WS_URL:
            return self.SOLANA_WS_URL
        if self.SOLANA_RPC_URL.startswith("http"):
            return self.SOLANA_RPC_URL.replace("http", "ws", 1)
        return self.SOLANA_RPC_URL
