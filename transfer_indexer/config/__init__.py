"""
Configuration management for the transfer indexer.

Use get_config() to access all configuration settings.

Example:
    from transfer_indexer.config import get_config

    config = get_config()

    # Database settings
    postgres_url = config.database.postgres_url

    # Node settings
    rpc_url = config.ledger.SOLANA_RPC_URL
    mint = config.ledger.TOKEN_MINT

    # Pacing and buffers
    page_size = config.indexer.BACKFILL_BATCH_SIZE
"""

from .base import BaseConfig, ConfigError
from .database import DatabaseConfig
from .indexer import IndexerConfig
from .ledger import USDC_MINT, LedgerConfig
from .manager import ConfigManager, get_config, reload_config

__all__ = [
    "BaseConfig",
    "ConfigError",
    "DatabaseConfig",
    "IndexerConfig",
    "LedgerConfig",
    "USDC_MINT",
    "ConfigManager",
    "get_config",
    "reload_config",
]
