"""
Indexer pacing, retry and buffer settings.
"""

from dataclasses import dataclass

from .base import BaseConfig


@dataclass
class IndexerConfig(BaseConfig):
    """Runtime tuning for the realtime and backfill paths."""

    # Rate limiting for RPC calls
    MAX_CONCURRENT_RPC: int = BaseConfig.get_env_int("MAX_CONCURRENT_RPC", 3)
    RPC_DELAY: float = BaseConfig.get_env_float("RPC_DELAY", 0.2)

    # Backfill settings
    BACKFILL_BATCH_SIZE: int = BaseConfig.get_env_int("BACKFILL_BATCH_SIZE", 20)
    BACKFILL_PAGE_DELAY: float = BaseConfig.get_env_float("BACKFILL_PAGE_DELAY", 2.0)
    BACKFILL_RETRY_DELAY: float = BaseConfig.get_env_float("BACKFILL_RETRY_DELAY", 4.0)
    BACKFILL_MAX_RETRIES: int = BaseConfig.get_env_int("BACKFILL_MAX_RETRIES", 5)
    BACKFILL_ON_START: bool = BaseConfig.get_env_bool("BACKFILL_ON_START", True)
    STARTUP_BACKFILL_COUNT: int = BaseConfig.get_env_int("STARTUP_BACKFILL_COUNT", 100)

    # Reconnection settings
    RECONNECT_BASE_DELAY: float = BaseConfig.get_env_float("RECONNECT_BASE_DELAY", 5.0)
    RECONNECT_MAX_DELAY: float = BaseConfig.get_env_float("RECONNECT_MAX_DELAY", 60.0)
    HEALTH_CHECK_INTERVAL: float = BaseConfig.get_env_float("HEALTH_CHECK_INTERVAL", 30.0)
    HEALTH_CHECK_TIMEOUT: float = BaseConfig.get_env_float("HEALTH_CHECK_TIMEOUT", 10.0)

    # In-memory bounds
    DEDUP_WINDOW_SIZE: int = BaseConfig.get_env_int("DEDUP_WINDOW_SIZE", 10000)
    PENDING_BUFFER_SIZE: int = BaseConfig.get_env_int("PENDING_BUFFER_SIZE", 1000)
    DECODE_QUEUE_SIZE: int = BaseConfig.get_env_int("DECODE_QUEUE_SIZE", 5000)
    DECODE_WORKERS: int = BaseConfig.get_env_int(
        "DECODE_WORKERS", BaseConfig.get_env_int("MAX_CONCURRENT_RPC", 3)
    )
    SHUTDOWN_DRAIN_TIMEOUT: float = BaseConfig.get_env_float("SHUTDOWN_DRAIN_TIMEOUT", 10.0)

    # Health endpoint
    HEALTH_PORT: int = BaseConfig.get_env_int("HEALTH_PORT", BaseConfig.get_env_int("PORT", 3001))

    def positive_limits(self) -> dict:
        """Settings that must be strictly positive."""
        return {
            "MAX_CONCURRENT_RPC": self.MAX_CONCURRENT_RPC,
            "BACKFILL_BATCH_SIZE": self.BACKFILL_BATCH_SIZE,
            "RECONNECT_BASE_DELAY": self.RECONNECT_BASE_DELAY,
            "RECONNECT_MAX_DELAY": self.RECONNECT_MAX_DELAY,
            "HEALTH_CHECK_INTERVAL": self.HEALTH_CHECK_INTERVAL,
            "HEALTH_CHECK_TIMEOUT": self.HEALTH_CHECK_TIMEOUT,
            "DEDUP_WINDOW_SIZE": self.DEDUP_WINDOW_SIZE,
            "PENDING_BUFFER_SIZE": self.PENDING_BUFFER_SIZE,
            "DECODE_QUEUE_SIZE": self.DECODE_QUEUE_SIZE,
            "DECODE_WORKERS": self.DECODE_WORKERS,
        }
