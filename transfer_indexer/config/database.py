"""
Database configuration for the transfer indexer.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .base import BaseConfig


@dataclass
class DatabaseConfig(BaseConfig):
    """Database connection and settings configuration."""

    # Full DSN wins over the individual settings below
    DATABASE_URL: str = BaseConfig.get_env("DATABASE_URL", "")

    # PostgreSQL Configuration
    POSTGRES_HOST: str = BaseConfig.get_env("POSTGRES_HOST", "localhost")
    POSTGRES_PORT: int = BaseConfig.get_env_int("POSTGRES_PORT", 5432)
    POSTGRES_USER: Optional[str] = BaseConfig.get_env("POSTGRES_USER")
    POSTGRES_PASSWORD: Optional[str] = BaseConfig.get_env("POSTGRES_PASSWORD")
    POSTGRES_DB: str = BaseConfig.get_env("POSTGRES_DB", "indexer")

    # Backend selection: "postgres" or "memory"
    STORAGE_BACKEND: str = BaseConfig.get_env("STORAGE_BACKEND", "postgres")

    # Pool Settings
    MAX_CONNECTIONS: int = BaseConfig.get_env_int("MAX_CONNECTIONS", 10)
    CONNECTION_TIMEOUT: int = BaseConfig.get_env_int("CONNECTION_TIMEOUT", 10)
    COMMAND_TIMEOUT: int = BaseConfig.get_env_int("COMMAND_TIMEOUT", 60)

    @property
    def postgres_url(self) -> str:
        """Build PostgreSQL connection URL."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        if not self.POSTGRES_USER:
            return ""
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD or ''}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    def get_postgres_connection_kwargs(self) -> Dict[str, Any]:
        """Get PostgreSQL storage parameters."""
        return {
            "dsn": self.postgres_url,
            "pool_size": self.MAX_CONNECTIONS,
            "pool_timeout": self.CONNECTION_TIMEOUT,
            "command_timeout": self.COMMAND_TIMEOUT,
        }
