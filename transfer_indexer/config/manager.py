"""
Configuration manager for the transfer indexer.

This module provides a centralized way to access all configuration settings
across the application. It combines all configuration classes into a single
easy-to-use interface.
"""

import logging
from typing import Dict, Any, Optional
from .base import BaseConfig, ConfigError
from .database import DatabaseConfig
from .indexer import IndexerConfig
from .ledger import LedgerConfig

logger = logging.getLogger(__name__)


class ConfigManager:
    """
    Centralized configuration manager that combines all configuration classes.

    This class provides easy access to all configuration settings and ensures
    that configurations are properly initialized and validated.
    """

    def __init__(self, environment: Optional[str] = None):
        """
        Initialize the configuration manager.

        Args:
            environment: Override the environment (local, dev, staging, production)
        """
        self._environment = environment
        self._base_config = None
        self._database_config = None
        self._ledger_config = None
        self._indexer_config = None
        self._initialize_configs()

    def _initialize_configs(self):
        """Initialize all configuration objects."""
        try:
            # Initialize base configuration first
            if self._environment:
                self._base_config = BaseConfig(ENVIRONMENT=self._environment)
            else:
                self._base_config = BaseConfig()

            self._database_config = DatabaseConfig()
            self._ledger_config = LedgerConfig()
            self._indexer_config = IndexerConfig()

            logger.info(f"Configuration initialized for environment: {self.environment}")

        except Exception as e:
            logger.error(f"Failed to initialize configuration: {e}")
            raise ConfigError(f"Configuration initialization failed: {e}")

    @property
    def environment(self) -> str:
        """Get current environment."""
        return self._base_config.ENVIRONMENT

    @property
    def base(self) -> BaseConfig:
        """Get base configuration."""
        return self._base_config

    @property
    def database(self) -> DatabaseConfig:
        """Get database configuration."""
        return self._database_config

    @property
    def ledger(self) -> LedgerConfig:
        """Get ledger node configuration."""
        return self._ledger_config

    @property
    def indexer(self) -> IndexerConfig:
        """Get indexer tuning configuration."""
        return self._indexer_config

    def validate_configuration(self) -> bool:
        """
        Validate all configuration settings.

        Returns:
            True if all configurations are valid

        Raises:
            ConfigError: If any configuration is invalid
        """
        backend = self.database.STORAGE_BACKEND.lower()
        if backend not in ("postgres", "memory"):
            raise ConfigError(f"Unknown storage backend: {self.database.STORAGE_BACKEND}")

        if backend == "postgres" and not self.database.postgres_url:
            raise ConfigError("PostgreSQL URL not configured (set DATABASE_URL or POSTGRES_USER)")

        if not self.ledger.TOKEN_MINT:
            raise ConfigError("TOKEN_MINT must not be empty")

        if self.ledger.TOKEN_DECIMALS < 0:
            raise ConfigError(f"TOKEN_DECIMALS must be >= 0, got: {self.ledger.TOKEN_DECIMALS}")

        for name, value in self.indexer.positive_limits().items():
            if value <= 0:
                raise ConfigError(f"{name} must be positive, got: {value}")

        if self.indexer.RECONNECT_MAX_DELAY < self.indexer.RECONNECT_BASE_DELAY:
            logger.warning("RECONNECT_MAX_DELAY is below RECONNECT_BASE_DELAY; every reconnect waits the cap")

        logger.info("Configuration validation successful")
        return True

    def to_dict(self) -> Dict[str, Any]:
        """Convert all configurations to dictionary format."""
        return {
            "environment": self.environment,
            "base": self.base.to_dict() if self.base else {},
            "database": self.database.to_dict() if self.database else {},
            "ledger": self.ledger.to_dict() if self.ledger else {},
            "indexer": self.indexer.to_dict() if self.indexer else {},
        }

    def __repr__(self) -> str:
        """String representation of the configuration manager."""
        return f"ConfigManager(environment={self.environment})"


# Global configuration manager instance
_config_manager = None


def get_config(environment: Optional[str] = None, force_reload: bool = False) -> ConfigManager:
    """
    Get the global configuration manager instance.

    Args:
        environment: Override environment
        force_reload: Force reload of configuration

    Returns:
        ConfigManager instance
    """
    global _config_manager

    if _config_manager is None or force_reload:
        _config_manager = ConfigManager(environment=environment)
        _config_manager.validate_configuration()

    return _config_manager


def reload_config(environment: Optional[str] = None) -> ConfigManager:
    """
    Reload the global configuration manager.

    Args:
        environment: Override environment

    Returns:
        New ConfigManager instance
    """
    return get_config(environment=environment, force_reload=True)
