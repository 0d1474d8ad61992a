"""
Configuration management for Crypto Bookkeeper.
Uses pydantic-settings for type-safe, centralized configuration.
"""

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type safety.
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore'
    )

    # Database
    database_url: str = "sqlite:///crypto_bookkeeper.db"
    db_echo: bool = False
    db_busy_timeout: float = 5.0  # seconds to wait on a locked database

    # Persisted application state
    storage_key: str = "crypto-bookkeeper-storage"
    storage_version: int = 0
    backup_version: str = "1.0"
    autosave: bool = True

    # Balance proxy (exchange / chain balance aggregation server)
    balance_proxy_url: str = "http://localhost:3001"
    request_timeout: float = 15.0
    fetch_max_workers: int = 5

    # Price oracle
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    coingecko_api_key: Optional[str] = None

    # Portfolio analysis
    small_asset_threshold: float = 100.0

    # Logging
    log_level: str = "INFO"

    @property
    def cex_balance_url(self) -> str:
        """Endpoint for exchange balance lookups."""
        return f"{self.balance_proxy_url.rstrip('/')}/api/cex/balance"

    @property
    def chain_balance_url(self) -> str:
        """Endpoint for on-chain wallet balance lookups."""
        return f"{self.balance_proxy_url.rstrip('/')}/api/chain/balance"


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Reload settings from environment (useful for testing)."""
    global _settings
    _settings = Settings()
    return _settings
