"""
Application configuration using Pydantic Settings.

All settings loaded from environment variables with sensible defaults.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # ===========================================
    # Server
    # ===========================================
    host: str = "0.0.0.0"
    port: int = 3000
    ws_path: str = "/ws"  # Browser-facing WebSocket endpoint

    # ===========================================
    # PumpPortal (upstream trade feed)
    # ===========================================
    pumpportal_ws_url: str = "wss://pumpportal.fun/api/data"
    upstream_reconnect_delay: float = 5.0  # Fixed delay, one pending attempt at a time

    # ===========================================
    # pump.fun APIs (market data enrichment)
    # ===========================================
    pump_frontend_api_base: str = "https://frontend-api-v3.pump.fun"
    pump_advanced_api_base: str = "https://advanced-api-v2.pump.fun"
    pump_rate_limit: float = 10.0  # requests per second, per API

    # ===========================================
    # Live market data
    # ===========================================
    throttle_ms: int = 5000  # Min spacing between enrichment fetches per mint
    max_history_points: int = 500  # Raw market-cap points per mint
    max_candles: int = 500  # Candles per (mint, timeframe)
    max_tracked_entities: int = 200  # Mints with retained history
    min_mint_length: int = 30  # Shorter subscribe keys are rejected

    # ===========================================
    # Application
    # ===========================================
    log_level: str = "INFO"
    debug: bool = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience access
settings = get_settings()
