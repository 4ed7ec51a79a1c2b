"""Application configuration."""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Instruments tracked from startup (fixed registry)
    instruments: list[str] = ["frxEURUSD", "frxGBPUSD", "frxUSDJPY", "frxAUDUSD", "frxUSDCAD"]

    # Engine tuning file (YAML); defaults apply when missing
    engine_config_path: str = "engine.yaml"

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    redis_enabled: bool = True

    # Runtime
    tick_queue_size: int = 1000
    dispatch_queue_size: int = 1000
    dispatch_max_retries: int = 3
    dispatch_retry_delay: float = 0.5
    max_feed_lag: float | None = 60.0  # reject ticks older than this (seconds)
    recent_signals_size: int = 100

    # Optional risk sizing (0 = disabled)
    account_balance: float = 0.0
    max_risk_per_trade: float = 0.02

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
