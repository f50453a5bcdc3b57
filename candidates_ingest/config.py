"""
Configuration settings for the candidates enrichment engine.
Uses Pydantic Settings for type-safe environment variable loading.
"""
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).parent.parent / ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # STORAGE
    # ==========================================================================
    database_url: str = Field(
        default="sqlite:///candidates.db",
        description="SQLAlchemy URL of the key/value state table",
    )

    # ==========================================================================
    # PIKESPEAK API (seed listing, voters, tx count, balances, bridge)
    # ==========================================================================
    pikespeak_api_key: str = Field(default="", description="Pikespeak API key")
    pikespeak_api_base_url: str = Field(default="https://api.pikespeak.ai")
    pikespeak_origin: str = Field(
        default="https://near.social",
        description="Origin header Pikespeak expects on every request",
    )
    nominations_contract: str = Field(default="nominations.ndc-gwg.near")
    elections_contract: str = Field(default="elections.ndc-gwg.near")

    # ==========================================================================
    # OTHER SOURCES
    # ==========================================================================
    nearblocks_api_base_url: str = Field(default="https://api.nearblocks.io")
    pagoda_api_key: str = Field(default="", description="Pagoda Enhanced API key")
    pagoda_api_base_url: str = Field(default="https://near-mainnet.api.pagoda.co")
    near_rpc_url: str = Field(default="https://rpc.mainnet.near.org")
    price_sheet_url: str = Field(
        default="https://raw.githubusercontent.com/Tarnadas/token-prices/main/ref-prices.json",
    )

    # ==========================================================================
    # ENGINE
    # ==========================================================================
    seed_page_size: int = Field(default=50, ge=1, description="Offset step of the seed listing")
    max_candidates_per_cycle: int = Field(default=3, ge=1)
    call_budget: int = Field(
        default=40,
        ge=1,
        description="No new candidate is started once this many calls were made in a cycle",
    )
    native_token_contract: str = Field(
        default="Near",
        description="Balance entry standing for the native currency, excluded from fts",
    )

    # ==========================================================================
    # RETRY CONFIGURATION (429 only)
    # ==========================================================================
    api_timeout_seconds: int = Field(default=30, ge=1, le=300)
    retry_max_attempts: int = Field(default=5, ge=0, le=20, description="Retries after the first 429")
    retry_base_delay_seconds: float = Field(default=0.25, ge=0.0, le=10.0)

    # ==========================================================================
    # SCHEDULING
    # ==========================================================================
    cycle_interval_minutes: int = Field(default=1, ge=1, le=1440)
    run_cycle_on_startup: bool = Field(default=True)

    # ==========================================================================
    # READ API
    # ==========================================================================
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000, ge=1, le=65535)
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # ==========================================================================
    # LOGGING
    # ==========================================================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="json")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
