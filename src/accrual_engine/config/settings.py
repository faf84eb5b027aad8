"""Configuration settings for the accrual engine."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class FlatSettings(BaseSettings):
    """Flat settings loaded from environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Ledger gateway
    ledger_gateway_url: str = Field(
        default="http://localhost:8545", validation_alias="LEDGER_GATEWAY_URL"
    )
    ledger_api_key: SecretStr | None = Field(default=None, validation_alias="LEDGER_API_KEY")
    ledger_timeout: float = Field(default=30.0, validation_alias="LEDGER_TIMEOUT")
    ledger_max_retries: int = Field(default=3, validation_alias="LEDGER_MAX_RETRIES")

    # Contracts, by deployment name (resolved to addresses by the gateway)
    subscription_contract: str = Field(
        default="Subscription", validation_alias="SUBSCRIPTION_CONTRACT"
    )
    token_contract: str = Field(default="StandardToken", validation_alias="TOKEN_CONTRACT")
    from_block: int = Field(default=1, ge=0, validation_alias="FROM_BLOCK")

    # Accrual
    default_interest_rate: float = Field(
        default=0.04, ge=0.0, validation_alias="DEFAULT_INTEREST_RATE"
    )

    # Tick cadence (seconds)
    principal_tick_seconds: float = Field(
        default=1.0, gt=0.0, validation_alias="PRINCIPAL_TICK_SECONDS"
    )
    interest_tick_seconds: float = Field(
        default=1.0, gt=0.0, validation_alias="INTEREST_TICK_SECONDS"
    )
    reconcile_tick_seconds: float = Field(
        default=1.0, gt=0.0, validation_alias="RECONCILE_TICK_SECONDS"
    )
    reconcile_mode: Literal["split", "total"] = Field(
        default="split", validation_alias="RECONCILE_MODE"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="LOG_FORMAT"
    )


@lru_cache
def get_settings() -> FlatSettings:
    """Get cached settings instance."""
    return FlatSettings()
