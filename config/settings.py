"""Pydantic settings for synthetic pool configuration."""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Asset and oracle
    asset_symbol: str = Field(default="TSLA", description="Symbol of the tracked asset")
    oracle_source: str = Field(default="price-keeper", description="Only source allowed to fulfil oracle requests")
    market_open_window: int = Field(default=3600, ge=1, description="Max sample age (s) for the market to count as open")

    # Cycle timing (seconds)
    cycle_length: int = Field(default=7 * 86400, ge=1, description="Minimum Active phase duration")
    offchain_rebalance_window: int = Field(default=86400, ge=1, description="Expected oracle delivery window")
    onchain_rebalance_timeout: int = Field(default=86400, ge=1, description="Fallback before a cycle may close without every LP")
    oracle_request_cooldown: int = Field(default=300, ge=0, description="Seconds between oracle re-requests")

    # Interest rate curve (annual rates, utilization tiers as fractions)
    base_rate: Decimal = Field(default=Decimal("0.06"), ge=0, le=10, description="Rate at zero utilization")
    tier1_rate: Decimal = Field(default=Decimal("0.12"), ge=0, le=10, description="Rate at the first tier")
    tier2_rate: Decimal = Field(default=Decimal("0.24"), ge=0, le=10, description="Rate at the second tier")
    max_rate: Decimal = Field(default=Decimal("0.36"), ge=0, le=10, description="Rate at and above max utilization")
    tier1_utilization: Decimal = Field(default=Decimal("0.50"), gt=0, le=1)
    tier2_utilization: Decimal = Field(default=Decimal("0.75"), gt=0, le=1)
    max_utilization: Decimal = Field(default=Decimal("0.95"), gt=0, le=1)

    # User side
    user_collateral_ratio: Decimal = Field(default=Decimal("0.20"), gt=0, le=1, description="Collateral per unit of deposit")
    deposit_fee: Decimal = Field(default=Decimal("0"), ge=0, lt=1)
    redemption_fee: Decimal = Field(default=Decimal("0"), ge=0, lt=1)
    user_liquidation_threshold: Decimal = Field(default=Decimal("0.5"), gt=0, le=1)
    user_liquidation_reward: Decimal = Field(default=Decimal("0.05"), ge=0, lt=1)

    # LP side
    lp_collateral_ratio: Decimal = Field(default=Decimal("0.30"), gt=0, le=1, description="LP collateral per unit of notional")
    lp_liquidation_threshold: Decimal = Field(default=Decimal("0.5"), gt=0, le=1, description="Health below which an LP is liquidatable")
    lp_liquidation_bonus: Decimal = Field(default=Decimal("0.05"), ge=0, lt=1)
    min_lp_collateral: Decimal = Field(default=Decimal("100"), ge=0)

    # Keeper
    keeper_max_retries: int = Field(default=3, ge=1, le=100)

    # Storage
    storage_dir: Path = Field(default=Path(".cache/synthpool"), description="Snapshot directory")

    log_level: str = Field(default="INFO", description="Root logging level for the CLI")

    @field_validator("storage_dir", mode="before")
    @classmethod
    def parse_storage_dir(cls, v):
        """Convert string to Path."""
        if isinstance(v, str):
            return Path(v)
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def parse_log_level(cls, v):
        """Normalize level names."""
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @model_validator(mode="after")
    def check_rate_curve(self) -> "Settings":
        """Reject curves whose tiers or rates are out of order."""
        if not (self.tier1_utilization < self.tier2_utilization < self.max_utilization):
            raise ValueError("Utilization tiers must be strictly increasing")
        if not (self.base_rate <= self.tier1_rate <= self.tier2_rate <= self.max_rate):
            raise ValueError("Rates must be non-decreasing along the curve")
        return self

    def ensure_storage_dir(self) -> Path:
        """Ensure storage directory exists and return it."""
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        return self.storage_dir


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
