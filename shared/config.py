"""
Shared configuration management for the CampusNest listings cache guard.
"""

from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="LISTINGS_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    postgres_dsn: str = Field(default="postgres://localhost:5432/housing")


class ListingsConfig(BaseConfig):
    """Cache guard configuration for the listings service."""

    # Cache layer
    cache_namespace: str = Field(default="housing-listings")
    search_namespace: str = Field(default="housing-search")
    cache_base_ttl_seconds: float = Field(default=600.0, gt=0)
    search_ttl_seconds: float = Field(default=300.0, gt=0)
    cache_null_ttl_seconds: float = Field(default=60.0, ge=0)
    cache_jitter_fraction: float = Field(default=0.2)

    # Stampede guard
    lock_prefix: str = Field(default="lock:housing-listing")
    lock_wait_timeout_seconds: float = Field(default=5.0, gt=0)
    lock_lease_timeout_seconds: float = Field(default=10.0, gt=0)
    lock_settle_delay_seconds: float = Field(default=0.5, ge=0)
    guard_mode: str = Field(default="all")
    hot_keys_path: Optional[str] = Field(default=None)
    warm_concurrency: int = Field(default=5, ge=1)

    # Membership filter
    filter_false_positive_rate: float = Field(default=0.01)
    filter_headroom: float = Field(default=1.0, ge=1.0)

    @field_validator("cache_jitter_fraction")
    @classmethod
    def _check_jitter(cls, value: float) -> float:
        if not 0.0 <= value < 1.0:
            raise ValueError("cache_jitter_fraction must be in [0, 1)")
        return value

    @field_validator("filter_false_positive_rate")
    @classmethod
    def _check_fpp(cls, value: float) -> float:
        if not 0.0 < value < 1.0:
            raise ValueError("filter_false_positive_rate must be in (0, 1)")
        return value

    @field_validator("guard_mode")
    @classmethod
    def _check_guard_mode(cls, value: str) -> str:
        value = value.lower()
        if value not in ("all", "listed"):
            raise ValueError("guard_mode must be 'all' or 'listed'")
        return value

    @model_validator(mode="after")
    def _check_lease(self) -> "ListingsConfig":
        # A lease shorter than the wait lets a slow holder lose its lock to a waiter.
        if self.lock_lease_timeout_seconds <= self.lock_wait_timeout_seconds:
            raise ValueError("lock_lease_timeout_seconds must exceed lock_wait_timeout_seconds")
        return self


def get_config(**overrides) -> ListingsConfig:
    """Get configuration for the listings service."""
    return ListingsConfig(**overrides)
