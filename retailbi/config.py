"""
Configuration settings for RetailBI.

Uses Pydantic Settings to load environment variables for the database
connection, logging, refresh behaviour and data-quality thresholds. Settings
are loaded once per process via `get_settings()` and passed explicitly to the
components that need them.
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class QualityThresholds(BaseModel):
    """
    Thresholds consumed by the data-quality battery.

    Kept separate from `Settings` so checkers receive only what they use.
    """

    retention_days: int = 7
    pending_order_days: int = 7
    unshipped_delivery_days: int = 10
    stale_inventory_days: int = 30
    max_discount_pct: float = 100.0

    model_config = {"frozen": True}


class Settings(BaseSettings):
    # Database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("retailmart", alias="DB_NAME")
    analytics_schema: str = Field("analytics", alias="ANALYTICS_SCHEMA")
    db_pool_min_size: int = Field(1, alias="DB_POOL_MIN_SIZE")
    db_pool_max_size: int = Field(4, alias="DB_POOL_MAX_SIZE")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    json_logs: bool = Field(False, alias="JSON_LOGS")

    # Refresh defaults
    refresh_concurrent: bool = Field(False, alias="REFRESH_CONCURRENT")
    refresh_timeout_seconds: float = Field(0, alias="REFRESH_TIMEOUT_SECONDS")
    refresh_triggered_by: str = Field("retailbi", alias="REFRESH_TRIGGERED_BY")

    # Data quality
    dq_retention_days: int = Field(7, alias="DQ_RETENTION_DAYS")
    dq_pending_order_days: int = Field(7, alias="DQ_PENDING_ORDER_DAYS")
    dq_unshipped_delivery_days: int = Field(10, alias="DQ_UNSHIPPED_DELIVERY_DAYS")
    dq_stale_inventory_days: int = Field(30, alias="DQ_STALE_INVENTORY_DAYS")
    dq_max_discount_pct: float = Field(100.0, alias="DQ_MAX_DISCOUNT_PCT")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def refresh_timeout_ms(self) -> int:
        """Per-view statement timeout in milliseconds (0 disables it)."""
        return int(self.refresh_timeout_seconds * 1000)

    def quality_thresholds(self) -> QualityThresholds:
        return QualityThresholds(
            retention_days=self.dq_retention_days,
            pending_order_days=self.dq_pending_order_days,
            unshipped_delivery_days=self.dq_unshipped_delivery_days,
            stale_inventory_days=self.dq_stale_inventory_days,
            max_discount_pct=self.dq_max_discount_pct,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["QualityThresholds", "Settings", "get_settings"]
