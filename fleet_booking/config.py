"""
Centralized configuration management using Pydantic Settings
Single source of truth for scheduling, cache and infrastructure settings
"""
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import Optional
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class Settings(BaseSettings):
    """Application settings with environment variable support and validation"""

    # ========================================================================
    # Application
    # ========================================================================
    app_name: str = Field(
        default="Residence Fleet Booking",
        description="Application name"
    )
    app_version: str = Field(
        default="1.4.0",
        description="Application version"
    )
    environment: str = Field(
        default="production",
        description="Environment: development, staging, production"
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    json_logs: bool = Field(
        default=True,
        description="Render logs as JSON (console renderer otherwise)"
    )
    timezone: str = Field(
        default="Europe/Madrid",
        description="Residence local timezone used for calendar days"
    )

    # ========================================================================
    # Database (PostgreSQL)
    # ========================================================================
    database_url: Optional[str] = Field(
        default=None,
        description="PostgreSQL connection URL (in-memory stores when unset)"
    )
    db_pool_min_size: int = Field(
        default=2,
        ge=1,
        le=20,
        description="Minimum database pool size"
    )
    db_pool_max_size: int = Field(
        default=10,
        ge=2,
        le=100,
        description="Maximum database pool size"
    )
    db_command_timeout: int = Field(
        default=30,
        ge=1,
        le=300,
        description="Per-query timeout in seconds"
    )

    # ========================================================================
    # Redis (dashboard snapshots)
    # ========================================================================
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis connection URL (in-memory snapshots when unset)"
    )

    # ========================================================================
    # Scheduling
    # ========================================================================
    upcoming_lookahead_minutes: int = Field(
        default=60,
        ge=1,
        le=1440,
        description="Window in which the next booking counts as upcoming soon"
    )

    # ========================================================================
    # Dashboard snapshot cache
    # ========================================================================
    snapshot_retention_days: int = Field(
        default=3,
        ge=1,
        le=60,
        description="Number of calendar days of snapshots kept per user"
    )
    dashboard_quick_resources: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Bookable vehicles listed on the dashboard"
    )
    agenda_switch_hour: int = Field(
        default=18,
        ge=0,
        le=23,
        description="Local hour from which the dashboard agenda shows tomorrow"
    )

    # ========================================================================
    # Timeline rendering
    # ========================================================================
    timeline_pixels_per_hour: int = Field(
        default=64,
        ge=12,
        le=600,
        description="Horizontal pixels per hour column"
    )
    timeline_min_width_px: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Minimum rendered width so short bookings stay clickable"
    )

    # ========================================================================
    # Identity (single-household deployments)
    # ========================================================================
    identity_user_id: str = Field(
        default="resident",
        description="Acting user id reported by the static identity provider"
    )
    identity_display_name: str = Field(
        default="Resident",
        description="Display name of the acting user"
    )
    identity_is_admin: bool = Field(
        default=False,
        description="Whether the acting user may finish bookings early"
    )

    # ========================================================================
    # Validators
    # ========================================================================

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment"""
        valid_envs = ["development", "staging", "production", "test"]
        if v.lower() not in valid_envs:
            raise ValueError(f"Invalid environment: {v}. Must be one of {valid_envs}")
        return v.lower()

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate IANA timezone name"""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    class Config:
        """Pydantic configuration"""
        env_prefix = "FLEET_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance
    Uses lru_cache to ensure singleton pattern
    """
    return Settings()


settings = get_settings()
