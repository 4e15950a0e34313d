"""
Configuration management for the testimony digest application.

Provides centralized, validated configuration from environment variables
with proper type checking and defaults.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_bool(v) -> bool:
    if isinstance(v, str):
        return v.lower() in ("1", "true", "yes", "y")
    return bool(v)


class DatabaseConfig(BaseSettings):
    """Backing store configuration for profiles, feeds and the email queue."""

    url: str = Field(default="sqlite:///./testimony_digest.db", alias="DATABASE_URL")
    echo: bool = Field(default=False, alias="DATABASE_ECHO")

    @field_validator("echo", mode="before")
    @classmethod
    def parse_echo(cls, v):
        return _parse_bool(v)

    model_config = SettingsConfigDict(
        env_prefix="", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


class DigestConfig(BaseSettings):
    """Email digest configuration."""

    subject: str = Field(default="Your Notifications Digest", alias="DIGEST_SUBJECT")
    max_bills: int = Field(default=4, ge=0, alias="DIGEST_MAX_BILLS")
    max_users: int = Field(default=4, ge=0, alias="DIGEST_MAX_USERS")
    max_bills_per_user: int = Field(default=6, ge=0, alias="DIGEST_MAX_BILLS_PER_USER")
    site_url: str = Field(default="https://mapletestimony.org", alias="DIGEST_SITE_URL")

    # 09:47 on the first day of the month and on Tuesdays
    schedule: str = Field(default="47 9 1 * 2", alias="DELIVERY_SCHEDULE")

    @field_validator("site_url")
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip("/")

    model_config = SettingsConfigDict(
        env_prefix="", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


class ApiConfig(BaseSettings):
    """HTTP trigger configuration."""

    host: str = Field(default="127.0.0.1", alias="API_HOST")
    port: int = Field(default=8080, alias="API_PORT")

    model_config = SettingsConfigDict(
        env_prefix="", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


class Settings(BaseSettings):
    """Main application settings."""

    # Environment
    environment: str = Field(default="production", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    dry_run: bool = Field(default=False, alias="DRY_RUN")

    # Component configurations
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    digest: DigestConfig = Field(default_factory=DigestConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    # Performance settings
    max_workers: int = Field(default=6, ge=1, alias="MAX_WORKERS")

    @field_validator("debug", mode="before")
    @classmethod
    def parse_debug(cls, v):
        return _parse_bool(v)

    @field_validator("dry_run", mode="before")
    @classmethod
    def parse_dry_run(cls, v):
        return _parse_bool(v)

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global settings
    if settings is None:
        settings = Settings()
    return settings


def validate_required_settings() -> List[str]:
    """
    Validate that the settings needed for a delivery cycle are present.

    Returns:
        List of missing or invalid settings
    """
    missing = []
    try:
        config = get_settings()

        if not config.database.url:
            missing.append("DATABASE_URL")
        if not config.digest.subject:
            missing.append("DIGEST_SUBJECT")
        if len(config.digest.schedule.split()) != 5:
            missing.append("DELIVERY_SCHEDULE (expected a 5-field cron expression)")

    except Exception as e:
        missing.append(f"Configuration error: {e}")

    return missing


def print_configuration_summary():
    """Print a summary of the current configuration for debugging."""
    try:
        config = get_settings()
        print("=== Testimony Digest Configuration Summary ===")
        print(f"Environment: {config.environment}")
        print(f"Debug Mode: {config.debug}")
        print(f"Dry Run: {config.dry_run}")
        print(f"Max Workers: {config.max_workers}")
        print()
        print(f"Database: {config.database.url}")
        print(f"Schedule: {config.digest.schedule}")
        print(f"Subject: {config.digest.subject}")
        print(f"Site URL: {config.digest.site_url}")
        print(
            "Caps: "
            f"bills={config.digest.max_bills} "
            f"users={config.digest.max_users} "
            f"bills/user={config.digest.max_bills_per_user}"
        )
        print(f"HTTP Trigger: {config.api.host}:{config.api.port}")
        print("=" * 46)
    except Exception as e:
        print(f"Error loading configuration: {e}")
