"""Application configuration loaded from environment."""

import logging

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """ebscrypt settings from env vars."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Named credentials profile; unset uses the default credential chain
    aws_profile: str | None = None
    # Region used when --regions is not given (also for describe_regions)
    default_region: str = "us-west-2"
    aws_read_timeout_seconds: int = 60

    # Snapshot / volume polls have no ceiling
    snapshot_poll_interval_seconds: float = 30.0
    volume_poll_interval_seconds: float = 15.0

    # Instance stop/start waits: bounded, exponential backoff between checks
    instance_wait_timeout_seconds: float = 900.0
    instance_poll_delay_seconds: float = 15.0
    instance_poll_max_delay_seconds: float = 120.0

    # Re-attach the source volume and restart instances when a step fails
    rollback_on_failure: bool = True

    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level '{v}'")
        return level


def get_settings() -> Settings:
    """Return loaded settings from environment (and .env if present)."""
    return Settings()
