"""
Configuration management for the Dissection Grader.

Settings come from environment variables or a .env file and cover the
database connection, log level and the grade passback retry policy.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Grader settings read from the environment.

    Out-of-range retry settings fail validation when the settings load.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Database Configuration
    # ==========================================================================
    database_url: str = Field(
        default="sqlite:///./dissection_grader.db",
        description="SQLAlchemy database URL",
    )

    database_echo: bool = Field(
        default=False,
        description="Echo SQL statements to the log",
    )

    # ==========================================================================
    # Logging Configuration
    # ==========================================================================
    log_level: str = Field(
        default="INFO",
        description="Root log level",
    )

    # ==========================================================================
    # Grade Passback Configuration
    # ==========================================================================
    passback_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Delivery attempts per passback job before it is marked failed",
    )

    passback_backoff_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Initial exponential backoff delay between delivery attempts",
    )

    passback_keep_completed: int = Field(
        default=100,
        ge=0,
        description="Completed passback jobs retained for inspection",
    )

    passback_keep_failed: int = Field(
        default=50,
        ge=0,
        description="Failed passback jobs retained for inspection",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and check the log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


@lru_cache()
def get_settings() -> Settings:
    """
    Return the process-wide settings.

    Tests clear the cache after changing the environment.
    """
    return Settings()
