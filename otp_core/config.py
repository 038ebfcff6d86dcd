"""
Centralized configuration management for the OTP core.

This module provides a unified configuration system with support for:
- Environment variables
- Validation using Pydantic
- A process-wide configuration instance that tests can replace
"""

import os
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .constants import MAX_OTP_LENGTH, EnvironmentVariable, LogLevel


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _env_optional_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None:
        return default
    if raw.strip() == "" or raw.lower() == "none":
        return None
    return float(raw)


class DatabaseSettings(BaseModel):
    """Database connection settings."""

    connection_string: str = Field(
        default_factory=lambda: os.getenv(
            EnvironmentVariable.DATABASE_URL.value, "sqlite:///./otp_tokens.db"
        ),
        description="Database connection string",
    )
    pool_size: int = Field(
        default_factory=lambda: int(os.getenv(EnvironmentVariable.DB_POOL_SIZE.value, "5")),
        gt=0,
        description="Connections kept open per engine",
    )
    max_overflow: int = Field(
        default_factory=lambda: int(os.getenv(EnvironmentVariable.DB_MAX_OVERFLOW.value, "10")),
        ge=0,
        description="Connections allowed beyond pool_size under load",
    )
    pool_timeout: int = Field(
        default_factory=lambda: int(os.getenv(EnvironmentVariable.DB_POOL_TIMEOUT.value, "30")),
        gt=0,
        description="Seconds to wait for a pooled connection",
    )
    echo: bool = Field(
        default_factory=lambda: _env_flag(EnvironmentVariable.DB_ECHO.value, "false"),
        description="Log every SQL statement",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.LOG_LEVEL.value, LogLevel.INFO.value),
        description="Logging level",
    )
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string",
    )

    @field_validator("level")
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {level.value for level in LogLevel}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


class OTPConfig(BaseModel):
    """OTP issuance and validation settings, injected into the token service."""

    otp_length: int = Field(
        default_factory=lambda: int(os.getenv(EnvironmentVariable.OTP_LENGTH.value, "6")),
        gt=0,
        le=MAX_OTP_LENGTH,
        description="Number of digits in a generated OTP",
    )
    ttl_seconds: int = Field(
        default_factory=lambda: int(os.getenv(EnvironmentVariable.OTP_TTL_SECONDS.value, "300")),
        gt=0,
        description="Validity window of a new OTP in seconds",
    )
    hashing_enabled: bool = Field(
        default_factory=lambda: _env_flag(EnvironmentVariable.OTP_HASHING_ENABLED.value, "true"),
        description="Store OTPs as bcrypt hashes instead of plaintext",
    )
    bcrypt_rounds: int = Field(
        default_factory=lambda: int(os.getenv(EnvironmentVariable.OTP_BCRYPT_ROUNDS.value, "10")),
        ge=4,
        le=31,
        description="Bcrypt cost factor used when hashing is enabled",
    )
    store_timeout_seconds: Optional[float] = Field(
        default_factory=lambda: _env_optional_float(
            EnvironmentVariable.OTP_STORE_TIMEOUT_SECONDS.value, 5.0
        ),
        description="Default timeout for store calls when the caller passes none",
    )

    @field_validator("store_timeout_seconds")
    def validate_store_timeout(cls, v: Optional[float]) -> Optional[float]:
        """Timeouts must be positive when set."""
        if v is not None and v <= 0:
            raise ValueError("store_timeout_seconds must be positive")
        return v


class AppConfig(BaseModel):
    """Main application configuration."""

    environment: str = Field(
        default_factory=lambda: os.getenv(EnvironmentVariable.APP_ENV.value, "development"),
        description="Application environment",
    )
    debug: bool = Field(
        default_factory=lambda: _env_flag("DEBUG", "false"),
        description="Debug mode",
    )

    database: DatabaseSettings = Field(
        default_factory=DatabaseSettings, description="Database settings"
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig, description="Logging configuration"
    )
    otp: OTPConfig = Field(default_factory=OTPConfig, description="OTP configuration")

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create configuration from environment variables."""
        return cls()


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def set_config(config: AppConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
