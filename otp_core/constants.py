"""
Constants and enums for the OTP core.

This module centralizes the magic strings used throughout the package
to ensure consistency between the store, the service and configuration.
"""

from enum import Enum


class ValidatedFlag(str, Enum):
    """Persisted form of the token validated flag."""

    NO = "N"
    YES = "Y"


class OperationStatus(str, Enum):
    """Status values for operations."""

    SUCCESS = "success"
    ERROR = "error"


class LogLevel(str, Enum):
    """Standard logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class EnvironmentVariable(str, Enum):
    """Standard environment variable names."""

    DATABASE_URL = "DATABASE_URL"
    APP_ENV = "APP_ENV"
    LOG_LEVEL = "LOG_LEVEL"
    OTP_LENGTH = "OTP_LENGTH"
    OTP_TTL_SECONDS = "OTP_TTL_SECONDS"
    OTP_HASHING_ENABLED = "OTP_HASHING_ENABLED"
    OTP_BCRYPT_ROUNDS = "OTP_BCRYPT_ROUNDS"
    OTP_STORE_TIMEOUT_SECONDS = "OTP_STORE_TIMEOUT_SECONDS"
    DB_POOL_SIZE = "DB_POOL_SIZE"
    DB_MAX_OVERFLOW = "DB_MAX_OVERFLOW"
    DB_POOL_TIMEOUT = "DB_POOL_TIMEOUT"
    DB_ECHO = "DB_ECHO"
    DEV_DB_PATH = "DEV_DB_PATH"


# Field limits shared by request schemas and the table definition
MAX_TENANT_ID_LENGTH = 256
MAX_IDENTITY_LENGTH = 256
MAX_OTP_LENGTH = 64
