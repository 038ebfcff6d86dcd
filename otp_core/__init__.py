"""
OTP token lifecycle core.

Issues numeric one-time passcodes per (tenant, identity), stores them as
plaintext or bcrypt hashes, and validates each at most once.
"""

from .config import AppConfig, OTPConfig, get_config, reset_config, set_config
from .exceptions import (
    BaseError,
    CorruptCredentialError,
    ErrorCode,
    StoreUnavailableError,
    TokenNotFoundError,
    TokenUpdateFailedError,
    TokenValidationFailedError,
    ValidationInputError,
)
from .repositories import OTPTokenRepository
from .schemas import Token, TokenRequest, TokenSearchCriteria, ValidateRequest
from .services import OTPTokenService

__version__ = "0.1.0"

__all__ = [
    "AppConfig",
    "BaseError",
    "CorruptCredentialError",
    "ErrorCode",
    "OTPConfig",
    "OTPTokenRepository",
    "OTPTokenService",
    "StoreUnavailableError",
    "Token",
    "TokenNotFoundError",
    "TokenRequest",
    "TokenSearchCriteria",
    "TokenUpdateFailedError",
    "TokenValidationFailedError",
    "ValidateRequest",
    "ValidationInputError",
    "get_config",
    "reset_config",
    "set_config",
]
