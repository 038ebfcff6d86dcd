"""Repository layer for data access."""

from .base_repository import BaseRepository
from .otp_token_repository import OTPTokenRepository

__all__ = [
    "BaseRepository",
    "OTPTokenRepository",
]
