"""Service layer for the OTP token lifecycle."""

from .otp_token_service import OTPTokenService

__all__ = ["OTPTokenService"]
