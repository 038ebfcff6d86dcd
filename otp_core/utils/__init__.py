"""Utility modules for the OTP core."""

from .clock import Clock, FrozenClock, StoreClock, SystemClock
from .logger import ContextAwareLogger, configure_logging, get_logger
from .otp_utils import generate_numeric_otp
from .secret_hasher import (
    BcryptSecretHasher,
    PlaintextSecretHasher,
    SecretHasher,
    get_secret_hasher,
)

__all__ = [
    "BcryptSecretHasher",
    "Clock",
    "ContextAwareLogger",
    "FrozenClock",
    "PlaintextSecretHasher",
    "SecretHasher",
    "StoreClock",
    "SystemClock",
    "configure_logging",
    "generate_numeric_otp",
    "get_logger",
    "get_secret_hasher",
]
