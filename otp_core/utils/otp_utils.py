"""OTP value generation."""

import secrets

from ..exceptions import validation_failed


def generate_numeric_otp(length: int) -> str:
    """
    Generate a numeric OTP of exactly ``length`` digits.

    Leading zeros are kept, so every value in [0, 10**length) is equally likely.

    Args:
        length: Number of digits

    Returns:
        OTP string

    Raises:
        ValidationInputError: If length is not a positive integer
    """
    if not isinstance(length, int) or isinstance(length, bool) or length <= 0:
        raise validation_failed("otp_length", length, "must be a positive integer")
    return str(secrets.randbelow(10**length)).zfill(length)
