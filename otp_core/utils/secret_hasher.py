"""
OTP secret hashing.

Two interchangeable hashers are provided:

- PlaintextSecretHasher stores the OTP as-is and verifies with a
  case-insensitive, constant-time comparison.
- BcryptSecretHasher stores a salted bcrypt hash and verifies with
  bcrypt.checkpw, which compares in constant time.

A stored value the hasher cannot interpret raises CorruptCredentialError
rather than counting as a plain mismatch, so data corruption shows up in the
logs as such.
"""

import hmac
import re
from typing import Optional, Protocol

import bcrypt

from ..exceptions import CorruptCredentialError, validation_failed

BCRYPT_HASH_PATTERN = re.compile(r"^\$2[aby]\$\d{2}\$[./A-Za-z0-9]{53}$")

# bcrypt only looks at the first 72 bytes of a password
BCRYPT_MAX_SECRET_BYTES = 72


class SecretHasher(Protocol):
    """Turns an OTP into its stored form and checks candidates against it."""

    def hash(self, secret: str) -> str: ...

    def verify(self, candidate: str, stored_form: str, **context) -> bool: ...


def _require_secret(secret: str) -> None:
    if not isinstance(secret, str) or not secret:
        raise validation_failed("secret", "<redacted>", "must be a non-empty string")


class PlaintextSecretHasher:
    """Identity 'hash' for deployments that keep OTPs recoverable."""

    def hash(self, secret: str) -> str:
        _require_secret(secret)
        return secret

    def verify(self, candidate: str, stored_form: str, **context) -> bool:
        """
        Args:
            candidate: OTP submitted by the caller
            stored_form: Value read from the store
            **context: Added to CorruptCredentialError (e.g. token_id)
        """
        if not isinstance(stored_form, str) or not stored_form:
            raise CorruptCredentialError(
                "Stored plaintext OTP is empty or not a string",
                stored_type=type(stored_form).__name__,
                **context,
            )
        if not isinstance(candidate, str) or not candidate:
            return False
        return hmac.compare_digest(
            candidate.casefold().encode("utf-8"), stored_form.casefold().encode("utf-8")
        )


class BcryptSecretHasher:
    """Salted bcrypt hashing of OTPs."""

    def __init__(self, rounds: int = 10) -> None:
        """
        Args:
            rounds: Bcrypt cost factor (4..31). OTPs are short-lived, so the
                default sits below the usual password recommendation.
        """
        if rounds < 4 or rounds > 31:
            raise ValueError("bcrypt rounds must be between 4 and 31")
        self._rounds = rounds

    @property
    def rounds(self) -> int:
        return self._rounds

    def hash(self, secret: str) -> str:
        _require_secret(secret)
        encoded = secret.encode("utf-8")
        if len(encoded) > BCRYPT_MAX_SECRET_BYTES:
            raise validation_failed(
                "secret", "<redacted>", f"must be at most {BCRYPT_MAX_SECRET_BYTES} bytes"
            )
        salt = bcrypt.gensalt(rounds=self._rounds)
        return bcrypt.hashpw(encoded, salt).decode("utf-8")

    def verify(self, candidate: str, stored_form: str, **context) -> bool:
        """
        Check a submitted OTP against a stored bcrypt hash.

        Only the stored form can make this raise. A candidate bcrypt cannot
        take (empty, or longer than 72 bytes) never matched a hash we wrote,
        so it is a plain mismatch.

        Raises:
            CorruptCredentialError: If stored_form is not a usable bcrypt hash
        """
        if not isinstance(stored_form, str) or not BCRYPT_HASH_PATTERN.match(stored_form):
            raise CorruptCredentialError(
                "Stored OTP is not a bcrypt hash",
                stored_type=type(stored_form).__name__,
                stored_length=len(stored_form) if isinstance(stored_form, str) else None,
                **context,
            )
        if not isinstance(candidate, str) or not candidate:
            return False
        encoded = candidate.encode("utf-8")
        if len(encoded) > BCRYPT_MAX_SECRET_BYTES:
            return False
        try:
            return bcrypt.checkpw(encoded, stored_form.encode("utf-8"))
        except ValueError as e:
            raise CorruptCredentialError(
                "Stored OTP hash was rejected by bcrypt", cause=e, **context
            ) from e


def get_secret_hasher(hashing_enabled: bool, rounds: Optional[int] = None) -> SecretHasher:
    """
    Pick the hasher matching the configured storage mode.

    Args:
        hashing_enabled: True for bcrypt, False for plaintext storage
        rounds: Bcrypt cost factor (ignored for plaintext)
    """
    if hashing_enabled:
        return BcryptSecretHasher(rounds) if rounds is not None else BcryptSecretHasher()
    return PlaintextSecretHasher()
