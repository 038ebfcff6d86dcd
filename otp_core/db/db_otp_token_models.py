"""
OTP token table.

Just the data structure; lifecycle rules live in the repository and service.
"""

from sqlalchemy import BigInteger, CheckConstraint, Column, Index, Integer, String

from ..constants import MAX_IDENTITY_LENGTH, MAX_TENANT_ID_LENGTH, ValidatedFlag
from .db_base import TimestampMixin, UUIDMixin
from .db_config import Base


class OTPToken(Base, UUIDMixin, TimestampMixin):
    """One issued OTP. Rows are never deleted by the core."""

    __tablename__ = "otp_tokens"

    tenant_id = Column(String(MAX_TENANT_ID_LENGTH), nullable=False)
    identity = Column(String(MAX_IDENTITY_LENGTH), nullable=False)
    secret = Column(String(128), nullable=False)  # plaintext or bcrypt hash

    # Lifecycle
    ttl_seconds = Column(Integer, nullable=False)
    validated = Column(String(1), nullable=False, default=ValidatedFlag.NO.value)
    created_at_epoch_ms = Column(BigInteger, nullable=False)

    __table_args__ = (
        Index("ix_otp_tokens_lookup", "tenant_id", "identity", "validated"),
        CheckConstraint("validated IN ('N', 'Y')", name="ck_otp_tokens_validated"),
        CheckConstraint("ttl_seconds >= 0", name="ck_otp_tokens_ttl_non_negative"),
    )
