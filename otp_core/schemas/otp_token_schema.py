"""
Pydantic schemas for OTP tokens and the requests that act on them.

Token is an immutable snapshot; build_token() is the validating factory for new
tokens and token_from_row() is the single mapping from a persisted row.
"""

from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..constants import (
    MAX_IDENTITY_LENGTH,
    MAX_OTP_LENGTH,
    MAX_TENANT_ID_LENGTH,
    ValidatedFlag,
)
from ..db.db_base import new_id
from ..exceptions import CorruptCredentialError, ValidationInputError, validation_failed

_FIELD_LIMITS = {
    "tenant_id": MAX_TENANT_ID_LENGTH,
    "identity": MAX_IDENTITY_LENGTH,
    "otp": MAX_OTP_LENGTH,
    "id": 36,
}


def _clean_text(value: Any, field: str) -> str:
    """Strip and bounds-check a required text field."""
    if not isinstance(value, str):
        raise validation_failed(field, type(value).__name__, "must be a string")
    cleaned = value.strip()
    if not cleaned:
        raise validation_failed(field, value if field != "otp" else "<redacted>", "must not be blank")
    limit = _FIELD_LIMITS.get(field)
    if limit is not None and len(cleaned) > limit:
        raise validation_failed(field, f"<{len(cleaned)} chars>", f"must be at most {limit} characters")
    return cleaned


class Token(BaseModel):
    """
    Snapshot of one OTP token.

    ``secret`` holds the stored form for tokens read from the store, and the
    plaintext OTP only on the value returned by the create operation.
    """

    id: str
    tenant_id: str
    identity: str
    secret: Optional[str] = Field(default=None, repr=False)
    ttl_seconds: int = 0
    validated: bool = False
    created_at_epoch_ms: int = 0

    model_config = ConfigDict(frozen=True, from_attributes=True)

    def remaining_ttl_seconds(self, now_ms: int) -> float:
        """Seconds of validity left at ``now_ms``; zero or negative means expired."""
        return self.ttl_seconds - (now_ms - self.created_at_epoch_ms) / 1000

    def is_active(self, now_ms: int) -> bool:
        return not self.validated and self.remaining_ttl_seconds(now_ms) > 0

    def with_secret(self, secret: str) -> "Token":
        return self.model_copy(update={"secret": secret})

    def as_validated(self) -> "Token":
        return self.model_copy(update={"validated": True})

    def masked(self) -> Dict[str, Any]:
        """Dict form safe for logs."""
        data = self.model_dump()
        data["secret"] = "***" if self.secret else None
        return data


class TokenRequest(BaseModel):
    """Request to issue a new OTP for an identity."""

    tenant_id: str
    identity: str

    model_config = ConfigDict(frozen=True)

    @field_validator("tenant_id", "identity", mode="before")
    def validate_text(cls, v: Any, info: ValidationInfo) -> str:
        return _clean_text(v, info.field_name)


class ValidateRequest(BaseModel):
    """Request to check a submitted OTP."""

    tenant_id: str
    identity: str
    otp: str = Field(repr=False)

    model_config = ConfigDict(frozen=True)

    @field_validator("tenant_id", "identity", "otp", mode="before")
    def validate_text(cls, v: Any, info: ValidationInfo) -> str:
        return _clean_text(v, info.field_name)


class TokenSearchCriteria(BaseModel):
    """Lookup of a single token by id."""

    id: str

    model_config = ConfigDict(frozen=True)

    @field_validator("id", mode="before")
    def validate_id(cls, v: Any, info: ValidationInfo) -> str:
        return _clean_text(v, info.field_name)


def _parse(model_class, **values):
    try:
        return model_class(**values)
    except PydanticValidationError as e:
        raise ValidationInputError(
            f"Invalid {model_class.__name__}",
            cause=e,
            errors=[{"loc": err["loc"], "type": err["type"]} for err in e.errors()],
        ) from e


def parse_token_request(tenant_id: Any, identity: Any) -> TokenRequest:
    return _parse(TokenRequest, tenant_id=tenant_id, identity=identity)


def parse_validate_request(tenant_id: Any, identity: Any, otp: Any) -> ValidateRequest:
    return _parse(ValidateRequest, tenant_id=tenant_id, identity=identity, otp=otp)


def parse_search_criteria(token_id: Any) -> TokenSearchCriteria:
    return _parse(TokenSearchCriteria, id=token_id)


def build_token(
    tenant_id: str,
    identity: str,
    secret: str,
    ttl_seconds: int,
    created_at_epoch_ms: int,
    token_id: Optional[str] = None,
) -> Token:
    """
    Validating factory for a new, unvalidated token.

    Raises:
        ValidationInputError: If any field has the wrong shape
    """
    if not isinstance(secret, str) or not secret:
        raise validation_failed("secret", "<redacted>", "must be a non-empty string")
    for name, value, minimum in (
        ("ttl_seconds", ttl_seconds, 0),
        ("created_at_epoch_ms", created_at_epoch_ms, 0),
    ):
        if not isinstance(value, int) or isinstance(value, bool) or value < minimum:
            raise validation_failed(name, value, f"must be an integer >= {minimum}")

    return Token(
        id=token_id or new_id(),
        tenant_id=_clean_text(tenant_id, "tenant_id"),
        identity=_clean_text(identity, "identity"),
        secret=secret,
        ttl_seconds=ttl_seconds,
        validated=False,
        created_at_epoch_ms=created_at_epoch_ms,
    )


def _row_value(row: Union[Mapping[str, Any], Any], column: str) -> Any:
    if isinstance(row, Mapping):
        return row.get(column)
    return getattr(row, column, None)


def _required_text(row, column: str) -> str:
    value = _row_value(row, column)
    if value is None or not str(value).strip():
        raise CorruptCredentialError(
            f"Token row is missing required column '{column}'", column=column
        )
    return str(value).strip()


def token_from_row(row: Union[Mapping[str, Any], Any]) -> Token:
    """
    Map a persisted row (ORM object or mapping) to a Token.

    Null handling per column:
        id, tenant_id, identity: required, CorruptCredentialError when missing
        secret: stripped, None stays None
        ttl_seconds: None -> 0 (expired)
        validated: only 'Y' (any case) is True
        created_at_epoch_ms: None -> 0 (expired)
    """
    secret = _row_value(row, "secret")
    ttl_seconds = _row_value(row, "ttl_seconds")
    validated = _row_value(row, "validated")
    created_at_epoch_ms = _row_value(row, "created_at_epoch_ms")

    return Token(
        id=_required_text(row, "id"),
        tenant_id=_required_text(row, "tenant_id"),
        identity=_required_text(row, "identity"),
        secret=secret.strip() if isinstance(secret, str) else None,
        ttl_seconds=int(ttl_seconds) if ttl_seconds is not None else 0,
        validated=isinstance(validated, str) and validated.strip().upper() == ValidatedFlag.YES.value,
        created_at_epoch_ms=int(created_at_epoch_ms) if created_at_epoch_ms is not None else 0,
    )
