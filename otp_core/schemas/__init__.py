"""Pydantic schemas for the OTP core."""

from .otp_token_schema import (
    Token,
    TokenRequest,
    TokenSearchCriteria,
    ValidateRequest,
    build_token,
    parse_search_criteria,
    parse_token_request,
    parse_validate_request,
    token_from_row,
)

__all__ = [
    "Token",
    "TokenRequest",
    "TokenSearchCriteria",
    "ValidateRequest",
    "build_token",
    "parse_search_criteria",
    "parse_token_request",
    "parse_validate_request",
    "token_from_row",
]
