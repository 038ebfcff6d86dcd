"""
OTP token lifecycle service.

This service issues, validates, looks up and re-arms OTP tokens. It holds no
mutable state of its own: every invariant is enforced by the repository's
atomic expire-and-insert and its conditional mark_validated update, so one
instance can be shared by any number of request threads.
"""

from typing import Optional, Union

from ..config import OTPConfig, get_config
from ..context.operation_context import operation
from ..context.tenant_context import tenant_context
from ..db.db_config import DatabaseManager
from ..exceptions import (
    CorruptCredentialError,
    TokenUpdateFailedError,
    TokenValidationFailedError,
)
from ..repositories.otp_token_repository import OTPTokenRepository
from ..schemas.otp_token_schema import (
    Token,
    TokenRequest,
    TokenSearchCriteria,
    ValidateRequest,
    build_token,
    parse_search_criteria,
    parse_token_request,
    parse_validate_request,
)
from ..utils.clock import Clock
from ..utils.logger import get_logger
from ..utils.otp_utils import generate_numeric_otp
from ..utils.secret_hasher import SecretHasher, get_secret_hasher


class OTPTokenService:
    """
    Service for the OTP token lifecycle.

    Per (tenant, identity) a token goes Active -> Validated on a matching
    validate, or Active -> Expired when a newer token is created or its TTL
    elapses. Failures are never retried here; retry policy belongs to the
    caller.
    """

    def __init__(
        self,
        repository: OTPTokenRepository,
        hasher: Optional[SecretHasher] = None,
        config: Optional[OTPConfig] = None,
    ):
        """
        Initialize service with its store and hasher.

        Args:
            repository: Token store
            hasher: Secret hasher (default: chosen from config.hashing_enabled)
            config: OTP settings (default: the process-wide configuration)
        """
        self.config = config or get_config().otp
        self.repository = repository
        self.hasher = hasher or get_secret_hasher(
            self.config.hashing_enabled, rounds=self.config.bcrypt_rounds
        )
        self.logger = get_logger()

    @classmethod
    def from_db_manager(
        cls,
        db_manager: DatabaseManager,
        config: Optional[OTPConfig] = None,
        clock: Optional[Clock] = None,
        hasher: Optional[SecretHasher] = None,
    ) -> "OTPTokenService":
        """Build a service whose repository opens sessions from ``db_manager``."""
        config = config or get_config().otp
        repository = OTPTokenRepository(
            db_manager.session_factory,
            clock=clock,
            default_timeout=config.store_timeout_seconds,
        )
        return cls(repository, hasher=hasher, config=config)

    def _timeout(self, timeout: Optional[float]) -> Optional[float]:
        return timeout if timeout is not None else self.config.store_timeout_seconds

    # ==================== LIFECYCLE OPERATIONS ====================

    @operation()
    def create(
        self,
        tenant_id: Union[str, TokenRequest],
        identity: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Token:
        """
        Issue a new OTP for an identity, superseding any pending one.

        Args:
            tenant_id: Tenant id, or a TokenRequest carrying both fields
            identity: Identity the OTP proves control of
            timeout: Seconds the store may take (default: config)

        Returns:
            The persisted token with ``secret`` set to the plaintext OTP

        Raises:
            ValidationInputError: If tenant or identity is malformed
            StoreUnavailableError: If the store fails; nothing is persisted
        """
        request = (
            tenant_id if isinstance(tenant_id, TokenRequest) else parse_token_request(tenant_id, identity)
        )

        with tenant_context(request.tenant_id):
            plaintext = generate_numeric_otp(self.config.otp_length)
            token = build_token(
                tenant_id=request.tenant_id,
                identity=request.identity,
                secret=self.hasher.hash(plaintext),
                ttl_seconds=self.config.ttl_seconds,
                created_at_epoch_ms=self.repository.clock.now_ms(),
            )

            expired_count, persisted = self.repository.expire_and_insert(
                token, timeout=self._timeout(timeout)
            )

            self.logger.info(
                "OTP created",
                extra={
                    "token_id": persisted.id,
                    "superseded_count": expired_count,
                    "ttl_seconds": persisted.ttl_seconds,
                },
            )
            return persisted.with_secret(plaintext)

    @operation()
    def validate(
        self,
        tenant_id: Union[str, ValidateRequest],
        identity: Optional[str] = None,
        otp: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Token:
        """
        Consume the active token matching ``otp``.

        The caller cannot tell "no pending OTP" from "wrong OTP" from "lost the
        race to another validator": all three raise the same error.

        Returns:
            The token with ``validated`` set

        Raises:
            ValidationInputError: If tenant, identity or otp is malformed
            TokenValidationFailedError: If no active token matches
            StoreUnavailableError: If the store fails
        """
        request = (
            tenant_id
            if isinstance(tenant_id, ValidateRequest)
            else parse_validate_request(tenant_id, identity, otp)
        )
        timeout = self._timeout(timeout)

        with tenant_context(request.tenant_id):
            candidates = self.repository.find_active_for(
                request.tenant_id, request.identity, timeout=timeout
            )

            for candidate in candidates:
                if not self._matches(request.otp, candidate):
                    continue

                try:
                    validated = self.repository.mark_validated(candidate.id, timeout=timeout)
                except TokenUpdateFailedError as e:
                    # Matched but another validator (or a newer create) got there first
                    raise TokenValidationFailedError(cause=e) from e

                self.logger.info("OTP validated", extra={"token_id": validated.id})
                return validated

            self.logger.debug(
                "No active OTP matched",
                extra={"candidate_count": len(candidates)},
            )
            raise TokenValidationFailedError()

    def _matches(self, candidate_otp: str, token: Token) -> bool:
        """Verify against one stored row; an unreadable row counts as no match."""
        try:
            return self.hasher.verify(candidate_otp, token.secret, token_id=token.id)
        except CorruptCredentialError:
            return False

    @operation()
    def search(
        self, token_id: Union[str, TokenSearchCriteria], timeout: Optional[float] = None
    ) -> Optional[Token]:
        """
        Look up a token by id.

        Returns:
            The token (stored-form secret), or None when absent
        """
        criteria = (
            token_id if isinstance(token_id, TokenSearchCriteria) else parse_search_criteria(token_id)
        )
        token = self.repository.find_by_id(criteria.id, timeout=self._timeout(timeout))
        if token is None:
            self.logger.debug("OTP token not found", extra={"token_id": criteria.id})
        else:
            self.logger.debug("OTP token found", extra=token.masked())
        return token

    @operation()
    def extend(
        self, token_id: Union[str, TokenSearchCriteria], timeout: Optional[float] = None
    ) -> Token:
        """
        Re-arm a pending token's validity window from now with the configured TTL.

        Not called by any default flow; exposed for resend-without-invalidate.

        Raises:
            TokenNotFoundError: If the id is unknown
            TokenUpdateFailedError: If the token is validated or superseded
            StoreUnavailableError: If the store fails
        """
        criteria = (
            token_id if isinstance(token_id, TokenSearchCriteria) else parse_search_criteria(token_id)
        )
        return self.repository.extend_ttl(
            criteria.id, self.config.ttl_seconds, timeout=self._timeout(timeout)
        )
