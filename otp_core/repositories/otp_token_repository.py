"""
OTP token repository.

Owns the SQL-level lifecycle rules:
- expiry is computed lazily from created_at_epoch_ms + ttl_seconds against the
  repository clock (the database server by default), never by a sweeper
- expire-then-insert runs as one transaction, serialised per identity
- mark_validated is a conditional update and the only place a token becomes
  validated
"""

from typing import Callable, List, Optional, Tuple

from sqlalchemy import BigInteger, and_, cast, select, text, update
from sqlalchemy.orm import Session

from ..constants import ValidatedFlag
from ..db.db_base import utc_now
from ..db.db_otp_token_models import OTPToken
from ..exceptions import TokenUpdateFailedError, not_found, validation_failed
from ..schemas.otp_token_schema import Token, token_from_row
from ..utils.clock import Clock, StoreClock
from ..utils.logger import ContextAwareLogger
from .base_repository import BaseRepository


def _expires_at_ms():
    """SQL expression for the instant a row stops being valid."""
    return OTPToken.created_at_epoch_ms + cast(OTPToken.ttl_seconds, BigInteger) * 1000


class OTPTokenRepository(BaseRepository[OTPToken]):
    """
    Repository for OTP token rows.

    All reads of "now" go through the injected clock so every instance sharing
    the database agrees on expiry regardless of the caller's own clock.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Optional[Clock] = None,
        default_timeout: Optional[float] = None,
        logger: Optional[ContextAwareLogger] = None,
    ):
        """
        Args:
            session_factory: Callable returning a new SQLAlchemy session
            clock: Time source for TTL computations (default: StoreClock)
            default_timeout: Seconds applied to calls that pass no timeout
            logger: Optional logger instance
        """
        super().__init__(session_factory, OTPToken, logger=logger, default_timeout=default_timeout)
        self.clock = clock or StoreClock(session_factory)

    # ==================== INTERNAL STATEMENTS ====================

    def _now_ms(self, session: Session) -> int:
        """Read the repository clock, inside the open transaction for a StoreClock."""
        if isinstance(self.clock, StoreClock):
            return self.clock.now_ms(session)
        return self.clock.now_ms()

    def _lock_identity(self, session: Session, tenant_id: str, identity: str) -> None:
        """Serialise writers for one (tenant, identity) until the transaction ends."""
        if session.get_bind().dialect.name == "postgresql":
            session.execute(
                text("SELECT pg_advisory_xact_lock(hashtextextended(:key, 0))"),
                {"key": f"otp:{tenant_id}\x1f{identity}"},
            )
        # SQLite serialises writers with its database lock

    def _expire(self, session: Session, tenant_id: str, identity: str) -> int:
        result = session.execute(
            update(OTPToken)
            .where(
                and_(
                    OTPToken.tenant_id == tenant_id,
                    OTPToken.identity == identity,
                    OTPToken.validated == ValidatedFlag.NO.value,
                )
            )
            .values(ttl_seconds=0, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def _insert(self, session: Session, token: Token) -> Token:
        if token.validated:
            raise validation_failed("validated", token.validated, "new tokens must be unvalidated")
        row = OTPToken(
            id=token.id,
            tenant_id=token.tenant_id,
            identity=token.identity,
            secret=token.secret,
            ttl_seconds=token.ttl_seconds,
            validated=ValidatedFlag.NO.value,
            created_at_epoch_ms=self._now_ms(session),
        )
        session.add(row)
        session.flush()
        return token_from_row(row)

    def _active_filter(self, now_ms: int):
        return and_(
            OTPToken.validated == ValidatedFlag.NO.value,
            OTPToken.ttl_seconds > 0,
            _expires_at_ms() > now_ms,
        )

    # ==================== STORE OPERATIONS ====================

    def insert(self, token: Token, timeout: Optional[float] = None) -> Token:
        """
        Persist a new unvalidated token.

        The creation timestamp is taken from the repository clock.

        Returns:
            The persisted token (stored-form secret)

        Raises:
            StoreUnavailableError: On connectivity or constraint errors
        """
        with self._session_scope("insert", timeout, entity_id=token.id) as session:
            persisted = self._insert(session, token)

        self.logger.info(
            "OTP token inserted",
            extra={"token_id": persisted.id, "tenant_id": persisted.tenant_id},
        )
        return persisted

    def expire_active_for(
        self, tenant_id: str, identity: str, timeout: Optional[float] = None
    ) -> int:
        """
        Force-expire every unvalidated token of an identity.

        Idempotent. Validated tokens are left untouched.

        Returns:
            Number of rows updated (zero is normal for a first token)
        """
        with self._session_scope("expire_active_for", timeout, tenant_id=tenant_id) as session:
            expired = self._expire(session, tenant_id, identity)

        self.logger.debug(
            "Expired unvalidated OTP tokens",
            extra={"tenant_id": tenant_id, "expired_count": expired},
        )
        return expired

    def expire_and_insert(self, token: Token, timeout: Optional[float] = None) -> Tuple[int, Token]:
        """
        Expire prior unvalidated tokens of the identity and insert ``token``, atomically.

        Any failure rolls back both steps.

        Returns:
            Tuple of (expired_count, persisted token)

        Raises:
            StoreUnavailableError: If either step fails
        """
        with self._session_scope(
            "expire_and_insert", timeout, entity_id=token.id, tenant_id=token.tenant_id
        ) as session:
            self._lock_identity(session, token.tenant_id, token.identity)
            expired = self._expire(session, token.tenant_id, token.identity)
            persisted = self._insert(session, token)

        self.logger.info(
            "OTP token issued",
            extra={
                "token_id": persisted.id,
                "tenant_id": persisted.tenant_id,
                "expired_count": expired,
                "ttl_seconds": persisted.ttl_seconds,
            },
        )
        return expired, persisted

    def find_active_for(
        self, tenant_id: str, identity: str, timeout: Optional[float] = None
    ) -> List[Token]:
        """
        Get the unvalidated, unexpired tokens of an identity, newest first.
        """
        with self._session_scope("find_active_for", timeout, tenant_id=tenant_id) as session:
            now_ms = self._now_ms(session)
            rows = session.scalars(
                select(OTPToken)
                .where(
                    and_(
                        OTPToken.tenant_id == tenant_id,
                        OTPToken.identity == identity,
                        self._active_filter(now_ms),
                    )
                )
                .order_by(OTPToken.created_at_epoch_ms.desc(), OTPToken.id.desc())
            ).all()
            tokens = [token_from_row(row) for row in rows]

        if len(tokens) > 1:
            self.logger.warning(
                "More than one active OTP token for identity",
                extra={"tenant_id": tenant_id, "active_count": len(tokens)},
            )
        return tokens

    def mark_validated(self, token_id: str, timeout: Optional[float] = None) -> Token:
        """
        Flip one still-active token from unvalidated to validated.

        This is the compare-and-set that makes validation single-use.

        Raises:
            TokenUpdateFailedError: If no row matched (unknown id, already
                validated, force-expired or elapsed)
        """
        with self._session_scope("mark_validated", timeout, entity_id=token_id) as session:
            now_ms = self._now_ms(session)
            result = session.execute(
                update(OTPToken)
                .where(and_(OTPToken.id == token_id, self._active_filter(now_ms)))
                .values(validated=ValidatedFlag.YES.value, updated_at=utc_now())
                .execution_options(synchronize_session=False)
            )
            if (result.rowcount or 0) != 1:
                raise TokenUpdateFailedError(
                    "Token was not in an active, unvalidated state",
                    token_id=token_id,
                    matched_rows=result.rowcount,
                )
            row = session.get(OTPToken, token_id, populate_existing=True)
            token = token_from_row(row)

        self.logger.info("OTP token marked validated", extra={"token_id": token_id})
        return token

    def find_by_id(self, token_id: str, timeout: Optional[float] = None) -> Optional[Token]:
        """
        Get a token by id.

        Returns:
            The token, or None when absent
        """
        with self._session_scope("find_by_id", timeout, entity_id=token_id) as session:
            row = session.get(OTPToken, token_id)
            return token_from_row(row) if row is not None else None

    def extend_ttl(
        self, token_id: str, new_ttl_seconds: int, timeout: Optional[float] = None
    ) -> Token:
        """
        Restart the validity window of an unvalidated token from now.

        Force-expired tokens (ttl 0) are not re-armed, since a newer token
        supersedes them.

        Raises:
            ValidationInputError: If new_ttl_seconds is not a positive integer
            TokenNotFoundError: If the id is unknown
            TokenUpdateFailedError: If the token is validated or force-expired
        """
        if (
            not isinstance(new_ttl_seconds, int)
            or isinstance(new_ttl_seconds, bool)
            or new_ttl_seconds <= 0
        ):
            raise validation_failed("new_ttl_seconds", new_ttl_seconds, "must be a positive integer")

        with self._session_scope("extend_ttl", timeout, entity_id=token_id) as session:
            now_ms = self._now_ms(session)
            result = session.execute(
                update(OTPToken)
                .where(
                    and_(
                        OTPToken.id == token_id,
                        OTPToken.validated == ValidatedFlag.NO.value,
                        OTPToken.ttl_seconds > 0,
                    )
                )
                .values(
                    ttl_seconds=new_ttl_seconds,
                    created_at_epoch_ms=now_ms,
                    updated_at=utc_now(),
                )
                .execution_options(synchronize_session=False)
            )
            row = session.get(OTPToken, token_id, populate_existing=True)
            if row is None:
                raise not_found("OTPToken", token_id=token_id)
            if (result.rowcount or 0) != 1:
                raise TokenUpdateFailedError(
                    "Only unvalidated, unsuperseded tokens can be extended",
                    token_id=token_id,
                )
            token = token_from_row(row)

        self.logger.info(
            "OTP token TTL extended",
            extra={"token_id": token_id, "ttl_seconds": new_ttl_seconds},
        )
        return token
