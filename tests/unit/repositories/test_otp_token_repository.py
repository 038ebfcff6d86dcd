"""
Unit tests for OTPTokenRepository.

Runs against SQLite with a frozen clock so TTL expiry is exercised without
sleeping.
"""

import time
from unittest.mock import Mock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError

from otp_core.db import OTPToken
from otp_core.exceptions import (
    ErrorCode,
    RepositoryError,
    StoreUnavailableError,
    TokenNotFoundError,
    TokenUpdateFailedError,
    ValidationInputError,
)
from otp_core.repositories import OTPTokenRepository
from otp_core.schemas import build_token
from tests.fixtures.factories import (
    ForceExpiredOTPTokenFactory,
    OTPTokenFactory,
    ValidatedOTPTokenFactory,
)


def _new_token(tenant_id="t1", identity="alice", secret="123456", ttl_seconds=300):
    return build_token(tenant_id, identity, secret, ttl_seconds, 0)


def _stored_row(session, token_id):
    session.expire_all()
    return session.scalars(select(OTPToken).where(OTPToken.id == token_id)).one()


class TestInsert:
    """Test persisting new tokens."""

    def test_insert_stamps_store_clock(self, token_repository, frozen_clock, db_session):
        """Test the creation time comes from the repository clock."""
        persisted = token_repository.insert(_new_token())

        assert persisted.created_at_epoch_ms == frozen_clock.now_ms()
        assert persisted.validated is False
        row = _stored_row(db_session, persisted.id)
        assert row.validated == "N"
        assert row.created_at is not None

    def test_insert_rejects_validated_token(self, token_repository):
        """Test only unvalidated tokens can be inserted."""
        token = _new_token().as_validated()

        with pytest.raises(ValidationInputError):
            token_repository.insert(token)

    def test_duplicate_id_is_store_error(self, token_repository):
        """Test a constraint violation surfaces as StoreUnavailableError."""
        token = _new_token()
        token_repository.insert(token)

        with pytest.raises(StoreUnavailableError) as exc_info:
            token_repository.insert(token)

        assert isinstance(exc_info.value.cause, IntegrityError)
        assert exc_info.value.context["reason"] == "constraint_violation"


class TestExpireActiveFor:
    """Test force-expiry of pending tokens."""

    def test_expires_only_unvalidated_rows_of_identity(self, token_repository, db_session):
        """Test validated rows and other identities are untouched."""
        pending = OTPTokenFactory(tenant_id="t1", identity="alice")
        validated = ValidatedOTPTokenFactory(tenant_id="t1", identity="alice")
        other_identity = OTPTokenFactory(tenant_id="t1", identity="bob")
        other_tenant = OTPTokenFactory(tenant_id="t2", identity="alice")

        assert token_repository.expire_active_for("t1", "alice") == 1

        assert _stored_row(db_session, pending.id).ttl_seconds == 0
        assert _stored_row(db_session, validated.id).ttl_seconds == 300
        assert _stored_row(db_session, other_identity.id).ttl_seconds == 300
        assert _stored_row(db_session, other_tenant.id).ttl_seconds == 300

    def test_first_token_expires_nothing(self, token_repository):
        """Test zero affected rows is a normal result."""
        assert token_repository.expire_active_for("t1", "nobody") == 0

    def test_idempotent(self, token_repository, db_session):
        """Test repeating the call leaves the same state."""
        OTPTokenFactory(tenant_id="t1", identity="alice")

        token_repository.expire_active_for("t1", "alice")
        token_repository.expire_active_for("t1", "alice")

        assert token_repository.find_active_for("t1", "alice") == []


class TestExpireAndInsert:
    """Test the atomic create path."""

    def test_supersedes_previous_token(self, token_repository):
        """Test the new token is the only active one."""
        first = token_repository.insert(_new_token(secret="111111"))

        expired, second = token_repository.expire_and_insert(_new_token(secret="222222"))

        assert expired == 1
        active = token_repository.find_active_for("t1", "alice")
        assert [t.id for t in active] == [second.id]
        assert token_repository.find_by_id(first.id).ttl_seconds == 0

    def test_insert_failure_rolls_back_expiry(self, token_repository):
        """Test a failed insert leaves the previous token active."""
        first = token_repository.insert(_new_token(secret="111111"))
        clash = _new_token(secret="222222").model_copy(update={"id": first.id})

        with pytest.raises(StoreUnavailableError):
            token_repository.expire_and_insert(clash)

        assert [t.id for t in token_repository.find_active_for("t1", "alice")] == [first.id]

    def test_expire_failure_aborts_insert(self, token_repository):
        """Test a failing expire step persists nothing."""
        token = _new_token()
        with patch.object(
            OTPTokenRepository,
            "_expire",
            side_effect=OperationalError("UPDATE otp_tokens", {}, Exception("disk I/O error")),
        ):
            with pytest.raises(StoreUnavailableError):
                token_repository.expire_and_insert(token)

        assert token_repository.find_by_id(token.id) is None


class TestFindActiveFor:
    """Test active token lookup."""

    def test_excludes_inactive_rows(self, token_repository, frozen_clock, db_session):
        """Test validated, force-expired and elapsed rows are not active."""
        now = frozen_clock.now_ms()
        ValidatedOTPTokenFactory(tenant_id="t1", identity="alice")
        ForceExpiredOTPTokenFactory(tenant_id="t1", identity="alice")
        OTPTokenFactory(tenant_id="t1", identity="alice", created_at_epoch_ms=now - 300_000)
        live = OTPTokenFactory(tenant_id="t1", identity="alice", created_at_epoch_ms=now - 299_999)

        assert [t.id for t in token_repository.find_active_for("t1", "alice")] == [live.id]

    def test_expiry_follows_store_clock(self, token_repository, frozen_clock):
        """Test a token stops being active once its window elapses."""
        token = token_repository.insert(_new_token(ttl_seconds=60))

        frozen_clock.advance(seconds=59)
        assert [t.id for t in token_repository.find_active_for("t1", "alice")] == [token.id]

        frozen_clock.advance(seconds=1)
        assert token_repository.find_active_for("t1", "alice") == []

    def test_newest_first(self, token_repository, frozen_clock, db_session):
        """Test several active rows come back newest first."""
        now = frozen_clock.now_ms()
        older = OTPTokenFactory(tenant_id="t1", identity="alice", created_at_epoch_ms=now - 10_000)
        newer = OTPTokenFactory(tenant_id="t1", identity="alice", created_at_epoch_ms=now - 5_000)

        assert [t.id for t in token_repository.find_active_for("t1", "alice")] == [newer.id, older.id]

    def test_returns_stored_form(self, token_repository, db_session):
        """Test lookups carry the persisted secret."""
        OTPTokenFactory(tenant_id="t1", identity="alice", secret="$2b$stored")

        assert token_repository.find_active_for("t1", "alice")[0].secret == "$2b$stored"


class TestMarkValidated:
    """Test the compare-and-set."""

    def test_flips_active_token(self, token_repository, db_session):
        """Test an active token becomes validated."""
        token = token_repository.insert(_new_token())

        validated = token_repository.mark_validated(token.id)

        assert validated.validated is True
        assert _stored_row(db_session, token.id).validated == "Y"

    def test_second_call_fails(self, token_repository):
        """Test a token can be validated only once."""
        token = token_repository.insert(_new_token())
        token_repository.mark_validated(token.id)

        with pytest.raises(TokenUpdateFailedError):
            token_repository.mark_validated(token.id)

    def test_unknown_id_fails(self, token_repository):
        """Test an unknown id matches no row."""
        with pytest.raises(TokenUpdateFailedError):
            token_repository.mark_validated("no-such-id")

    def test_superseded_token_fails(self, token_repository):
        """Test a force-expired token cannot be validated."""
        first = token_repository.insert(_new_token(secret="111111"))
        token_repository.expire_and_insert(_new_token(secret="222222"))

        with pytest.raises(TokenUpdateFailedError):
            token_repository.mark_validated(first.id)

    def test_elapsed_token_fails(self, token_repository, frozen_clock):
        """Test a token past its window cannot be validated."""
        token = token_repository.insert(_new_token(ttl_seconds=60))
        frozen_clock.advance(seconds=60)

        with pytest.raises(TokenUpdateFailedError):
            token_repository.mark_validated(token.id)


class TestFindById:
    """Test lookup by id."""

    def test_found(self, token_repository, db_session):
        """Test an existing token is returned whatever its state."""
        row = ValidatedOTPTokenFactory()

        token = token_repository.find_by_id(row.id)

        assert token.id == row.id
        assert token.validated is True

    def test_absent_returns_none(self, token_repository):
        """Test a missing id is not an error."""
        assert token_repository.find_by_id("no-such-id") is None


class TestExtendTtl:
    """Test re-arming a pending token."""

    def test_restarts_window_from_now(self, token_repository, frozen_clock):
        """Test the window starts again at the current store time."""
        token = token_repository.insert(_new_token(ttl_seconds=60))
        frozen_clock.advance(seconds=50)

        extended = token_repository.extend_ttl(token.id, 120)

        assert extended.ttl_seconds == 120
        assert extended.created_at_epoch_ms == frozen_clock.now_ms()
        frozen_clock.advance(seconds=119)
        assert [t.id for t in token_repository.find_active_for("t1", "alice")] == [token.id]

    def test_revives_elapsed_token(self, token_repository, frozen_clock):
        """Test a token that merely ran out of time can be re-armed."""
        token = token_repository.insert(_new_token(ttl_seconds=60))
        frozen_clock.advance(seconds=61)

        token_repository.extend_ttl(token.id, 60)

        assert len(token_repository.find_active_for("t1", "alice")) == 1

    def test_unknown_id(self, token_repository):
        """Test an unknown id raises TokenNotFoundError."""
        with pytest.raises(TokenNotFoundError):
            token_repository.extend_ttl("no-such-id", 60)

    def test_validated_token_not_extended(self, token_repository):
        """Test a consumed token stays consumed."""
        token = token_repository.insert(_new_token())
        token_repository.mark_validated(token.id)

        with pytest.raises(TokenUpdateFailedError):
            token_repository.extend_ttl(token.id, 60)

    def test_superseded_token_not_extended(self, token_repository):
        """Test a force-expired token is not brought back next to its successor."""
        first = token_repository.insert(_new_token(secret="111111"))
        token_repository.expire_and_insert(_new_token(secret="222222"))

        with pytest.raises(TokenUpdateFailedError):
            token_repository.extend_ttl(first.id, 60)

        assert len(token_repository.find_active_for("t1", "alice")) == 1

    @pytest.mark.parametrize("ttl", [0, -5, 1.5, True])
    def test_invalid_ttl(self, token_repository, ttl):
        """Test the new TTL must be a positive integer."""
        with pytest.raises(ValidationInputError):
            token_repository.extend_ttl("any-id", ttl)


class TestStoreFailures:
    """Test database errors map onto StoreUnavailableError."""

    def test_connection_failure(self, session_factory, frozen_clock):
        """Test a failing connection surfaces as StoreUnavailableError."""

        def broken_factory():
            session = session_factory()
            session.execute = Mock(
                side_effect=OperationalError("UPDATE", {}, Exception("could not connect to server"))
            )
            return session

        repository = OTPTokenRepository(broken_factory, clock=frozen_clock)

        with pytest.raises(StoreUnavailableError) as exc_info:
            repository.expire_active_for("t1", "alice")

        assert exc_info.value.error_code == ErrorCode.DATABASE_ERROR
        assert exc_info.value.status_code == 503
        assert isinstance(exc_info.value.cause, OperationalError)

    def test_lock_timeout(self, token_repository):
        """Test a lock wait that runs out maps to a timeout code."""
        with patch.object(
            OTPTokenRepository,
            "_expire",
            side_effect=OperationalError("UPDATE", {}, Exception("database is locked")),
        ):
            with pytest.raises(StoreUnavailableError) as exc_info:
                token_repository.expire_active_for("t1", "alice", timeout=0.1)

        assert exc_info.value.error_code == ErrorCode.TIMEOUT_ERROR

    def test_unexpected_error_is_repository_error(self, token_repository):
        """Test non-database failures are wrapped, not passed through raw."""
        with patch.object(OTPTokenRepository, "_expire", side_effect=RuntimeError("boom")):
            with pytest.raises(RepositoryError) as exc_info:
                token_repository.expire_active_for("t1", "alice")

        assert not isinstance(exc_info.value, StoreUnavailableError)
        assert exc_info.value.error_code == ErrorCode.INTERNAL_ERROR


class TestTimeouts:
    """Test caller and default timeouts reach the database session."""

    def _applied_statements(self, repository, session_factory, timeout):
        session = session_factory()
        try:
            with patch.object(session, "execute") as execute:
                repository._apply_timeout(session, timeout)
        finally:
            session.close()
        return [str(call.args[0]) for call in execute.call_args_list]

    def test_caller_timeout(self, token_repository, session_factory):
        """Test a caller timeout becomes the SQLite busy timeout."""
        statements = self._applied_statements(token_repository, session_factory, 1.5)

        assert statements == ["PRAGMA busy_timeout = 1500"]

    def test_default_timeout(self, session_factory, frozen_clock):
        """Test the repository default applies when the caller passes none."""
        repository = OTPTokenRepository(session_factory, clock=frozen_clock, default_timeout=2)

        assert self._applied_statements(repository, session_factory, None) == [
            "PRAGMA busy_timeout = 2000"
        ]

    def test_no_timeout(self, token_repository, session_factory):
        """Test nothing is set when no timeout is configured."""
        assert self._applied_statements(token_repository, session_factory, None) == []

    def test_calls_accept_timeout(self, token_repository):
        """Test every store call runs with a caller timeout."""
        token = token_repository.insert(_new_token(), timeout=1)
        token_repository.expire_and_insert(_new_token(secret="222222"), timeout=1)
        token_repository.find_active_for("t1", "alice", timeout=1)
        token_repository.find_by_id(token.id, timeout=1)
        assert token_repository.expire_active_for("t1", "alice", timeout=1) == 1


class TestStoreClockDefault:
    """Test expiry judged by the database's clock."""

    def test_insert_and_lookup_on_store_time(self, session_factory):
        """Test creation is stamped from the store and the token reads as active."""
        repository = OTPTokenRepository(session_factory)
        wall_before = int(time.time() * 1000)

        persisted = repository.insert(_new_token())

        assert abs(persisted.created_at_epoch_ms - wall_before) < 5_000
        assert [t.id for t in repository.find_active_for("t1", "alice")] == [persisted.id]

    def test_local_clock_skew_ignored(self, session_factory, db_session):
        """Test a host clock far ahead of the store does not expire live tokens."""
        repository = OTPTokenRepository(session_factory)
        persisted = repository.insert(_new_token(ttl_seconds=60))

        with patch("otp_core.utils.clock.time.time_ns", return_value=(time.time_ns() + 3_600 * 10**9)):
            assert [t.id for t in repository.find_active_for("t1", "alice")] == [persisted.id]
            assert repository.mark_validated(persisted.id).validated is True

    def test_elapsed_on_store_time(self, session_factory, db_session):
        """Test a row whose window closed by the store's clock is not active."""
        OTPTokenFactory(
            tenant_id="t1",
            identity="alice",
            ttl_seconds=60,
            created_at_epoch_ms=int(time.time() * 1000) - 61_000,
        )
        repository = OTPTokenRepository(session_factory)

        assert repository.find_active_for("t1", "alice") == []
