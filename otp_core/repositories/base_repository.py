"""
Base repository implementation with common functionality for all repositories.

Repositories here are stateless: each public call opens a session from the
injected factory, runs in one transaction, and closes it. Database failures are
mapped onto the package exception hierarchy.
"""

from contextlib import contextmanager
from typing import Any, Callable, Generic, Iterator, NoReturn, Optional, Type, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from ..exceptions import BaseError, ErrorCode, RepositoryError, StoreUnavailableError
from ..utils.logger import ContextAwareLogger, get_logger

T = TypeVar("T")

_TIMEOUT_MARKERS = (
    "timeout",
    "timed out",
    "canceling statement",
    "database is locked",
    "lock not available",
)


class BaseRepository(Generic[T]):
    """Base repository with common functionality for all repositories."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        entity_class: Type[T],
        logger: Optional[ContextAwareLogger] = None,
        default_timeout: Optional[float] = None,
    ):
        """
        Initialize the base repository.

        Args:
            session_factory: Callable returning a new SQLAlchemy session
            entity_class: SQLAlchemy model class this repository handles
            logger: Optional logger instance
            default_timeout: Seconds applied to calls that pass no timeout
        """
        self.session_factory = session_factory
        self.entity_class = entity_class
        self.logger = logger or get_logger()
        self.entity_name = entity_class.__name__
        self.default_timeout = default_timeout

    def _handle_db_error(
        self,
        e: Exception,
        operation_name: str,
        entity_id: Optional[str] = None,
        **context: Any,
    ) -> NoReturn:
        """
        Map a failure inside a store call onto the exception hierarchy.

        Raises:
            BaseError: Package errors are re-raised untouched
            StoreUnavailableError: For any SQLAlchemy failure
            RepositoryError: For anything else
        """
        if isinstance(e, BaseError):
            raise e

        error_context = {
            "operation_name": operation_name,
            "entity_type": self.entity_name,
            **context,
        }
        if entity_id:
            error_context["entity_id"] = entity_id

        if isinstance(e, PoolTimeoutError) or (
            isinstance(e, OperationalError)
            and any(marker in str(e.orig if e.orig is not None else e).lower() for marker in _TIMEOUT_MARKERS)
        ):
            raise StoreUnavailableError(
                f"Token store timed out in {operation_name}",
                error_code=ErrorCode.TIMEOUT_ERROR,
                cause=e,
                **error_context,
            ) from e

        if isinstance(e, IntegrityError):
            raise StoreUnavailableError(
                f"Constraint violation for {self.entity_name} in {operation_name}",
                cause=e,
                reason="constraint_violation",
                **error_context,
            ) from e

        if isinstance(e, SQLAlchemyError):
            raise StoreUnavailableError(
                f"Database error for {self.entity_name} in {operation_name}",
                cause=e,
                **error_context,
            ) from e

        raise RepositoryError(
            f"Unexpected error for {self.entity_name}: {str(e)}",
            error_code=ErrorCode.INTERNAL_ERROR,
            cause=e,
            **error_context,
        ) from e

    def _apply_timeout(self, session: Session, timeout: Optional[float]) -> None:
        """Bound how long statements in this transaction may run or wait on locks."""
        effective = timeout if timeout is not None else self.default_timeout
        if effective is None:
            return
        timeout_ms = max(1, int(effective * 1000))
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            session.execute(
                text("SELECT set_config('statement_timeout', :value, true)"),
                {"value": f"{timeout_ms}ms"},
            )
            session.execute(
                text("SELECT set_config('lock_timeout', :value, true)"),
                {"value": f"{timeout_ms}ms"},
            )
        elif dialect == "sqlite":
            session.execute(text(f"PRAGMA busy_timeout = {timeout_ms}"))

    @contextmanager
    def _session_scope(
        self,
        operation_name: str,
        timeout: Optional[float] = None,
        entity_id: Optional[str] = None,
        **context: Any,
    ) -> Iterator[Session]:
        """
        Run the body in one transaction: commit on success, roll back on error.

        Raises:
            StoreUnavailableError: If the database fails or times out
        """
        session = self.session_factory()
        try:
            self._apply_timeout(session, timeout)
            yield session
            session.commit()
        except Exception as e:
            try:
                session.rollback()
            except SQLAlchemyError as rollback_error:
                self.logger.warning(
                    f"Rollback failed in {operation_name}",
                    extra={"error": str(rollback_error), "operation_name": operation_name},
                )
            self._handle_db_error(e, operation_name, entity_id, **context)
        finally:
            session.close()
