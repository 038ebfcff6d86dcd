"""
Test fixtures for the OTP core.

This module provides shared test fixtures including database setup,
a manually driven clock, and repositories and services wired to them.
"""

import pytest
from sqlalchemy.orm import Session

from otp_core.config import OTPConfig, reset_config
from otp_core.context.tenant_context import TenantContext
from otp_core.db import DatabaseConfig, DatabaseManager, import_all_models
from otp_core.db.db_config import Base, initialize_db
from otp_core.exceptions import clear_correlation_id
from otp_core.repositories import OTPTokenRepository
from otp_core.services import OTPTokenService
from otp_core.utils.clock import FrozenClock
from otp_core.utils.logger import reset_logging
from otp_core.utils.secret_hasher import BcryptSecretHasher, PlaintextSecretHasher
from tests.fixtures.factories import set_factory_session

# Lowest cost bcrypt allows; keeps hashing tests fast
TEST_BCRYPT_ROUNDS = 4


@pytest.fixture(scope="session")
def db_config() -> DatabaseConfig:
    """Create SQLite in-memory database configuration for testing."""
    return DatabaseConfig(
        db_type="sqlite",
        database=":memory:",
        echo=False,
        development_mode=True,
    )


@pytest.fixture(scope="session")
def db_manager(db_config: DatabaseConfig) -> DatabaseManager:
    """Create and initialize database manager with all models."""
    import_all_models()
    manager = initialize_db(db_config)
    yield manager
    manager.close()


@pytest.fixture(scope="function")
def session_factory(db_manager: DatabaseManager):
    """
    Session factory over freshly created tables.

    Tables are created before and dropped after each test so every test
    starts from an empty store.
    """
    Base.metadata.create_all(db_manager.engine)

    yield db_manager.session_factory

    Base.metadata.drop_all(db_manager.engine)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Session:
    """Session used for seeding rows and reading them back directly."""
    session = session_factory()
    set_factory_session(session)

    yield session

    session.rollback()
    session.close()


@pytest.fixture(autouse=True)
def clean_context():
    """Reset thread-local context and process-wide singletons around every test."""
    TenantContext.clear_current_tenant()
    clear_correlation_id()
    yield
    TenantContext.clear_current_tenant()
    clear_correlation_id()
    reset_config()
    reset_logging()


@pytest.fixture
def frozen_clock() -> FrozenClock:
    """Clock that only moves when a test advances it."""
    return FrozenClock()


@pytest.fixture
def otp_config() -> OTPConfig:
    """Plaintext-mode OTP settings, independent of the environment."""
    return OTPConfig(
        otp_length=6,
        ttl_seconds=300,
        hashing_enabled=False,
        bcrypt_rounds=TEST_BCRYPT_ROUNDS,
        store_timeout_seconds=None,
    )


@pytest.fixture
def hashed_otp_config(otp_config: OTPConfig) -> OTPConfig:
    """Bcrypt-mode OTP settings."""
    return otp_config.model_copy(update={"hashing_enabled": True})


@pytest.fixture
def token_repository(session_factory, frozen_clock: FrozenClock) -> OTPTokenRepository:
    """Repository over the test database, driven by the frozen clock."""
    return OTPTokenRepository(session_factory, clock=frozen_clock)


@pytest.fixture
def otp_service(token_repository: OTPTokenRepository, otp_config: OTPConfig) -> OTPTokenService:
    """Service storing OTPs in plaintext."""
    return OTPTokenService(token_repository, hasher=PlaintextSecretHasher(), config=otp_config)


@pytest.fixture
def hashed_otp_service(
    token_repository: OTPTokenRepository, hashed_otp_config: OTPConfig
) -> OTPTokenService:
    """Service storing OTPs as bcrypt hashes."""
    return OTPTokenService(
        token_repository,
        hasher=BcryptSecretHasher(rounds=TEST_BCRYPT_ROUNDS),
        config=hashed_otp_config,
    )


@pytest.fixture
def sample_tenant_id() -> str:
    """Standard tenant ID for testing."""
    return "test-tenant-123"


@pytest.fixture
def sample_identity() -> str:
    """Standard identity for testing."""
    return "alice@example.com"
