"""
Engine and session factory for the token store.

Connection settings come from AppConfig.database (DATABASE_URL plus the
DB_POOL_* variables). Repositories only ever see ``session_factory`` and
open one short session per store call.
"""

import os
from typing import Any, Optional

from pydantic import BaseModel
from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.orm import declarative_base, sessionmaker

from ..config import DatabaseSettings, get_config
from ..constants import EnvironmentVariable
from ..exceptions import ErrorCode, ServiceError, ValidationError
from ..utils.logger import get_logger

# Base class for all SQLAlchemy models
Base: Any = declarative_base()

POSTGRES_DRIVER = "postgresql+psycopg"
_BACKENDS = {"sqlite": "sqlite", "postgresql": "postgres", "postgres": "postgres"}


class DatabaseConfig(BaseModel):
    """Where the otp_tokens table lives and how connections to it are pooled."""

    db_type: str = "postgres"
    database: str
    host: Optional[str] = None
    port: str = "5432"
    username: Optional[str] = None
    password: Optional[str] = None
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    echo: bool = False
    development_mode: bool = False

    @classmethod
    def from_url(cls, url: str, **overrides: Any) -> "DatabaseConfig":
        """
        Build a config from a SQLAlchemy URL such as ``DATABASE_URL``.

        Raises:
            ValidationError: If the URL cannot be parsed or names another backend
        """
        try:
            parsed = make_url(url)
        except ArgumentError as e:
            raise ValidationError(
                "Invalid database URL",
                error_code=ErrorCode.INVALID_FORMAT,
                field="connection_string",
                cause=e,
            ) from e

        db_type = _BACKENDS.get(parsed.get_backend_name())
        if db_type is None:
            raise ValidationError(
                f"Unsupported database backend: {parsed.get_backend_name()}",
                error_code=ErrorCode.INVALID_FORMAT,
                field="connection_string",
                value=parsed.render_as_string(hide_password=True),
            )

        if db_type == "sqlite":
            fields = {"db_type": db_type, "database": parsed.database or ":memory:"}
        else:
            fields = {
                "db_type": db_type,
                "host": parsed.host,
                "port": str(parsed.port or 5432),
                "database": parsed.database or "",
                "username": parsed.username,
                "password": parsed.password,
            }
        return cls(**{**fields, **overrides})

    @classmethod
    def from_settings(
        cls, settings: DatabaseSettings, development_mode: bool = False
    ) -> "DatabaseConfig":
        return cls.from_url(
            settings.connection_string,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_timeout=settings.pool_timeout,
            echo=settings.echo,
            development_mode=development_mode,
        )

    def get_connection_string(self) -> str:
        if self.db_type == "sqlite":
            return f"sqlite:///{self.database}"
        if self.db_type == "postgres":
            if not all([self.host, self.database, self.username, self.password]):
                raise ValidationError(
                    "Missing required Postgres configuration parameters",
                    error_code=ErrorCode.MISSING_REQUIRED,
                    field="database_config",
                    value={"host": self.host, "database": self.database, "username": self.username},
                )
            url = URL.create(
                POSTGRES_DRIVER,
                username=self.username,
                password=self.password,
                host=self.host,
                port=int(self.port),
                database=self.database,
            )
            return url.render_as_string(hide_password=False)
        raise ValidationError(
            f"Unsupported database type: {self.db_type}",
            error_code=ErrorCode.INVALID_FORMAT,
            field="db_type",
            value=self.db_type,
        )

    def __repr__(self) -> str:
        return (
            f"DatabaseConfig(db_type='{self.db_type}', host='{self.host}', "
            f"port='{self.port}', database='{self.database}', "
            f"username='{self.username}', password='***')"
        )


class DatabaseManager:
    """Owns the engine and the session factory repositories draw from."""

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.engine: Engine = self._create_engine()
        # Tokens are mapped to schemas before the session closes; nothing reloads them
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    def _create_engine(self) -> Engine:
        connection_string = self.config.get_connection_string()
        if self.config.db_type == "sqlite":
            # Store calls may run on any request thread
            return create_engine(
                connection_string,
                echo=self.config.echo,
                connect_args={"check_same_thread": False},
            )
        return create_engine(
            connection_string,
            echo=self.config.echo,
            pool_size=self.config.pool_size,
            max_overflow=self.config.max_overflow,
            pool_timeout=self.config.pool_timeout,
            pool_pre_ping=True,
        )

    def create_tables(self) -> None:
        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        if not self.config.development_mode:
            raise ServiceError(
                "Cannot drop tables: not in development mode",
                error_code=ErrorCode.CONFIGURATION_ERROR,
                operation="drop_tables",
                development_mode=self.config.development_mode,
            )
        Base.metadata.drop_all(self.engine)

    def close(self) -> None:
        self.engine.dispose()


def get_development_config() -> DatabaseConfig:
    """SQLite store for local work; in memory unless DEV_DB_PATH names a file."""
    return DatabaseConfig(
        db_type="sqlite",
        database=os.environ.get(EnvironmentVariable.DEV_DB_PATH.value, ":memory:"),
        echo=get_config().database.echo,
        development_mode=True,
    )


def get_production_config() -> DatabaseConfig:
    """Store settings from the application configuration."""
    return DatabaseConfig.from_settings(get_config().database)


def import_all_models():
    """Import all models to ensure they're registered with SQLAlchemy metadata."""
    from sqlalchemy.orm import configure_mappers

    from .db_otp_token_models import OTPToken  # noqa

    configure_mappers()


def initialize_db(config: Optional[DatabaseConfig] = None) -> DatabaseManager:
    """
    Build a DatabaseManager and make sure the otp_tokens table exists.

    Args:
        config: Connection settings (default: get_production_config())

    Returns:
        DatabaseManager: Manager whose session_factory repositories can use
    """
    if config is None:
        config = get_production_config()

    manager = DatabaseManager(config)
    get_logger().info(
        "Initializing DB", extra={"db_type": config.db_type, "database": config.database}
    )
    import_all_models()
    manager.create_tables()
    return manager
