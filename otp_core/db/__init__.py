"""
SQLAlchemy models and database plumbing for the OTP core.
"""

from .db_base import TimestampMixin, UUIDMixin, new_id, utc_now
from .db_config import (
    Base,
    DatabaseConfig,
    DatabaseManager,
    get_development_config,
    get_production_config,
    import_all_models,
    initialize_db,
)
from .db_otp_token_models import OTPToken

__all__ = [
    # Base definitions
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    "new_id",
    "utc_now",
    # Configuration
    "DatabaseConfig",
    "DatabaseManager",
    "get_development_config",
    "get_production_config",
    "import_all_models",
    "initialize_db",
    # Models
    "OTPToken",
]
