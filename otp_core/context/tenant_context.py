"""
Tenant context management for the OTP core.

The tenant is always passed explicitly to the token service; this module only
makes it visible to log records emitted while an operation runs, so every line
of a request can be attributed to its tenant.
"""

import threading
from contextlib import contextmanager
from typing import Generator, Optional

from ..exceptions import ErrorCode, ValidationInputError
from ..utils.logger import get_logger


class TenantContext:
    """
    Manages tenant context using thread-local storage.
    """

    _thread_local = threading.local()

    @classmethod
    def set_current_tenant(cls, tenant_id: str) -> None:
        """
        Set the current tenant ID for the execution context.

        Args:
            tenant_id: ID of the tenant

        Raises:
            ValidationInputError: If tenant_id is empty or not a string
        """
        if not tenant_id or not isinstance(tenant_id, str) or not tenant_id.strip():
            raise ValidationInputError(
                "tenant_id must be a non-empty string",
                error_code=ErrorCode.MISSING_REQUIRED,
                field="tenant_id",
                value=tenant_id,
            )

        cls._thread_local.tenant_id = tenant_id.strip()
        get_logger().debug(f"Current tenant set to: {tenant_id}")

    @classmethod
    def get_current_tenant_id(cls) -> Optional[str]:
        """
        Get the current tenant ID from the execution context.

        Returns:
            Current tenant ID or None if not set
        """
        return getattr(cls._thread_local, "tenant_id", None)

    @classmethod
    def clear_current_tenant(cls) -> None:
        """Clear the current tenant ID from the execution context."""
        if hasattr(cls._thread_local, "tenant_id"):
            delattr(cls._thread_local, "tenant_id")


@contextmanager
def tenant_context(tenant_id: str) -> Generator[None, None, None]:
    """
    Context manager for tenant operations.

    Sets the current tenant for the duration of the context and restores the
    previous one afterward.

    Args:
        tenant_id: ID of the tenant
    """
    previous_tenant = TenantContext.get_current_tenant_id()
    TenantContext.set_current_tenant(tenant_id)
    try:
        yield
    finally:
        if previous_tenant:
            TenantContext.set_current_tenant(previous_tenant)
        else:
            TenantContext.clear_current_tenant()
