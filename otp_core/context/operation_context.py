"""
Operation context for handling cross-cutting concerns.

This module wraps service operations with ENTER/EXIT/ERROR logging, a
per-operation id, a correlation id shared by nested operations, and timing.
"""

import inspect
import time
import uuid
from contextlib import contextmanager
from functools import wraps
from typing import Any, Callable, Dict, Optional, TypeVar, Union, cast

from ..constants import OperationStatus
from ..exceptions import BaseError, get_correlation_id, set_correlation_id
from ..utils.logger import ContextAwareLogger, get_logger
from .tenant_context import TenantContext

# Argument names whose values must never reach a log line
REDACTED_PARAMS = frozenset({"otp", "candidate_otp", "secret", "plaintext", "stored_form"})
REDACTED = "***"


class OperationContext:
    """Context for a specific operation."""

    def __init__(self, operation_name: str, correlation_id: Optional[str] = None, **context):
        self.operation_name = operation_name
        self.operation_id = str(uuid.uuid4())

        self.correlation_id = correlation_id or get_correlation_id() or str(uuid.uuid4())
        set_correlation_id(self.correlation_id)

        self.context = context
        self.context["operation_id"] = self.operation_id
        self.context["correlation_id"] = self.correlation_id

        self.start_time = time.time()
        self.metrics: Dict[str, Union[int, float]] = {}

    @property
    def duration_ms(self) -> float:
        """Get the operation duration in milliseconds."""
        return (time.time() - self.start_time) * 1000

    def add_context(self, **kwargs) -> None:
        """Add additional context information."""
        self.context.update(kwargs)

    def add_metric(self, name: str, value: Union[int, float]) -> None:
        """Add a metric to the operation context."""
        self.metrics[name] = value


class OperationHandler:
    """Handles operation logging and error enrichment."""

    def __init__(self, logger: Optional[ContextAwareLogger] = None):
        self.logger = logger if logger is not None else get_logger()

    @contextmanager
    def operation(self, name: str, **context):
        """Context manager for operations."""
        tenant_id = TenantContext.get_current_tenant_id()
        if tenant_id and "tenant_id" not in context:
            context["tenant_id"] = tenant_id

        op_ctx = OperationContext(name, **context)

        self.logger.info(
            f"ENTER: {name}",
            extra={
                **context,
                "operation_id": op_ctx.operation_id,
                "correlation_id": op_ctx.correlation_id,
            },
        )

        try:
            yield op_ctx

            self.logger.info(
                f"EXIT: {name}",
                extra={
                    **context,
                    "operation_id": op_ctx.operation_id,
                    "correlation_id": op_ctx.correlation_id,
                    "duration_ms": op_ctx.duration_ms,
                    "status": OperationStatus.SUCCESS.value,
                    **op_ctx.metrics,
                },
            )

        except BaseError as e:
            e.add_context(
                operation_name=name,
                operation_id=op_ctx.operation_id,
                operation_duration_ms=op_ctx.duration_ms,
            )

            # BaseError already logged itself; this line ties it to the operation
            self.logger.info(
                f"ERROR: {name} -> {e.error_code}: {e.message}",
                extra={
                    **context,
                    "operation_id": op_ctx.operation_id,
                    "correlation_id": op_ctx.correlation_id,
                    "duration_ms": op_ctx.duration_ms,
                    "error_id": e.error_id,
                    "error_code": e.error_code.value,
                    "status": OperationStatus.ERROR.value,
                    **op_ctx.metrics,
                },
            )
            raise

        except Exception as e:
            self.logger.exception(
                f"ERROR: {name} -> {type(e).__name__}: {str(e)}",
                extra={
                    **context,
                    "operation_id": op_ctx.operation_id,
                    "correlation_id": op_ctx.correlation_id,
                    "duration_ms": op_ctx.duration_ms,
                    "error_type": type(e).__name__,
                    "status": OperationStatus.ERROR.value,
                    **op_ctx.metrics,
                },
            )
            raise


F = TypeVar("F", bound=Callable[..., Any])


def _sanitize_param(param):
    """Sanitize parameter for logging to avoid huge objects."""
    if param is None:
        return None
    elif isinstance(param, (str, int, float, bool)):
        return param
    elif isinstance(param, dict) and len(param) < 10:
        return {k: _sanitize_param(v) for k, v in param.items()}
    elif isinstance(param, (list, tuple)) and len(param) < 10:
        return [_sanitize_param(x) for x in param]
    else:
        return f"{type(param).__name__}"


def _loggable_arguments(signature: inspect.Signature, args, kwargs) -> Dict[str, Any]:
    try:
        bound = signature.bind_partial(*args, **kwargs)
    except TypeError:
        return {}
    loggable = {}
    for param_name, value in bound.arguments.items():
        if param_name in ("self", "cls"):
            continue
        if param_name in REDACTED_PARAMS:
            loggable[param_name] = REDACTED
        else:
            loggable[param_name] = _sanitize_param(value)
    return loggable


def operation(name: Union[Optional[str], Callable] = None):
    """
    Decorator for operations.

    Args:
        name: Optional operation name. If not provided, a name will be generated
             from module, class and function information.
    """

    def decorator(func: F) -> F:
        signature = inspect.signature(func)

        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            if name is not None:
                op_name = name
            else:
                op_name = func.__name__
                if args and hasattr(args[0], func.__name__):
                    op_name = f"{args[0].__class__.__name__}.{op_name}"
                module_name = func.__module__.split(".")[-1]
                op_name = f"{module_name}.{op_name}"

            context: Dict[str, Any] = {"source_module": func.__module__}
            if args and hasattr(args[0], func.__name__):
                context["class"] = args[0].__class__.__name__

            get_logger().debug(
                f"args: {_loggable_arguments(signature, args, kwargs)}",
                extra={"operation": op_name},
            )

            handler = OperationHandler()
            with handler.operation(op_name, **context):
                return func(*args, **kwargs)

        return cast(F, wrapper)

    # Handle case where decorator is used without parentheses
    if callable(name):
        func, name = name, None
        return decorator(func)

    return decorator
