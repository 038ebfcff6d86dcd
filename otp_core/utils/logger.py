"""
Logging helpers for the OTP core.

This module provides:
1. ContextAwareLogger, which formats extras into the message as pipe-delimited
   key=value pairs so they survive any formatter the host application installs
2. TenantContextFilter, which stamps the current tenant on every record
"""

import logging
import sys
from typing import Optional, Union

from ..config import get_config

_function_logger = None


class ContextAwareLogger:
    """
    Logger wrapper that formats extra attributes in message while preserving them.

    This ensures extras appear in console output even when the host
    application overrides the formatters.
    """

    def __init__(self, logger):
        """Initialize with an existing logger."""
        self.logger = logger

    def _log_with_formatted_extra(self, level, msg, **kwargs):
        """
        Log with extra data formatted into the message.

        Args:
            level: Logging level method to use
            msg: Log message
            **kwargs: Additional arguments including 'extra' and 'exc_info'
        """
        extra = kwargs.pop("extra", {}) or {}

        if extra:
            extra_str = " | ".join([f"{k}={v}" for k, v in extra.items()])
            full_msg = f"{msg} | {extra_str}"
        else:
            full_msg = msg

        log_method = getattr(self.logger, level)
        log_method(full_msg, extra=extra, **kwargs)

    def set_level(self, level):
        """Set the logging level of the underlying logger."""
        self.logger.setLevel(level)

    def info(self, msg, **kwargs):
        """Log at INFO level with formatted extra."""
        self._log_with_formatted_extra("info", msg, **kwargs)

    def error(self, msg, **kwargs):
        """Log at ERROR level with formatted extra."""
        self._log_with_formatted_extra("error", msg, **kwargs)

    def warning(self, msg, **kwargs):
        """Log at WARNING level with formatted extra."""
        self._log_with_formatted_extra("warning", msg, **kwargs)

    def debug(self, msg, **kwargs):
        """Log at DEBUG level with formatted extra."""
        self._log_with_formatted_extra("debug", msg, **kwargs)

    def exception(self, msg, **kwargs):
        """Log exception with formatted extra."""
        self._log_with_formatted_extra("exception", msg, **kwargs)


class TenantContextFilter(logging.Filter):
    """
    Logging filter that adds tenant context information to log records.
    """

    def filter(self, record):
        """
        Add tenant_id to the log record if available in the current context.

        Args:
            record: LogRecord to modify

        Returns:
            True to include the record in the log output
        """
        # Lazy import to avoid circular dependency
        from ..context.tenant_context import TenantContext

        tenant_id = TenantContext.get_current_tenant_id()
        if tenant_id and not hasattr(record, "tenant_id"):
            record.tenant_id = tenant_id

        return True


def _resolve_level(log_level: Optional[Union[int, str]]) -> int:
    if log_level is None:
        log_level = get_config().logging.level
    if isinstance(log_level, str):
        return getattr(logging, log_level.upper(), logging.INFO)
    return log_level


def configure_logging(
    name: str = "otp_core",
    log_level: Optional[Union[int, str]] = None,
    stream=None,
) -> "ContextAwareLogger":
    """
    Configure a named console logger and make it the package logger.

    Args:
        name: Logger name
        log_level: Logging level (default: from config.logging.level)
        stream: Stream for the console handler (default: stdout)

    Returns:
        The configured logger wrapped with ContextAwareLogger
    """
    global _function_logger

    level = _resolve_level(log_level)

    logger = logging.getLogger(name)
    logger.setLevel(level)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    console_handler = logging.StreamHandler(stream or sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    console_handler.addFilter(TenantContextFilter())
    logger.addHandler(console_handler)

    wrapped_logger = ContextAwareLogger(logger)
    wrapped_logger.debug("Logger configured", extra={"logger_name": name, "level": level})

    _function_logger = wrapped_logger
    return wrapped_logger


def reset_logging() -> None:
    """Forget the configured logger so get_logger() falls back to the root logger."""
    global _function_logger
    _function_logger = None


def get_logger(
    log_level: Optional[Union[int, str]] = None,
) -> "ContextAwareLogger":
    """
    Get the package logger.

    Args:
        log_level: Optional log level to set on the fallback root logger

    Returns:
        Logger instance
    """
    if _function_logger is not None:
        return _function_logger

    logger = logging.getLogger()
    logger.setLevel(_resolve_level(log_level))
    return ContextAwareLogger(logger)
