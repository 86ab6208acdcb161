"""Structured logging with request correlation IDs and redaction of personal data."""

import hashlib
import logging
import re
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from src.utils.logging_config import LoggingConfig, get_logger


_correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)

CORRELATION_HEADERS = ("X-Request-Id", "X-Vercel-Id")

# (pattern, replacement, flags); applied in order
_REDACTIONS = (
    (r'data:[a-z]+/[a-z0-9.+-]+;base64,[A-Za-z0-9+/=]+', '[REDACTED_SIGNATURE]', re.IGNORECASE),
    (r'([?&]token=)[0-9a-f]{16,}', r'\1[REDACTED]', re.IGNORECASE),
    (r'[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}', '[REDACTED_EMAIL]', re.IGNORECASE),
    (r'\b\+?\d[\d\s().-]{7,}\b', '[REDACTED_PHONE]', 0),
    (r'(api[_-]?key|token|secret|password|auth)[\s:=]+([A-Za-z0-9_-]{20,})', r'\1=[REDACTED]', re.IGNORECASE),
)


def get_correlation_id() -> Optional[str]:
    """Correlation ID of the request being served, if any."""
    return _correlation_id_var.get()


def correlation_id_from_headers(headers: Optional[Mapping[str, str]]) -> Optional[str]:
    """Reuse an upstream request ID when the platform supplies one."""
    if not headers:
        return None
    for name in CORRELATION_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return None


@contextmanager
def correlation_context(correlation_id: Optional[str] = None):
    """Bind a correlation ID for the duration of one request."""
    correlation_id = correlation_id or f"req_{uuid.uuid4().hex[:12]}"
    reset_token = _correlation_id_var.set(correlation_id)
    try:
        yield correlation_id
    finally:
        _correlation_id_var.reset(reset_token)


def mask_sensitive_data(text: str) -> str:
    """Redact signatures, viewing tokens, contact details and secrets."""
    if not text or not LoggingConfig.LOG_MASK_SENSITIVE:
        return text
    for pattern, replacement, flags in _REDACTIONS:
        text = re.sub(pattern, replacement, text, flags=flags)
    return text


def mask_user_id(user_id: Optional[str]) -> Optional[str]:
    """Shorten long user IDs to a prefix plus hash."""
    if not LoggingConfig.LOG_MASK_SENSITIVE or not user_id or len(user_id) <= 12:
        return user_id
    digest = hashlib.sha256(user_id.encode()).hexdigest()[:8]
    return f"{user_id[:4]}...{digest}"


def sanitize_text(text: Optional[str], max_length: int = 500) -> Optional[str]:
    """Truncate and mask free text (viewing messages, extraction input)."""
    if not text:
        return None
    if len(text) > max_length:
        text = text[:max_length] + "..."
    return mask_sensitive_data(text)


class StructuredLogger:
    """Logger that attaches a timestamp and the correlation ID as extra fields."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def _get_extra(self, **kwargs: Any) -> dict[str, Any]:
        extra: dict[str, Any] = {"timestamp": datetime.now(timezone.utc).isoformat()}
        correlation_id = get_correlation_id()
        if correlation_id:
            extra["correlation_id"] = correlation_id
        extra.update(kwargs)
        return extra

    def debug(self, message: str, **kwargs: Any) -> None:
        self.logger.debug(message, extra=self._get_extra(**kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        self.logger.info(message, extra=self._get_extra(**kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        self.logger.warning(message, extra=self._get_extra(**kwargs))

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        self.logger.error(message, extra=self._get_extra(**kwargs), exc_info=exc_info)

    def exception(self, message: str, **kwargs: Any) -> None:
        self.logger.exception(message, extra=self._get_extra(**kwargs))


def get_structured_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(get_logger(name))


@contextmanager
def log_timing(operation_name: str, logger: Optional[StructuredLogger] = None, **context: Any):
    """Log how long a block took; warn past the slow-operation threshold."""
    logger = logger or get_structured_logger(__name__)
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        logger.debug(f"Completed {operation_name}", operation=operation_name, processing_time_ms=elapsed_ms, **context)
        if elapsed_ms > LoggingConfig.LOG_SLOW_OPERATION_THRESHOLD_MS:
            logger.warning(
                f"Slow operation: {operation_name}",
                operation=operation_name,
                processing_time_ms=elapsed_ms,
                threshold_ms=LoggingConfig.LOG_SLOW_OPERATION_THRESHOLD_MS,
                **context
            )


def setup_logging() -> logging.Logger:
    """Set up structured logging and return the package logger."""
    LoggingConfig.setup_logging()
    return get_logger("src")
