"""
Structured Logging with Request Correlation
===========================================

JSON-structured logging with request correlation for tracing payment
and analysis flows end to end.

Features:
1. JSON log format for production (parseable by log aggregators)
2. Request correlation via X-Request-ID header
3. Integration with log sanitizer so payment keys and signatures never hit logs
4. log_suspicious() for security-relevant rejections (signature, amount, ownership)

Usage:
    from core.structured_logging import configure_structured_logging, RequestCorrelationMiddleware

    # In main.py startup:
    configure_structured_logging()
    app.add_middleware(RequestCorrelationMiddleware)

    # In any module:
    logger = logging.getLogger(__name__)
    log_info(logger, "Payment completed", order_id="...", amount=10000)
"""

import json
import logging
import os
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from core.log_sanitizer import REDACTED, _is_sensitive_key, sanitize, sanitize_dict

_request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

LOG_FORMAT = os.getenv("LOG_FORMAT", "json")  # "json" or "text"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
SERVICE_NAME = os.getenv("SERVICE_NAME", "fortune-core")


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return _request_id_ctx.get()


def set_request_id(request_id: str) -> None:
    """Set the request ID in context."""
    _request_id_ctx.set(request_id)


def clear_request_id() -> None:
    """Clear the request ID from context."""
    _request_id_ctx.set(None)


def generate_request_id() -> str:
    """Generate a new request ID."""
    return f"req-{uuid.uuid4().hex[:12]}"


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with request correlation and secret redaction.

    Output format:
    {
        "timestamp": "2026-10-19T01:30:45.123456+00:00",
        "level": "INFO",
        "service": "fortune-core",
        "logger": "payment_reconciliation",
        "message": "Payment completed",
        "request_id": "req-abc123def456",
        ... extra fields ...
    }
    """

    # Fields to exclude from extra (already handled or internal)
    EXCLUDE_FIELDS = {
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "pathname", "process", "processName", "relativeCreated",
        "stack_info", "exc_info", "exc_text", "thread", "threadName",
        "message", "taskName",
    }

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service": SERVICE_NAME,
            "logger": record.name,
            "message": sanitize(record.getMessage()),
        }

        request_id = get_request_id()
        if request_id:
            log_entry["request_id"] = request_id

        log_entry["function"] = record.funcName
        log_entry["line"] = record.lineno

        for key, value in record.__dict__.items():
            if key in self.EXCLUDE_FIELDS or key.startswith("_"):
                continue
            log_entry[key] = self._sanitize_value(key, value)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str, ensure_ascii=False)

    @staticmethod
    def _sanitize_value(key: str, value: Any) -> Any:
        if _is_sensitive_key(key):
            return REDACTED
        if isinstance(value, dict):
            return sanitize_dict(value)
        if isinstance(value, str):
            return sanitize(value)
        return value


class TextFormatter(logging.Formatter):
    """
    Human-readable text formatter with request correlation.

    2026-10-19 01:30:45.123 [INFO] [req-abc123] payment_reconciliation:reconcile_redirect:88 - Payment completed
    """

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        request_id = get_request_id() or "-"

        base = (
            f"{timestamp} [{record.levelname}] [{request_id}] "
            f"{record.name}:{record.funcName}:{record.lineno} - {sanitize(record.getMessage())}"
        )

        if record.exc_info:
            base += f"\n{self.formatException(record.exc_info)}"

        return base


class RequestCorrelationMiddleware(BaseHTTPMiddleware):
    """
    Extract or generate X-Request-ID, expose it to logging, echo it back.
    """

    HEADER_NAME = "X-Request-ID"

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(self.HEADER_NAME) or generate_request_id()
        set_request_id(request_id)

        try:
            response = await call_next(request)
            response.headers[self.HEADER_NAME] = request_id
            return response
        finally:
            clear_request_id()


def configure_structured_logging(level: str = None, format_type: str = None) -> None:
    """
    Configure root logging once at application startup.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to LOG_LEVEL env var.
        format_type: "json" or "text". Defaults to LOG_FORMAT env var.
    """
    level = level or LOG_LEVEL
    format_type = format_type or LOG_FORMAT

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level, logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if format_type.lower() == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(TextFormatter())
    root_logger.addHandler(handler)

    # Suppress noisy third-party loggers
    for noisy_logger in ["httpx", "httpcore", "sqlalchemy.engine", "asyncio"]:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)


def log_with_context(logger: logging.Logger, level: int, message: str, **extra: Any) -> None:
    """
    Log a message with additional context fields.

    Example:
        log_with_context(logger, logging.INFO, "Points deducted",
                         user_id="u1", amount=500, balance_after=1100)
    """
    logger.log(level, message, extra=extra)


def log_info(logger: logging.Logger, message: str, **extra: Any) -> None:
    log_with_context(logger, logging.INFO, message, **extra)


def log_warning(logger: logging.Logger, message: str, **extra: Any) -> None:
    log_with_context(logger, logging.WARNING, message, **extra)


def log_suspicious(logger: logging.Logger, reason: str, **extra: Any) -> None:
    """Security rejection (bad signature, amount or ownership mismatch)."""
    log_with_context(logger, logging.WARNING, f"SUSPICIOUS: {reason}", suspicious=True, **extra)
