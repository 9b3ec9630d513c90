"""Structured logging configuration for the deduplication engine."""

import logging
import json
import sys
import time
from datetime import datetime, timezone
from typing import Dict, Any, Optional
import threading
from contextlib import contextmanager

import structlog


# Thread-local storage for context
_context = threading.local()

_RESERVED_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "getMessage", "exc_info", "exc_text",
    "stack_info", "taskName",
}


class StructuredFormatter(logging.Formatter):
    """Formatter that renders each record as one JSON object."""

    # Owner contact details and credentials never reach the log stream
    SENSITIVE_FIELDS = {
        "password", "token", "secret", "api_key", "authorization",
        "owner_email", "owner_phone", "private_key",
    }

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        if hasattr(_context, "data"):
            log_data.update(_context.data)

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS:
                continue
            if self._is_sensitive_field(key):
                log_data[key] = "[REDACTED]"
            elif isinstance(value, dict):
                log_data[key] = self._redact_mapping(value)
            else:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)

    def _is_sensitive_field(self, field_name: str) -> bool:
        field_lower = field_name.lower()
        return any(sensitive in field_lower for sensitive in self.SENSITIVE_FIELDS)

    def _redact_mapping(self, values: Dict[str, Any]) -> Dict[str, Any]:
        """Redact sensitive keys one level deep, e.g. error context metadata."""
        return {
            key: "[REDACTED]" if self._is_sensitive_field(str(key)) else value
            for key, value in values.items()
        }


def setup_logging(
    format: str = "json",
    level: str = "INFO",
    log_file: Optional[str] = None
) -> None:
    """Configure logging for the application.

    Args:
        format: Log format ("json" or "text")
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path to write logs to
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(log_level)

    if format == "json":
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    # stderr keeps CLI table output on stdout clean
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    renderer = (
        structlog.processors.JSONRenderer()
        if format == "json"
        else structlog.processors.KeyValueRenderer(key_order=["event"])
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def log_performance(
    logger_name: str,
    operation: str,
    duration_ms: float,
    **kwargs
) -> None:
    """Log how long an operation took.

    Args:
        logger_name: Name of the logger to use
        operation: Operation name
        duration_ms: Duration in milliseconds
        **kwargs: Additional fields to include in the log
    """
    kwargs["duration_ms"] = round(duration_ms, 2)
    get_logger(logger_name).info(
        f"{operation} completed in {duration_ms:.1f}ms", extra=kwargs
    )


@contextmanager
def log_context(**kwargs):
    """Add fields to every log record emitted within the block.

    Example:
        with log_context(scan_id="abc"):
            logger.info("Evaluating pairs")  # includes scan_id
    """
    if not hasattr(_context, "data"):
        _context.data = {}

    old_context = _context.data.copy()
    _context.data.update(kwargs)

    try:
        yield
    finally:
        _context.data = old_context


class Timer:
    """Context manager for timing operations.

    Example:
        with Timer() as timer:
            engine.scan(records)
        log_performance(__name__, "scan", timer.duration_ms)
    """

    def __init__(self):
        self.start_time = None
        self.end_time = None
        self.duration_ms = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.end_time = time.perf_counter()
        self.duration_ms = (self.end_time - self.start_time) * 1000
