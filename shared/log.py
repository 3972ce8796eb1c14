#!/usr/bin/env python3
"""
Scatter client logging configuration

Centralized logging setup for consistent formatting across the project.
Console output is always on; file output is enabled by SCATTER_LOG_FILE.

Usage:
    from shared.log import get_logger

    logger = get_logger(__name__)
    logger.info("Connecting...")
    logger.warning("Endpoint failed", extra={"endpoint": "wss://local.get-scatter.com:50006"})
"""

from __future__ import annotations
import logging
import os
import sys
from pathlib import Path
from typing import Any, Optional


# ========================================
#           LOGGING FORMATTERS
# ========================================

_CONTEXT_FIELDS = (
    ("endpoint", "endpoint"),
    ("request_type", "type"),
    ("request_id", "id"),
    ("event", "event"),
)


def _context_prefix(record: logging.LogRecord) -> str:
    parts = []
    for attr, label in _CONTEXT_FIELDS:
        value = getattr(record, attr, None)
        if value is None:
            continue
        if attr == "request_id":
            value = str(value)[-8:]
        parts.append(f"{label}={value}")
    return f"[{' '.join(parts)}] " if parts else ""


class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output with request context"""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'
    }

    def format(self, record: logging.LogRecord) -> str:
        record = logging.makeLogRecord(record.__dict__)
        if record.levelname in self.COLORS:
            record.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{self.COLORS['RESET']}"
        record.msg = f"{_context_prefix(record)}{record.msg}"
        return super().format(record)


class GenericFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        record = logging.makeLogRecord(record.__dict__)
        record.msg = f"{_context_prefix(record)}{record.msg}"
        return super().format(record)


# ========================================
#           LOGGING CONFIGURATION
# ========================================

_loggers_configured = set()


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get a configured logger for the given module.

    Args:
        name: Usually __name__ from the calling module
        level: Override log level ("DEBUG", "INFO", "WARNING", "ERROR")

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if name not in _loggers_configured:
        _configure_logger(logger, level)
        _loggers_configured.add(name)

    return logger


def set_level(level: str) -> None:
    """Apply `level` to every logger configured through get_logger."""
    log_level = _get_log_level(level)
    for name in _loggers_configured:
        logging.getLogger(name).setLevel(log_level)


def _configure_logger(logger: logging.Logger, level: Optional[str] = None) -> None:
    logger.setLevel(_get_log_level(level))
    logger.handlers.clear()

    _add_console_handler(logger, colored=_is_development())
    log_file = os.getenv("SCATTER_LOG_FILE")
    if log_file:
        _add_file_handler(logger, Path(log_file))

    # Prevent duplicate messages from parent loggers
    logger.propagate = False


def _get_log_level(level: Optional[str] = None) -> int:
    level = level or os.getenv("SCATTER_LOG_LEVEL")
    if level:
        return getattr(logging, level.upper(), logging.INFO)
    return logging.DEBUG if _is_development() else logging.INFO


def _is_development() -> bool:
    return os.getenv('PYTHON_ENV', '').lower() in ['dev', 'development']


def _add_console_handler(logger: logging.Logger, colored: bool = True) -> None:
    fmt = '[%(levelname)-8s][%(asctime)s][%(name)-5s]: %(message)s'
    handler = logging.StreamHandler(sys.stderr)

    if colored and _supports_color():
        formatter = ColoredFormatter(fmt=fmt, datefmt='%H:%M:%S')
    else:
        formatter = GenericFormatter(fmt=fmt, datefmt='%Y-%m-%d %H:%M:%S')

    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _add_file_handler(logger: logging.Logger, log_file: Path) -> None:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file)
    handler.setFormatter(GenericFormatter(
        fmt='%(asctime)s | %(name)-30s | %(levelname)-8s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    logger.addHandler(handler)


def _supports_color() -> bool:
    """Check if terminal supports color output"""
    if not (hasattr(sys.stderr, "isatty") and sys.stderr.isatty()):
        return False
    if os.getenv("TERM", "") == "dumb":
        return False
    if sys.platform == "win32":
        return os.getenv("ANSICON") is not None or os.getenv("WT_SESSION") is not None or os.getenv("TERM_PROGRAM") == "vscode"
    return True


# ========================================
#           CONVENIENCE FUNCTIONS
# ========================================

def configure_root_logging(level: str = "INFO") -> None:
    """
    Configure root logging for the entire application.
    Call this once at application startup (the CLI does).
    """
    root_logger = logging.getLogger()
    _configure_logger(root_logger, level)
    set_level(level)


def log_frame(logger: logging.Logger, level: str, message: str,
              frame: Optional[Any] = None,
              **context: Any) -> None:
    """
    Log a protocol-level message with structured context.

    Args:
        logger: Logger instance
        level: Log level ("debug", "info", "warning", "error")
        message: Log message
        frame: Decoded frame (EventFrame or ControlFrame) for automatic context extraction
        **context: Additional context fields (endpoint, request_id, request_type)

    Example:
        log_frame(logger, "warning", "Dropping stale response", frame=frame, request_id="1234")
    """
    extra_context = {}

    if frame is not None:
        event = getattr(frame, "event", None) or getattr(frame, "kind", None)
        if event is not None:
            extra_context["event"] = getattr(event, "value", event)

    extra_context.update(context)

    log_func = getattr(logger, level.lower())
    log_func(message, extra=extra_context)
