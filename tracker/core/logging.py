"""Structured logging configuration for the opportunity tracker scheduler."""

import logging
import sys
from typing import Any

# Extra fields promoted to top-level keys, in output order
CONTEXT_FIELDS = ("opportunity_id", "user_id")


def _format_value(value: Any) -> str:
    text = str(value)
    if " " in text or "=" in text:
        return f'"{text}"'
    return text


class StructuredFormatter(logging.Formatter):
    """key=value structured log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured output."""
        log_data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "module": record.module,
            "function": record.funcName,
        }

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        log_data["message"] = record.getMessage()

        # Remaining context from log_with_context
        if hasattr(record, "extra_data"):
            log_data.update(record.extra_data)

        parts = [f"{k}={_format_value(v)}" for k, v in log_data.items() if v is not None]
        line = " ".join(parts)

        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _level_for_env() -> int:
    try:
        from tracker.core.config import get_settings

        return logging.DEBUG if get_settings().TRACKER_ENV == "dev" else logging.INFO
    except Exception:
        # Settings not loadable (e.g. missing Supabase env in a script)
        return logging.INFO


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger writing structured lines to stdout
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)
        logger.setLevel(_level_for_env())

    return logger


def log_with_context(logger: logging.Logger, level: int, msg: str, **kwargs: Any) -> None:
    """
    Log with additional context fields.

    ``opportunity_id`` and ``user_id`` become top-level keys; everything else
    is appended after the message.

    Example:
        log_with_context(logger, logging.INFO, "Recalculated", opportunity_id=str(opp_id), cbc=cbc)
    """
    extra: dict[str, Any] = {}
    for field in CONTEXT_FIELDS:
        if field in kwargs:
            extra[field] = kwargs.pop(field)
    extra["extra_data"] = kwargs

    logger.log(level, msg, extra=extra)
