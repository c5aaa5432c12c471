"""Centralized logging utilities for Penguin Brain."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from .config import CONFIG

_LOGGER: Optional[logging.Logger] = None

# Extra attributes rendered after the message, in this order, as key=value.
_EXTRA_FIELDS = (
    ("elapsed_ms", "elapsed_ms"),
    ("status_code", "status"),
    ("provider", "provider"),
    ("model", "model"),
    ("conversation_id", "conversation"),
    ("company_id", "company"),
    ("tool", "tool"),
    ("state", "state"),
    ("action_intent", "action_intent"),
    ("tool_count", "tool_count"),
    ("chars", "chars"),
    ("input_length", "input_length"),
    ("output_length", "output_length"),
    ("patterns", "patterns"),
    ("client_ip", "client_ip"),
    ("error_code", "error_code"),
    ("error", "error"),
    ("table", "table"),
    ("success", "success"),
)


class ExtraFormatter(logging.Formatter):
    """Formatter that appends structured ``extra=`` fields to the message."""

    def format(self, record: logging.LogRecord) -> str:
        extras = []
        for attr, label in _EXTRA_FIELDS:
            value = getattr(record, attr, None)
            if value is None or value == "":
                continue
            extras.append(f"{label}={value}")
        rendered = super().format(record)
        if extras:
            rendered = f"{rendered} [{', '.join(extras)}]"
        return rendered


def setup_logging(level: str | int = "INFO") -> logging.Logger:
    """Configure application-wide logging and return the package logger."""

    global _LOGGER
    if _LOGGER is not None:
        return _LOGGER

    log_dir = CONFIG.paths.state_dir / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / "penguin_brain.log"

    logger = logging.getLogger("penguin_brain")
    logger.setLevel(level if isinstance(level, int) else getattr(logging, str(level).upper(), logging.INFO))

    formatter = ExtraFormatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    file_handler = RotatingFileHandler(log_path, maxBytes=5 * 1024 * 1024, backupCount=5)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if os.environ.get("PENGUIN_LOG_TO_STDOUT", "0") == "1":
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)

    logger.debug("Logging initialized at %s", log_path)
    _LOGGER = logger
    return logger
