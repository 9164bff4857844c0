from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any, Iterable, Sequence

from settings import get_settings

_DEFAULT_EXTRA_KEYS = (
    "listener",
    "address",
    "database",
    "retention_policy",
    "points",
    "status_code",
    "elapsed_ms",
    "reason",
    "error_count",
)

_LOG_FILE_MAX_BYTES = 100 * 1024 * 1024
_LOG_FILE_BACKUPS = 5

_configured = False


class ContextualFormatter(logging.Formatter):
    """Append selected ``extra`` attributes to each record as key=value pairs.

    Values that would break the key=value layout are double-quoted.
    """

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        style: str = "%",
        extra_keys: Iterable[str] | None = None,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt, style=style)
        self._extra_keys: Sequence[str] = tuple(extra_keys or _DEFAULT_EXTRA_KEYS)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        pairs = [
            f"{key}={_quote(value)}"
            for key in self._extra_keys
            if (value := record.__dict__.get(key)) is not None
        ]
        if not pairs:
            return message
        return f"{message} | {' '.join(pairs)}"


def _quote(value: object) -> str:
    text = str(value)
    if not text or any(char.isspace() or char in "\"=" for char in text):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


def build_logging_config(level: str | int, log_file: str | None = None) -> dict[str, Any]:
    """Return the ``dictConfig`` mapping for the given level and optional file."""
    handlers: dict[str, dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": "contextual",
        }
    }
    if log_file:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": level,
            "formatter": "contextual",
            "filename": log_file,
            "maxBytes": _LOG_FILE_MAX_BYTES,
            "backupCount": _LOG_FILE_BACKUPS,
        }

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "contextual": {
                "()": "logging_config.ContextualFormatter",
                "fmt": "%(asctime)sZ %(levelname)-7s %(threadName)s %(name)s: %(message)s",
                "datefmt": "%Y-%m-%dT%H:%M:%S",
                "extra_keys": list(_DEFAULT_EXTRA_KEYS),
            }
        },
        "handlers": handlers,
        # httpx logs every request at INFO.
        "loggers": {"httpx": {"level": "WARNING"}},
        "root": {"handlers": list(handlers), "level": level},
    }


def configure_logging(level: str | int | None = None, log_file: str | None = None) -> None:
    """Configure process-wide logging once; later calls are ignored.

    ``level`` and ``log_file`` fall back to ``LOG_LEVEL`` and ``LOG_FILE_PATH``.
    """
    global _configured
    if _configured:
        return

    settings = get_settings()
    dictConfig(
        build_logging_config(
            level if level is not None else settings.log_level,
            log_file if log_file is not None else settings.log_file_path,
        )
    )
    _configured = True
