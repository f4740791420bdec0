"""Logging setup for nilgiri: one "nilgiri" root logger, text or JSON lines on stderr."""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import orjson

LOG_LEVEL_ENV = "NILGIRI_LOG_LEVEL"
LOG_FORMAT_ENV = "NILGIRI_LOG_FORMAT"  # "json" | "text" (default)
ROOT_LOGGER_NAME = "nilgiri"
TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
TEXT_DATEFMT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str) -> logging.Logger:
    """Return the nilgiri child logger for a module, configuring the root on first use."""
    full_name = ROOT_LOGGER_NAME if name == ROOT_LOGGER_NAME else f"{ROOT_LOGGER_NAME}.{name}"
    logger = logging.getLogger(full_name)
    if not logging.getLogger(ROOT_LOGGER_NAME).handlers:
        configure_logging()
    return logger


def configure_logging(level: str | None = None, fmt: str | None = None) -> logging.Logger:
    """(Re)configure the nilgiri root logger.

    Explicit arguments win over NILGIRI_LOG_LEVEL / NILGIRI_LOG_FORMAT. Calling it
    again replaces the previous handler, so the CLI can apply --quiet after
    modules have already grabbed their loggers.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    level_name = (level or os.environ.get(LOG_LEVEL_ENV) or "INFO").upper()
    root.setLevel(getattr(logging, level_name, logging.INFO))
    fmt_name = (fmt or os.environ.get(LOG_FORMAT_ENV) or "text").lower()

    for old in list(root.handlers):
        if getattr(old, "_nilgiri_handler", False):
            root.removeHandler(old)
    handler = logging.StreamHandler(sys.stderr)
    if fmt_name == "json":
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt=TEXT_DATEFMT))
    handler._nilgiri_handler = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    return root


class _JsonFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        obj: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt or "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        run_id = getattr(record, "run_id", None)
        if run_id:
            obj["run_id"] = run_id
        if record.exc_info:
            obj["exception"] = self.formatException(record.exc_info)
        return orjson.dumps(obj, default=str).decode("utf-8")
