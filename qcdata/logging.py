"""Logger hierarchy for the quality-control pipeline (``qcdata.*``)."""

from __future__ import annotations

import logging
from pathlib import Path

ROOT_LOGGER = "qcdata"
CONSOLE_FORMAT = "[qcdata] %(levelname)s %(name)s: %(message)s"
FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{name}" if name else ROOT_LOGGER)


def _level(value: str | int) -> int:
    if isinstance(value, int):
        return value
    resolved = logging.getLevelName(value.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"unknown log level: {value!r}")
    return resolved


def configure_logging(level: str | int = "INFO", *, log_file: Path | None = None) -> logging.Logger:
    """Route ``qcdata.*`` records to stderr and, when given, to ``log_file``.

    Calling it again replaces the handlers installed by a previous call.
    """

    resolved = _level(level)
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(resolved)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    for handler, fmt in zip(handlers, (CONSOLE_FORMAT, FILE_FORMAT)):
        handler.setFormatter(logging.Formatter(fmt))
        logger.addHandler(handler)
    return logger


__all__ = ["configure_logging", "get_logger"]
