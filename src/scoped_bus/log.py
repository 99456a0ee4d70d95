"""Loguru setup for applications embedding the bus."""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

from loguru import logger

_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


class InterceptHandler(logging.Handler):
    """Route stdlib logging records into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        msg = record.getMessage()
        logger.patch(
            lambda r: r.update(
                name=record.name,
                function=record.funcName,
                line=record.lineno,
            ),
        ).opt(exception=record.exc_info).log(level, msg)


def _intercept_logging(level: str) -> None:
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    logging.getLogger().setLevel(level)


def _safe_message_filter(record: Any) -> bool:
    """Escape braces/angles in log messages to prevent format/tag errors."""
    if isinstance(record.get("message"), str):
        msg = record["message"]
        msg = msg.replace("{", "{{").replace("}", "}}").replace("<", "\\<")
        record["message"] = msg
    return True


def resolve_level(verbose: bool = False, level: str | None = None) -> str:
    """verbose wins, then explicit ``level``, then LOG_LEVEL env, else INFO."""
    if verbose:
        return "DEBUG"
    for candidate in (level, os.environ.get("LOG_LEVEL")):
        if candidate and candidate.upper() in _LEVELS:
            return candidate.upper()
    return "INFO"


def setup_logging(verbose: bool = False, level: str | None = None) -> None:
    """Configure loguru and route stdlib logging through it."""
    resolved = resolve_level(verbose, level)

    logger.remove()
    logger.add(
        sys.stderr,
        level=resolved,
        format=("<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan> | {message}"),
        filter=_safe_message_filter,
    )
    _intercept_logging(resolved)
