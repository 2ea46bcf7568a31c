"""Logging configuration and error reporting helpers for the analysis service."""

from __future__ import annotations

import logging
import os
from typing import Union

from engine.errors import MechanismNetworkError

DEFAULT_LOGGER_NAME = "mechnet"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def resolve_level(level: Union[str, int, None] = None) -> int:
    if level is None:
        level = os.getenv("MECHNET_LOG_LEVEL", DEFAULT_LOG_LEVEL)
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


def configure_logging(
    level: Union[str, int, None] = None,
    *,
    logger_name: str = DEFAULT_LOGGER_NAME,
    fmt: str = DEFAULT_LOG_FORMAT,
    force: bool = False,
) -> logging.Logger:
    resolved = resolve_level(level)
    logging.basicConfig(level=resolved, format=fmt, force=force)
    logger = logging.getLogger(logger_name)
    logger.setLevel(resolved)
    return logger


def get_user_message(exc: BaseException) -> str:
    if isinstance(exc, (MechanismNetworkError, ValueError)):
        return str(exc)
    return f"Unexpected error: {exc}"


def log_exception(
    logger: logging.Logger,
    exc: BaseException,
    *,
    show_traceback: bool = False,
    level: int = logging.ERROR,
) -> str:
    user_message = get_user_message(exc)
    detail = exc.log_message() if isinstance(exc, MechanismNetworkError) else user_message
    logger.log(level, detail)
    if show_traceback:
        logger.log(level, "Detailed traceback:", exc_info=exc)
    else:
        logger.debug("Detailed traceback:", exc_info=exc)
    return user_message