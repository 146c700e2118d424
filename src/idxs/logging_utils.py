"""Runtime logging helpers."""

from __future__ import annotations

import sys

from loguru import logger

from idxs.config import get_settings

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<7} | {name}:{function}:{line} | {extra[instance]} | {message}"
_CONFIGURED_LEVEL: str | None = None


def configure_logging(level: str | None = None) -> None:
    """Configure process-level logging once."""

    global _CONFIGURED_LEVEL
    resolved = (level or get_settings().log_level).upper()
    if resolved == _CONFIGURED_LEVEL:
        return

    logger.remove()
    logger.configure(extra={"instance": "-"})
    logger.add(
        sys.stderr,
        level=resolved,
        format=LOG_FORMAT,
        backtrace=False,
        diagnose=False,
    )
    _CONFIGURED_LEVEL = resolved
