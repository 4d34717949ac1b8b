"""Shared logging helpers."""

from __future__ import annotations

import logging
import os
from typing import Optional

_CONFIGURED = False
_DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


def _level_from_env(default: int) -> int:
    raw = (os.getenv("ALERTS_LOG_LEVEL") or "").strip().upper()
    if not raw:
        return default
    resolved = logging.getLevelName(raw)
    return resolved if isinstance(resolved, int) else default


def setup_logging(level: int = logging.INFO, *, fmt: Optional[str] = None) -> None:
    """Ensure the root logger is configured once per process."""
    global _CONFIGURED
    if _CONFIGURED:
        return
    logging.basicConfig(level=_level_from_env(level), format=fmt or _DEFAULT_FORMAT)
    # httpx logs every request at INFO; webhook URLs carry secrets.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _CONFIGURED = True


def get_logger(name: str, *, level: Optional[int] = None) -> logging.Logger:
    """Return a configured logger for a module."""
    setup_logging()
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level)
    return logger


__all__ = ["get_logger", "setup_logging"]
