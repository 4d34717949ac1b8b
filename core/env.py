"""Environment variable helpers."""

from __future__ import annotations

import os
from typing import Optional

from dotenv import load_dotenv

from core.logging import get_logger

load_dotenv()

logger = get_logger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "y", "on"}
_FALSE_VALUES = {"0", "false", "no", "n", "off"}


def env_str(key: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(key)
    if value is None or not value.strip():
        if default is None:
            logger.debug("Environment variable %s not set.", key)
        return default
    return value.strip()


def env_int(key: str, default: int, *, minimum: Optional[int] = None) -> int:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid %s value '%s'. Falling back to %d.", key, raw, default)
        return default
    if minimum is not None and value < minimum:
        logger.warning("%s=%d is below the minimum %d. Falling back to %d.", key, value, minimum, default)
        return default
    return value


def env_float(key: str, default: float, *, minimum: Optional[float] = None) -> float:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid %s value '%s'. Falling back to %.2f.", key, raw, default)
        return default
    if minimum is not None and value < minimum:
        logger.warning("%s=%.2f is below the minimum %.2f. Falling back to %.2f.", key, value, minimum, default)
        return default
    return value


def env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    logger.warning("Invalid boolean env %s='%s'. Using default=%s.", key, raw, default)
    return default


__all__ = ["env_bool", "env_float", "env_int", "env_str"]
