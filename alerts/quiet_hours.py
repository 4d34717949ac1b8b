"""Per-tenant quiet-hours gate.

Quiet hours are two ``HH:MM`` strings in the tenant's local time. The window is
half-open: a tenant is quiet from ``start`` (inclusive) up to ``end``
(exclusive). When ``start > end`` the window wraps midnight. Missing or
malformed bounds never suppress.
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from models.alert import AlertSettings

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "UTC"


def parse_time_of_day(value: Optional[str]) -> Optional[time]:
    text = (value or "").strip()
    if not text:
        return None
    if len(text) != 5 or text[2] != ":":
        raise ValueError(f"time of day must be formatted as HH:MM, got '{value}'")
    hour_part, minute_part = text.split(":")
    hour = int(hour_part)
    minute = int(minute_part)
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"time of day must be within 00:00~23:59, got '{value}'")
    return time(hour, minute)


def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    candidate = (name or DEFAULT_TIMEZONE).strip() or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(candidate)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone '%s'; falling back to %s.", candidate, DEFAULT_TIMEZONE)
        return ZoneInfo(DEFAULT_TIMEZONE)


def _window(settings: AlertSettings) -> Optional[Tuple[time, time]]:
    try:
        start = parse_time_of_day(settings.quiet_hours_start)
        end = parse_time_of_day(settings.quiet_hours_end)
    except ValueError as exc:
        logger.warning("Ignoring malformed quiet hours for tenant %s: %s", settings.tenant_id, exc)
        return None
    if start is None or end is None:
        return None
    return start, end


def _local(settings: AlertSettings, now: datetime) -> datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(resolve_timezone(settings.timezone))


def in_quiet_hours(settings: AlertSettings, now: datetime) -> bool:
    window = _window(settings)
    if window is None:
        return False
    start, end = window
    current = _local(settings, now).time().replace(second=0, microsecond=0)
    if start <= end:
        return start <= current < end
    return current >= start or current < end


def next_eligible_time(settings: AlertSettings, now: datetime) -> Optional[datetime]:
    """Return when the current quiet window ends, if that is later on the same local day.

    ``None`` means either the tenant is not quiet right now or the window only
    ends on the next local day, in which case the date-scoped rules would
    already have moved on.
    """
    if not in_quiet_hours(settings, now):
        return None
    start, end = _window(settings)  # type: ignore[misc]
    local_now = _local(settings, now)
    if start > end and local_now.time() >= start:
        return None
    resume_at = local_now.replace(hour=end.hour, minute=end.minute, second=0, microsecond=0)
    if resume_at <= local_now:
        return None
    return resume_at.astimezone(timezone.utc)


__all__ = ["in_quiet_hours", "next_eligible_time", "parse_time_of_day", "resolve_timezone"]
