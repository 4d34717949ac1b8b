"""Load the alert beat schedule (occasion entries keyed by stable job name) from YAML."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from celery.schedules import crontab

from core.env import env_str
from core.logging import get_logger

logger = get_logger(__name__)

_FALLBACK_SCHEDULE_FILE = str(Path("configs") / "schedules" / "alerts.yml")
DEFAULT_SCHEDULE_FILE = Path(env_str("ALERTS_SCHEDULE_FILE", _FALLBACK_SCHEDULE_FILE) or _FALLBACK_SCHEDULE_FILE)


def _cron_from_string(expr: str) -> crontab:
    """Convert a 5-field cron expression into a Celery ``crontab`` object."""
    fields = str(expr or "").split()
    if len(fields) != 5:
        raise ValueError(f"Invalid cron expression '{expr}'. Expected 5 fields.")
    minute, hour, day_of_month, month, day_of_week = fields
    return crontab(
        minute=minute,
        hour=hour,
        day_of_month=day_of_month,
        month_of_year=month,
        day_of_week=day_of_week,
    )


def _normalize_entry(name: str, payload: Any) -> Optional[Dict[str, Any]]:
    if not isinstance(payload, Mapping):
        logger.warning("Ignoring schedule entry %s: expected a mapping, got %r", name, payload)
        return None
    task = payload.get("task")
    cron = payload.get("cron")
    if not task or not cron:
        logger.warning("Ignoring schedule entry %s: both 'task' and 'cron' are required", name)
        return None
    return {
        "task": str(task),
        "cron": str(cron),
        "args": list(payload.get("args") or []),
        "kwargs": dict(payload.get("kwargs") or {}),
        "options": dict(payload.get("options") or {}),
    }


def load_schedule_config(path: Optional[Path] = None) -> Tuple[Optional[str], Dict[str, Dict[str, Any]], Path]:
    """Return ``(timezone, entries, path)`` from the YAML definition.

    A missing file yields no entries so workers can start without beat.
    """
    schedule_path = Path(path) if path is not None else DEFAULT_SCHEDULE_FILE
    if not schedule_path.exists():
        logger.info("No alert schedule file at %s; beat entries disabled.", schedule_path)
        return None, {}, schedule_path

    try:
        raw = yaml.safe_load(schedule_path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise RuntimeError(f"Failed to parse alert schedule file: {schedule_path}") from exc

    entries: Dict[str, Dict[str, Any]] = {}
    for name, payload in (raw.get("entries") or {}).items():
        entry = _normalize_entry(str(name), payload)
        if entry is not None:
            entries[str(name)] = entry
    return raw.get("timezone"), entries, schedule_path


def scheduler_timezone(path: Optional[Path] = None) -> str:
    """Timezone beat fires in: ``ALERTS_SCHEDULER_TIMEZONE``, then the YAML ``timezone``, then UTC."""
    override = env_str("ALERTS_SCHEDULER_TIMEZONE")
    if override:
        return override
    yaml_timezone, _, _ = load_schedule_config(path)
    return yaml_timezone or "UTC"


def as_celery_schedule(
    entries: Dict[str, Dict[str, Any]],
    *,
    default_queue: Optional[str] = None,
) -> Dict[str, Dict[str, Any]]:
    """Build ``beat_schedule``; entries without an explicit queue go to ``default_queue``."""
    schedule: Dict[str, Dict[str, Any]] = {}
    for name, payload in entries.items():
        options = dict(payload.get("options") or {})
        if default_queue and "queue" not in options:
            options["queue"] = default_queue
        entry: Dict[str, Any] = {
            "task": payload["task"],
            "schedule": _cron_from_string(payload["cron"]),
            "args": payload.get("args", []),
            "kwargs": payload.get("kwargs", {}),
        }
        if options:
            entry["options"] = options
        schedule[name] = entry
    return schedule


__all__ = ["DEFAULT_SCHEDULE_FILE", "as_celery_schedule", "load_schedule_config", "scheduler_timezone"]
