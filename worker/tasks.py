"""Celery tasks driving the daily and monthly alert jobs."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, NoReturn, Optional, Union

from celery import shared_task
from kombu.exceptions import OperationalError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from alerts.rules import OCCASION_DAILY, OCCASION_MONTHLY, OCCASIONS
from alerts.runner import TenantRunReport, process_alerts_for_tenant, send_monthly_summary
from core.env import env_int
from database import SessionLocal
from services.alert_errors import TransientAlertError
from services.tenant_directory import TenantDirectory

logger = logging.getLogger(__name__)

JOB_MAX_ATTEMPTS = env_int("ALERTS_JOB_MAX_ATTEMPTS", 5, minimum=1)
RETRY_BASE_SECONDS = env_int("ALERTS_JOB_RETRY_BASE_SECONDS", 10, minimum=1)

TenantRunner = Callable[..., TenantRunReport]


def _retry_delay(attempt: int) -> int:
    return RETRY_BASE_SECONDS * (2 ** max(0, attempt))


def _retry_or_raise(task, exc: Exception) -> NoReturn:
    """Re-enqueue the job with exponential backoff until the attempt budget is spent."""
    retries = getattr(task.request, "retries", 0) or 0
    task_name = getattr(task, "name", "alerts-task")
    if retries + 1 >= JOB_MAX_ATTEMPTS:
        logger.error("%s giving up after %s attempts: %s", task_name, retries + 1, exc)
        raise exc
    countdown = _retry_delay(retries)
    logger.warning("%s attempt %s failed (%s); retrying in %ss", task_name, retries + 1, exc, countdown)
    raise task.retry(exc=exc, countdown=countdown)


def _parse_now(now_iso: Optional[str]) -> datetime:
    if not now_iso:
        return datetime.now(timezone.utc)
    parsed = datetime.fromisoformat(now_iso)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _runner_for(occasion: str) -> TenantRunner:
    if occasion == OCCASION_MONTHLY:
        return send_monthly_summary
    return process_alerts_for_tenant


def _schedule_deferred(tenant_id: Union[str, uuid.UUID], occasion: str, eta: datetime) -> bool:
    try:
        run_tenant_alerts.apply_async(args=[str(tenant_id), occasion], eta=eta)
    except OperationalError as exc:
        logger.error("Failed to enqueue deferred %s run for tenant %s: %s", occasion, tenant_id, exc)
        return False
    logger.info("Deferred %s alerts for tenant %s until %s", occasion, tenant_id, eta.isoformat())
    return True


def _new_summary(occasion: str) -> Dict[str, Any]:
    return {
        "occasion": occasion,
        "tenants": 0,
        "completed": 0,
        "suppressed": 0,
        "deferred": 0,
        "failedTenants": 0,
        "candidates": 0,
        "sent": 0,
        "failed": 0,
        "skipped": 0,
    }


def _accumulate(summary: Dict[str, Any], report: TenantRunReport) -> None:
    summary["completed"] += 1
    summary["candidates"] += report.candidates
    summary["sent"] += report.sent
    summary["failed"] += report.failed
    summary["skipped"] += report.skipped
    if report.suppressed:
        summary["suppressed"] += 1


def _run_occasion(task, occasion: str, now: datetime) -> Dict[str, Any]:
    """Run one occasion for every active tenant, isolating per-tenant failures."""
    db: Session = SessionLocal()
    summary = _new_summary(occasion)
    try:
        try:
            tenants = TenantDirectory(db).list_active_tenants()
        except SQLAlchemyError as exc:
            db.rollback()
            _retry_or_raise(task, TransientAlertError(f"Failed to list active tenants: {exc}"))

        summary["tenants"] = len(tenants)
        runner = _runner_for(occasion)
        for tenant in tenants:
            try:
                report = runner(db, tenant.id, now=now)
            except Exception as exc:
                summary["failedTenants"] += 1
                logger.error("%s alerts failed for tenant %s: %s", occasion, tenant.id, exc, exc_info=True)
                db.rollback()
                continue
            _accumulate(summary, report)
            if report.deferred_until is not None and _schedule_deferred(tenant.id, occasion, report.deferred_until):
                summary["deferred"] += 1

        logger.info(
            "%s alert job finished: tenants=%s sent=%s failed=%s skipped=%s failedTenants=%s",
            occasion,
            summary["tenants"],
            summary["sent"],
            summary["failed"],
            summary["skipped"],
            summary["failedTenants"],
        )
        return summary
    finally:
        db.close()


@shared_task(name="alerts.daily", bind=True, max_retries=JOB_MAX_ATTEMPTS - 1)
def run_daily_alerts(self, now_iso: Optional[str] = None) -> Dict[str, Any]:
    """Renewal lead-time, overdue and data-quality alerts for every active tenant."""
    return _run_occasion(self, OCCASION_DAILY, _parse_now(now_iso))


@shared_task(name="alerts.monthly", bind=True, max_retries=JOB_MAX_ATTEMPTS - 1)
def run_monthly_summaries(self, now_iso: Optional[str] = None) -> Dict[str, Any]:
    """Monthly spend summary for every active tenant."""
    return _run_occasion(self, OCCASION_MONTHLY, _parse_now(now_iso))


@shared_task(name="alerts.tenant", bind=True, max_retries=JOB_MAX_ATTEMPTS - 1)
def run_tenant_alerts(
    self,
    tenant_id: str,
    occasion: str = OCCASION_DAILY,
    now_iso: Optional[str] = None,
) -> Dict[str, Any]:
    """Single-tenant run used for quiet-hours deferrals and manual re-runs."""
    if occasion not in OCCASIONS:
        raise ValueError(f"Unknown alert occasion '{occasion}'")
    now = _parse_now(now_iso)
    db: Session = SessionLocal()
    try:
        try:
            report = _runner_for(occasion)(db, tenant_id, now=now)
        except SQLAlchemyError as exc:
            db.rollback()
            _retry_or_raise(self, TransientAlertError(f"{occasion} alerts failed for tenant {tenant_id}: {exc}"))
        if report.deferred_until is not None:
            _schedule_deferred(tenant_id, occasion, report.deferred_until)
        return report.as_dict()
    finally:
        db.close()


__all__ = ["run_daily_alerts", "run_monthly_summaries", "run_tenant_alerts"]
