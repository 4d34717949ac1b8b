from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest
from sqlalchemy.exc import OperationalError

import worker.tasks as tasks
from alerts.runner import TenantRunReport
from models.alert import LOG_STATUS_SENT, AlertLog
from services import notification_service
from services.alert_errors import TransientAlertError
from services.tenant_directory import TenantDirectory


class _RetryRequested(Exception):
    def __init__(self, countdown: int) -> None:
        super().__init__(countdown)
        self.countdown = countdown


class _DummyTask:
    name = "alerts.daily"

    def __init__(self, retries: int = 0) -> None:
        self.request = SimpleNamespace(retries=retries)
        self.retry_calls: List[Dict[str, Any]] = []

    def retry(self, exc=None, countdown=None):
        self.retry_calls.append({"exc": exc, "countdown": countdown})
        return _RetryRequested(countdown)


class DummySession:
    def rollback(self) -> None:
        pass

    def close(self) -> None:  # pragma: no cover - trivial
        pass


def _broken_listing(self):
    raise OperationalError("SELECT tenants", {}, Exception("connection refused"))


@pytest.mark.parametrize(("retries", "countdown"), [(0, 10), (1, 20), (3, 80)])
def test_tenant_listing_failure_retries_with_backoff(monkeypatch, retries, countdown):
    monkeypatch.setattr(tasks, "SessionLocal", lambda: DummySession())
    monkeypatch.setattr(TenantDirectory, "list_active_tenants", _broken_listing)
    task = _DummyTask(retries=retries)

    with pytest.raises(_RetryRequested) as excinfo:
        tasks._run_occasion(task, "daily", datetime(2026, 3, 10, 9, tzinfo=timezone.utc))

    assert excinfo.value.countdown == countdown
    assert isinstance(task.retry_calls[0]["exc"], TransientAlertError)


def test_tenant_listing_failure_gives_up_after_five_attempts(monkeypatch):
    monkeypatch.setattr(tasks, "SessionLocal", lambda: DummySession())
    monkeypatch.setattr(TenantDirectory, "list_active_tenants", _broken_listing)
    task = _DummyTask(retries=4)

    with pytest.raises(TransientAlertError):
        tasks._run_occasion(task, "daily", datetime(2026, 3, 10, 9, tzinfo=timezone.utc))

    assert task.retry_calls == []


def test_retry_delay_doubles_from_base():
    assert [tasks._retry_delay(attempt) for attempt in range(5)] == [10, 20, 40, 80, 160]


def test_one_tenant_failure_does_not_stop_the_job(monkeypatch, session_factory, make_tenant):
    good = make_tenant("good")
    bad = make_tenant("bad")
    monkeypatch.setattr(tasks, "SessionLocal", session_factory)
    seen: List[Any] = []

    def fake_process(db, tenant_id, *, now=None):
        seen.append(tenant_id)
        if tenant_id == bad.id:
            raise RuntimeError("tenant exploded")
        return TenantRunReport(tenant_id=str(tenant_id), occasion="daily", sent=2, candidates=2)

    monkeypatch.setattr(tasks, "process_alerts_for_tenant", fake_process)

    summary = tasks.run_daily_alerts(now_iso="2026-03-10T09:00:00+00:00")

    assert set(seen) == {good.id, bad.id}
    assert summary["tenants"] == 2
    assert summary["failedTenants"] == 1
    assert summary["completed"] == 1
    assert summary["sent"] == 2


def test_deferred_tenants_are_rescheduled(monkeypatch, session_factory, make_tenant):
    tenant = make_tenant("acme")
    monkeypatch.setattr(tasks, "SessionLocal", session_factory)
    resume_at = datetime(2026, 3, 10, 10, 0, tzinfo=timezone.utc)
    monkeypatch.setattr(
        tasks,
        "process_alerts_for_tenant",
        lambda db, tenant_id, now=None: TenantRunReport(
            tenant_id=str(tenant_id), occasion="daily", suppressed=True, deferred_until=resume_at
        ),
    )
    scheduled: List[Any] = []
    monkeypatch.setattr(tasks, "_schedule_deferred", lambda tenant_id, occasion, eta: scheduled.append((tenant_id, occasion, eta)) or True)

    summary = tasks.run_daily_alerts(now_iso="2026-03-10T09:00:00+00:00")

    assert scheduled == [(tenant.id, "daily", resume_at)]
    assert summary["suppressed"] == 1
    assert summary["deferred"] == 1


def test_monthly_job_uses_monthly_runner(monkeypatch, session_factory, make_tenant):
    make_tenant("acme")
    monkeypatch.setattr(tasks, "SessionLocal", session_factory)
    calls: List[str] = []
    monkeypatch.setattr(
        tasks,
        "send_monthly_summary",
        lambda db, tenant_id, now=None: calls.append("monthly") or TenantRunReport(str(tenant_id), "monthly"),
    )
    monkeypatch.setattr(tasks, "process_alerts_for_tenant", lambda *args, **kwargs: pytest.fail("daily runner used"))

    summary = tasks.run_monthly_summaries(now_iso="2026-03-01T08:00:00+00:00")

    assert calls == ["monthly"]
    assert summary["occasion"] == "monthly"


def test_daily_job_end_to_end(monkeypatch, session_factory, db_session, make_tenant, make_subscription, make_channel):
    now = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)
    tenant = make_tenant("acme")
    make_subscription(tenant, now + timedelta(days=7))
    make_channel(tenant)
    monkeypatch.setattr(tasks, "SessionLocal", session_factory)
    posted: List[str] = []

    def fake_post(url, payload, **kwargs):
        posted.append(url)
        return notification_service.NotificationResult(status="delivered", status_code=200, response_body="{}")

    monkeypatch.setattr(notification_service, "_post_payload", fake_post)

    first = tasks.run_daily_alerts(now_iso=now.isoformat())
    second = tasks.run_daily_alerts(now_iso=(now + timedelta(hours=1)).isoformat())

    assert (first["sent"], second["sent"], second["skipped"]) == (1, 0, 1)
    assert len(posted) == 1
    logs = db_session.query(AlertLog).filter(AlertLog.tenant_id == tenant.id).all()
    assert [log.status for log in logs] == [LOG_STATUS_SENT]


def test_tenant_task_returns_report(monkeypatch, session_factory, make_tenant):
    tenant = make_tenant("acme")
    monkeypatch.setattr(tasks, "SessionLocal", session_factory)

    result = tasks.run_tenant_alerts(str(tenant.id), "daily", "2026-03-10T09:00:00+00:00")

    assert result["tenant_id"] == str(tenant.id)
    assert result["reason"] == "no_channels"
    assert result["state"] == "DONE"


def test_tenant_task_rejects_unknown_occasion():
    with pytest.raises(ValueError):
        tasks.run_tenant_alerts("00000000-0000-0000-0000-000000000000", "weekly")
