"""Run the alert pipeline for one tenant and one occasion.

States: NOT_STARTED -> GATE_CHECKED -> EVALUATED -> DISPATCHING -> DONE.
A quiet-hours suppression (or a tenant without active channels) jumps from
GATE_CHECKED straight to DONE. DONE is reached even when individual
deliveries fail.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from sqlalchemy.orm import Session

from alerts.evaluator import AlertCandidate, evaluate_daily_rules, evaluate_monthly_summary
from alerts.payloads import AlertContext, build_alert_context
from alerts.quiet_hours import in_quiet_hours, next_eligible_time
from alerts.recorder import DeliveryRecorder
from alerts.rules import OCCASION_DAILY, OCCASION_MONTHLY, OCCASIONS, AlertRuleType
from core.env import env_bool, env_str
from models.alert import AlertChannel, AlertSettings
from services import alert_metrics
from services.notification_service import NotificationResult, dispatch_alert
from services.tenant_directory import TenantDirectory

logger = logging.getLogger(__name__)

FRONTEND_URL = env_str("FRONTEND_URL", "http://localhost:3000") or "http://localhost:3000"
QUIET_HOURS_DEFER = env_bool("ALERTS_QUIET_HOURS_DEFER", True)

Dispatcher = Callable[[AlertChannel, AlertContext], NotificationResult]


class RunState(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    GATE_CHECKED = "GATE_CHECKED"
    EVALUATED = "EVALUATED"
    DISPATCHING = "DISPATCHING"
    DONE = "DONE"


@dataclass
class TenantRunReport:
    tenant_id: str
    occasion: str
    state: RunState = RunState.NOT_STARTED
    reason: Optional[str] = None
    suppressed: bool = False
    deferred_until: Optional[datetime] = None
    candidates: int = 0
    skipped: int = 0
    sent: int = 0
    failed: int = 0
    finalize_errors: int = 0

    def as_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["state"] = self.state.value
        payload["deferred_until"] = self.deferred_until.isoformat() if self.deferred_until else None
        return payload


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_uuid(value: Union[str, uuid.UUID]) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


class TenantAlertRunner:
    """Quiet-hours gate, rule evaluation, ledger reservation and dispatch for one tenant."""

    def __init__(
        self,
        directory: TenantDirectory,
        recorder: DeliveryRecorder,
        *,
        dispatcher: Dispatcher = dispatch_alert,
        frontend_base_url: str = FRONTEND_URL,
        defer_quiet_hours: bool = QUIET_HOURS_DEFER,
        period_timezone: Optional[str] = None,
        clock: Callable[[], datetime] = _now_utc,
    ) -> None:
        self.directory = directory
        self.recorder = recorder
        self.dispatcher = dispatcher
        self.frontend_base_url = frontend_base_url
        self.defer_quiet_hours = defer_quiet_hours
        self.period_timezone = period_timezone
        self.clock = clock

    @classmethod
    def for_session(cls, db: Session, **kwargs: Any) -> "TenantAlertRunner":
        return cls(TenantDirectory(db), DeliveryRecorder(db), **kwargs)

    def run(
        self,
        tenant_id: Union[str, uuid.UUID],
        occasion: str,
        *,
        now: Optional[datetime] = None,
    ) -> TenantRunReport:
        if occasion not in OCCASIONS:
            raise ValueError(f"Unknown alert occasion '{occasion}'")
        tenant_uuid = _coerce_uuid(tenant_id)
        now = now or self.clock()
        report = TenantRunReport(tenant_id=str(tenant_uuid), occasion=occasion)
        timer_start = time.perf_counter()
        outcome = "error"
        try:
            self._run(tenant_uuid, occasion, now, report)
            outcome = report.reason or ("delivery_error" if report.failed else "completed")
            return report
        finally:
            alert_metrics.observe_tenant_run(occasion, outcome, max(time.perf_counter() - timer_start, 0.0))

    def _run(self, tenant_id: uuid.UUID, occasion: str, now: datetime, report: TenantRunReport) -> None:
        tenant = self.directory.get_tenant(tenant_id)
        if tenant is None or not tenant.is_active:
            logger.info("Skipping %s alerts for missing or inactive tenant %s", occasion, tenant_id)
            report.reason = "tenant_inactive"
            report.state = RunState.DONE
            return

        settings = self.directory.get_alert_settings(tenant_id)
        suppressed = in_quiet_hours(settings, now)
        report.state = RunState.GATE_CHECKED
        if suppressed:
            report.suppressed = True
            report.reason = "quiet_hours"
            if self.defer_quiet_hours:
                report.deferred_until = next_eligible_time(settings, now)
            alert_metrics.record_suppressed(occasion, deferred=report.deferred_until is not None)
            logger.info(
                "Skipping %s alerts for tenant %s - in quiet hours (deferred_until=%s)",
                occasion,
                tenant_id,
                report.deferred_until.isoformat() if report.deferred_until else None,
            )
            report.state = RunState.DONE
            return

        channels = self.directory.list_active_channels(tenant_id)
        if not channels:
            logger.debug("No active alert channels for tenant %s", tenant_id)
            report.reason = "no_channels"
            report.state = RunState.DONE
            return

        candidates = self._evaluate(tenant_id, occasion, now, settings)
        report.candidates = len(candidates)
        report.state = RunState.EVALUATED

        report.state = RunState.DISPATCHING
        for candidate in candidates:
            self._dispatch_candidate(tenant_id, candidate, channels, now, report)
        report.state = RunState.DONE
        logger.info(
            "Tenant %s %s alerts done: candidates=%s sent=%s failed=%s skipped=%s",
            tenant_id,
            occasion,
            report.candidates,
            report.sent,
            report.failed,
            report.skipped,
        )

    def _evaluate(
        self,
        tenant_id: uuid.UUID,
        occasion: str,
        now: datetime,
        settings: AlertSettings,
    ) -> List[AlertCandidate]:
        if occasion == OCCASION_MONTHLY:
            return evaluate_monthly_summary(
                tenant_id, now, settings, self.directory, period_timezone=self.period_timezone
            )
        return evaluate_daily_rules(
            tenant_id,
            now,
            settings,
            self.directory,
            last_data_quality_at=self.recorder.last_logged_at(tenant_id, AlertRuleType.DATA_QUALITY),
        )

    def _dispatch_candidate(
        self,
        tenant_id: uuid.UUID,
        candidate: AlertCandidate,
        channels: Sequence[AlertChannel],
        now: datetime,
        report: TenantRunReport,
    ) -> None:
        context: Optional[AlertContext] = None
        render_error: Optional[str] = None
        try:
            context = build_alert_context(candidate, frontend_base_url=self.frontend_base_url)
        except Exception as exc:
            render_error = str(exc) or exc.__class__.__name__
            logger.error(
                "Failed to render %s alert for tenant %s subscription %s: %s",
                candidate.rule_type,
                tenant_id,
                candidate.subscription_id,
                exc,
                exc_info=True,
            )

        rule_type = AlertRuleType(candidate.rule_type).value
        for channel in channels:
            reservation = self.recorder.reserve(
                tenant_id,
                candidate.subscription_id,
                candidate.rule_type,
                candidate.due_date,
                channel.id,
                now=now,
            )
            if not reservation.reserved:
                report.skipped += 1
                alert_metrics.record_duplicate(rule_type)
                continue

            if context is None:
                result = NotificationResult(status="failed", error=f"render error: {render_error}")
            else:
                result = self._send(channel, context)

            if not self.recorder.finalize(reservation.log_id, result, now=self.clock()):
                report.finalize_errors += 1
            if result.delivered:
                report.sent += 1
            else:
                report.failed += 1
            alert_metrics.record_delivery(rule_type, str(channel.kind), result.status)

    def _send(self, channel: AlertChannel, context: AlertContext) -> NotificationResult:
        try:
            return self.dispatcher(channel, context)
        except Exception as exc:
            logger.error("Alert dispatch raised for channel %s: %s", channel.id, exc, exc_info=True)
            return NotificationResult(status="failed", error=str(exc) or exc.__class__.__name__)


def process_alerts_for_tenant(
    db: Session,
    tenant_id: Union[str, uuid.UUID],
    *,
    now: Optional[datetime] = None,
    **runner_kwargs: Any,
) -> TenantRunReport:
    """Daily occasion for one tenant: renewal lead times, overdue and data quality."""
    return TenantAlertRunner.for_session(db, **runner_kwargs).run(tenant_id, OCCASION_DAILY, now=now)


def send_monthly_summary(
    db: Session,
    tenant_id: Union[str, uuid.UUID],
    *,
    now: Optional[datetime] = None,
    **runner_kwargs: Any,
) -> TenantRunReport:
    """Monthly occasion for one tenant."""
    return TenantAlertRunner.for_session(db, **runner_kwargs).run(tenant_id, OCCASION_MONTHLY, now=now)


__all__ = [
    "RunState",
    "TenantAlertRunner",
    "TenantRunReport",
    "process_alerts_for_tenant",
    "send_monthly_summary",
]
