"""Turn a tenant's enabled alert rules into concrete dispatch candidates.

The evaluator only reads through :class:`services.tenant_directory.TenantDirectory`
and never writes; dedup against the delivery ledger happens later in the runner.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from alerts.quiet_hours import resolve_timezone
from alerts.rules import AlertRuleType, renewal_lead_rules, rule_definition
from core.env import env_int
from models.alert import AlertSettings
from models.subscription import Subscription
from services.schedule_loader import scheduler_timezone
from services.tenant_directory import MonthlyAggregate, TenantDirectory

logger = logging.getLogger(__name__)

DATA_QUALITY_THROTTLE_DAYS = env_int("ALERTS_DATA_QUALITY_THROTTLE_DAYS", 7, minimum=1)
# The monthly job fires in the scheduler's timezone; its period is that month.
SCHEDULER_TIMEZONE = scheduler_timezone()


@dataclass(frozen=True)
class RenewalWindow:
    rule_type: AlertRuleType
    target_day: date
    start: datetime
    end: datetime


@dataclass
class AlertCandidate:
    rule_type: AlertRuleType
    due_date: date
    subscription: Optional[Subscription] = None
    gaps: Tuple[Subscription, ...] = field(default_factory=tuple)
    aggregate: Optional[MonthlyAggregate] = None
    renewal_date: Optional[date] = None

    @property
    def subscription_id(self) -> Optional[uuid.UUID]:
        return self.subscription.id if self.subscription is not None else None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def evaluation_zone(settings: AlertSettings) -> ZoneInfo:
    return resolve_timezone(settings.timezone)


def local_today(now: datetime, tz: ZoneInfo) -> date:
    return _as_utc(now).astimezone(tz).date()


def _day_bounds(day: date, tz: ZoneInfo) -> Tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def renewal_windows(now: datetime, tz: ZoneInfo, settings: AlertSettings) -> List[RenewalWindow]:
    today = local_today(now, tz)
    windows: List[RenewalWindow] = []
    for rule in renewal_lead_rules():
        if not rule.enabled(settings):
            continue
        target = today + timedelta(days=rule.lead_days or 0)
        start, end = _day_bounds(target, tz)
        windows.append(RenewalWindow(rule.rule_type, target, start, end))
    return windows


def _renewal_due_date(subscription: Subscription, tz: ZoneInfo) -> date:
    return _as_utc(subscription.next_renewal_date).astimezone(tz).date()


def data_quality_throttled(last_logged_at: Optional[datetime], now: datetime) -> bool:
    if last_logged_at is None:
        return False
    return _as_utc(last_logged_at) >= _as_utc(now) - timedelta(days=DATA_QUALITY_THROTTLE_DAYS)


def evaluate_daily_rules(
    tenant_id: uuid.UUID,
    now: datetime,
    settings: AlertSettings,
    directory: TenantDirectory,
    *,
    last_data_quality_at: Optional[datetime] = None,
) -> List[AlertCandidate]:
    """Return candidates for the daily occasion in rule order.

    Renewal-lead-time rules come first (14, 7, 3, 1 days), followed by
    overdue and data quality. Overdue reminders are keyed by the local day of
    the run, so they repeat daily until the renewal date is moved.
    """
    tz = evaluation_zone(settings)
    candidates: List[AlertCandidate] = []

    for window in renewal_windows(now, tz, settings):
        subscriptions = directory.find_subscriptions_due_on(tenant_id, window.start, window.end)
        for subscription in subscriptions:
            renewal_day = _renewal_due_date(subscription, tz)
            candidates.append(
                AlertCandidate(
                    rule_type=window.rule_type,
                    due_date=renewal_day,
                    subscription=subscription,
                    renewal_date=renewal_day,
                )
            )

    if rule_definition(AlertRuleType.OVERDUE).enabled(settings):
        for subscription in directory.find_overdue_subscriptions(tenant_id, now):
            candidates.append(
                AlertCandidate(
                    rule_type=AlertRuleType.OVERDUE,
                    due_date=local_today(now, tz),
                    subscription=subscription,
                    renewal_date=_renewal_due_date(subscription, tz),
                )
            )

    if rule_definition(AlertRuleType.DATA_QUALITY).enabled(settings):
        candidate = _data_quality_candidate(tenant_id, now, tz, directory, last_data_quality_at)
        if candidate is not None:
            candidates.append(candidate)

    logger.debug("Tenant %s produced %d daily alert candidates", tenant_id, len(candidates))
    return candidates


def _data_quality_candidate(
    tenant_id: uuid.UUID,
    now: datetime,
    tz: ZoneInfo,
    directory: TenantDirectory,
    last_logged_at: Optional[datetime],
) -> Optional[AlertCandidate]:
    if data_quality_throttled(last_logged_at, now):
        logger.debug("Data quality alert for tenant %s throttled (last=%s)", tenant_id, last_logged_at)
        return None
    gaps: Sequence[Subscription] = directory.find_data_quality_gaps(tenant_id)
    if not gaps:
        return None
    return AlertCandidate(
        rule_type=AlertRuleType.DATA_QUALITY,
        due_date=local_today(now, tz),
        gaps=tuple(gaps),
    )


def evaluate_monthly_summary(
    tenant_id: uuid.UUID,
    now: datetime,
    settings: AlertSettings,
    directory: TenantDirectory,
    *,
    period_timezone: Optional[str] = None,
) -> List[AlertCandidate]:
    """Return the summary candidate keyed by the first day of the period month.

    The period is the month of ``now`` in the scheduler's timezone, so a job
    firing at 08:00 UTC on the 1st still covers that month for tenants far
    behind UTC.
    """
    if not rule_definition(AlertRuleType.MONTHLY_SUMMARY).enabled(settings):
        return []
    period_tz = resolve_timezone(period_timezone or SCHEDULER_TIMEZONE)
    first_of_month = local_today(now, period_tz).replace(day=1)
    aggregate = directory.compute_monthly_aggregate(tenant_id, now)
    return [
        AlertCandidate(
            rule_type=AlertRuleType.MONTHLY_SUMMARY,
            due_date=first_of_month,
            aggregate=aggregate,
        )
    ]


__all__ = [
    "AlertCandidate",
    "RenewalWindow",
    "data_quality_throttled",
    "evaluate_daily_rules",
    "evaluate_monthly_summary",
    "evaluation_zone",
    "local_today",
    "renewal_windows",
]
