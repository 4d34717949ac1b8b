"""Narrow data-access layer over tenant-owned tables consumed by the alert engine.

Every query filters by tenant id and subscription status explicitly; nothing
relies on implicit session scoping.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from core.env import env_int, env_str
from models.alert import AlertChannel, AlertSettings
from models.subscription import (
    BILLING_ANNUAL,
    BILLING_MONTHLY,
    BILLING_ONE_TIME,
    BILLING_QUARTERLY,
    BILLING_SEMI_ANNUAL,
    STATUS_ACTIVE,
    Subscription,
)
from models.tenant import DEFAULT_TENANT_TIMEZONE, Tenant

logger = logging.getLogger(__name__)

UPCOMING_WINDOW_DAYS = env_int("ALERTS_UPCOMING_WINDOW_DAYS", 30, minimum=1)
REPORTING_CURRENCY = env_str("REPORTING_CURRENCY", "USD") or "USD"

_MONTHLY_FACTORS: Dict[str, Decimal] = {
    BILLING_MONTHLY: Decimal(1),
    BILLING_QUARTERLY: Decimal(1) / Decimal(3),
    BILLING_SEMI_ANNUAL: Decimal(1) / Decimal(6),
    BILLING_ANNUAL: Decimal(1) / Decimal(12),
    BILLING_ONE_TIME: Decimal(0),
}


@dataclass(frozen=True)
class TenantRef:
    id: uuid.UUID
    timezone: str


@dataclass(frozen=True)
class MonthlyAggregate:
    active_count: int
    total_monthly_amount: Decimal
    upcoming_count: int
    currency: str = REPORTING_CURRENCY


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TenantDirectory:
    """Read/write access to tenant data needed for one alert run."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def list_active_tenants(self) -> List[TenantRef]:
        rows = (
            self.db.query(Tenant.id, Tenant.timezone)
            .filter(Tenant.is_active.is_(True))
            .order_by(Tenant.created_at.asc(), Tenant.id.asc())
            .all()
        )
        return [TenantRef(id=row.id, timezone=row.timezone or DEFAULT_TENANT_TIMEZONE) for row in rows]

    def get_tenant(self, tenant_id: uuid.UUID) -> Optional[Tenant]:
        return self.db.query(Tenant).filter(Tenant.id == tenant_id).first()

    def get_alert_settings(self, tenant_id: uuid.UUID) -> AlertSettings:
        """Return the tenant's settings, creating the all-enabled defaults on first access.

        New settings take the tenant's timezone; from then on ``AlertSettings.timezone``
        is the only timezone the gate and the evaluator read.
        """
        settings = self.db.query(AlertSettings).filter(AlertSettings.tenant_id == tenant_id).first()
        if settings is not None:
            return settings
        tenant = self.get_tenant(tenant_id)
        settings = AlertSettings(
            tenant_id=tenant_id,
            enable_14_days=True,
            enable_7_days=True,
            enable_3_days=True,
            enable_tomorrow=True,
            enable_overdue=True,
            enable_monthly_summary=True,
            enable_data_quality=True,
            quiet_hours_start=None,
            quiet_hours_end=None,
            timezone=(tenant.timezone if tenant is not None else None) or DEFAULT_TENANT_TIMEZONE,
        )
        self.db.add(settings)
        self.db.commit()
        logger.info("Created default alert settings for tenant %s", tenant_id)
        return settings

    def list_active_channels(self, tenant_id: uuid.UUID) -> List[AlertChannel]:
        return (
            self.db.query(AlertChannel)
            .filter(AlertChannel.tenant_id == tenant_id, AlertChannel.is_active.is_(True))
            .order_by(AlertChannel.created_at.asc(), AlertChannel.id.asc())
            .all()
        )

    def find_subscriptions_due_on(
        self,
        tenant_id: uuid.UUID,
        start: datetime,
        end: datetime,
        *,
        status: str = STATUS_ACTIVE,
    ) -> List[Subscription]:
        """Subscriptions renewing inside ``[start, end)``."""
        return (
            self.db.query(Subscription)
            .filter(
                Subscription.tenant_id == tenant_id,
                Subscription.status == status,
                Subscription.next_renewal_date >= _as_utc(start),
                Subscription.next_renewal_date < _as_utc(end),
            )
            .order_by(Subscription.next_renewal_date.asc(), Subscription.id.asc())
            .all()
        )

    def find_overdue_subscriptions(self, tenant_id: uuid.UUID, now: datetime) -> List[Subscription]:
        return (
            self.db.query(Subscription)
            .filter(
                Subscription.tenant_id == tenant_id,
                Subscription.status == STATUS_ACTIVE,
                Subscription.next_renewal_date.isnot(None),
                Subscription.next_renewal_date < _as_utc(now),
            )
            .order_by(Subscription.next_renewal_date.asc(), Subscription.id.asc())
            .all()
        )

    def find_data_quality_gaps(self, tenant_id: uuid.UUID) -> List[Subscription]:
        return (
            self.db.query(Subscription)
            .filter(
                Subscription.tenant_id == tenant_id,
                Subscription.status == STATUS_ACTIVE,
                or_(
                    Subscription.owner_id.is_(None),
                    Subscription.department_id.is_(None),
                    Subscription.cost_center.is_(None),
                    Subscription.cost_center == "",
                ),
            )
            .order_by(Subscription.vendor_name.asc(), Subscription.id.asc())
            .all()
        )

    def compute_monthly_aggregate(self, tenant_id: uuid.UUID, now: datetime) -> MonthlyAggregate:
        active = (
            self.db.query(Subscription.amount, Subscription.billing_cycle, Subscription.next_renewal_date)
            .filter(Subscription.tenant_id == tenant_id, Subscription.status == STATUS_ACTIVE)
            .all()
        )
        now_utc = _as_utc(now)
        horizon = now_utc + timedelta(days=UPCOMING_WINDOW_DAYS)
        total = Decimal(0)
        upcoming = 0
        for amount, billing_cycle, renewal in active:
            factor = _MONTHLY_FACTORS.get(billing_cycle or BILLING_MONTHLY, Decimal(1))
            total += Decimal(amount or 0) * factor
            if renewal is not None and now_utc <= _as_utc(renewal) <= horizon:
                upcoming += 1
        return MonthlyAggregate(
            active_count=len(active),
            total_monthly_amount=total.quantize(Decimal("0.01")),
            upcoming_count=upcoming,
        )


__all__ = ["MonthlyAggregate", "TenantDirectory", "TenantRef"]
