"""Durable dedup ledger for alert deliveries.

``reserve`` writes a PENDING row before anything leaves the process and
``finalize`` moves it to SENT or FAILED afterwards. A PENDING or SENT row for
the same (tenant, subscription, rule type, due date, channel) blocks another
attempt; FAILED rows do not.

The check-then-insert in ``reserve`` is not atomic. It relies on the alert
queue being consumed by a single worker with concurrency 1.
"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from alerts.rules import AlertRuleType
from core.env import env_int
from models.alert import (
    LOG_BLOCKING_STATUSES,
    LOG_STATUS_FAILED,
    LOG_STATUS_PENDING,
    LOG_STATUS_SENT,
    AlertLog,
)
from services.alert_errors import RecorderError
from services.notification_service import NotificationResult

logger = logging.getLogger(__name__)

RESPONSE_BODY_LIMIT = env_int("ALERT_RESPONSE_BODY_LIMIT", 2000, minimum=0)
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class Reservation:
    reserved: bool
    log_id: Optional[uuid.UUID] = None
    existing_status: Optional[str] = None

    @classmethod
    def created(cls, log_id: uuid.UUID) -> "Reservation":
        return cls(reserved=True, log_id=log_id)

    @classmethod
    def already_handled(cls, status: str) -> "Reservation":
        return cls(reserved=False, existing_status=status)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _truncate(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    if RESPONSE_BODY_LIMIT and len(value) > RESPONSE_BODY_LIMIT:
        return value[:RESPONSE_BODY_LIMIT]
    return value


class DeliveryRecorder:
    def __init__(self, db: Session) -> None:
        self.db = db

    def _key_filter(
        self,
        tenant_id: uuid.UUID,
        subscription_id: Optional[uuid.UUID],
        rule_type: AlertRuleType,
        due_date: date,
        channel_id: Optional[uuid.UUID],
    ):
        query = self.db.query(AlertLog).filter(
            AlertLog.tenant_id == tenant_id,
            AlertLog.rule_type == AlertRuleType(rule_type).value,
            AlertLog.due_date == due_date,
        )
        if subscription_id is None:
            query = query.filter(AlertLog.subscription_id.is_(None))
        else:
            query = query.filter(AlertLog.subscription_id == subscription_id)
        if channel_id is None:
            query = query.filter(AlertLog.channel_id.is_(None))
        else:
            query = query.filter(AlertLog.channel_id == channel_id)
        return query

    def reserve(
        self,
        tenant_id: uuid.UUID,
        subscription_id: Optional[uuid.UUID],
        rule_type: AlertRuleType,
        due_date: date,
        channel_id: Optional[uuid.UUID],
        *,
        now: Optional[datetime] = None,
    ) -> Reservation:
        """Create a PENDING row unless a PENDING/SENT one already exists for the key.

        Storage errors propagate: without a durable reservation nothing may be sent.
        """
        existing = (
            self._key_filter(tenant_id, subscription_id, rule_type, due_date, channel_id)
            .filter(AlertLog.status.in_(LOG_BLOCKING_STATUSES))
            .order_by(AlertLog.created_at.desc())
            .first()
        )
        if existing is not None:
            logger.debug("Alert %s already %s on channel %s", existing.describe(), existing.status, channel_id)
            return Reservation.already_handled(existing.status)

        log = AlertLog(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            subscription_id=subscription_id,
            rule_type=AlertRuleType(rule_type).value,
            due_date=due_date,
            channel_id=channel_id,
            status=LOG_STATUS_PENDING,
            created_at=now or _now_utc(),
        )
        self.db.add(log)
        self.db.commit()
        return Reservation.created(log.id)

    def _load_pending(self, log_id: uuid.UUID) -> AlertLog:
        log = self.db.get(AlertLog, log_id)
        if log is None:
            raise RecorderError(f"alert log {log_id} does not exist")
        if log.status != LOG_STATUS_PENDING:
            raise RecorderError(f"alert log {log_id} is already {log.status}")
        return log

    def finalize(
        self,
        log_id: uuid.UUID,
        outcome: NotificationResult,
        *,
        now: Optional[datetime] = None,
    ) -> bool:
        """Move a PENDING row to SENT/FAILED. Never raises; returns False on failure.

        A row left PENDING keeps blocking the key until it is reconciled by hand.
        """
        finished_at = now or _now_utc()
        try:
            log = self._load_pending(log_id)
            log.response_code = outcome.status_code
            log.response_body = _truncate(outcome.response_body)
            log.updated_at = finished_at
            if outcome.delivered:
                log.status = LOG_STATUS_SENT
                log.sent_at = finished_at
            else:
                log.status = LOG_STATUS_FAILED
                log.error_message = _truncate(outcome.error)
            self.db.commit()
            return True
        except (RecorderError, SQLAlchemyError) as exc:
            logger.error("Failed to finalize alert log %s (outcome=%s): %s", log_id, outcome.status, exc, exc_info=True)
            try:
                self.db.rollback()
            except SQLAlchemyError:
                logger.warning("Rollback after finalize failure also failed for alert log %s", log_id, exc_info=True)
            return False

    def last_logged_at(self, tenant_id: uuid.UUID, rule_type: AlertRuleType) -> Optional[datetime]:
        value = (
            self.db.query(func.max(AlertLog.created_at))
            .filter(AlertLog.tenant_id == tenant_id, AlertLog.rule_type == AlertRuleType(rule_type).value)
            .scalar()
        )
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    def count_sent(
        self,
        tenant_id: uuid.UUID,
        subscription_id: Optional[uuid.UUID],
        rule_type: AlertRuleType,
        due_date: date,
    ) -> int:
        query = self.db.query(func.count(AlertLog.id)).filter(
            AlertLog.tenant_id == tenant_id,
            AlertLog.rule_type == AlertRuleType(rule_type).value,
            AlertLog.due_date == due_date,
            AlertLog.status == LOG_STATUS_SENT,
        )
        if subscription_id is None:
            query = query.filter(AlertLog.subscription_id.is_(None))
        else:
            query = query.filter(AlertLog.subscription_id == subscription_id)
        return int(query.scalar() or 0)

    def list_alert_logs(self, tenant_id: uuid.UUID, *, page: int = 1, limit: int = 20) -> Dict[str, Any]:
        page = max(int(page or 1), 1)
        limit = min(max(int(limit or 1), 1), MAX_PAGE_SIZE)
        base = self.db.query(AlertLog).filter(AlertLog.tenant_id == tenant_id)
        total = int(base.with_entities(func.count(AlertLog.id)).scalar() or 0)
        rows = (
            base.order_by(AlertLog.created_at.desc(), AlertLog.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "data": rows,
            "meta": {
                "total": total,
                "page": page,
                "limit": limit,
                "pageCount": math.ceil(total / limit) if total else 0,
            },
        }


__all__ = ["DeliveryRecorder", "Reservation"]
