"""Database models for tenant alert settings, channels and the delivery ledger."""

from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func

from database import Base

LOG_STATUS_PENDING = "PENDING"
LOG_STATUS_SENT = "SENT"
LOG_STATUS_FAILED = "FAILED"
LOG_TERMINAL_STATUSES = frozenset({LOG_STATUS_SENT, LOG_STATUS_FAILED})
# Rows in these states block another attempt for the same dedup key.
LOG_BLOCKING_STATUSES = (LOG_STATUS_PENDING, LOG_STATUS_SENT)

CHANNEL_GOOGLE_CHAT = "GOOGLE_CHAT"
CHANNEL_SLACK = "SLACK"
CHANNEL_WEBHOOK = "WEBHOOK"

_JSON = JSON().with_variant(JSONB(), "postgresql")


class AlertSettings(Base):
    """Per-tenant rule switches and quiet hours."""

    __tablename__ = "alert_settings"
    __table_args__ = {"extend_existing": True}

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )
    enable_14_days = Column(Boolean, nullable=False, default=True)
    enable_7_days = Column(Boolean, nullable=False, default=True)
    enable_3_days = Column(Boolean, nullable=False, default=True)
    enable_tomorrow = Column(Boolean, nullable=False, default=True)
    enable_overdue = Column(Boolean, nullable=False, default=True)
    enable_monthly_summary = Column(Boolean, nullable=False, default=True)
    enable_data_quality = Column(Boolean, nullable=False, default=True)
    quiet_hours_start = Column(String(5), nullable=True)
    quiet_hours_end = Column(String(5), nullable=True)
    timezone = Column(String(64), nullable=False, default="UTC")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class AlertChannel(Base):
    """One outbound webhook destination configured by a tenant admin."""

    __tablename__ = "alert_channels"
    __table_args__ = {"extend_existing": True}

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(120), nullable=False)
    kind = Column(String(32), nullable=False, default=CHANNEL_GOOGLE_CHAT)
    webhook_url = Column(Text, nullable=False)
    config = Column(_JSON, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class AlertLog(Base):
    """Ledger row for one attempted alert; the dedup key is
    (tenant_id, subscription_id, rule_type, due_date, channel_id)."""

    __tablename__ = "alert_logs"
    __table_args__ = (
        Index(
            "ix_alert_logs_dedup_key",
            "tenant_id",
            "subscription_id",
            "rule_type",
            "due_date",
            "channel_id",
        ),
        Index("ix_alert_logs_tenant_rule_created", "tenant_id", "rule_type", "created_at"),
        {"extend_existing": True},
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    subscription_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("subscriptions.id", ondelete="SET NULL"),
        nullable=True,
    )
    rule_type = Column(String(32), nullable=False)
    due_date = Column(Date, nullable=False)
    channel_id = Column(Uuid(as_uuid=True), ForeignKey("alert_channels.id", ondelete="SET NULL"), nullable=True)
    status = Column(String(16), nullable=False, default=LOG_STATUS_PENDING, index=True)
    response_code = Column(Integer, nullable=True)
    response_body = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    sent_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def is_terminal(self) -> bool:
        return self.status in LOG_TERMINAL_STATUSES

    def describe(self) -> str:
        subject: Optional[str] = str(self.subscription_id) if self.subscription_id else "tenant"
        return f"{self.rule_type}:{subject}:{self.due_date.isoformat() if self.due_date else '-'}"
