"""Vendor subscriptions tracked per tenant (read-only for the alert engine)."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Numeric, String, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base

STATUS_ACTIVE = "ACTIVE"
STATUS_PAUSED = "PAUSED"
STATUS_CANCELED = "CANCELED"
STATUS_EXPIRED = "EXPIRED"
STATUS_TRIAL = "TRIAL"

BILLING_MONTHLY = "MONTHLY"
BILLING_QUARTERLY = "QUARTERLY"
BILLING_SEMI_ANNUAL = "SEMI_ANNUAL"
BILLING_ANNUAL = "ANNUAL"
BILLING_ONE_TIME = "ONE_TIME"


class Subscription(Base):
    __tablename__ = "subscriptions"
    __table_args__ = {"extend_existing": True}

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(Uuid(as_uuid=True), ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    vendor_name = Column(String(200), nullable=False)
    service_name = Column(String(200), nullable=False)
    status = Column(String(32), nullable=False, default=STATUS_ACTIVE, index=True)
    amount = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")
    billing_cycle = Column(String(32), nullable=False, default=BILLING_MONTHLY)
    next_renewal_date = Column(DateTime(timezone=True), nullable=True, index=True)
    owner_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    department_id = Column(Uuid(as_uuid=True), ForeignKey("departments.id", ondelete="SET NULL"), nullable=True)
    cost_center = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    owner = relationship("User", lazy="joined")
    department = relationship("Department", lazy="joined")
