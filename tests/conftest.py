import os
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Generator, Optional

import pytest

os.environ.setdefault("DATABASE_ALLOW_NON_POSTGRES", "1")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("DATABASE_URL", os.getenv("DATABASE_URL", os.environ["TEST_DATABASE_URL"]))

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.engine import Engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import models  # noqa: E402,F401  registers every table on Base.metadata
from database import Base  # noqa: E402
from models.alert import CHANNEL_GOOGLE_CHAT, AlertChannel, AlertSettings  # noqa: E402
from models.subscription import BILLING_MONTHLY, STATUS_ACTIVE, Subscription  # noqa: E402
from models.tenant import Department, Tenant  # noqa: E402
from models.user import User  # noqa: E402

FIXED_NOW = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    test_engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    try:
        yield test_engine
    finally:
        Base.metadata.drop_all(bind=test_engine)
        test_engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture()
def make_tenant(db_session: Session) -> Callable[..., Tenant]:
    def _make(
        slug: Optional[str] = None,
        *,
        is_active: bool = True,
        tz: str = "UTC",
        quiet_hours: Optional[tuple] = None,
        **setting_overrides,
    ) -> Tenant:
        slug = slug or f"tenant-{uuid.uuid4().hex[:8]}"
        tenant = Tenant(id=uuid.uuid4(), name=slug.title(), slug=slug, is_active=is_active, timezone=tz)
        db_session.add(tenant)
        db_session.flush()
        start, end = quiet_hours or (None, None)
        settings = AlertSettings(
            tenant_id=tenant.id,
            enable_14_days=True,
            enable_7_days=True,
            enable_3_days=True,
            enable_tomorrow=True,
            enable_overdue=True,
            enable_monthly_summary=True,
            enable_data_quality=True,
            quiet_hours_start=start,
            quiet_hours_end=end,
            timezone=tz,
        )
        for key, value in setting_overrides.items():
            setattr(settings, key, value)
        db_session.add(settings)
        db_session.commit()
        return tenant

    return _make


@pytest.fixture()
def make_subscription(db_session: Session) -> Callable[..., Subscription]:
    def _make(
        tenant: Tenant,
        renewal: Optional[datetime],
        *,
        vendor: str = "Acme",
        service: str = "Pro",
        amount: str = "99.00",
        status: str = STATUS_ACTIVE,
        billing_cycle: str = BILLING_MONTHLY,
        complete: bool = True,
        **overrides,
    ) -> Subscription:
        owner_id = department_id = None
        cost_center = None
        if complete:
            owner = User(id=uuid.uuid4(), tenant_id=tenant.id, email=f"{uuid.uuid4().hex[:6]}@example.com",
                         first_name="Jane", last_name="Doe")
            department = Department(id=uuid.uuid4(), tenant_id=tenant.id, name="Engineering")
            db_session.add_all([owner, department])
            db_session.flush()
            owner_id, department_id, cost_center = owner.id, department.id, "CC-100"
        subscription = Subscription(
            id=uuid.uuid4(),
            tenant_id=tenant.id,
            vendor_name=vendor,
            service_name=service,
            status=status,
            amount=Decimal(amount),
            currency="USD",
            billing_cycle=billing_cycle,
            next_renewal_date=renewal,
            owner_id=owner_id,
            department_id=department_id,
            cost_center=cost_center,
        )
        for key, value in overrides.items():
            setattr(subscription, key, value)
        db_session.add(subscription)
        db_session.commit()
        return subscription

    return _make


@pytest.fixture()
def make_channel(db_session: Session) -> Callable[..., AlertChannel]:
    def _make(
        tenant: Tenant,
        *,
        kind: str = CHANNEL_GOOGLE_CHAT,
        url: str = "https://chat.googleapis.com/v1/spaces/AAA/messages?key=k",
        is_active: bool = True,
        config: Optional[dict] = None,
        name: str = "Ops",
    ) -> AlertChannel:
        channel = AlertChannel(
            id=uuid.uuid4(),
            tenant_id=tenant.id,
            name=name,
            kind=kind,
            webhook_url=url,
            config=config or {},
            is_active=is_active,
        )
        db_session.add(channel)
        db_session.commit()
        return channel

    return _make
