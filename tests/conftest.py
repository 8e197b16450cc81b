"""
Test configuration and fixtures.

Provides:
- Fresh in-memory SQLite schema per test
- User / invitation / call factories
- A recording notification sender
- External calendar fetches stubbed to "no busy periods"
- HTTPX AsyncClient with the get_db dependency overridden
"""
import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Generator

# Must be set before any callgate import reads settings
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["FERNET_KEY"] = "MDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDA="
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["HOLIDAY_CALENDAR"] = ""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from callgate.core.deps import get_db
from callgate.db.base import Base
from callgate.db.enums import CallStatus, IntegrationType, InvitationStatus, UserRole
from callgate.db.models import (
    Invitation,
    LegacyCallLog,
    ScheduledCall,
    SubscriptionPlan,
    User,
    UserIntegration,
)
from callgate.db.session import enable_sqlite_savepoints
from callgate.main import app
from callgate.services import calendar_service, notification_service


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Session on a private in-memory database.

    App code commits and rolls back freely; the whole database is dropped
    after the test.
    """
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(engine)
    TestSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestSession()

    yield session

    session.close()
    Base.metadata.drop_all(engine)
    engine.dispose()


# =============================================================================
# Collaborator Stubs
# =============================================================================

class RecordingSender:
    """Captures outbound notifications instead of delivering them."""

    def __init__(self):
        self.messages = []

    def send(self, message):
        self.messages.append(message)

    def templates(self) -> list[str]:
        return [m.template for m in self.messages]


@pytest.fixture(autouse=True)
def sent_notifications() -> Generator[RecordingSender, None, None]:
    previous = notification_service.get_sender()
    sender = RecordingSender()
    notification_service.set_sender(sender)
    yield sender
    notification_service.set_sender(previous)


@pytest.fixture(autouse=True)
def external_busy(monkeypatch) -> dict:
    """
    Stub for Google free/busy. Map a user id to a list of BusyBlock dicts,
    or to an exception instance to simulate a failed fetch.
    """
    busy_by_user: dict = {}

    def fake_fetch(db, user, time_min, time_max):
        value = busy_by_user.get(user.id, [])
        if isinstance(value, Exception):
            raise value
        return value

    monkeypatch.setattr(calendar_service, "fetch_busy_blocks", fake_fetch)
    return busy_by_user


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_user(db: Session):
    """Create a user; calendar_connected adds an integration with tokens."""

    def _make(
        role: UserRole = UserRole.SALES_REP,
        *,
        email: str | None = None,
        first_name: str = "Test",
        last_name: str = "User",
        company: str | None = "Acme Corp",
        referred_by: User | None = None,
        calendar_connected: bool = False,
        engagement_score: int | None = None,
        package_type: str | None = None,
        tz: str = "UTC",
    ) -> User:
        user = User(
            id=uuid.uuid4(),
            email=email or f"user-{uuid.uuid4().hex[:8]}@test.com",
            first_name=first_name,
            last_name=last_name,
            company=company,
            role=role.value,
            referred_by_id=referred_by.id if referred_by else None,
            engagement_score=engagement_score,
            package_type=package_type,
            timezone=tz,
            calendar_integration_enabled=calendar_connected,
        )
        db.add(user)
        db.flush()
        if calendar_connected:
            db.add(
                UserIntegration(
                    user_id=user.id,
                    integration_type=IntegrationType.GOOGLE_CALENDAR.value,
                    access_token_encrypted="access-token",
                    refresh_token_encrypted="refresh-token",
                )
            )
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_invitation(db: Session):
    def _make(
        rep: User,
        dm: User | None = None,
        *,
        email: str | None = None,
        status: InvitationStatus = InvitationStatus.ACCEPTED,
        link_dm: bool = True,
        responded_at: datetime | None = None,
    ) -> Invitation:
        invitation = Invitation(
            sales_rep_id=rep.id,
            decision_maker_email=email or dm.email,
            decision_maker_id=dm.id if dm and link_dm else None,
            status=status.value,
            responded_at=responded_at or datetime.now(timezone.utc),
        )
        db.add(invitation)
        db.commit()
        return invitation

    return _make


@pytest.fixture
def make_call(db: Session):
    """Insert a call directly (bypasses booking checks)."""

    def _make(
        organizer: User,
        counterparty: User,
        start: datetime,
        minutes: int = 15,
        *,
        status: CallStatus = CallStatus.SCHEDULED,
        legacy: bool = False,
        call_id: uuid.UUID | None = None,
    ):
        model = LegacyCallLog if legacy else ScheduledCall
        call = model(
            id=call_id or uuid.uuid4(),
            organizer_id=organizer.id,
            counterparty_id=counterparty.id,
            scheduled_at=start,
            end_time=start + timedelta(minutes=minutes),
            status=status.value,
        )
        db.add(call)
        db.commit()
        return call

    return _make


@pytest.fixture
def make_plan(db: Session):
    def _make(name: str, max_call_credits: int, is_active: bool = True) -> SubscriptionPlan:
        plan = SubscriptionPlan(name=name, max_call_credits=max_call_credits, is_active=is_active)
        db.add(plan)
        db.commit()
        return plan

    return _make


@pytest.fixture
def rep_with_connected_dm(make_user, make_invitation):
    """Sales rep with one accepted, calendar-connected decision maker."""
    rep = make_user(UserRole.SALES_REP, first_name="Rita", last_name="Rep")
    dm = make_user(
        UserRole.DECISION_MAKER,
        email="dana@buyer.com",
        first_name="Dana",
        last_name="Maker",
        company="Buyer Inc",
        referred_by=rep,
        calendar_connected=True,
        engagement_score=75,
    )
    make_invitation(rep, dm)
    return rep, dm


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient against the app, sharing the test session."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()


def next_working_day(after: datetime | None = None) -> datetime:
    """Midnight UTC of the next Monday-Friday date strictly after `after`."""
    day = (after or datetime.now(timezone.utc)).replace(
        hour=0, minute=0, second=0, microsecond=0
    ) + timedelta(days=1)
    while day.weekday() >= 5:
        day += timedelta(days=1)
    return day


@pytest.fixture
def booking_day() -> datetime:
    """Next working day (UTC midnight) relative to the real clock."""
    return next_working_day()
