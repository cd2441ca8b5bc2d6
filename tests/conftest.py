import os

# Must be set before fanqueue.core.config is imported
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("SCHEDULER_TOKEN", "scheduler-test-token")

import uuid
from datetime import datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fanqueue.core.cache import CacheService
from fanqueue.core.clock import FixedClock
from fanqueue.core.distributed_lock import DistributedLockManager
from fanqueue.core.security import ROLE_ORGANIZER, create_access_token
from fanqueue.models import Base, Event, QueueEntry
from fanqueue.models.queue_entry import EntryStatus
from fanqueue.services.event_service import EventService
from fanqueue.services.notification_scheduler import NotificationSchedulerService
from fanqueue.services.notification_service import NotificationService
from fanqueue.services.payment_gateway.mock_gateway import MockGateway
from fanqueue.services.payment_service import PaymentService
from fanqueue.services.queue_manager import QueueManagerService
from fanqueue.services.renumbering import RenumberingEngine

NOW = datetime(2026, 6, 1, 12, 0, 0)


# --- Database ---

@pytest.fixture(scope="function")
async def test_db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_db_engine):
    return sessionmaker(
        test_db_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


# --- Building blocks ---

@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def lock_manager():
    # Never connected, so every lock is process-local
    return DistributedLockManager(cache=CacheService(redis_url="redis://localhost:1/0"))


@pytest.fixture
def organizer_id():
    return uuid.uuid4()


@pytest.fixture
def make_event(organizer_id):
    """Transient Event with sensible defaults; nothing is persisted."""
    def _make(**overrides):
        values = dict(
            id=uuid.uuid4(),
            organizer_id=organizer_id,
            title="Signing Session",
            description=None,
            location="Booth 12",
            event_code=uuid.uuid4().hex[:6].upper(),
            start_time=NOW + timedelta(hours=1),
            end_time=NOW + timedelta(hours=3),
            max_duration=120,
            slot_duration=10,
            max_capacity=12,
            physical_line_threshold=0,
            is_active=True,
            price=None,
            currency="usd",
            payment_account_id=None,
            created_at=NOW,
            updated_at=NOW,
        )
        values.update(overrides)
        return Event(**values)
    return _make


@pytest.fixture
def make_entry():
    def _make(event, position, **overrides):
        values = dict(
            id=uuid.uuid4(),
            event_id=event.id,
            user_id=uuid.uuid4(),
            position=position,
            estimated_call_time=event.start_time + timedelta(minutes=(position - 1) * event.slot_duration),
            status=EntryStatus.WAITING,
            joined_at=NOW + timedelta(seconds=position),
            notifications_sent=[],
        )
        values.update(overrides)
        return QueueEntry(**values)
    return _make


@pytest.fixture
def persist(session_factory):
    async def _persist(*instances):
        async with session_factory() as session:
            session.add_all(instances)
            await session.commit()
        return instances[0] if len(instances) == 1 else instances
    return _persist


# --- Services ---

@pytest.fixture
def queue_manager(session_factory, lock_manager, clock):
    return QueueManagerService(
        session_factory=session_factory,
        lock_manager=lock_manager,
        renumbering_engine=RenumberingEngine(position_update_threshold=3),
        clock=clock,
        lock_timeout=2,
    )


@pytest.fixture
def event_service(session_factory, lock_manager, clock):
    return EventService(session_factory=session_factory, lock_manager=lock_manager, clock=clock, lock_timeout=2)


@pytest.fixture
def notification_service(session_factory):
    return NotificationService(session_factory=session_factory)


@pytest.fixture
def mock_gateway():
    return MockGateway(webhook_secret="whsec_test")


@pytest.fixture
def payment_service(session_factory, mock_gateway, queue_manager):
    return PaymentService(
        session_factory=session_factory,
        gateway=mock_gateway,
        queue_manager_service=queue_manager,
        fee_percent=10,
    )


@pytest.fixture
def scheduler(session_factory, queue_manager, clock):
    return NotificationSchedulerService(
        session_factory=session_factory,
        queue_manager_service=queue_manager,
        clock=clock,
        interval_seconds=0,
    )


# --- HTTP ---

@pytest.fixture
def auth_headers():
    def _headers(user_id, role="fan"):
        return {"Authorization": f"Bearer {create_access_token(user_id, role=role)}"}
    return _headers


@pytest.fixture
def organizer_headers(auth_headers, organizer_id):
    return auth_headers(organizer_id, role=ROLE_ORGANIZER)


@pytest.fixture(scope="function")
async def client(queue_manager, event_service, notification_service, payment_service, scheduler):
    from fanqueue.main import app

    # Startup hooks do not run under ASGITransport; wire the test services directly
    app.state.queue_manager_service = queue_manager
    app.state.event_service = event_service
    app.state.notification_service = notification_service
    app.state.payment_service = payment_service
    app.state.notification_scheduler = scheduler

    # Disable rate limiter for tests
    app.state.limiter.enabled = False

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    # Re-enable rate limiter
    app.state.limiter.enabled = True
    app.dependency_overrides.clear()
