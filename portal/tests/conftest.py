from datetime import datetime, timedelta, timezone

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import delete
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.session import Session

import portal.models  # noqa: F401
from portal.database.db import Base, build_engine, get_db
from portal.main import app
from portal.models.events import Event, EventRegistrationType, EventStatus
from portal.routes.deps import get_notifier, get_sequence_allocator
from portal.services.admission import AdmissionController, PaymentClaim
from portal.services.capacity import CapacityLedger
from portal.services.eligibility import SqlEventDirectory
from portal.services.fanout import FanoutNotifier, SubscriberHub
from portal.services.lifecycle import LifecycleService
from portal.services.sequence import RedisSequenceAllocator

NOW = datetime(2026, 3, 10, 9, 30, tzinfo=timezone.utc)
TEST_TZ = "Asia/Kolkata"


class FrozenClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(scope="session")
def engine(tmp_path_factory):
    # File-backed so worker threads get their own connections.
    db_path = tmp_path_factory.mktemp("db") / "portal.db"
    engine = build_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="session")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@pytest.fixture(autouse=True)
def clean_tables(engine):
    yield
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(delete(table))


@pytest.fixture
def db_session(session_factory) -> Session:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def fake_redis():
    client = fakeredis.FakeRedis(decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def hub() -> SubscriberHub:
    return SubscriberHub()


@pytest.fixture
def notifier(hub):
    notifier = FanoutNotifier(hub)
    notifier.start()
    yield notifier
    notifier.stop()


@pytest.fixture
def ledger() -> CapacityLedger:
    return CapacityLedger()


@pytest.fixture
def allocator(fake_redis) -> RedisSequenceAllocator:
    return RedisSequenceAllocator(fake_redis)


@pytest.fixture
def controller(ledger, allocator, notifier, clock) -> AdmissionController:
    return AdmissionController(ledger, allocator, SqlEventDirectory(), notifier, clock=clock, tz_name=TEST_TZ)


@pytest.fixture
def lifecycle(ledger, notifier, clock) -> LifecycleService:
    return LifecycleService(ledger, SqlEventDirectory(), notifier, clock=clock)


@pytest.fixture
def make_event(session_factory):
    """Insert an event that is open for registration and return its id."""

    def _make_event(**overrides) -> int:
        values = dict(
            title="Hackathon",
            capacity=10,
            registration_deadline=NOW + timedelta(days=5),
            starts_at=NOW + timedelta(days=7),
            ends_at=NOW + timedelta(days=8),
            status=EventStatus.UPCOMING.value,
            registration_type=EventRegistrationType.BOTH.value,
            team_size_min=2,
            team_size_max=4,
            is_active=True,
            total_registrations=0,
        )
        values.update(overrides)
        with session_factory() as db:
            event = Event(**values)
            db.add(event)
            db.commit()
            return event.id

    return _make_event


@pytest.fixture
def paid() -> PaymentClaim:
    return PaymentClaim(amount=250, external_reference="UPI-0001", screenshot_ref="uploads/pay/0001.png")


@pytest.fixture
def client(session_factory, controller, lifecycle, notifier, allocator):
    def override_get_db():
        db: Session = session_factory()
        try:
            yield db
        finally:
            db.close()

    from portal.routes.deps import get_admission_controller, get_lifecycle_service

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_sequence_allocator] = lambda: allocator
    app.dependency_overrides[get_admission_controller] = lambda: controller
    app.dependency_overrides[get_lifecycle_service] = lambda: lifecycle
    # No context manager: the lifespan (table creation, dispatcher) stays off.
    yield TestClient(app)
    app.dependency_overrides.clear()
