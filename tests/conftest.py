"""
Shared fixtures.

Each test gets its own SQLite file database, an in-memory clinical record
store and a fixed clock, so booking rules that depend on "now" are
deterministic.
"""
from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient

from clinicbook.container import build_services
from clinicbook.core.config import Settings
from clinicbook.core.security import create_access_token
from clinicbook.db.sql import init_db, make_engine, make_sessionmaker, session_scope
from clinicbook.modules.doctors import ledger
from clinicbook.modules.records.store import InMemoryClinicalRecordStore
from clinicbook.modules.users.models import UserRole
from clinicbook.modules.users.repository import create_user

NOW = datetime(2030, 1, 7, 8, 0, tzinfo=timezone.utc)
TEST_SECRET = "test-secret"


class FixedClock:
    """Callable clock the services read "now" from; tests move it explicitly."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


# ============================================================================
# Storage
# ============================================================================

@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        APP_ENV="test",
        JWT_SECRET=TEST_SECRET,
        RECORD_STORE="memory",
        BOOKING_TIMEOUT_SECONDS=5.0,
    )


@pytest.fixture
async def engine(tmp_path):
    eng = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'clinic.db'}")
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return make_sessionmaker(engine)


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def record_store():
    return InMemoryClinicalRecordStore()


@pytest.fixture
def services(test_settings, session_factory, record_store, clock):
    return build_services(test_settings, session_factory, record_store=record_store, clock=clock)


# ============================================================================
# People
# ============================================================================

async def _make_user(session_factory, email, role, specialty=None):
    async with session_scope(session_factory) as session:
        user = await create_user(
            session,
            email=email,
            first_name=email.split("@")[0].title(),
            last_name="Test",
            role=role,
            specialty=specialty,
        )
        return user.id


@pytest.fixture
async def doctor_id(session_factory):
    return await _make_user(session_factory, "house@clinic.test", UserRole.DOCTOR, "diagnostics")


@pytest.fixture
async def other_doctor_id(session_factory):
    return await _make_user(session_factory, "wilson@clinic.test", UserRole.DOCTOR, "oncology")


@pytest.fixture
async def patient_id(session_factory):
    return await _make_user(session_factory, "p1@clinic.test", UserRole.PATIENT)


@pytest.fixture
async def other_patient_id(session_factory):
    return await _make_user(session_factory, "p2@clinic.test", UserRole.PATIENT)


@pytest.fixture
async def admin_id(session_factory):
    return await _make_user(session_factory, "admin@clinic.test", UserRole.ADMIN)


@pytest.fixture
def publish(session_factory):
    """Publish a one-hour slot and return its start time."""

    async def _publish(doctor, start):
        async with session_scope(session_factory) as session:
            await ledger.publish_slot(
                session, doctor_id=doctor, start_time=start, end_time=start + timedelta(hours=1)
            )
        return start

    return _publish


@pytest.fixture
def slot_state(session_factory):
    """is_booked of a doctor's slot, None when it was never published."""

    async def _state(doctor, start):
        async with session_scope(session_factory) as session:
            slot = await ledger.find_slot(session, doctor_id=doctor, start_time=start)
            return None if slot is None else slot.is_booked

    return _state


# ============================================================================
# API
# ============================================================================

def bearer(user_id, role):
    token = create_access_token(subject=str(user_id), role=role, secret=TEST_SECRET)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def client(test_settings, services):
    from clinicbook.main import create_app

    app = create_app(test_settings, services=services)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
def auth():
    """auth(user_id, role) -> Authorization header."""
    return bearer
