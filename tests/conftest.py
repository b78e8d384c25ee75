import asyncio
import sys
from datetime import datetime, time, timezone
from pathlib import Path
from zoneinfo import ZoneInfo

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
import sqlalchemy as sa
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from wakili.domain.bookings import db_models as booking_db_models  # noqa: F401
from wakili.domain.escrow import db_models as escrow_db_models  # noqa: F401
from wakili.domain.providers import db_models as provider_db_models
from wakili.infra.auth import create_access_token
from wakili.infra.clock import FrozenClock
from wakili.infra.db import Base, get_db_session
from wakili.infra.verification_store import InMemoryVerificationStore
from wakili.main import app
from wakili.settings import settings

NAIROBI = ZoneInfo("Africa/Nairobi")
PROVIDER_ID = "prov-1"
UNVERIFIED_PROVIDER_ID = "prov-unverified"
NO_RATE_PROVIDER_ID = "prov-no-rate"
CLIENT_ID = "client-1"
SECOND_CLIENT_ID = "client-2"
HOURLY_RATE_CENTS = 100_000
# Monday; the seeded provider works 09:00-17:00 Nairobi time on Mondays.
MONDAY = datetime(2030, 1, 7).date()
# Saturday morning before MONDAY, far outside the cancellation window.
DEFAULT_NOW = datetime(2030, 1, 5, 9, 0, tzinfo=NAIROBI)


def local_dt(day, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=NAIROBI).astimezone(timezone.utc)


async def _seed(conn) -> None:
    await conn.execute(
        sa.insert(provider_db_models.ProviderProfile),
        [
            {
                "provider_id": PROVIDER_ID,
                "display_name": "Advocate Achieng",
                "hourly_rate_cents": HOURLY_RATE_CENTS,
                "is_verified": True,
                "allows_first_consult_discount": False,
                "available_24_7": False,
            },
            {
                "provider_id": UNVERIFIED_PROVIDER_ID,
                "display_name": "Advocate Pending",
                "hourly_rate_cents": HOURLY_RATE_CENTS,
                "is_verified": False,
                "allows_first_consult_discount": False,
                "available_24_7": False,
            },
            {
                "provider_id": NO_RATE_PROVIDER_ID,
                "display_name": "Advocate Unpriced",
                "hourly_rate_cents": None,
                "is_verified": True,
                "allows_first_consult_discount": False,
                "available_24_7": False,
            },
        ],
    )
    await conn.execute(
        sa.insert(provider_db_models.ClientProfile),
        [
            {"client_id": CLIENT_ID, "display_name": "Wanjiru", "has_used_first_consult_discount": False},
            {"client_id": SECOND_CLIENT_ID, "display_name": "Otieno", "has_used_first_consult_discount": False},
        ],
    )
    await conn.execute(
        sa.insert(provider_db_models.WorkingHours),
        [
            {
                "provider_id": provider_id,
                "day_of_week": 0,
                "start_time": time(9, 0),
                "end_time": time(17, 0),
                "is_available": True,
            }
            for provider_id in (PROVIDER_ID, UNVERIFIED_PROVIDER_ID, NO_RATE_PROVIDER_ID)
        ],
    )


@pytest.fixture(scope="session")
def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture(scope="session")
def async_session_maker(test_engine):
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture(autouse=True)
def restore_settings():
    original = {
        name: getattr(settings, name)
        for name in (
            "testing",
            "app_env",
            "metrics_token",
            "mpesa_callback_token",
            "escrow_auto_release_days",
            "blocked_slot_conflict_policy",
            "platform_commission_rate",
            "first_consult_discount_rate",
        )
    }
    settings.testing = True
    settings.app_env = "dev"
    settings.mpesa_callback_token = None
    yield
    for name, value in original.items():
        setattr(settings, name, value)


@pytest.fixture(autouse=True)
def clean_database(test_engine):
    async def truncate_tables() -> None:
        async with test_engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                await conn.execute(table.delete())
            await _seed(conn)

    asyncio.run(truncate_tables())
    yield


class RecordingSink:
    def __init__(self, fail: bool = False) -> None:
        self.events = []
        self.fail = fail

    async def send(self, event) -> None:
        if self.fail:
            raise RuntimeError("delivery unavailable")
        self.events.append(event)

    def kinds(self) -> list[str]:
        return [event.kind for event in self.events]


@pytest.fixture()
def frozen_clock():
    return FrozenClock(DEFAULT_NOW)


@pytest.fixture()
def recording_sink():
    return RecordingSink()


def auth_headers(actor_id: str, role: str) -> dict[str, str]:
    token = create_access_token(actor_id, role, ttl_minutes=30, settings=settings)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def client(async_session_maker, frozen_clock, recording_sink):
    async def override_db_session():
        async with async_session_maker() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    original_factory = getattr(app.state, "db_session_factory", None)
    original_sink = getattr(app.state, "notification_sink", None)
    original_store = getattr(app.state, "verification_store", None)
    app.state.db_session_factory = async_session_maker
    app.state.clock = frozen_clock
    app.state.notification_sink = recording_sink
    app.state.verification_store = InMemoryVerificationStore(clock=frozen_clock)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.db_session_factory = original_factory
    app.state.clock = None
    app.state.notification_sink = original_sink
    app.state.verification_store = original_store


