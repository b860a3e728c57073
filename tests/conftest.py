from datetime import datetime, timedelta, timezone

import pytest

from models.entitlement import SubscriptionGrant, SubscriptionPlan
from models.sql.entitlement_code import EntitlementCodeModel
from services.code_issuer import CodeIssuer
from services.code_store import CodeStore
from services.database import build_engine, build_session_factory, create_tables
from services.rate_limiter import RedemptionRateLimiter
from services.redeemer import EntitlementRedeemer

START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock; returns aware UTC datetimes"""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeTime:
    """Settable float clock for the rate limiter"""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def session_factory(tmp_path, anyio_backend):
    engine = build_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'entitlements.db'}",
        {"check_same_thread": False},
    )
    await create_tables(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def store(session_factory):
    return CodeStore(session_factory)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def rate_limiter(fake_time):
    return RedemptionRateLimiter(
        max_failures=5,
        any_code_max_failures=20,
        window_seconds=900,
        cooldown_seconds=900,
        enabled=True,
        clock=fake_time,
    )


@pytest.fixture
def redeemer(store, rate_limiter, clock):
    return EntitlementRedeemer(store, rate_limiter, clock=clock)


@pytest.fixture
def issuer(store, clock):
    return CodeIssuer(store, clock=clock)


def promo_benefit(**overrides) -> dict:
    benefit = SubscriptionGrant(plan_id=SubscriptionPlan.VOCA_SPEAKING, **overrides)
    return benefit.model_dump(mode="json")


def make_code(code: str = "PROMO-ABC-234", **overrides) -> EntitlementCodeModel:
    fields = {
        "code": code,
        "benefit": promo_benefit(),
        "max_uses": 1,
        "max_uses_per_account": 1,
        "description": "",
        "window_start": START - timedelta(days=1),
        "window_end": START + timedelta(days=30),
        "created_by": "admin-1",
        "created_at": START - timedelta(days=1),
    }
    fields.update(overrides)
    return EntitlementCodeModel(**fields)


@pytest.fixture
def saved_code(store):
    async def _save(code: str = "PROMO-ABC-234", **overrides) -> EntitlementCodeModel:
        record = make_code(code, **overrides)
        assert await store.create(record)
        return await store.get_by_key(code)

    return _save
