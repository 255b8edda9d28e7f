"""Shared fixtures for the airtime billing tests."""

import os

# Settings are read at import time; tests run against in-memory SQLite
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from airtime_billing.core.database import Base
from airtime_billing.modules.identity import models as identity_models  # noqa: F401
from airtime_billing.modules.subscription import models as subscription_models  # noqa: F401


class FakeClock:
    """Controllable replacement for ``utcnow``."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 15, 9, 30, tzinfo=timezone.utc))


@pytest_asyncio.fixture
async def async_db():
    """Create an in-memory database with all tables."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


def make_payload(
    event_type: str = "SYNC_NOTIFICATION",
    phone: str = "08012345678",
    amount=150000,
    telco_ref: str = "TRX-001",
    **details,
) -> dict:
    """Build an aggregator delivery body."""
    body = {
        "type": event_type,
        "telco": "MTN",
        "product": {"id": "FIT-001"},
        "details": {
            "phone": phone,
            "amount": amount,
            "telco_ref": telco_ref,
            "telco_status_code": "0",
            "telco_status_message": "Success",
            "channel": "SMS",
        },
    }
    body["details"].update(details)
    return body


@pytest.fixture
def webhook_payload():
    """Factory for aggregator delivery bodies."""
    return make_payload
