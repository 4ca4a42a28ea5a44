"""Shared fixtures: in-memory database, controllable clock, poke factory."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from pokenotify.common.db import Base, build_session_factory
from pokenotify.common.status import DeliveryStatus
from pokenotify.services.notify import models  # noqa: F401  registers tables on Base
from pokenotify.services.notify.schemas import Poke, Record
from pokenotify.services.notify.store import SqlPokeStore


class FakeClock:
    """Callable clock that only moves when a test says so."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeChannel:
    """Channel double that records every poke it is asked to send.

    `error` builds the exception to raise for a poke, or returns None to let
    that poke through.
    """

    def __init__(self, tunnel: str = "sms", status: DeliveryStatus = DeliveryStatus.QUEUED, error=None) -> None:
        self.tunnel = tunnel
        self.status = status
        self.error = error
        self.sent: list[Poke] = []

    def type(self) -> str:
        return self.tunnel

    def identity(self) -> str:
        return "+15550000000"

    def describe(self) -> str:
        return f"service/notify/tunnel/{self.tunnel}/id/{self.identity()}"

    def send(self, poke: Poke) -> Record:
        self.sent.append(poke)
        exc = self.error(poke) if self.error is not None else None
        if exc is not None:
            raise exc
        return Record(message_id=poke.id, status=self.status, timestamp=datetime.now(timezone.utc))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def store(session_factory, clock) -> SqlPokeStore:
    return SqlPokeStore(session_factory, clock=clock)


@pytest.fixture
def make_poke(clock):
    """Build an unsaved poke relative to the fake clock."""

    def factory(send_in: timedelta = timedelta(seconds=-1), expire_in: timedelta = timedelta(hours=1), **fields) -> Poke:
        values = {
            "tunnel": "sms",
            "to": "+15551234567",
            "body": "hi",
            "date_to_send": clock.now + send_in,
            "expiry": clock.now + expire_in,
        }
        values.update(fields)
        return Poke(**values)

    return factory
