"""Shared fixtures: SQLite-backed sessions, a scripted provider adapter and a manual clock."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CIRCUIT_BREAKER_STORAGE", "memory")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("POLL_MAX_CONSECUTIVE_ERRORS", "3")

from itertools import count

import pytest
from sqlalchemy.orm import sessionmaker

import creditjobs.models  # noqa: F401  registers tables on Base.metadata
from creditjobs.db.base import Base
from creditjobs.db.session import build_engine
from creditjobs.services import circuit_breaker
from creditjobs.services.ledger.service import CreditLedger
from creditjobs.services.polling.poller import CancellationToken
from creditjobs.services.providers.base import (
    JobSpec,
    ProviderAdapter,
    ProviderStatus,
    ProviderSubmissionError,
)


class FakeAdapter(ProviderAdapter):
    """
    Adapter driven by a script of statuses. Once the script is exhausted the
    last entry repeats, so [pending] means "pending forever".
    """

    name = "fake"

    def __init__(self, statuses=None, submit_error: Exception | None = None):
        super().__init__({})
        self.statuses = list(statuses or [ProviderStatus.succeeded("https://cdn.test/out.mp4")])
        self.submit_error = submit_error
        self.submitted: list[JobSpec] = []
        self.polled: list[str] = []
        self._ids = count(1)

    def is_available(self) -> bool:
        return True

    def submit(self, spec: JobSpec) -> str:
        if self.submit_error is not None:
            raise self.submit_error
        self.submitted.append(spec)
        return f"task-{next(self._ids)}"

    def poll(self, task_id: str) -> ProviderStatus:
        self.polled.append(task_id)
        item = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(item, Exception):
            raise item
        return item


class ManualClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ClockedToken(CancellationToken):
    """Sleeping advances the manual clock instead of the wall clock."""

    def __init__(self, clock: ManualClock, cancel_after_waits: int | None = None):
        super().__init__()
        self.clock = clock
        self.waits: list[float] = []
        self.cancel_after_waits = cancel_after_waits

    def wait(self, seconds: float) -> bool:
        self.waits.append(seconds)
        if self.cancel_after_waits is not None and len(self.waits) >= self.cancel_after_waits:
            self.cancel()
        if not self.cancelled:
            self.clock.advance(seconds)
        return self.cancelled


def make_spec(**kwargs) -> JobSpec:
    data = {"provider": "fake", "payload": {"prompt": "a cat"}, "feature": "test_feature",
            "poll_interval": 2.0, "max_wall_clock": 30.0}
    data.update(kwargs)
    return JobSpec(**data)


@pytest.fixture(autouse=True)
def _reset_breakers():
    circuit_breaker._breakers.clear()
    yield
    circuit_breaker._breakers.clear()


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'creditjobs.db'}")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def fund(session_factory):
    """Top up an account through the ledger so the transaction log explains the balance."""

    def _fund(account_id: str, amount: int) -> None:
        session = session_factory()
        try:
            CreditLedger(session).top_up(account_id, amount, reason="test funding")
        finally:
            session.close()

    return _fund


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def submit_error():
    return ProviderSubmissionError("invalid input image", {"http_status": 400})
