"""Pytest configuration - no path manipulation, rely on proper package installation."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from vis_sync.jobs.runner import reset_sync_services
from vis_sync.models.base import build_engine, create_session_factory, reset_engine
from vis_sync.models.repository import SyncStore
from vis_sync.monitoring.tracing import clear_correlation_id
from vis_sync.utils.config import get_service_configuration, get_settings

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


class ManualClock:
    """Deterministic clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 7, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class SleepRecorder:
    """Async sleep replacement that records requested delays without waiting."""

    def __init__(self, clock: ManualClock | None = None) -> None:
        self.calls: list[float] = []
        self._clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self._clock is not None:
            self._clock.advance(seconds=seconds)


@pytest.fixture(autouse=True)
def _isolated_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory
) -> Iterator[None]:
    """Point settings at a throwaway sqlite database and the repository config."""

    db_path = tmp_path_factory.mktemp("sqlite-db") / "vis_sync.sqlite"
    monkeypatch.setenv("VIS_SYNC_DATABASE_URL", f"sqlite:///{db_path}")
    monkeypatch.setenv("VIS_SYNC_API_KEYS", '["test-key"]')
    monkeypatch.setenv("VIS_SYNC_CONFIG_DIR", str(CONFIG_DIR))

    get_settings(reload=True)
    get_service_configuration(reload=True)
    clear_correlation_id()
    yield
    reset_sync_services()
    reset_engine()
    clear_correlation_id()
    get_settings(reload=True)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def store(tmp_path: Path) -> SyncStore:
    """A store backed by its own sqlite file with all tables created."""

    engine = build_engine(f"sqlite:///{tmp_path / 'store.sqlite'}")
    return SyncStore(create_session_factory(engine))
