from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from pairnotes.config import Settings, get_settings
from pairnotes.dependencies import get_clock, get_store
from pairnotes.main import app
from pairnotes.services.clock import SteppedClock
from pairnotes.services.store import MemoryStore

@pytest.fixture(autouse=True)
def _event_log_in_tmp(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PAIRNOTES_EVENT_LOG_DIR", str(tmp_path / "user_events"))


@pytest.fixture()
def clock() -> SteppedClock:
    # A Saturday, and the last day of a 31-day month.
    return SteppedClock(datetime(2026, 1, 31, 9, 0, tzinfo=timezone.utc))


@pytest.fixture()
def store(clock: SteppedClock) -> MemoryStore:
    return MemoryStore(clock=clock)


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(data_file=tmp_path / "data.json")


@pytest.fixture()
def client(settings: Settings, clock: SteppedClock, store: MemoryStore) -> Iterator[TestClient]:
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_store] = lambda: store
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
