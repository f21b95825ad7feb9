from __future__ import annotations

import json
import logging
from datetime import date
from pathlib import Path

import pytest

from pairnotes.database import make_engine, make_session_factory
from pairnotes.errors import StorageError
from pairnotes.models.record import QuarantinedDocument, StateDocument
from pairnotes.models.state import AppState, Evaluation, ReceivedEvaluation
from pairnotes.services.clock import SteppedClock
from pairnotes.services.store import JsonFileStore, MemoryStore, SqlStateStore


class _BrokenStore(MemoryStore):
    def _write(self, document):
        raise StorageError("disk full")


def _populated(state: AppState, clock: SteppedClock) -> AppState:
    now = clock.now()
    state.user1.name = "Ana"
    state.user1.password = "秘密"
    state.user1.given["2026-01-30"] = Evaluation(score=9, text="Lovely dinner ✨", timestamp=now)
    state.user2.received["2026-01-30"] = ReceivedEvaluation(
        score=9, text="Lovely dinner ✨", submit_timestamp=now, viewed_timestamp=now
    )
    state.last_active_user_key = "user2"
    return state


def test_json_store_creates_default_document(tmp_path: Path, clock: SteppedClock) -> None:
    path = tmp_path / "nested" / "data.json"
    store = JsonFileStore(path, clock=clock, user1_name="A", user2_name="B")

    state = store.load()

    assert path.exists()
    raw = path.read_text(encoding="utf-8")
    assert raw.startswith("{\n    ")
    doc = json.loads(raw)
    assert doc == {
        "user1": {"name": "A", "password": None, "given": {}, "received": {}},
        "user2": {"name": "B", "password": None, "given": {}, "received": {}},
        "lastActiveUserKey": "user1",
        "calendarDate": "2026-01-31",
    }
    assert state.calendar_date == date(2026, 1, 31)


def test_json_store_round_trip_keeps_every_field(tmp_path: Path, clock: SteppedClock) -> None:
    store = JsonFileStore(tmp_path / "data.json", clock=clock)
    with store.transaction() as state:
        _populated(state, clock)
        expected = state.model_copy(deep=True)

    reloaded = JsonFileStore(tmp_path / "data.json", clock=clock).load()

    assert reloaded == expected
    assert "Lovely dinner ✨" in (tmp_path / "data.json").read_text(encoding="utf-8")


def test_corrupt_file_is_quarantined_and_default_recreated(tmp_path: Path, clock: SteppedClock) -> None:
    path = tmp_path / "data.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonFileStore(path, clock=clock)

    state = store.load()

    quarantined = tmp_path / f"data.json.corrupted.{int(clock.now().timestamp())}"
    assert quarantined.read_text(encoding="utf-8") == "{not json"
    assert json.loads(path.read_text(encoding="utf-8"))["lastActiveUserKey"] == "user1"
    assert state.user1.given == {}


def test_schema_invalid_document_is_quarantined(tmp_path: Path, clock: SteppedClock) -> None:
    path = tmp_path / "data.json"
    path.write_text(json.dumps({"calendarDate": "2026-13-45"}), encoding="utf-8")

    JsonFileStore(path, clock=clock).load()

    assert len(list(tmp_path.glob("data.json.corrupted.*"))) == 1


def test_second_quarantine_in_same_second_does_not_overwrite(tmp_path: Path, clock: SteppedClock) -> None:
    path = tmp_path / "data.json"
    store = JsonFileStore(path, clock=clock)
    for broken in ("[1", "[2"):
        path.write_text(broken, encoding="utf-8")
        store.load()

    contents = sorted(p.read_text(encoding="utf-8") for p in tmp_path.glob("data.json.corrupted.*"))
    assert contents == ["[1", "[2"]


def test_missing_fields_are_backfilled(tmp_path: Path, clock: SteppedClock) -> None:
    path = tmp_path / "data.json"
    path.write_text(json.dumps({"user1": {"name": "Only"}}), encoding="utf-8")

    state = JsonFileStore(path, clock=clock, user2_name="Second").load()

    assert state.user1.name == "Only"
    assert state.user1.password is None
    assert state.user1.given == {} and state.user1.received == {}
    assert state.user2.name == "Second"
    assert state.last_active_user_key == "user1"
    assert state.calendar_date == date(2026, 1, 31)
    assert not list(tmp_path.glob("data.json.corrupted.*"))


def test_transaction_does_not_save_when_body_raises(store: MemoryStore) -> None:
    store.load()
    with pytest.raises(RuntimeError):
        with store.transaction() as state:
            state.calendar_date = date(2000, 1, 1)
            raise RuntimeError("boom")

    assert store.load().calendar_date == date(2026, 1, 31)


def test_memory_store_quarantines_corrupt_document(clock: SteppedClock) -> None:
    store = MemoryStore(clock=clock, document="null")

    state = store.load()

    assert store.quarantined == ["null"]
    assert state.last_active_user_key == "user1"
    assert json.loads(store.document)["calendarDate"] == "2026-01-31"


def test_failed_write_is_logged_and_returns_normally(clock: SteppedClock, caplog: pytest.LogCaptureFixture) -> None:
    store = _BrokenStore(clock=clock)

    with caplog.at_level(logging.CRITICAL, logger="pairnotes.services.store"):
        state = store.load()
        saved = store.save(state)

    assert saved is False
    assert state.user1.name == "User 1"
    assert any("disk full" in r.getMessage() for r in caplog.records)


def test_strict_writes_raise(clock: SteppedClock) -> None:
    store = _BrokenStore(clock=clock, strict_writes=True)
    state = store.default_state()

    with pytest.raises(StorageError):
        store.save(state)


def test_sql_store_round_trip(tmp_path: Path, clock: SteppedClock) -> None:
    engine = make_engine(f"sqlite:///{tmp_path / 'state.db'}")
    store = SqlStateStore(engine, clock=clock)
    with store.transaction() as state:
        _populated(state, clock)
        expected = state.model_copy(deep=True)

    assert SqlStateStore(engine, clock=clock).load() == expected


def test_sql_store_quarantines_corrupt_row(tmp_path: Path, clock: SteppedClock) -> None:
    engine = make_engine(f"sqlite:///{tmp_path / 'state.db'}")
    store = SqlStateStore(engine, clock=clock)
    store.load()
    sessions = make_session_factory(engine)
    with sessions() as db:
        db.get(StateDocument, 1).document = "garbage"
        db.commit()

    state = store.load()

    assert state.user1.given == {}
    with sessions() as db:
        rows = db.query(QuarantinedDocument).all()
        assert [r.document for r in rows] == ["garbage"]
        assert json.loads(db.get(StateDocument, 1).document)["lastActiveUserKey"] == "user1"


def test_non_utf8_file_is_quarantined_not_overwritten(
    tmp_path: Path, clock: SteppedClock, caplog: pytest.LogCaptureFixture
) -> None:
    path = tmp_path / "data.json"
    broken = b'{"user1": {"name": "\xff\xfe broken"}}'
    path.write_bytes(broken)
    store = JsonFileStore(path, clock=clock)

    with caplog.at_level(logging.INFO, logger="pairnotes.services.store"):
        with store.transaction() as state:
            state.last_active_user_key = "user2"

    [quarantined] = tmp_path.glob("data.json.corrupted.*")
    assert quarantined.read_bytes() == broken
    assert json.loads(path.read_text(encoding="utf-8"))["lastActiveUserKey"] == "user2"
    assert any(r.levelno == logging.INFO and "renamed" in r.getMessage() for r in caplog.records)


def test_unreadable_file_is_never_replaced_by_a_default(
    tmp_path: Path, clock: SteppedClock, caplog: pytest.LogCaptureFixture
) -> None:
    path = tmp_path / "data.json"
    path.mkdir()
    store = JsonFileStore(path, clock=clock)

    with pytest.raises(StorageError):
        with store.transaction() as state:
            state.calendar_date = date(2000, 1, 1)

    with caplog.at_level(logging.WARNING, logger="pairnotes.services.store"):
        state = store.load()

    assert path.is_dir()
    assert state.calendar_date == date(2026, 1, 31)
    assert [r.levelno for r in caplog.records] == [logging.WARNING]
    assert not list(tmp_path.glob("data.json.corrupted.*"))


def test_sql_read_failure_aborts_the_transaction(tmp_path: Path, clock: SteppedClock) -> None:
    engine = make_engine(f"sqlite:///{tmp_path / 'state.db'}")
    store = SqlStateStore(engine, clock=clock)
    store.load()
    with engine.begin() as conn:
        conn.exec_driver_sql("DROP TABLE app_state")

    with pytest.raises(StorageError):
        with store.transaction():
            pass

    assert store.load().last_active_user_key == "user1"


def test_document_with_list_encoded_empty_maps_loads_intact(tmp_path: Path, clock: SteppedClock) -> None:
    path = tmp_path / "data.json"
    entry = {"score": 7, "text": "好", "timestamp": "2026-01-30T21:15:00+08:00"}
    path.write_text(
        json.dumps(
            {
                "user1": {"name": "用户1", "password": None, "given": [], "received": {"2026-01-30": {
                    "score": 7, "text": "好", "submitTimestamp": entry["timestamp"], "viewedTimestamp": None,
                }}},
                "user2": {"name": "用户2", "password": "pw", "given": {"2026-01-30": entry}, "received": []},
                "lastActiveUserKey": "user2",
                "calendarDate": "2026-01-30",
            },
            ensure_ascii=False,
        ),
        encoding="utf-8",
    )

    state = JsonFileStore(path, clock=clock).load()

    assert state.user1.given == {} and state.user2.received == {}
    assert state.user2.given["2026-01-30"].score == 7
    assert state.user1.received["2026-01-30"].viewed is False
    assert not list(tmp_path.glob("data.json.corrupted.*"))
