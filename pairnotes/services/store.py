from __future__ import annotations

import fcntl
import json
import logging
import os
import threading
from contextlib import contextmanager, nullcontext
from pathlib import Path
from typing import Any, ContextManager, Iterator

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from pairnotes.database import ensure_schema, make_session_factory
from pairnotes.errors import StorageError
from pairnotes.models.record import QuarantinedDocument, StateDocument
from pairnotes.models.state import AppState
from pairnotes.services.clock import Clock

logger = logging.getLogger(__name__)

_STATE_ROW_ID = 1


def _dumps(document: dict[str, Any]) -> str:
    return json.dumps(document, indent=4, ensure_ascii=False)


class StateStore:
    """
    Loads and saves the one shared AppState.

    `transaction()` is the only safe way to mutate: it holds the store lock across the
    whole read-modify-write cycle and writes the state back as a single document.
    """

    def __init__(
        self,
        *,
        clock: Clock,
        user1_name: str = "User 1",
        user2_name: str = "User 2",
        strict_writes: bool = False,
    ) -> None:
        self.clock = clock
        self.user1_name = user1_name
        self.user2_name = user2_name
        self.strict_writes = strict_writes
        self._lock = threading.RLock()

    def default_state(self) -> AppState:
        return AppState.default(
            today=self.clock.today(),
            user1_name=self.user1_name,
            user2_name=self.user2_name,
        )

    def load(self) -> AppState:
        """
        Read-only view of the stored record. When storage cannot be read at all the
        caller gets an unsaved default; `transaction()` raises StorageError instead so
        that default never overwrites the unreadable record.
        """
        with self._lock:
            try:
                return self._load()
            except StorageError as exc:
                logger.warning("Serving default state, stored record unreadable: %s", exc.message)
                return self.default_state()

    def save(self, state: AppState) -> bool:
        """
        Overwrite the stored record. A failed write is logged as critical and reported
        by returning False; with `strict_writes` it raises StorageError instead.
        """
        with self._lock:
            try:
                self._write(state.to_document())
            except StorageError as exc:
                logger.critical("State write did not complete: %s", exc.message)
                if self.strict_writes:
                    raise
                return False
            return True

    @contextmanager
    def transaction(self) -> Iterator[AppState]:
        with self._lock, self._exclusive():
            state = self._load()
            yield state
            self.save(state)

    def _parse(self, raw: str) -> AppState | None:
        try:
            return AppState.from_document(json.loads(raw), fallback=self.default_state())
        except (ValueError, TypeError) as exc:
            logger.error("Stored state is unusable: %s", exc)
            return None

    def _exclusive(self) -> ContextManager[Any]:
        return nullcontext()

    def _load(self) -> AppState:
        raise NotImplementedError

    def _write(self, document: dict[str, Any]) -> None:
        raise NotImplementedError


class MemoryStore(StateStore):
    """Keeps the serialized document in memory, for tests and offline simulation."""

    def __init__(self, *, document: str | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.document = document
        self.quarantined: list[str] = []

    def _load(self) -> AppState:
        if self.document is None:
            state = self.default_state()
            self.save(state)
            return state

        state = self._parse(self.document)
        if state is None:
            self.quarantined.append(self.document)
            self.document = None
            return self._load()
        return state

    def _write(self, document: dict[str, Any]) -> None:
        self.document = _dumps(document)


class JsonFileStore(StateStore):
    """Pretty-printed UTF-8 JSON file guarded by an advisory lock on a sidecar file."""

    def __init__(self, path: Path, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.path = Path(path)

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(self.path.name + ".lock")

    @contextmanager
    def _exclusive(self) -> Iterator[None]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.lock_path, "a+", encoding="utf-8") as f:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)

    def _load(self) -> AppState:
        if not self.path.exists():
            state = self.default_state()
            self.save(state)
            return state

        try:
            data = self.path.read_bytes()
        except OSError as exc:
            raise StorageError(f"Cannot read data file {self.path}: {exc}") from exc

        try:
            state = self._parse(data.decode("utf-8"))
        except UnicodeDecodeError as exc:
            logger.error("Data file %s is not valid UTF-8: %s", self.path, exc)
            state = None
        if state is not None:
            return state

        self._quarantine()
        return self._load()

    def _quarantine(self) -> None:
        stamp = int(self.clock.now().timestamp())
        target = self.path.with_name(f"{self.path.name}.corrupted.{stamp}")
        suffix = 1
        while target.exists():
            target = self.path.with_name(f"{self.path.name}.corrupted.{stamp}.{suffix}")
            suffix += 1
        try:
            self.path.rename(target)
        except OSError as exc:
            logger.critical("Cannot quarantine corrupted data file %s: %s", self.path, exc)
            raise StorageError(f"Cannot quarantine corrupted data file {self.path}: {exc}") from exc
        logger.info("Corrupted data file renamed to: %s", target)

    def _write(self, document: dict[str, Any]) -> None:
        temp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(_dumps(document), encoding="utf-8")
            os.replace(temp_path, self.path)
        except OSError as exc:
            if temp_path.exists():
                temp_path.unlink()
            raise StorageError(f"Cannot write data to file {self.path}: {exc}") from exc


class SqlStateStore(StateStore):
    """Stores the document as a single row in an SQL database (SQLite by default)."""

    def __init__(self, engine: Engine, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.engine = engine
        ensure_schema(engine)
        self._sessions = make_session_factory(engine)

    def _load(self) -> AppState:
        try:
            with self._sessions() as db:
                row = db.get(StateDocument, _STATE_ROW_ID)
                raw = row.document if row else None
        except SQLAlchemyError as exc:
            raise StorageError(f"Cannot read state row: {exc}") from exc

        if raw is None:
            state = self.default_state()
            self.save(state)
            return state

        state = self._parse(raw)
        if state is not None:
            return state

        try:
            with self._sessions() as db:
                db.add(QuarantinedDocument(document=raw))
                row = db.get(StateDocument, _STATE_ROW_ID)
                if row:
                    db.delete(row)
                db.commit()
        except SQLAlchemyError as exc:
            logger.critical("Cannot quarantine corrupted state row: %s", exc)
            raise StorageError(f"Cannot quarantine corrupted state row: {exc}") from exc
        logger.info("Corrupted state row moved to quarantined_documents")
        return self._load()

    def _write(self, document: dict[str, Any]) -> None:
        text = _dumps(document)
        try:
            with self._sessions() as db:
                row = db.get(StateDocument, _STATE_ROW_ID)
                if row:
                    row.document = text
                else:
                    db.add(StateDocument(id=_STATE_ROW_ID, document=text))
                db.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"Cannot write state row: {exc}") from exc
