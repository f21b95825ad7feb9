from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from zoneinfo import ZoneInfo

from fastapi import Depends, Request

from pairnotes.config import Settings, get_settings
from pairnotes.database import make_engine
from pairnotes.services.clock import Clock
from pairnotes.services.session import SessionContext
from pairnotes.services.store import JsonFileStore, SqlStateStore, StateStore


@dataclass(frozen=True)
class ActionEnv:
    settings: Settings
    clock: Clock
    store: StateStore


def get_clock(settings: Settings = Depends(get_settings)) -> Clock:
    return Clock(settings.tzinfo)


@lru_cache
def _build_store(
    backend: str,
    data_file: Path,
    database_url: str,
    timezone: str,
    user1_name: str,
    user2_name: str,
    strict_writes: bool,
) -> StateStore:
    # One store per configuration: its lock must be shared by every request.
    options = dict(
        clock=Clock(ZoneInfo(timezone)),
        user1_name=user1_name,
        user2_name=user2_name,
        strict_writes=strict_writes,
    )
    if backend == "sql":
        return SqlStateStore(make_engine(database_url), **options)
    return JsonFileStore(data_file, **options)


def get_store(settings: Settings = Depends(get_settings)) -> StateStore:
    return _build_store(
        settings.storage_backend,
        settings.data_file,
        settings.database_url,
        settings.timezone,
        settings.user1_name,
        settings.user2_name,
        settings.strict_writes,
    )


def get_action_env(
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
    store: StateStore = Depends(get_store),
) -> ActionEnv:
    return ActionEnv(settings=settings, clock=clock, store=store)


def get_session_context(request: Request) -> SessionContext:
    return SessionContext.from_mapping(request.session)
