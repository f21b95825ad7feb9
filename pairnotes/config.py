from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

DEV_SECRET_KEY = "pairnotes-dev-secret-change-me"
_TRUTHY = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    """Runtime configuration for the evaluation exchange."""

    data_file: Path = Field(default=Path("data.json"))
    storage_backend: Literal["json", "sql"] = "json"
    database_url: str = "sqlite:///./pairnotes.db"
    secret_key: str = DEV_SECRET_KEY
    timezone: str = "UTC"
    user1_name: str = "User 1"
    user2_name: str = "User 2"
    strict_writes: bool = False
    week_start: Literal["sunday", "monday"] = "sunday"

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def first_weekday(self) -> int:
        # calendar module numbering: Monday=0 .. Sunday=6
        return 6 if self.week_start == "sunday" else 0


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in _TRUTHY


@lru_cache
def get_settings() -> Settings:
    data_file = os.getenv("PAIRNOTES_DATA_FILE")
    return Settings(
        data_file=Path(data_file).expanduser() if data_file else Path("data.json"),
        storage_backend=os.getenv("PAIRNOTES_STORAGE", "json").strip().lower(),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./pairnotes.db"),
        secret_key=os.getenv("PAIRNOTES_SECRET_KEY", DEV_SECRET_KEY),
        timezone=os.getenv("PAIRNOTES_TIMEZONE", "UTC"),
        user1_name=os.getenv("PAIRNOTES_USER1_NAME", "User 1"),
        user2_name=os.getenv("PAIRNOTES_USER2_NAME", "User 2"),
        strict_writes=_env_flag("PAIRNOTES_STRICT_WRITES"),
        week_start=os.getenv("PAIRNOTES_WEEK_START", "sunday").strip().lower(),
    )
