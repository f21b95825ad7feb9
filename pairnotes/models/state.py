# pairnotes/models/state.py

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

UserKey = Literal["user1", "user2"]
USER_KEYS: tuple[str, str] = ("user1", "user2")


def is_user_key(value: object) -> bool:
    return isinstance(value, str) and value in USER_KEYS


def partner_of(user_key: str) -> str:
    return "user2" if user_key == "user1" else "user1"


def day_key(day: date) -> str:
    return day.isoformat()


class Evaluation(BaseModel):
    """A note written by one partner about the other, stored under the author's `given`."""

    model_config = ConfigDict(populate_by_name=True)

    score: int = Field(ge=1, le=10)
    text: str = Field(min_length=1)
    timestamp: datetime


class ReceivedEvaluation(BaseModel):
    """Mirror of a submission, stored under the recipient's `received`."""

    model_config = ConfigDict(populate_by_name=True)

    score: int = Field(ge=1, le=10)
    text: str = Field(min_length=1)
    submit_timestamp: datetime = Field(alias="submitTimestamp")
    viewed_timestamp: datetime | None = Field(default=None, alias="viewedTimestamp")

    @property
    def viewed(self) -> bool:
        return self.viewed_timestamp is not None


class UserRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    password: str | None = None
    given: dict[str, Evaluation] = Field(default_factory=dict)
    received: dict[str, ReceivedEvaluation] = Field(default_factory=dict)

    @field_validator("given", "received", mode="before")
    @classmethod
    def _empty_list_as_map(cls, entries: Any) -> Any:
        # older data files serialize an empty map as []
        if isinstance(entries, list) and not entries:
            return {}
        return entries

    @field_validator("given", "received")
    @classmethod
    def _iso_day_keys(cls, entries: dict[str, Any]) -> dict[str, Any]:
        for key in entries:
            date.fromisoformat(key)
        return entries


class AppState(BaseModel):
    """The single shared record both partners read and write."""

    model_config = ConfigDict(populate_by_name=True)

    user1: UserRecord
    user2: UserRecord
    last_active_user_key: UserKey = Field(default="user1", alias="lastActiveUserKey")
    calendar_date: date = Field(alias="calendarDate")

    def user(self, user_key: str) -> UserRecord:
        if user_key == "user1":
            return self.user1
        if user_key == "user2":
            return self.user2
        raise KeyError(user_key)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def default(cls, *, today: date, user1_name: str, user2_name: str) -> "AppState":
        return cls(
            user1=UserRecord(name=user1_name),
            user2=UserRecord(name=user2_name),
            last_active_user_key="user1",
            calendar_date=today,
        )

    @classmethod
    def from_document(cls, document: Any, *, fallback: "AppState") -> "AppState":
        """
        Validate a stored document, backfilling any missing top-level or per-user field
        from `fallback`. Raises pydantic.ValidationError for a document that cannot be used.
        """
        if not isinstance(document, dict):
            raise TypeError(f"State document must be an object, got {type(document).__name__}")

        base = fallback.to_document()
        merged = dict(document)
        for key in ("user1", "user2"):
            user_doc = merged.get(key)
            if not isinstance(user_doc, dict):
                merged[key] = base[key]
                continue
            filled = dict(user_doc)
            for field, value in base[key].items():
                filled.setdefault(field, value)
            merged[key] = filled
        for key in ("lastActiveUserKey", "calendarDate"):
            if merged.get(key) is None:
                merged[key] = base[key]
        return cls.model_validate(merged)
