from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Literal

from pairnotes.errors import IdempotencyError, NotFoundError, ValidationError
from pairnotes.models.state import (
    USER_KEYS,
    AppState,
    Evaluation,
    ReceivedEvaluation,
    day_key,
    partner_of,
)
from pairnotes.services.session import SessionContext, require_active

MIN_SCORE = 1
MAX_SCORE = 10

ReceivedState = Literal["awaiting_partner", "unread", "viewed"]


def has_given_today(state: AppState, user_key: str, today: date) -> Evaluation | None:
    return state.user(user_key).given.get(day_key(today))


def received_today(state: AppState, user_key: str, today: date) -> ReceivedEvaluation | None:
    return state.user(user_key).received.get(day_key(today))


def _validated_score(score: Any) -> int:
    if isinstance(score, bool) or not isinstance(score, int):
        raise ValidationError("Score must be a whole number from 1 to 10.")
    if not MIN_SCORE <= score <= MAX_SCORE:
        raise ValidationError("Score must be a whole number from 1 to 10.")
    return score


def submit(ctx: SessionContext, state: AppState, score: Any, text: str | None, *, now: datetime) -> Evaluation:
    """
    Record today's evaluation from the active user about their partner.

    The author's `given` entry and the partner's `received` mirror are written to the
    same in-memory state, so they are persisted together or not at all.
    """
    user_key = require_active(ctx)
    score = _validated_score(score)
    text = (text or "").strip()
    if not text:
        raise ValidationError("Evaluation text cannot be empty.")

    today = day_key(now.date())
    author = state.user(user_key)
    if today in author.given:
        raise IdempotencyError("You have already submitted today's evaluation.")

    evaluation = Evaluation(score=score, text=text, timestamp=now)
    author.given[today] = evaluation
    state.user(partner_of(user_key)).received[today] = ReceivedEvaluation(
        score=score,
        text=text,
        submit_timestamp=now,
        viewed_timestamp=None,
    )
    return evaluation


def mark_viewed(ctx: SessionContext, state: AppState, *, now: datetime) -> tuple[ReceivedEvaluation, bool]:
    """
    Confirm the active user has opened today's evaluation from their partner.

    Returns the entry and whether this call was the first view. A repeated call leaves
    the original timestamp untouched.
    """
    user_key = require_active(ctx)
    entry = state.user(user_key).received.get(day_key(now.date()))
    if entry is None:
        raise NotFoundError("No evaluation received today.")
    if entry.viewed_timestamp is not None:
        return entry, False
    entry.viewed_timestamp = now
    return entry, True


def is_disclosed(state: AppState, *, author_key: str, day: str, viewer_key: str | None, today: date) -> bool:
    """Today's evaluation stays hidden from everyone but its author until the recipient views it."""
    if day != day_key(today) or viewer_key == author_key:
        return True
    mirror = state.user(partner_of(author_key)).received.get(day)
    return mirror is not None and mirror.viewed


def public_state(state: AppState, *, viewer_key: str | None, today: date) -> dict[str, Any]:
    """The AppState as sent to a client: no passwords, no undisclosed notes."""
    document = state.to_document()
    for user_key in USER_KEYS:
        user_doc = document[user_key]
        user_doc["hasPassword"] = user_doc.pop("password") is not None
        for day, entry in user_doc["given"].items():
            if not is_disclosed(state, author_key=user_key, day=day, viewer_key=viewer_key, today=today):
                user_doc["given"][day] = _masked(entry)
        for day, entry in user_doc["received"].items():
            author_key = partner_of(user_key)
            if not is_disclosed(state, author_key=author_key, day=day, viewer_key=viewer_key, today=today):
                user_doc["received"][day] = _masked(entry)
    if viewer_key is not None:
        document["currentUserKey"] = viewer_key
    return document


def _masked(entry: dict[str, Any]) -> dict[str, Any]:
    out = {k: v for k, v in entry.items() if k not in ("score", "text")}
    out["hidden"] = True
    return out


@dataclass(frozen=True)
class ExchangeStatus:
    given_today: Evaluation | None
    received: ReceivedEvaluation | None

    @property
    def can_submit(self) -> bool:
        return self.given_today is None

    @property
    def received_state(self) -> ReceivedState:
        if self.received is None:
            return "awaiting_partner"
        return "viewed" if self.received.viewed else "unread"

    def to_public(self) -> dict[str, Any]:
        received = None
        if self.received is not None and self.received.viewed:
            received = self.received.model_dump(by_alias=True, mode="json")
        return {
            "canSubmit": self.can_submit,
            "givenToday": self.given_today.model_dump(by_alias=True, mode="json") if self.given_today else None,
            "receivedState": self.received_state,
            "received": received,
        }


def today_status(state: AppState, user_key: str, today: date) -> ExchangeStatus:
    return ExchangeStatus(
        given_today=has_given_today(state, user_key, today),
        received=received_today(state, user_key, today),
    )
