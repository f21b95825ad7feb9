from __future__ import annotations

import calendar
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from pairnotes.errors import ValidationError
from pairnotes.models.state import USER_KEYS, AppState, Evaluation, day_key
from pairnotes.services.exchange import is_disclosed

# (lowest score, band) from best to worst
_SCORE_BANDS: tuple[tuple[int, str], ...] = (
    (9, "excellent"),
    (7, "good"),
    (5, "fair"),
    (3, "low"),
)


def score_band(score: int | None) -> str:
    if score is None:
        return "none"
    for floor, band in _SCORE_BANDS:
        if score >= floor:
            return band
    return "poor"


def current_month(state: AppState) -> tuple[int, int]:
    return state.calendar_date.year, state.calendar_date.month


def add_months(day: date, months: int) -> date:
    """Calendar month arithmetic; the day of month is clamped to the target month's length."""
    index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def shift(state: AppState, direction: str | None) -> date:
    """Move the shared cursor by one month. Everyone sees the new month."""
    direction = direction or "next"
    if direction == "prev":
        state.calendar_date = add_months(state.calendar_date, -1)
    elif direction == "next":
        state.calendar_date = add_months(state.calendar_date, 1)
    else:
        raise ValidationError('direction must be "prev" or "next".')
    return state.calendar_date


@dataclass(frozen=True)
class DayCell:
    day: date
    is_today: bool
    given: dict[str, Evaluation | None]
    hidden: dict[str, bool]
    highlight_score: int | None = None

    def to_public(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "date": day_key(self.day),
            "day": self.day.day,
            "isToday": self.is_today,
            "highlightScore": self.highlight_score,
            "band": score_band(self.highlight_score),
        }
        for user_key in USER_KEYS:
            entry = self.given.get(user_key)
            if entry is None:
                out[user_key] = None
            elif self.hidden.get(user_key):
                out[user_key] = {"hidden": True}
            else:
                out[user_key] = {"score": entry.score, "text": entry.text}
        return out


@dataclass(frozen=True)
class MonthGrid:
    year: int
    month: int
    leading_blanks: int
    days: list[DayCell] = field(default_factory=list)

    @property
    def cells(self) -> list[DayCell | None]:
        return [None] * self.leading_blanks + list(self.days)

    def to_public(self) -> dict[str, Any]:
        return {
            "year": self.year,
            "month": self.month,
            "leadingBlanks": self.leading_blanks,
            "days": [cell.to_public() for cell in self.days],
        }


def month_matrix(
    state: AppState,
    year: int,
    month: int,
    *,
    viewer_key: str | None = None,
    today: date | None = None,
    first_weekday: int = calendar.SUNDAY,
) -> MonthGrid:
    """
    Both partners' given scores for every day of a month, side by side.

    `highlight_score` is the viewer's own score for the day (drives the cell colour).
    Leading blanks pad the first week up to the first day's weekday.
    """
    if not 1 <= month <= 12:
        raise ValidationError(f"Invalid month: {month}")

    first = date(year, month, 1)
    leading = (first.weekday() - first_weekday) % 7
    days_in_month = calendar.monthrange(year, month)[1]

    cells: list[DayCell] = []
    for n in range(1, days_in_month + 1):
        current = date(year, month, n)
        key = day_key(current)
        given: dict[str, Evaluation | None] = {}
        hidden: dict[str, bool] = {}
        for user_key in USER_KEYS:
            entry = state.user(user_key).given.get(key)
            given[user_key] = entry
            hidden[user_key] = bool(
                entry is not None
                and today is not None
                and not is_disclosed(state, author_key=user_key, day=key, viewer_key=viewer_key, today=today)
            )
        own = given.get(viewer_key) if viewer_key else None
        cells.append(
            DayCell(
                day=current,
                is_today=current == today,
                given=given,
                hidden=hidden,
                highlight_score=own.score if own else None,
            )
        )
    return MonthGrid(year=year, month=month, leading_blanks=leading, days=cells)
