from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Mapping, Sequence

from pairnotes.models.state import USER_KEYS, partner_of


@dataclass(frozen=True)
class PartnerMetrics:
    mean_score: float
    submission_rate: float
    view_through: float
    longest_streak: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _score(row: Mapping[str, Any], user_key: str) -> int | None:
    value = row.get(f"{user_key}_score")
    return int(value) if value is not None else None


def _longest_streak(flags: Sequence[bool]) -> int:
    best = 0
    run = 0
    for flag in flags:
        run = run + 1 if flag else 0
        best = max(best, run)
    return best


def compute_partner_metrics(day_rows: list[dict], user_key: str) -> PartnerMetrics:
    """
    Metrics for one partner over the simulated days.

    - mean_score: average score this partner gave
    - submission_rate: share of days with a submission
    - view_through: share of received notes this partner opened the same day
    - longest_streak: most consecutive days with a submission
    """
    if not day_rows:
        return PartnerMetrics(mean_score=0.0, submission_rate=0.0, view_through=0.0, longest_streak=0)

    scores = [s for s in (_score(r, user_key) for r in day_rows) if s is not None]
    mean_score = sum(scores) / float(len(scores)) if scores else 0.0
    submission_rate = len(scores) / float(len(day_rows))

    received_days = [r for r in day_rows if _score(r, partner_of(user_key)) is not None]
    viewed = sum(1 for r in received_days if r.get(f"{user_key}_viewed"))
    view_through = viewed / float(len(received_days)) if received_days else 0.0

    streak = _longest_streak([_score(r, user_key) is not None for r in day_rows])

    return PartnerMetrics(
        mean_score=round(mean_score, 4),
        submission_rate=round(submission_rate, 4),
        view_through=round(view_through, 4),
        longest_streak=streak,
    )


def compute_pair_metrics(day_rows: list[dict]) -> dict[str, float]:
    """How often both partners wrote on the same day, and how far apart their scores were."""
    if not day_rows:
        return {"mutual_rate": 0.0, "mean_score_gap": 0.0}
    mutual = [r for r in day_rows if all(_score(r, k) is not None for k in USER_KEYS)]
    gaps = [abs(_score(r, "user1") - _score(r, "user2")) for r in mutual]
    return {
        "mutual_rate": round(len(mutual) / float(len(day_rows)), 4),
        "mean_score_gap": round(sum(gaps) / float(len(gaps)), 4) if gaps else 0.0,
    }


def _rolling_mean(values: list[float | None], window: int) -> list[float]:
    out: list[float] = []
    for i in range(len(values)):
        chunk = [v for v in values[max(0, i - window + 1): i + 1] if v is not None]
        out.append(round(sum(chunk) / float(len(chunk)), 4) if chunk else 0.0)
    return out


def compute_time_series(day_rows: list[dict], window: int = 7) -> dict[str, list[float]]:
    window = max(1, int(window))
    return {
        user_key: _rolling_mean([_score(r, user_key) for r in day_rows], window)
        for user_key in USER_KEYS
    }
