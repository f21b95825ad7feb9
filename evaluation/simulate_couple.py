from __future__ import annotations

import argparse
import json
import random
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo

from pairnotes.errors import IdempotencyError
from pairnotes.models.state import USER_KEYS, AppState, partner_of
from pairnotes.services import calendar_cursor, exchange, session
from pairnotes.services.clock import SteppedClock
from pairnotes.services.session import SessionContext
from pairnotes.services.store import MemoryStore

from evaluation.metrics import compute_pair_metrics, compute_partner_metrics, compute_time_series
from evaluation.report import generate_report


_DEFAULT_OUT = Path(__file__).resolve().parent / "output"

_NOTES = [
    "Thanks for making dinner.",
    "You were patient with me today.",
    "A bit distant this evening.",
    "Loved the walk after work.",
    "We argued about the dishes again.",
    "You made me laugh all day.",
]


@dataclass(frozen=True)
class PartnerProfile:
    user_key: str
    submit_rate: float
    view_rate: float
    mood: float
    volatility: float


DEFAULT_PROFILES = (
    PartnerProfile(user_key="user1", submit_rate=0.85, view_rate=0.9, mood=7.5, volatility=1.5),
    PartnerProfile(user_key="user2", submit_rate=0.7, view_rate=0.75, mood=6.5, volatility=2.0),
)


def _draw_score(rng: random.Random, profile: PartnerProfile) -> int:
    return max(1, min(10, int(round(rng.gauss(profile.mood, profile.volatility)))))


def find_mirror_violations(state: AppState) -> list[str]:
    """Every given entry must have an identical received mirror on the partner, and vice versa."""
    problems: list[str] = []
    for author_key in USER_KEYS:
        given = state.user(author_key).given
        received = state.user(partner_of(author_key)).received
        for day in sorted(set(given) | set(received)):
            g = given.get(day)
            r = received.get(day)
            if g is None or r is None:
                problems.append(f"{author_key} {day}: unpaired entry")
            elif (g.score, g.text) != (r.score, r.text):
                problems.append(f"{author_key} {day}: mirror differs")
    return problems


def _login(store: MemoryStore, user_key: str) -> SessionContext:
    with store.transaction() as state:
        return session.login(state, user_key, "")


def run_simulation(
    *,
    days: int,
    start_date: date,
    seed: int,
    profiles: tuple[PartnerProfile, ...] = DEFAULT_PROFILES,
    tz: ZoneInfo = ZoneInfo("UTC"),
) -> tuple[list[dict[str, Any]], AppState, int]:
    """
    Drive the real session/exchange/calendar services through `days` simulated days.

    Returns (day_rows, final_state, rejected_duplicates).
    """
    rng = random.Random(seed)
    clock = SteppedClock(datetime.combine(start_date, time(8, 0), tzinfo=tz))
    store = MemoryStore(clock=clock)
    rejected = 0
    day_rows: list[dict[str, Any]] = []

    for offset in range(days):
        today = start_date + timedelta(days=offset)
        clock.set(datetime.combine(today, time(8, 0), tzinfo=tz))
        order = list(profiles)
        rng.shuffle(order)

        for profile in order:
            ctx = _login(store, profile.user_key)
            if rng.random() >= profile.submit_rate:
                continue
            score = _draw_score(rng, profile)
            with store.transaction() as state:
                exchange.submit(ctx, state, score, rng.choice(_NOTES), now=clock.now())
            # Occasional double-submit: must be refused and leave the first note intact.
            if rng.random() < 0.1:
                try:
                    with store.transaction() as state:
                        exchange.submit(ctx, state, 1, "second try", now=clock.now())
                except IdempotencyError:
                    rejected += 1
            clock.advance(hours=1)

        clock.set(datetime.combine(today, time(21, 0), tzinfo=tz))
        for profile in order:
            ctx = _login(store, profile.user_key)
            state = store.load()
            if exchange.received_today(state, profile.user_key, today) is None:
                continue
            if rng.random() < profile.view_rate:
                with store.transaction() as state:
                    exchange.mark_viewed(ctx, state, now=clock.now())

        state = store.load()
        row: dict[str, Any] = {"date": today.isoformat()}
        for user_key in USER_KEYS:
            given = exchange.has_given_today(state, user_key, today)
            received = exchange.received_today(state, user_key, today)
            row[f"{user_key}_score"] = given.score if given else None
            row[f"{user_key}_viewed"] = bool(received and received.viewed)
        day_rows.append(row)

        tomorrow = today + timedelta(days=1)
        if tomorrow.month != today.month and offset + 1 < days:
            with store.transaction() as state:
                calendar_cursor.shift(state, "next")

    return day_rows, store.load(), rejected


def main() -> int:
    parser = argparse.ArgumentParser(description="Simulate two partners exchanging daily evaluations.")
    parser.add_argument("--days", type=int, default=60)
    parser.add_argument("--seed", type=int, default=7)
    parser.add_argument("--start-date", type=str, default=None, help="YYYY-MM-DD (default: today)")
    parser.add_argument("--window", type=int, default=7, help="rolling window for score series")
    parser.add_argument("--out", type=str, default=str(_DEFAULT_OUT))
    args = parser.parse_args()

    start_d = date.fromisoformat(args.start_date) if args.start_date else date.today()
    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)

    day_rows, state, rejected = run_simulation(days=args.days, start_date=start_d, seed=args.seed)
    year, month = calendar_cursor.current_month(state)
    grid = calendar_cursor.month_matrix(state, year, month)

    summary = {
        "days": args.days,
        "start_date": start_d.isoformat(),
        "seed": args.seed,
        "rejected_duplicates": rejected,
        "mirror_violations": find_mirror_violations(state),
        "partners": {k: compute_partner_metrics(day_rows, k).to_dict() for k in USER_KEYS},
        "pair": compute_pair_metrics(day_rows),
        "series": compute_time_series(day_rows, window=args.window),
        "calendar": grid.to_public(),
    }

    summary_path = out_dir / "summary.json"
    summary_path.write_text(json.dumps(summary, indent=2), encoding="utf-8")
    (out_dir / "final_state.json").write_text(
        json.dumps(state.to_document(), indent=4, ensure_ascii=False), encoding="utf-8"
    )
    report_path = generate_report(summary_path=summary_path, out_path=out_dir / "report.md")
    print(f"Wrote {summary_path}")
    print(f"Wrote {report_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
