from __future__ import annotations

import json
from datetime import date
from pathlib import Path

from evaluation.metrics import compute_pair_metrics, compute_partner_metrics, compute_time_series
from evaluation.report import generate_report
from evaluation.simulate_couple import find_mirror_violations, run_simulation
from pairnotes.models.state import Evaluation


def _rows() -> list[dict]:
    return [
        {"date": "2026-01-01", "user1_score": 8, "user2_score": 6, "user1_viewed": True, "user2_viewed": False},
        {"date": "2026-01-02", "user1_score": 6, "user2_score": None, "user1_viewed": False, "user2_viewed": True},
        {"date": "2026-01-03", "user1_score": None, "user2_score": 9, "user1_viewed": True, "user2_viewed": False},
        {"date": "2026-01-04", "user1_score": 10, "user2_score": 10, "user1_viewed": True, "user2_viewed": True},
    ]


def test_partner_metrics() -> None:
    m = compute_partner_metrics(_rows(), "user1")

    assert m.mean_score == 8.0
    assert m.submission_rate == 0.75
    # user2 wrote on 3 days, user1 opened all three
    assert m.view_through == 1.0
    assert m.longest_streak == 2

    m2 = compute_partner_metrics(_rows(), "user2")
    assert m2.view_through == round(2 / 3, 4)
    assert m2.longest_streak == 2


def test_pair_metrics_and_series() -> None:
    pair = compute_pair_metrics(_rows())
    assert pair == {"mutual_rate": 0.5, "mean_score_gap": 1.0}

    series = compute_time_series(_rows(), window=2)
    assert series["user1"] == [8.0, 7.0, 6.0, 10.0]
    assert series["user2"] == [6.0, 6.0, 9.0, 9.5]


def test_empty_rows() -> None:
    assert compute_partner_metrics([], "user1").submission_rate == 0.0
    assert compute_pair_metrics([]) == {"mutual_rate": 0.0, "mean_score_gap": 0.0}


def test_simulation_keeps_the_exchange_consistent() -> None:
    rows, state, rejected = run_simulation(days=45, start_date=date(2026, 1, 20), seed=3)

    assert len(rows) == 45
    assert find_mirror_violations(state) == []
    assert rejected >= 0
    # cursor followed the simulated days into March
    assert (state.calendar_date.year, state.calendar_date.month) == (2026, 3)
    for row in rows:
        for user_key in ("user1", "user2"):
            score = row[f"{user_key}_score"]
            assert score is None or 1 <= score <= 10
            assert state.user(user_key).given.get(row["date"]) is not None or score is None


def test_simulation_is_deterministic_per_seed() -> None:
    first, _, _ = run_simulation(days=20, start_date=date(2026, 5, 1), seed=11)
    second, _, _ = run_simulation(days=20, start_date=date(2026, 5, 1), seed=11)

    assert first == second


def test_mirror_violation_is_detected() -> None:
    _, state, _ = run_simulation(days=1, start_date=date(2026, 5, 1), seed=1)
    state.user1.given["2026-04-30"] = Evaluation(score=5, text="orphan", timestamp="2026-04-30T08:00:00Z")

    assert find_mirror_violations(state) == ["user1 2026-04-30: unpaired entry"]


def test_report_renders_summary(tmp_path: Path) -> None:
    rows, state, _ = run_simulation(days=10, start_date=date(2026, 2, 1), seed=5)
    summary = {
        "days": 10,
        "start_date": "2026-02-01",
        "seed": 5,
        "rejected_duplicates": 0,
        "mirror_violations": [],
        "partners": {k: compute_partner_metrics(rows, k).to_dict() for k in ("user1", "user2")},
        "pair": compute_pair_metrics(rows),
        "series": compute_time_series(rows, window=3),
        "calendar": {"year": 2026, "month": 2, "leadingBlanks": 0, "days": []},
    }
    summary_path = tmp_path / "summary.json"
    summary_path.write_text(json.dumps(summary), encoding="utf-8")

    out = generate_report(summary_path=summary_path, out_path=tmp_path / "report.md")

    text = out.read_text(encoding="utf-8")
    assert text.startswith("# Daily Exchange Simulation")
    assert "| user1 |" in text and "| user2 |" in text
    assert "## Calendar 2026-02" in text


def test_report_formats_rates_and_score_strip(tmp_path: Path) -> None:
    summary = {
        "days": 8,
        "partners": {"user1": {"mean_score": 7.5, "submission_rate": 0.875, "view_through": 1.0, "longest_streak": 7}},
        "pair": {"mutual_rate": 0.5, "mean_score_gap": 1.25},
        "series": {"user1": [0.0, 1.0, 5.0, 10.0, 10.0, 10.0, 10.0, 9.6]},
    }
    summary_path = tmp_path / "summary.json"
    summary_path.write_text(json.dumps(summary), encoding="utf-8")

    text = generate_report(summary_path=summary_path, out_path=tmp_path / "report.md").read_text(encoding="utf-8")

    assert "| user1 | 7.50 | 87.5% | 100.0% | 7 |" in text
    assert "- mutual_rate: `50.0%`" in text
    assert "user1: _.-@@@@ @" in text
