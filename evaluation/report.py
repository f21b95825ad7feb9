from __future__ import annotations

import json
from pathlib import Path
from typing import Any


_EVAL_DIR = Path(__file__).resolve().parent / "output"


def _pct(x: Any) -> str:
    return f"{float(x or 0.0) * 100:.1f}%"


def _score(x: Any) -> str:
    return f"{float(x or 0.0):.2f}"


# one glyph per score point, 1 (lowest) to 10 (highest)
_SCORE_GLYPHS = ".,:;-=+*#@"
_NO_SCORE = "_"


def _score_strip(values: list[float]) -> str:
    """Rolling means on the fixed 1-10 scale, one glyph per day, grouped by week."""
    glyphs = []
    for v in values:
        if v < 1.0:
            glyphs.append(_NO_SCORE)
        else:
            glyphs.append(_SCORE_GLYPHS[min(int(round(v)), 10) - 1])
    return " ".join("".join(glyphs[i:i + 7]) for i in range(0, len(glyphs), 7))


def _cell_text(cell: dict[str, Any]) -> str:
    parts = []
    for user_key, tag in (("user1", "a"), ("user2", "b")):
        entry = cell.get(user_key)
        parts.append(f"{tag}{entry['score']:>2}" if entry and "score" in entry else "   ")
    return f"{cell['day']:>2} " + " ".join(parts)


def _calendar_lines(grid: dict[str, Any]) -> list[str]:
    cells: list[str] = ["" for _ in range(int(grid.get("leadingBlanks", 0)))]
    cells += [_cell_text(c) for c in grid.get("days", [])]
    width = max((len(c) for c in cells), default=0)
    lines = []
    for start in range(0, len(cells), 7):
        week = cells[start:start + 7]
        lines.append(" | ".join(c.ljust(width) for c in week).rstrip())
    return lines


def generate_report(summary_path: Path | None = None, out_path: Path | None = None) -> Path:
    summary_path = summary_path or (_EVAL_DIR / "summary.json")
    out_path = out_path or (_EVAL_DIR / "report.md")

    data = json.loads(summary_path.read_text(encoding="utf-8"))

    lines = []
    lines.append("# Daily Exchange Simulation")
    lines.append("")
    lines.append(f"- days: `{data.get('days')}`")
    lines.append(f"- start_date: `{data.get('start_date')}`")
    lines.append(f"- seed: `{data.get('seed')}`")
    lines.append(f"- rejected duplicate submissions: `{data.get('rejected_duplicates', 0)}`")
    violations = data.get("mirror_violations") or []
    lines.append(f"- mirror violations: `{len(violations)}`")
    for v in violations:
        lines.append(f"  - {v}")
    lines.append("")

    lines.append("## Partners")
    lines.append("")
    lines.append("| partner | mean_score | submission_rate | view_through | longest_streak |")
    lines.append("|---|---:|---:|---:|---:|")
    for user_key, m in (data.get("partners") or {}).items():
        lines.append(
            f"| {user_key} | {_score(m.get('mean_score'))} | {_pct(m.get('submission_rate'))} "
            f"| {_pct(m.get('view_through'))} | {int(m.get('longest_streak') or 0)} |"
        )
    lines.append("")

    pair = data.get("pair") or {}
    lines.append("## Pair")
    lines.append("")
    lines.append(f"- mutual_rate: `{_pct(pair.get('mutual_rate'))}`")
    lines.append(f"- mean_score_gap: `{_score(pair.get('mean_score_gap'))}`")
    lines.append("")

    series = data.get("series") or {}
    if series:
        lines.append("## Rolling score")
        lines.append("")
        lines.append("```")
        for user_key, values in series.items():
            lines.append(f"{user_key}: {_score_strip([float(v) for v in values])}")
        lines.append("```")
        lines.append("")

    grid = data.get("calendar")
    if grid:
        lines.append(f"## Calendar {grid.get('year')}-{int(grid.get('month', 0)):02d}")
        lines.append("")
        lines.append("```")
        lines.extend(_calendar_lines(grid))
        lines.append("```")
        lines.append("")

    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text("\n".join(lines), encoding="utf-8")
    return out_path


if __name__ == "__main__":
    print(generate_report())
