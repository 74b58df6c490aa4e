"""Helpers to export reconciliation rows and scoring results in JSON/CSV/HTML."""
from __future__ import annotations

from dataclasses import asdict, is_dataclass
from html import escape
from typing import Any, Dict, Iterable, List, Optional
import csv
import io

from .types import FieldComparison, ScoringResult

BACKFILL_FIELDS: tuple[str, ...] = (
    "user_id",
    "attempts",
    "stored_xp",
    "computed_xp",
    "xp_awarded",
    "level_before",
    "level_after",
)

STREAK_FIELDS: tuple[str, ...] = (
    "user_id",
    "previous_current",
    "previous_longest",
    "current_streak",
    "longest_streak",
    "fixed",
)

COMPARISON_FIELDS: tuple[str, ...] = (
    "field",
    "label",
    "user_value",
    "correct_value",
    "is_correct",
    "points",
    "max_points",
)

_INT_KEYS = {
    "attempts",
    "stored_xp",
    "computed_xp",
    "xp_awarded",
    "level_before",
    "level_after",
    "previous_current",
    "previous_longest",
    "current_streak",
    "longest_streak",
}
_FLOAT_KEYS = {"points", "max_points"}
_BOOL_KEYS = {"fixed", "is_correct"}


def _as_dict(row: Any) -> Dict[str, Any]:
    if is_dataclass(row) and not isinstance(row, type):
        return asdict(row)
    return dict(row or {})


def _normalize(row: Any, fields: tuple[str, ...]) -> Dict[str, Any]:
    data = _as_dict(row)
    out: Dict[str, Any] = {}
    for key in fields:
        val = data.get(key)
        if key in _INT_KEYS:
            try:
                out[key] = int(val)
            except (TypeError, ValueError):
                out[key] = 0
        elif key in _FLOAT_KEYS:
            try:
                out[key] = float(val)
            except (TypeError, ValueError):
                out[key] = 0.0
        elif key in _BOOL_KEYS:
            out[key] = bool(val)
        else:
            out[key] = "" if val is None else str(val)
    return out


def to_json(rows: Iterable[Any], fields: tuple[str, ...], key: str = "rows") -> Dict[str, Any]:
    """Return a JSON-safe payload with every row reduced to `fields`."""

    normalized: List[Dict[str, Any]] = [_normalize(r, fields) for r in rows]
    return {key: normalized}


def to_csv(rows: Iterable[Any], fields: tuple[str, ...]) -> str:
    """Render rows as CSV with a fixed header."""

    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=fields)
    writer.writeheader()
    for r in rows:
        writer.writerow(_normalize(r, fields))
    return buf.getvalue()


def _row(c: FieldComparison) -> str:
    mark = "&#10003;" if c.is_correct else "&#10007;"
    cls = "ok" if c.is_correct else "miss"
    return (
        f"<tr class=\"{cls}\"><td>{escape(c.label)}</td><td>{escape(c.user_value)}</td>"
        f"<td>{escape(c.correct_value)}</td><td>{c.points:g} / {c.max_points:g}</td><td>{mark}</td></tr>"
    )


def render_result_html(result: ScoringResult, title: str = "ECG Report", feedback: Optional[Dict[str, Any]] = None) -> str:
    rows = "\n".join(_row(c) for c in result.comparisons)
    verdict = "Passed" if result.is_passing else "Not passed"

    tips = ""
    if feedback and feedback.get("points"):
        items: List[str] = []
        for p in feedback["points"]:
            if not isinstance(p, dict):
                continue
            label = p.get("label") or p.get("field") or ""
            items.append(f"<li><b>{escape(str(label))}</b>: {escape(str(p.get('tip', '')))}</li>")
        if items:
            tips = f"<h3>Feedback</h3><p>{escape(str(feedback.get('summary', '')))}</p><ul>{''.join(items)}</ul>"

    return f"""<!doctype html>
<html lang="en">
<head>
<meta charset="utf-8"/>
<title>{escape(title)}</title>
<style>
 body{{font-family:system-ui,-apple-system,Segoe UI,Roboto,Ubuntu,'Helvetica Neue',Arial}}
 .wrap{{max-width:960px;margin:40px auto;padding:0 16px}}
 h1{{margin:0 0 16px}}
 .overall{{font-size:1.1rem;margin:8px 0 16px}}
 tr.miss td{{background:#ffe7d9}}
 table{{border-collapse:collapse;width:100%}}
 th,td{{text-align:left}}
</style>
</head>
<body>
<div class="wrap">
  <h1>{escape(title)}</h1>
  <div class="overall"><b>Score:</b> {result.score} / 100 &middot; {verdict} &middot; weights: {escape(result.category_used)}</div>

  <table border='1' cellpadding='6' cellspacing='0'>
    <thead><tr><th>Field</th><th>Your answer</th><th>Correct</th><th>Points</th><th></th></tr></thead>
    <tbody>{rows}</tbody>
  </table>

  {tips}
</div>
</body>
</html>"""


__all__ = [
    "BACKFILL_FIELDS",
    "STREAK_FIELDS",
    "COMPARISON_FIELDS",
    "to_json",
    "to_csv",
    "render_result_html",
]
