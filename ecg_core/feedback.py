from __future__ import annotations
import json
import logging
import os
from typing import Any, Dict, List

from .azure_cfg import client as azure_client, settings as azure_settings
from .config import _env_bool
from .types import FieldComparison, OfficialReport, ScoringResult

log = logging.getLogger(__name__)

# one-line teaching points per field, used by the template backend
_EXPLANATIONS: Dict[str, str] = {
    "rhythm": "Check P waves before every QRS and the regularity of R-R intervals.",
    "heart_rate": "Count QRS complexes in 6 seconds and multiply by 10, or divide 300 by the large boxes between R waves.",
    "axis": "Compare the net QRS deflection in leads I and aVF.",
    "pr_interval": "PR is normal between 120 and 200 ms; measure from P onset to QRS onset.",
    "qrs_duration": "QRS of 120 ms or more is wide; look for a bundle branch pattern.",
    "qt_interval": "Correct QT for rate; QTc above 460-470 ms is prolonged.",
    "findings": "Work through chambers, conduction, ischaemia and repolarisation lead by lead.",
    "electrode_swap": "A negative P-QRS-T in lead I with positive aVR suggests swapped limb leads.",
}


def backend_in_use() -> str:
    # USE_LLM_FEEDBACK=0 turns the LLM off without touching LLM_BACKEND
    if not _env_bool("USE_LLM_FEEDBACK", True):
        return "none"
    b = (os.getenv("LLM_BACKEND") or "").lower()
    return b if b == "azure" else "none"


def missed_fields(result: ScoringResult) -> List[FieldComparison]:
    return [c for c in result.comparisons if not c.is_correct and c.max_points > 0]


def template_feedback(result: ScoringResult) -> Dict[str, Any]:
    missed = missed_fields(result)
    if not missed:
        summary = f"Perfect interpretation ({result.score}/100)." if result.is_perfect else f"Score {result.score}/100."
    elif result.is_passing:
        summary = f"Passed with {result.score}/100; {len(missed)} field(s) to review."
    else:
        summary = f"Scored {result.score}/100, below the passing mark; review {len(missed)} field(s)."
    points = [
        {
            "field": c.field,
            "label": c.label,
            "your_answer": c.user_value,
            "correct_answer": c.correct_value,
            "tip": _EXPLANATIONS.get(c.field, ""),
        }
        for c in missed
    ]
    return {"backend": "template", "summary": summary, "points": points}


def _prompt(result: ScoringResult, official: OfficialReport | None) -> str:
    lines = [f"Score: {result.score}/100 (passing: {result.is_passing})"]
    for c in result.comparisons:
        mark = "OK" if c.is_correct else "WRONG"
        lines.append(f"- {c.label}: student={c.user_value!r} correct={c.correct_value!r} [{mark}]")
    if official and official.categories:
        lines.append(f"Case categories: {', '.join(official.categories)}")
    return "\n".join(lines)


def _feedback_azure(result: ScoringResult, official: OfficialReport | None) -> str:
    s = azure_settings()
    cli = azure_client()
    system = (
        "You are an ECG interpretation tutor. "
        "Return ONLY compact JSON with keys: summary (string) and points "
        "(list of objects with field and tip). Be concise and clinically precise."
    )
    resp = cli.chat.completions.create(
        model=s.deployment,
        messages=[{"role": "system", "content": system}, {"role": "user", "content": _prompt(result, official)}],
        temperature=0.2,
        max_tokens=600,
        top_p=1.0,
    )
    return resp.choices[0].message.content or "{}"


def generate_feedback(result: ScoringResult, official: OfficialReport | None = None) -> Dict[str, Any]:
    """Tutor feedback for a scored attempt; falls back to the template when the LLM call fails."""
    if backend_in_use() != "azure":
        return template_feedback(result)
    try:
        raw = json.loads(_feedback_azure(result, official))
    except Exception as e:
        log.warning("LLM feedback failed, using template: %s", e)
        return template_feedback(result)
    if not isinstance(raw, dict) or "summary" not in raw:
        log.warning("LLM feedback had unexpected shape, using template")
        return template_feedback(result)
    return {"backend": "azure", "summary": str(raw["summary"]), "points": list(raw.get("points") or [])}


__all__ = ["backend_in_use", "generate_feedback", "template_feedback", "missed_fields"]
