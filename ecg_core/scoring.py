from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple
import logging, math

from . import config
from .catalog import AXES, ELECTRODE_SWAPS, PR_INTERVALS, QRS_DURATIONS, QT_INTERVALS, RHYTHMS, label_set
from .errors import ValidationError
from .types import FieldComparison, OfficialReport, REPORT_FIELDS, ScoringResult, SET_FIELDS, UserReport

log = logging.getLogger(__name__)

REQUIRED_FIELDS: Tuple[str, ...] = tuple(f for f in REPORT_FIELDS if f != "electrode_swap")

FIELD_LABELS: Dict[str, str] = {
    "rhythm": "Rhythm",
    "heart_rate": "Heart rate",
    "axis": "Electrical axis",
    "pr_interval": "PR interval",
    "qrs_duration": "QRS duration",
    "qt_interval": "QT interval",
    "findings": "Findings",
    "electrode_swap": "Electrode swap",
}

_SCALAR_LABELS: Dict[str, Dict[str, str]] = {
    "axis": AXES,
    "pr_interval": PR_INTERVALS,
    "qrs_duration": QRS_DURATIONS,
    "qt_interval": QT_INTERVALS,
}


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def heart_rate_bucket(bpm: int) -> str:
    if bpm < config.HR_BRADY_BELOW:
        return "bradycardia"
    if bpm > config.HR_TACHY_ABOVE:
        return "tachycardia"
    return "normal"


@dataclass(frozen=True)
class ScoringWeights:
    """Point weight per field plus the set-field credit policy."""

    points: Mapping[str, float] = field(default_factory=lambda: dict(config.FIELD_WEIGHTS))
    partial_credit: bool = False
    category_used: str = "default"

    @classmethod
    def for_categories(cls, categories: Iterable[str] | None, partial_credit: Optional[bool] = None) -> "ScoringWeights":
        table, used = config.weights_for_categories(tuple(categories or ()))
        pc = config.SCORING_PARTIAL_CREDIT if partial_credit is None else partial_credit
        return cls(points=table, partial_credit=pc, category_used=used)

    def weight(self, name: str) -> float:
        return float(self.points.get(name, 0))


def validate_report(report: object, role: str) -> None:
    for name in REQUIRED_FIELDS:
        if getattr(report, name, None) is None:
            raise ValidationError(f"{role}.{name}")


def _normalize_findings(user: FrozenSet[str], official: FrozenSet[str]) -> Tuple[FrozenSet[str], FrozenSet[str]]:
    # "no findings" and "normal ECG" mean the same thing
    normal = frozenset(["normal"])
    if not user and official == normal:
        return normal, official
    if not official and user == normal:
        return user, normal
    return user, official


def _compare_set(name: str, user: FrozenSet[str], official: FrozenSet[str], weights: ScoringWeights) -> Tuple[bool, float, Optional[float]]:
    max_pts = weights.weight(name)
    if user == official:
        return True, max_pts, None
    if not weights.partial_credit:
        return False, 0.0, None
    union = user | official
    credit = len(user & official) / len(union) if union else 1.0
    return False, max_pts * credit, credit


def _compare_scalar(name: str, user: str, official: str, weights: ScoringWeights) -> Tuple[bool, float]:
    ok = user == official
    return ok, (weights.weight(name) if ok else 0.0)


def _compare_heart_rate(user: int, official: int, weights: ScoringWeights) -> Tuple[bool, float]:
    ok = heart_rate_bucket(int(user)) == heart_rate_bucket(int(official))
    return ok, (weights.weight("heart_rate") if ok else 0.0)


def _display(name: str, value: object) -> str:
    if name == "rhythm":
        return label_set(value, RHYTHMS)  # type: ignore[arg-type]
    if name == "findings":
        return label_set(value)  # type: ignore[arg-type]
    if name == "electrode_swap":
        return label_set(value, ELECTRODE_SWAPS)  # type: ignore[arg-type]
    if name == "heart_rate":
        return f"{value} bpm ({heart_rate_bucket(int(value))})"  # type: ignore[arg-type]
    return _SCALAR_LABELS[name].get(str(value), str(value))


def score_report(
    user: UserReport,
    official: OfficialReport,
    categories: Iterable[str] | None = None,
    weights: ScoringWeights | None = None,
) -> ScoringResult:
    """
    Compare a submitted report against the answer key, field by field.

    Weights come from `weights`, else from the case categories (explicit
    `categories` win over `official.categories`), else the default table.
    Fields are compared in REPORT_FIELDS order; the 0..100 score is
    rounded once, on the final ratio.
    """
    validate_report(user, "user")
    validate_report(official, "official")
    if weights is None:
        cats = tuple(categories) if categories is not None else tuple(official.categories)
        weights = ScoringWeights.for_categories(cats)

    comparisons: List[FieldComparison] = []
    for name in REPORT_FIELDS:
        u = getattr(user, name)
        o = getattr(official, name)
        partial: Optional[float] = None
        if name in SET_FIELDS:
            u = u or frozenset()
            o = o or frozenset()
            shown_u, shown_o = u, o
            if name == "findings":
                u, o = _normalize_findings(u, o)
            ok, pts, partial = _compare_set(name, u, o, weights)
            u, o = shown_u, shown_o
        elif name == "heart_rate":
            ok, pts = _compare_heart_rate(u, o, weights)
        else:
            ok, pts = _compare_scalar(name, u, o, weights)
        comparisons.append(
            FieldComparison(
                field=name,
                label=FIELD_LABELS[name],
                user_value=_display(name, u),
                correct_value=_display(name, o),
                is_correct=ok,
                points=pts,
                max_points=weights.weight(name),
                partial_credit=partial,
            )
        )

    total = sum(c.points for c in comparisons)
    max_total = sum(c.max_points for c in comparisons)
    score = round_half_up(100.0 * total / max_total) if max_total > 0 else 0
    score = max(0, min(100, score))
    log.debug("scored case=%s score=%s", official.case_id, score)
    return ScoringResult(
        score=score,
        total_points=total,
        max_points=max_total,
        comparisons=tuple(comparisons),
        is_passing=score >= config.PASSING_SCORE,
        category_used=weights.category_used,
    )


class ReportScorer:
    """Stateless scorer bound to an optional fixed weight table."""

    def __init__(self, weights: ScoringWeights | None = None):
        self.weights = weights

    def score(self, user: UserReport, official: OfficialReport) -> ScoringResult:
        return score_report(user, official, weights=self.weights)
