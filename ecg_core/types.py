from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, FrozenSet, List, Literal, Mapping, Optional, Tuple

Difficulty = Literal["easy", "medium", "hard"]
StreakState = Literal["no_streak", "active", "at_risk", "broken"]

REPORT_FIELDS: Tuple[str, ...] = (
    "rhythm",
    "heart_rate",
    "axis",
    "pr_interval",
    "qrs_duration",
    "qt_interval",
    "findings",
    "electrode_swap",
)
SET_FIELDS: Tuple[str, ...] = ("rhythm", "findings", "electrode_swap")

# camelCase aliases accepted from JSON payloads
_ALIASES: Dict[str, str] = {
    "heartRate": "heart_rate",
    "prInterval": "pr_interval",
    "qrsDuration": "qrs_duration",
    "qtInterval": "qt_interval",
    "electrodeSwap": "electrode_swap",
    "pr": "pr_interval",
    "qrs": "qrs_duration",
    "qt": "qt_interval",
}


def _tags(raw: Any) -> Optional[FrozenSet[str]]:
    if raw is None:
        return None
    if isinstance(raw, str):
        return frozenset([raw])
    return frozenset(str(v) for v in raw)


def _report_kwargs(data: Mapping[str, Any]) -> Dict[str, Any]:
    norm = {_ALIASES.get(k, k): v for k, v in data.items()}
    out: Dict[str, Any] = {}
    for name in REPORT_FIELDS:
        val = norm.get(name)
        if name in SET_FIELDS:
            out[name] = _tags(val)
        elif name == "heart_rate" and val is not None:
            out[name] = int(val)
        else:
            out[name] = val
    return out


@dataclass(frozen=True)
class UserReport:
    rhythm: Optional[FrozenSet[str]]
    heart_rate: Optional[int]
    axis: Optional[str]
    pr_interval: Optional[str]
    qrs_duration: Optional[str]
    qt_interval: Optional[str]
    findings: Optional[FrozenSet[str]]
    electrode_swap: Optional[FrozenSet[str]] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UserReport":
        return cls(**_report_kwargs(data))

    def to_dict(self) -> Dict[str, Any]:
        return _report_to_dict(self)


@dataclass(frozen=True)
class OfficialReport:
    rhythm: Optional[FrozenSet[str]]
    heart_rate: Optional[int]
    axis: Optional[str]
    pr_interval: Optional[str]
    qrs_duration: Optional[str]
    qt_interval: Optional[str]
    findings: Optional[FrozenSet[str]]
    electrode_swap: Optional[FrozenSet[str]] = None
    case_id: Optional[str] = None
    difficulty: Difficulty = "medium"
    categories: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OfficialReport":
        kwargs = _report_kwargs(data)
        cats = data.get("categories") or ()
        if isinstance(cats, str):
            cats = (cats,)
        return cls(
            **kwargs,
            case_id=data.get("case_id"),
            difficulty=data.get("difficulty") or "medium",
            categories=tuple(cats),
        )

    def to_dict(self) -> Dict[str, Any]:
        out = _report_to_dict(self)
        out.update({"case_id": self.case_id, "difficulty": self.difficulty, "categories": list(self.categories)})
        return out


def _report_to_dict(report: Any) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for name in REPORT_FIELDS:
        val = getattr(report, name)
        out[name] = sorted(val) if isinstance(val, frozenset) else val
    return out


@dataclass(frozen=True)
class FieldComparison:
    field: str
    label: str
    user_value: str
    correct_value: str
    is_correct: bool
    points: float
    max_points: float
    partial_credit: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FieldComparison":
        pc = data.get("partial_credit")
        return cls(
            field=str(data["field"]),
            label=str(data.get("label") or data["field"]),
            user_value=str(data.get("user_value", "")),
            correct_value=str(data.get("correct_value", "")),
            is_correct=bool(data.get("is_correct")),
            points=float(data.get("points", 0)),
            max_points=float(data.get("max_points", 0)),
            partial_credit=float(pc) if pc is not None else None,
        )


@dataclass(frozen=True)
class ScoringResult:
    score: int
    total_points: float
    max_points: float
    comparisons: Tuple[FieldComparison, ...]
    is_passing: bool
    category_used: str = "default"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScoringResult":
        """Rebuild a persisted result as it was scored; nothing is recomputed."""
        return cls(
            score=int(data["score"]),
            total_points=float(data.get("total_points", 0)),
            max_points=float(data.get("max_points", 0)),
            comparisons=tuple(FieldComparison.from_dict(c) for c in data.get("comparisons") or ()),
            is_passing=bool(data.get("is_passing")),
            category_used=str(data.get("category_used") or "default"),
        )

    def comparison(self, field_name: str) -> FieldComparison:
        for comp in self.comparisons:
            if comp.field == field_name:
                return comp
        raise KeyError(field_name)

    @property
    def is_perfect(self) -> bool:
        return self.score == 100


def _blank_difficulty_counts() -> Dict[str, int]:
    return {"easy": 0, "medium": 0, "hard": 0}


@dataclass(frozen=True)
class UserGamificationStats:
    user_id: str
    total_xp: int = 0
    current_level: int = 1
    current_streak: int = 0
    longest_streak: int = 0
    last_activity_date: Optional[date] = None
    total_attempts_completed: int = 0
    total_perfect_scores: int = 0
    attempts_by_difficulty: Dict[str, int] = field(default_factory=_blank_difficulty_counts)
    perfect_streak: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UserGamificationStats":
        last = data.get("last_activity_date")
        if isinstance(last, str) and last:
            last = date.fromisoformat(last[:10])
        by_diff = _blank_difficulty_counts()
        by_diff.update({k: int(v) for k, v in (data.get("attempts_by_difficulty") or {}).items()})
        return cls(
            user_id=str(data["user_id"]),
            total_xp=int(data.get("total_xp", 0) or 0),
            current_level=int(data.get("current_level", 1) or 1),
            current_streak=int(data.get("current_streak", 0) or 0),
            longest_streak=int(data.get("longest_streak", 0) or 0),
            last_activity_date=last or None,
            total_attempts_completed=int(data.get("total_attempts_completed", 0) or 0),
            total_perfect_scores=int(data.get("total_perfect_scores", 0) or 0),
            attempts_by_difficulty=by_diff,
            perfect_streak=int(data.get("perfect_streak", 0) or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "total_xp": self.total_xp,
            "current_level": self.current_level,
            "current_streak": self.current_streak,
            "longest_streak": self.longest_streak,
            "last_activity_date": self.last_activity_date.isoformat() if self.last_activity_date else None,
            "total_attempts_completed": self.total_attempts_completed,
            "total_perfect_scores": self.total_perfect_scores,
            "attempts_by_difficulty": dict(self.attempts_by_difficulty),
            "perfect_streak": self.perfect_streak,
        }


@dataclass(frozen=True)
class AttemptRecord:
    score: int
    difficulty: str
    attempted_at: datetime
    user_id: Optional[str] = None
    case_id: Optional[str] = None
    attempt_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AttemptRecord":
        ts = data.get("attempted_at") or data.get("created_at")
        if isinstance(ts, str):
            ts = datetime.fromisoformat(ts.replace("Z", "+00:00"))
        return cls(
            score=int(data["score"]),
            difficulty=str(data.get("difficulty") or "medium"),
            attempted_at=ts,
            user_id=data.get("user_id"),
            case_id=data.get("case_id"),
            attempt_id=data.get("attempt_id") or data.get("id"),
        )


@dataclass(frozen=True)
class StreakSummary:
    current_streak: int
    longest_streak: int


@dataclass(frozen=True)
class StreakStatus:
    state: StreakState
    current_streak: int
    hours_until_reset: Optional[int] = None


@dataclass(frozen=True)
class LevelProgress:
    level: int
    xp_into_level: int
    xp_required: int
    percentage: int


@dataclass(frozen=True)
class XPAward:
    attempt_xp: int
    streak_bonus: int
    level_multiplier: float
    event_bonus: float
    final_xp: int

    @property
    def breakdown(self) -> Dict[str, float]:
        return {
            "attempt_xp": self.attempt_xp,
            "streak_bonus": self.streak_bonus,
            "level_multiplier": self.level_multiplier,
            "event_bonus": self.event_bonus,
        }


@dataclass(frozen=True)
class AttemptOutcome:
    stats: UserGamificationStats
    xp: XPAward
    previous_level: int
    new_level: int
    previous_streak: int
    streak_milestone: Optional[int] = None
    achievements_unlocked: List[str] = field(default_factory=list)

    @property
    def leveled_up(self) -> bool:
        return self.new_level > self.previous_level
