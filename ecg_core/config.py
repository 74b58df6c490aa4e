from __future__ import annotations
import json, logging, os, pathlib
from dataclasses import dataclass, field, fields
from datetime import timezone, tzinfo
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .catalog import CATEGORIES, DIFFICULTIES
from .errors import InvalidArgumentError

log = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


# ---- scoring ----
FIELD_WEIGHTS: Dict[str, int] = {
    "rhythm": 30,
    "heart_rate": 8,
    "axis": 6,
    "pr_interval": 5,
    "qrs_duration": 5,
    "qt_interval": 4,
    "findings": 38,
    "electrode_swap": 4,
}

# per-category tables; each sums to 100
CATEGORY_WEIGHTS: Dict[str, Dict[str, int]] = {
    "arrhythmia": {"rhythm": 35, "heart_rate": 8, "axis": 5, "pr_interval": 5, "qrs_duration": 5, "qt_interval": 3, "findings": 35, "electrode_swap": 4},
    "ischemia":   {"rhythm": 12, "heart_rate": 5, "axis": 5, "pr_interval": 3, "qrs_duration": 3, "qt_interval": 3, "findings": 65, "electrode_swap": 4},
    "structural": {"rhythm": 15, "heart_rate": 5, "axis": 5, "pr_interval": 5, "qrs_duration": 5, "qt_interval": 3, "findings": 57, "electrode_swap": 5},
    "emergency":  {"rhythm": 25, "heart_rate": 8, "axis": 5, "pr_interval": 3, "qrs_duration": 3, "qt_interval": 3, "findings": 49, "electrode_swap": 4},
    "normal":     {"rhythm": 20, "heart_rate": 8, "axis": 5, "pr_interval": 4, "qrs_duration": 4, "qt_interval": 3, "findings": 52, "electrode_swap": 4},
    "routine":    {"rhythm": 20, "heart_rate": 8, "axis": 5, "pr_interval": 4, "qrs_duration": 4, "qt_interval": 3, "findings": 52, "electrode_swap": 4},
    "advanced":   {"rhythm": 17, "heart_rate": 7, "axis": 5, "pr_interval": 3, "qrs_duration": 3, "qt_interval": 3, "findings": 59, "electrode_swap": 3},
    "rare":       {"rhythm": 17, "heart_rate": 7, "axis": 5, "pr_interval": 3, "qrs_duration": 3, "qt_interval": 3, "findings": 59, "electrode_swap": 3},
    "other":      {"rhythm": 17, "heart_rate": 7, "axis": 5, "pr_interval": 3, "qrs_duration": 3, "qt_interval": 3, "findings": 59, "electrode_swap": 3},
}

HR_BRADY_BELOW: int = 60
HR_TACHY_ABOVE: int = 100
PASSING_SCORE: int = 80
SCORING_PARTIAL_CREDIT: bool = False

# ---- gamification defaults ----
XP_PER_ECG_BASE: int = 10
XP_PER_SCORE_POINT: float = 0.5
XP_DIFFICULTY_MULTIPLIERS: Dict[str, float] = {"easy": 0.8, "medium": 1.0, "hard": 1.3}
XP_PERFECT_BONUS: int = 25
XP_STREAK_BONUS_PER_DAY: float = 0.5
XP_STREAK_BONUS_MAX: int = 15
LEVEL_MULTIPLIER_PER_LEVEL: float = 0.002525
XP_PER_LEVEL_BASE: int = 100
XP_PER_LEVEL_GROWTH: float = 1.15
MAX_LEVEL: int = 100
EVENT_2X_BONUS: float = 0.125
EVENT_3X_BONUS: float = 0.25
STREAK_GRACE_PERIOD_HOURS: int = 36
RANKING_TOP_N_VISIBLE: int = 10

DEBUG_TRACE: bool = False
TRACE_FIELDS: tuple[str, ...] = (
    "user_id",
    "score",
    "difficulty",
    "xp",
    "total_xp",
    "level_before",
    "level_after",
    "streak",
)

# // env overrides for staging/ops; defaults stay in code.
SCORING_PARTIAL_CREDIT = _env_bool("SCORING_PARTIAL_CREDIT", SCORING_PARTIAL_CREDIT)
PASSING_SCORE = _env_int("PASSING_SCORE", PASSING_SCORE)
DEBUG_TRACE = _env_bool("DEBUG_TRACE", False)
REPORTING_TZ: str = os.getenv("REPORTING_TZ", "UTC")

_BOOKKEEPING_KEYS = {"id", "updated_at", "updated_by"}


def _default_multipliers() -> Dict[str, float]:
    return dict(XP_DIFFICULTY_MULTIPLIERS)


@dataclass(frozen=True)
class GamificationConfig:
    xp_per_ecg_base: int = XP_PER_ECG_BASE
    xp_per_score_point: float = XP_PER_SCORE_POINT
    difficulty_multipliers: Mapping[str, float] = field(default_factory=_default_multipliers)
    xp_perfect_bonus: int = XP_PERFECT_BONUS
    xp_streak_bonus_per_day: float = XP_STREAK_BONUS_PER_DAY
    xp_streak_bonus_max: int = XP_STREAK_BONUS_MAX
    level_multiplier_per_level: float = LEVEL_MULTIPLIER_PER_LEVEL
    xp_per_level_base: int = XP_PER_LEVEL_BASE
    xp_per_level_growth: float = XP_PER_LEVEL_GROWTH
    max_level: int = MAX_LEVEL
    event_2x_bonus: float = EVENT_2X_BONUS
    event_3x_bonus: float = EVENT_3X_BONUS
    streak_grace_period_hours: int = STREAK_GRACE_PERIOD_HOURS
    ranking_top_n_visible: int = RANKING_TOP_N_VISIBLE

    def __post_init__(self) -> None:
        if self.xp_per_level_base <= 0:
            raise InvalidArgumentError("xp_per_level_base", self.xp_per_level_base)
        if self.xp_per_level_growth < 1.0:
            raise InvalidArgumentError("xp_per_level_growth", self.xp_per_level_growth)
        if self.max_level < 1:
            raise InvalidArgumentError("max_level", self.max_level)
        if self.xp_per_ecg_base < 0 or self.xp_per_score_point < 0 or self.xp_perfect_bonus < 0:
            raise InvalidArgumentError("xp", (self.xp_per_ecg_base, self.xp_per_score_point, self.xp_perfect_bonus))
        for key, mult in self.difficulty_multipliers.items():
            if key not in DIFFICULTIES or float(mult) < 0:
                raise InvalidArgumentError("difficulty_multipliers", {key: mult})
        # read-only view so the snapshot cannot be edited in place
        object.__setattr__(self, "difficulty_multipliers", MappingProxyType(dict(self.difficulty_multipliers)))
        if self.streak_grace_period_hours < 0:
            raise InvalidArgumentError("streak_grace_period_hours", self.streak_grace_period_hours)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "GamificationConfig":
        """Build a validated snapshot; admin payloads may carry bookkeeping keys."""

        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, val in (data or {}).items():
            if key in _BOOKKEEPING_KEYS:
                continue
            if key == "xp_difficulty_multipliers":
                key = "difficulty_multipliers"
            if key not in known:
                raise InvalidArgumentError("config key", key)
            kwargs[key] = val
        if "difficulty_multipliers" in kwargs:
            merged = _default_multipliers()
            merged.update({str(k): float(v) for k, v in dict(kwargs["difficulty_multipliers"]).items()})
            kwargs["difficulty_multipliers"] = merged
        return cls(**kwargs)

    def with_updates(self, **changes: Any) -> "GamificationConfig":
        merged = self.to_dict()
        merged.update(changes)
        return GamificationConfig.from_mapping(merged)

    def to_dict(self) -> Dict[str, Any]:
        out = {f.name: getattr(self, f.name) for f in fields(self)}
        out["difficulty_multipliers"] = dict(self.difficulty_multipliers)
        return out


_ENV_OVERRIDES: Dict[str, tuple[str, Any]] = {
    "XP_PER_ECG_BASE": ("xp_per_ecg_base", _env_int),
    "XP_PER_SCORE_POINT": ("xp_per_score_point", _env_float),
    "XP_PERFECT_BONUS": ("xp_perfect_bonus", _env_int),
    "XP_STREAK_BONUS_PER_DAY": ("xp_streak_bonus_per_day", _env_float),
    "XP_STREAK_BONUS_MAX": ("xp_streak_bonus_max", _env_int),
    "LEVEL_MULTIPLIER_PER_LEVEL": ("level_multiplier_per_level", _env_float),
    "XP_PER_LEVEL_BASE": ("xp_per_level_base", _env_int),
    "XP_PER_LEVEL_GROWTH": ("xp_per_level_growth", _env_float),
    "MAX_LEVEL": ("max_level", _env_int),
    "STREAK_GRACE_PERIOD_HOURS": ("streak_grace_period_hours", _env_int),
}


def _read_config_file(path: pathlib.Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        log.warning("ignoring unreadable config file %s: %s", path, e)
        return {}
    return raw if isinstance(raw, dict) else {}


def load_config(path: str | os.PathLike[str] | None = None) -> GamificationConfig:
    """Fresh snapshot: defaults, then the JSON file, then env overrides."""

    p = pathlib.Path(path or os.getenv("GAMIFICATION_CONFIG", "gamification_config.json"))
    data = _read_config_file(p)
    defaults = GamificationConfig()
    for env_name, (attr, reader) in _ENV_OVERRIDES.items():
        if os.getenv(env_name):
            data[attr] = reader(env_name, getattr(defaults, attr))
    return GamificationConfig.from_mapping(data)


def weights_for_categories(categories: tuple[str, ...] | list[str] | None) -> tuple[Dict[str, int], str]:
    """Pick the weight table for a case; several categories average their tables."""

    cats = [c for c in (categories or ()) if c]
    if not cats:
        return dict(FIELD_WEIGHTS), "default"
    for c in cats:
        if c not in CATEGORIES:
            raise InvalidArgumentError("category", c)
    if len(cats) == 1:
        return dict(CATEGORY_WEIGHTS[cats[0]]), cats[0]
    avg: Dict[str, int] = {}
    for name in FIELD_WEIGHTS:
        total = sum(CATEGORY_WEIGHTS[c][name] for c in cats) / len(cats)
        avg[name] = int(total + 0.5)
    return avg, "mixed"


def reporting_tz(name: Optional[str] = None) -> tzinfo:
    tz_name = (name or REPORTING_TZ or "UTC").strip()
    if tz_name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(tz_name)
    except ZoneInfoNotFoundError:
        log.warning("unknown REPORTING_TZ %r, falling back to UTC", tz_name)
        return timezone.utc


__all__ = [
    "GamificationConfig",
    "load_config",
    "weights_for_categories",
    "reporting_tz",
]
