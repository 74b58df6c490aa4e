from __future__ import annotations
import math
from typing import Optional

from .config import GamificationConfig
from .errors import InvalidArgumentError
from .types import XPAward

XP_EVENTS: tuple[str, ...] = ("2x", "3x")


def _check_score(score: float) -> None:
    if score is None or isinstance(score, bool) or not (0 <= score <= 100):
        raise InvalidArgumentError("score", score)


def difficulty_multiplier(difficulty: str, config: GamificationConfig) -> float:
    try:
        return float(config.difficulty_multipliers[difficulty])
    except KeyError:
        raise InvalidArgumentError("difficulty", difficulty) from None


def compute_attempt_xp(score: float, difficulty: str, config: GamificationConfig) -> int:
    """
    XP for one scored attempt.

    base = xp_per_ecg_base + floor(score * xp_per_score_point)
    xp   = floor(base * multiplier[difficulty]) (+ xp_perfect_bonus at 100)

    Floor placement matches the stored history; do not reorder.
    """
    _check_score(score)
    mult = difficulty_multiplier(difficulty, config)
    base = config.xp_per_ecg_base + math.floor(score * config.xp_per_score_point)
    xp = math.floor(base * mult)
    if score == 100:
        xp += config.xp_perfect_bonus
    return int(xp)


def streak_bonus(current_streak: int, config: GamificationConfig) -> int:
    if current_streak <= 0:
        return 0
    return int(min(math.floor(current_streak * config.xp_streak_bonus_per_day), config.xp_streak_bonus_max))


def level_multiplier(current_level: int, config: GamificationConfig) -> float:
    if current_level < 1:
        raise InvalidArgumentError("current_level", current_level)
    return 1.0 + (current_level - 1) * config.level_multiplier_per_level


def event_bonus(event: Optional[str], config: GamificationConfig) -> float:
    if event is None:
        return 0.0
    if event == "2x":
        return config.event_2x_bonus
    if event == "3x":
        return config.event_3x_bonus
    raise InvalidArgumentError("event", event)


def award_xp(
    score: float,
    difficulty: str,
    config: GamificationConfig,
    *,
    current_level: int = 1,
    current_streak: int = 0,
    event: Optional[str] = None,
) -> XPAward:
    """Live award: attempt XP plus streak bonus, scaled by level and event bonus."""

    attempt_xp = compute_attempt_xp(score, difficulty, config)
    s_bonus = streak_bonus(current_streak, config)
    l_mult = level_multiplier(current_level, config)
    e_bonus = event_bonus(event, config)
    final = math.floor((attempt_xp + s_bonus) * (l_mult + e_bonus))
    return XPAward(
        attempt_xp=attempt_xp,
        streak_bonus=s_bonus,
        level_multiplier=l_mult,
        event_bonus=e_bonus,
        final_xp=int(final),
    )
