# ecg_core/achievements.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .catalog import DIFFICULTIES
from .types import UserGamificationStats


@dataclass(frozen=True)
class Achievement:
    id: str
    name: str
    kind: str
    threshold: int
    difficulty: Optional[str] = None
    rarity: str = "common"


ACHIEVEMENTS: tuple[Achievement, ...] = (
    Achievement("first_ecg", "First steps", "total_attempts", 1),
    Achievement("ecg_10", "Getting the rhythm", "total_attempts", 10),
    Achievement("ecg_100", "Century", "total_attempts", 100, rarity="rare"),
    Achievement("ecg_500", "Tracing machine", "total_attempts", 500, rarity="epic"),
    Achievement("perfect_1", "Flawless", "perfect_scores", 1),
    Achievement("perfect_25", "Sharp eye", "perfect_scores", 25, rarity="rare"),
    Achievement("level_10", "Resident", "level", 10),
    Achievement("level_25", "Fellow", "level", 25, rarity="rare"),
    Achievement("level_50", "Attending", "level", 50, rarity="epic"),
    Achievement("streak_7", "One week strong", "streak", 7),
    Achievement("streak_30", "Monthly habit", "streak", 30, rarity="epic"),
    Achievement("xp_10000", "Ten thousand", "total_xp", 10000, rarity="legendary"),
    Achievement("hard_25", "No easy days", "difficulty_count", 25, difficulty="hard", rarity="rare"),
    Achievement("all_difficulties_5", "Well rounded", "all_difficulties", 5),
)


def _met(a: Achievement, stats: UserGamificationStats) -> bool:
    if a.kind == "total_attempts":
        return stats.total_attempts_completed >= a.threshold
    if a.kind == "perfect_scores":
        return stats.total_perfect_scores >= a.threshold
    if a.kind == "level":
        return stats.current_level >= a.threshold
    if a.kind == "streak":
        return stats.current_streak >= a.threshold
    if a.kind == "total_xp":
        return stats.total_xp >= a.threshold
    if a.kind == "difficulty_count":
        return stats.attempts_by_difficulty.get(a.difficulty or "", 0) >= a.threshold
    if a.kind == "all_difficulties":
        return all(stats.attempts_by_difficulty.get(d, 0) >= a.threshold for d in DIFFICULTIES)
    return False


def evaluate_achievements(stats: UserGamificationStats, catalog: tuple[Achievement, ...] = ACHIEVEMENTS) -> List[str]:
    return [a.id for a in catalog if _met(a, stats)]


def newly_unlocked(
    previous: Optional[UserGamificationStats],
    current: UserGamificationStats,
    catalog: tuple[Achievement, ...] = ACHIEVEMENTS,
) -> List[str]:
    before = set(evaluate_achievements(previous, catalog)) if previous else set()
    return [aid for aid in evaluate_achievements(current, catalog) if aid not in before]


def describe(ids: List[str]) -> List[Dict[str, Any]]:
    by_id = {a.id: a for a in ACHIEVEMENTS}
    out: List[Dict[str, Any]] = []
    for aid in ids:
        a = by_id.get(aid)
        if a:
            out.append({"id": a.id, "name": a.name, "rarity": a.rarity})
    return out
