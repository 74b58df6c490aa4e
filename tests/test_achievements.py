from __future__ import annotations

from ecg_core.achievements import ACHIEVEMENTS, describe, evaluate_achievements, newly_unlocked
from ecg_core.types import UserGamificationStats


def test_catalog_ids_unique():
    ids = [a.id for a in ACHIEVEMENTS]
    assert len(ids) == len(set(ids))


def test_evaluate_thresholds():
    stats = UserGamificationStats(
        user_id="u",
        total_attempts_completed=10,
        total_perfect_scores=1,
        current_level=10,
        current_streak=7,
        attempts_by_difficulty={"easy": 5, "medium": 5, "hard": 0},
    )
    met = set(evaluate_achievements(stats))
    assert {"first_ecg", "ecg_10", "perfect_1", "level_10", "streak_7"} <= met
    assert "all_difficulties_5" not in met
    assert "ecg_100" not in met


def test_newly_unlocked_only_reports_new():
    before = UserGamificationStats(user_id="u", total_attempts_completed=9)
    after = UserGamificationStats(user_id="u", total_attempts_completed=10)
    assert newly_unlocked(before, after) == ["ecg_10"]
    assert newly_unlocked(None, before) == ["first_ecg"]


def test_describe():
    assert describe(["perfect_25", "missing"]) == [{"id": "perfect_25", "name": "Sharp eye", "rarity": "rare"}]
