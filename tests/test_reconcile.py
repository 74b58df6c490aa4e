from __future__ import annotations

from datetime import date
import logging

from ecg_core.reconcile import backfill_xp, group_attempts_by_user, recalculate_streaks, recompute_stats
from ecg_core.types import UserGamificationStats

from tests.conftest import at


def _history():
    return [
        at("2024-01-03", score=100, user_id="a"),
        at("2024-01-01", score=80, user_id="a"),
        at("2024-01-02", score=60, difficulty="easy", user_id="a"),
        at("2024-01-02", score=90, difficulty="hard", user_id="b"),
    ]


def test_group_sorts_by_time():
    grouped = group_attempts_by_user(_history())
    assert set(grouped) == {"a", "b"}
    assert [r.score for r in grouped["a"]] == [80, 60, 100]


def test_recompute_stats(cfg):
    grouped = group_attempts_by_user(_history())
    stats = recompute_stats("a", grouped["a"], cfg, today=date(2024, 1, 3))
    # 50 + floor(40 * 0.8) = 32 + 85
    assert stats.total_xp == 50 + 32 + 85
    assert stats.current_level == 2
    assert stats.current_streak == 3 and stats.longest_streak == 3
    assert stats.total_attempts_completed == 3
    assert stats.total_perfect_scores == 1
    assert stats.perfect_streak == 1
    assert stats.attempts_by_difficulty == {"easy": 1, "medium": 2, "hard": 0}


def test_backfill_never_lowers_xp(cfg, caplog):
    grouped = group_attempts_by_user(_history())
    stored = {
        "a": UserGamificationStats(user_id="a", total_xp=100, current_level=2),
        "b": UserGamificationStats(user_id="b", total_xp=5000, current_level=16),
    }
    with caplog.at_level(logging.WARNING, logger="ecg_core.reconcile"):
        rows, updated = backfill_xp(stored, grouped, cfg, today=date(2024, 1, 3))
    by_user = {r.user_id: r for r in rows}

    assert by_user["a"].computed_xp == 167
    assert by_user["a"].xp_awarded == 67
    assert updated["a"].total_xp == 167
    assert updated["a"].current_level == 2

    assert by_user["b"].xp_awarded == 0
    assert "b" not in updated
    assert "xp drift for a" in caplog.text


def test_backfill_fixes_level_drift(cfg):
    stored = {"c": UserGamificationStats(user_id="c", total_xp=400, current_level=1)}
    rows, updated = backfill_xp(stored, {}, cfg)
    assert rows[0].xp_awarded == 0
    assert rows[0].level_after == 4
    assert updated["c"].current_level == 4
    assert updated["c"].total_xp == 400


def test_recalculate_streaks_preview_and_apply(cfg):
    grouped = group_attempts_by_user(_history())
    stored = {
        "a": UserGamificationStats(user_id="a", current_streak=1, longest_streak=1),
        "b": UserGamificationStats(user_id="b", current_streak=0, longest_streak=1),
    }
    rows, updated = recalculate_streaks(stored, grouped, today=date(2024, 1, 3))
    assert updated == {}
    drift = {r.user_id: r for r in rows if r.drifted}
    assert set(drift) == {"a", "b"}
    assert (drift["a"].current_streak, drift["a"].longest_streak) == (3, 3)
    assert (drift["b"].current_streak, drift["b"].longest_streak) == (1, 1)
    assert not any(r.fixed for r in rows)

    rows, updated = recalculate_streaks(stored, grouped, apply=True, today=date(2024, 1, 3))
    assert all(r.fixed for r in rows if r.drifted)
    assert updated["a"].current_streak == 3
    assert updated["a"].last_activity_date == date(2024, 1, 3)

    again, _ = recalculate_streaks(updated | {"b": stored["b"]}, grouped, today=date(2024, 1, 3))
    assert not next(r for r in again if r.user_id == "a").drifted
