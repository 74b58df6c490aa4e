# ecg_core/engine.py
from __future__ import annotations
from dataclasses import replace
from datetime import tzinfo
from typing import Iterable, Optional
import logging

from .achievements import newly_unlocked
from .config import DEBUG_TRACE, TRACE_FIELDS, GamificationConfig
from .leveling import level_from_xp
from .streaks import recalculate_streak, streak_milestone, to_local_day
from .types import AttemptOutcome, AttemptRecord, UserGamificationStats
from .xp import award_xp, difficulty_multiplier, _check_score

log = logging.getLogger(__name__)


def _emit_trace(**values: object) -> None:
    if not DEBUG_TRACE:
        return
    ordered = []
    for key in TRACE_FIELDS:
        if key in values:
            ordered.append(f"{key}={values[key]}")
    if ordered:
        log.info("trace %s", " ".join(ordered))


class GamificationEngine:
    """Turns one scored attempt into an updated stats record.

    The engine is pure: it reads the previous stats and the attempt history,
    and returns a fresh record. Persisting it (atomically, per user) is the
    caller's job.
    """

    def __init__(self, config: GamificationConfig, tz: Optional[tzinfo] = None):
        self.config = config
        self.tz = tz

    def apply_attempt(
        self,
        stats: Optional[UserGamificationStats],
        attempt: AttemptRecord,
        history: Iterable[AttemptRecord] = (),
        event: Optional[str] = None,
    ) -> AttemptOutcome:
        _check_score(attempt.score)
        difficulty_multiplier(attempt.difficulty, self.config)

        prev = stats or UserGamificationStats(user_id=str(attempt.user_id or ""))
        dates = [r.attempted_at for r in history] + [attempt.attempted_at]
        attempt_day = to_local_day(attempt.attempted_at, self.tz)
        streak = recalculate_streak(dates, today=attempt_day, tz=self.tz)

        xp = award_xp(
            attempt.score,
            attempt.difficulty,
            self.config,
            current_level=max(1, prev.current_level),
            current_streak=streak.current_streak,
            event=event,
        )
        total_xp = prev.total_xp + xp.final_xp
        new_level = level_from_xp(total_xp, self.config)

        perfect = attempt.score == 100
        by_diff = dict(prev.attempts_by_difficulty)
        by_diff[attempt.difficulty] = by_diff.get(attempt.difficulty, 0) + 1
        last_day = prev.last_activity_date
        if last_day is None or attempt_day > last_day:
            last_day = attempt_day

        updated = replace(
            prev,
            total_xp=total_xp,
            current_level=new_level,
            current_streak=streak.current_streak,
            longest_streak=max(prev.longest_streak, streak.longest_streak),
            last_activity_date=last_day,
            total_attempts_completed=prev.total_attempts_completed + 1,
            total_perfect_scores=prev.total_perfect_scores + (1 if perfect else 0),
            attempts_by_difficulty=by_diff,
            perfect_streak=prev.perfect_streak + 1 if perfect else 0,
        )

        milestone = streak_milestone(prev.current_streak, streak.current_streak)
        unlocked = newly_unlocked(stats, updated)
        if new_level > prev.current_level:
            log.info("user %s leveled up %s -> %s", updated.user_id, prev.current_level, new_level)
        if milestone:
            log.info("user %s reached a %s-day streak", updated.user_id, milestone)
        _emit_trace(
            user_id=updated.user_id,
            score=attempt.score,
            difficulty=attempt.difficulty,
            xp=xp.final_xp,
            total_xp=total_xp,
            level_before=prev.current_level,
            level_after=new_level,
            streak=streak.current_streak,
        )
        return AttemptOutcome(
            stats=updated,
            xp=xp,
            previous_level=prev.current_level,
            new_level=new_level,
            previous_streak=prev.current_streak,
            streak_milestone=milestone,
            achievements_unlocked=unlocked,
        )
