"""Batch reconciliation of stored gamification stats against attempt history.

Shared by the admin endpoints and the maintenance scripts under ``tools/``.
Nothing here touches storage: callers pass stored stats and attempts in and
persist whatever comes back.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, tzinfo
from typing import Dict, Iterable, List, Mapping, Optional, Tuple
import logging

from .config import GamificationConfig
from .leveling import level_from_xp
from .streaks import recalculate_streak, to_local_day
from .types import AttemptRecord, UserGamificationStats
from .xp import compute_attempt_xp

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackfillRow:
    user_id: str
    attempts: int
    stored_xp: int
    computed_xp: int
    xp_awarded: int
    level_before: int
    level_after: int

    @property
    def changed(self) -> bool:
        return self.xp_awarded > 0 or self.level_after != self.level_before


@dataclass(frozen=True)
class StreakDriftRow:
    user_id: str
    previous_current: int
    previous_longest: int
    current_streak: int
    longest_streak: int
    fixed: bool = False

    @property
    def drifted(self) -> bool:
        return (self.previous_current, self.previous_longest) != (self.current_streak, self.longest_streak)


def group_attempts_by_user(attempts: Iterable[AttemptRecord]) -> Dict[str, List[AttemptRecord]]:
    grouped: Dict[str, List[AttemptRecord]] = {}
    for rec in attempts:
        if not rec.user_id:
            continue
        grouped.setdefault(str(rec.user_id), []).append(rec)
    for recs in grouped.values():
        recs.sort(key=lambda r: r.attempted_at)
    return grouped


def recompute_stats(
    user_id: str,
    attempts: Iterable[AttemptRecord],
    config: GamificationConfig,
    *,
    stored: Optional[UserGamificationStats] = None,
    today: Optional[date] = None,
    tz: Optional[tzinfo] = None,
) -> UserGamificationStats:
    """Stats as they would be if every attempt had been applied without live bonuses."""
    recs = sorted(attempts, key=lambda r: r.attempted_at)
    total_xp = sum(compute_attempt_xp(r.score, r.difficulty, config) for r in recs)
    streak = recalculate_streak([r.attempted_at for r in recs], today=today, tz=tz)

    by_diff: Dict[str, int] = {"easy": 0, "medium": 0, "hard": 0}
    perfect_run = 0
    perfect_total = 0
    for r in recs:
        by_diff[r.difficulty] = by_diff.get(r.difficulty, 0) + 1
        if r.score == 100:
            perfect_total += 1
            perfect_run += 1
        else:
            perfect_run = 0

    base = stored or UserGamificationStats(user_id=user_id)
    return replace(
        base,
        user_id=user_id,
        total_xp=total_xp,
        current_level=level_from_xp(total_xp, config),
        current_streak=streak.current_streak,
        longest_streak=max(base.longest_streak, streak.longest_streak),
        last_activity_date=to_local_day(recs[-1].attempted_at, tz) if recs else base.last_activity_date,
        total_attempts_completed=len(recs),
        total_perfect_scores=perfect_total,
        attempts_by_difficulty=by_diff,
        perfect_streak=perfect_run,
    )


def backfill_xp(
    stored_by_user: Mapping[str, UserGamificationStats],
    attempts_by_user: Mapping[str, List[AttemptRecord]],
    config: GamificationConfig,
    *,
    today: Optional[date] = None,
    tz: Optional[tzinfo] = None,
) -> Tuple[List[BackfillRow], Dict[str, UserGamificationStats]]:
    """
    Award XP that attempt history says a user should have but does not.

    Stored XP is never lowered: a user whose live awards (streak, level or
    event bonuses) exceed the plain recomputation keeps what they have.
    """
    rows: List[BackfillRow] = []
    updated: Dict[str, UserGamificationStats] = {}
    for user_id in sorted(set(stored_by_user) | set(attempts_by_user)):
        recs = attempts_by_user.get(user_id, [])
        stored = stored_by_user.get(user_id)
        prev = stored or UserGamificationStats(user_id=user_id)
        computed = sum(compute_attempt_xp(r.score, r.difficulty, config) for r in recs)
        award = max(0, computed - prev.total_xp)
        total = prev.total_xp + award
        level_after = level_from_xp(total, config)

        row = BackfillRow(
            user_id=user_id,
            attempts=len(recs),
            stored_xp=prev.total_xp,
            computed_xp=computed,
            xp_awarded=award,
            level_before=prev.current_level,
            level_after=level_after,
        )
        rows.append(row)
        if not row.changed:
            continue
        log.warning(
            "xp drift for %s: stored=%s computed=%s awarding=%s", user_id, prev.total_xp, computed, award
        )
        fresh = recompute_stats(user_id, recs, config, stored=prev, today=today, tz=tz)
        updated[user_id] = replace(fresh, total_xp=total, current_level=level_after)
    return rows, updated


def recalculate_streaks(
    stored_by_user: Mapping[str, UserGamificationStats],
    attempts_by_user: Mapping[str, List[AttemptRecord]],
    *,
    apply: bool = False,
    today: Optional[date] = None,
    tz: Optional[tzinfo] = None,
) -> Tuple[List[StreakDriftRow], Dict[str, UserGamificationStats]]:
    """
    Recompute current and longest streak for every user with stats.

    In preview mode (``apply=False``) the second element is empty and no row
    is marked fixed.
    """
    rows: List[StreakDriftRow] = []
    updated: Dict[str, UserGamificationStats] = {}
    for user_id in sorted(stored_by_user):
        stored = stored_by_user[user_id]
        recs = attempts_by_user.get(user_id, [])
        summary = recalculate_streak([r.attempted_at for r in recs], today=today, tz=tz)
        row = StreakDriftRow(
            user_id=user_id,
            previous_current=stored.current_streak,
            previous_longest=stored.longest_streak,
            current_streak=summary.current_streak,
            longest_streak=summary.longest_streak,
        )
        if row.drifted:
            log.warning(
                "streak drift for %s: stored=(%s, %s) recomputed=(%s, %s)",
                user_id,
                row.previous_current,
                row.previous_longest,
                row.current_streak,
                row.longest_streak,
            )
            if apply:
                row = replace(row, fixed=True)
                last = to_local_day(recs[-1].attempted_at, tz) if recs else stored.last_activity_date
                updated[user_id] = replace(
                    stored,
                    current_streak=summary.current_streak,
                    longest_streak=summary.longest_streak,
                    last_activity_date=last,
                )
        rows.append(row)
    return rows, updated


__all__ = [
    "BackfillRow",
    "StreakDriftRow",
    "group_attempts_by_user",
    "recompute_stats",
    "backfill_xp",
    "recalculate_streaks",
]
