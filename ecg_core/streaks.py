"""Streak derivation from attempt timestamps.

Streaks are never stored as state; they are always recomputed from the
days on which a user practised. The same function serves live updates
(called with the full history after each attempt) and batch reconciliation.
"""
from __future__ import annotations

import math
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Iterable, List, Optional, Union

from .config import GamificationConfig, reporting_tz
from .types import StreakStatus, StreakSummary

DateLike = Union[datetime, date]

STREAK_MILESTONES: tuple[int, ...] = (3, 7, 14, 30, 60, 90, 180, 365)


def to_local_day(value: DateLike, tz: Optional[tzinfo] = None) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(tz or reporting_tz()).date()
        return value.date()
    return value


def active_days(attempt_dates: Iterable[DateLike], tz: Optional[tzinfo] = None) -> List[date]:
    return sorted({to_local_day(d, tz) for d in attempt_dates})


def _today(tz: Optional[tzinfo]) -> date:
    return datetime.now(tz or reporting_tz()).date()


def recalculate_streak(
    attempt_dates: Iterable[DateLike],
    *,
    today: Optional[date] = None,
    tz: Optional[tzinfo] = None,
) -> StreakSummary:
    days = active_days(attempt_dates, tz)
    if not days:
        return StreakSummary(current_streak=0, longest_streak=0)

    longest = run = 1
    for prev, cur in zip(days, days[1:]):
        if (cur - prev).days == 1:
            run += 1
            longest = max(longest, run)
        else:
            run = 1

    as_of = today or _today(tz)
    last = days[-1]
    current = 0
    if (as_of - last).days <= 1:
        current = 1
        for i in range(len(days) - 1, 0, -1):
            if (days[i] - days[i - 1]).days != 1:
                break
            current += 1
    return StreakSummary(current_streak=current, longest_streak=longest)


def streak_status(
    last_activity: Optional[DateLike],
    current_streak: int,
    config: GamificationConfig,
    *,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> StreakStatus:
    """
    Where a streak stands right now: no_streak, active, at_risk or broken.

    `at_risk` covers the grace window that opens at the midnight after the
    last active day and lasts `streak_grace_period_hours`.
    """
    if last_activity is None or current_streak <= 0:
        return StreakStatus(state="no_streak", current_streak=0)

    zone = tz or reporting_tz()
    now = now or datetime.now(zone)
    if now.tzinfo is None:
        now = now.replace(tzinfo=zone)
    today = now.astimezone(zone).date()
    last_day = to_local_day(last_activity, zone)
    gap = (today - last_day).days
    if gap <= 1:
        return StreakStatus(state="active", current_streak=current_streak)

    grace_start = datetime.combine(last_day + timedelta(days=1), time.min, tzinfo=zone)
    grace_end = grace_start + timedelta(hours=config.streak_grace_period_hours)
    if now < grace_end:
        hours_left = max(0, math.floor((grace_end - now).total_seconds() / 3600))
        return StreakStatus(state="at_risk", current_streak=current_streak, hours_until_reset=hours_left)
    return StreakStatus(state="broken", current_streak=0)


def streak_milestone(previous: int, new: int) -> Optional[int]:
    for milestone in STREAK_MILESTONES:
        if previous < milestone <= new:
            return milestone
    return None
