from __future__ import annotations
import math

from .config import GamificationConfig
from .errors import InvalidArgumentError
from .types import LevelProgress


def xp_to_complete_level(level: int, config: GamificationConfig) -> int:
    """XP needed to go from `level` to `level + 1`."""
    if level < 1:
        raise InvalidArgumentError("level", level)
    if level == 1:
        return config.xp_per_level_base
    return math.floor(config.xp_per_level_base * config.xp_per_level_growth ** (level - 1))


def total_xp_for_level(level: int, config: GamificationConfig) -> int:
    """Cumulative XP at which `level` is reached."""
    if level <= 1:
        return 0
    return sum(xp_to_complete_level(n, config) for n in range(1, min(level, config.max_level)))


def level_from_xp(total_xp: float, config: GamificationConfig) -> int:
    if total_xp <= 0:
        return 1
    level = 1
    needed = 0
    while level < config.max_level:
        nxt = xp_to_complete_level(level, config)
        if needed + nxt > total_xp:
            break
        needed += nxt
        level += 1
    return min(level, config.max_level)


def level_progress(total_xp: int, config: GamificationConfig) -> LevelProgress:
    level = level_from_xp(total_xp, config)
    if level >= config.max_level:
        return LevelProgress(level=level, xp_into_level=0, xp_required=0, percentage=100)
    into = max(0, int(total_xp) - total_xp_for_level(level, config))
    required = xp_to_complete_level(level, config)
    pct = min(100, math.floor(into / required * 100))
    return LevelProgress(level=level, xp_into_level=into, xp_required=required, percentage=pct)


def check_level_up(previous_xp: int, new_xp: int, config: GamificationConfig) -> tuple[bool, int, int]:
    before = level_from_xp(previous_xp, config)
    after = level_from_xp(new_xp, config)
    return after > before, before, after
