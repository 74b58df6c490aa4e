from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

import pytest

from ecg_core.config import GamificationConfig
from ecg_core.types import AttemptRecord, OfficialReport, UserReport


def report_dict(**overrides: Any) -> dict[str, Any]:
    """A complete, normal 12-lead report; override any field by keyword."""

    base: dict[str, Any] = {
        "rhythm": ["sinus"],
        "heart_rate": 72,
        "axis": "normal",
        "pr_interval": "normal",
        "qrs_duration": "normal",
        "qt_interval": "normal",
        "findings": [],
        "electrode_swap": None,
    }
    base.update(overrides)
    return base


def build_official(**overrides: Any) -> OfficialReport:
    return OfficialReport.from_dict(report_dict(**overrides))


def build_user(**overrides: Any) -> UserReport:
    return UserReport.from_dict(report_dict(**overrides))


def at(day: date | str, hour: int = 12, score: int = 80, difficulty: str = "medium", user_id: str = "u1") -> AttemptRecord:
    """Attempt record at noon UTC on `day`."""

    if isinstance(day, str):
        day = date.fromisoformat(day)
    ts = datetime(day.year, day.month, day.day, hour, tzinfo=timezone.utc)
    return AttemptRecord(score=score, difficulty=difficulty, attempted_at=ts, user_id=user_id)


@pytest.fixture
def cfg() -> GamificationConfig:
    return GamificationConfig()
