from __future__ import annotations

import importlib
import json
import sys


def _reload_storage(tmp_path, monkeypatch):
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    if "api.storage" in sys.modules:
        importlib.reload(sys.modules["api.storage"])
    else:
        import api.storage  # noqa: F401
    return sys.modules["api.storage"]


def _seed(storage):
    storage.save_attempt("a1", {"user_id": "u1", "case_id": "c", "score": 100, "difficulty": "medium", "attempted_at": "2024-01-01T09:00:00+00:00"})
    storage.save_attempt("a2", {"user_id": "u1", "case_id": "c", "score": 80, "difficulty": "easy", "attempted_at": "2024-01-02T09:00:00+00:00"})
    storage.STATS_PATH.write_text(
        json.dumps({"u1": {"user_id": "u1", "total_xp": 50, "current_level": 1, "current_streak": 0, "longest_streak": 0}}),
        encoding="utf-8",
    )


def test_backfill_tool_preview_then_apply(tmp_path, monkeypatch, capsys):
    storage = _reload_storage(tmp_path, monkeypatch)
    _seed(storage)
    from tools import backfill_xp

    out_csv = tmp_path / "backfill.csv"
    assert backfill_xp.main(["--csv", str(out_csv)]) == 2
    assert storage.load_stats("u1")["total_xp"] == 50
    assert "u1: attempts=2 stored=50 computed=125 +75" in capsys.readouterr().out
    assert out_csv.read_text(encoding="utf-8").startswith("user_id,attempts")

    assert backfill_xp.main(["--apply"]) == 0
    assert storage.load_stats("u1")["total_xp"] == 125
    assert backfill_xp.main([]) == 0


def test_streak_tool_preview_then_apply(tmp_path, monkeypatch, capsys):
    storage = _reload_storage(tmp_path, monkeypatch)
    _seed(storage)
    from tools import recalculate_streaks

    assert recalculate_streaks.main(["--user", "u1"]) == 2
    assert "[drift]" in capsys.readouterr().out
    assert storage.load_stats("u1")["longest_streak"] == 0

    assert recalculate_streaks.main(["--apply"]) == 0
    assert storage.load_stats("u1")["longest_streak"] == 2
    assert recalculate_streaks.main(["--dry-run"]) == 0
