from __future__ import annotations

import csv
import importlib
import io
import json
import sys
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from tests.conftest import report_dict


_DEF_MODULES = [
    "api.storage",
    "api.app",
]


def _reload_app(tmp_path, monkeypatch) -> tuple[object, object]:
    monkeypatch.setenv("DATA_DIR", str(tmp_path))
    monkeypatch.delenv("LLM_BACKEND", raising=False)
    for name in _DEF_MODULES:
        if name in sys.modules:
            importlib.reload(sys.modules[name])
        else:
            __import__(name)
    return sys.modules["api.storage"], sys.modules["api.app"]


def _client(tmp_path, monkeypatch):
    storage, app_module = _reload_app(tmp_path, monkeypatch)
    client = TestClient(app_module.app)
    resp = client.put("/cases/c1", json={**report_dict(findings=["lvh"]), "difficulty": "medium"})
    assert resp.status_code == 200
    return storage, client


def _submit(client, day: str, findings=("lvh",), user="u1"):
    return client.post(
        "/attempts",
        json={
            "user_id": user,
            "case_id": "c1",
            "report": report_dict(findings=list(findings)),
            "attempted_at": f"{day}T10:00:00Z",
        },
    )


def _add_event(client, kind, start=-1, end=1, user_id=None):
    now = datetime.now(timezone.utc)
    resp = client.post(
        "/admin/gamification/events",
        json={
            "kind": kind,
            "start_at": (now + timedelta(hours=start)).isoformat(),
            "end_at": (now + timedelta(hours=end)).isoformat(),
            "user_id": user_id,
        },
    )
    assert resp.status_code == 200
    return resp.json()


def test_health_and_case_roundtrip(tmp_path, monkeypatch):
    _storage, client = _client(tmp_path, monkeypatch)
    assert client.get("/").json()["status"] == "ok"
    assert client.get("/health").json()["llm_backend"] == "none"
    case = client.get("/cases/c1").json()
    assert case["findings"] == ["lvh"]
    assert client.get("/cases/nope").status_code == 404


def test_submit_attempt_updates_stats(tmp_path, monkeypatch):
    storage, client = _client(tmp_path, monkeypatch)
    r1 = _submit(client, "2024-01-01")
    assert r1.status_code == 200
    body = r1.json()
    assert body["result"]["score"] == 100
    assert body["xp"]["final_xp"] == 85
    assert {a["id"] for a in body["achievements_unlocked"]} == {"first_ecg", "perfect_1"}

    r2 = _submit(client, "2024-01-02", findings=())
    assert r2.status_code == 200
    assert r2.json()["result"]["score"] == 62
    # 10 + 31 = 41, +1 streak bonus
    assert r2.json()["xp"]["final_xp"] == 42

    stats = client.get("/users/u1/stats").json()
    assert stats["stats"]["total_xp"] == 127
    assert stats["stats"]["current_level"] == 2
    assert stats["stats"]["current_streak"] == 2
    assert stats["level_progress"]["level"] == 2

    attempts = client.get("/users/u1/attempts").json()["attempts"]
    assert [a["score"] for a in attempts] == [100, 62]
    assert json.loads(storage.STATS_PATH.read_text())["u1"]["total_attempts_completed"] == 2


def test_missing_field_is_422_and_nothing_persisted(tmp_path, monkeypatch):
    storage, client = _client(tmp_path, monkeypatch)
    report = report_dict(findings=["lvh"])
    del report["qt_interval"]
    resp = client.post("/attempts", json={"user_id": "u1", "case_id": "c1", "report": report})
    assert resp.status_code == 422
    assert resp.json()["detail"] == {"kind": "missing_required_field", "field": "user.qt_interval"}
    assert storage.load_stats("u1") is None
    assert storage.list_attempts() == []


def test_unknown_finding_is_400(tmp_path, monkeypatch):
    _storage, client = _client(tmp_path, monkeypatch)
    resp = client.post(
        "/attempts/preview",
        json={"case_id": "c1", "report": report_dict(findings=["not_a_finding"])},
    )
    assert resp.status_code == 400


def test_preview_does_not_persist(tmp_path, monkeypatch):
    storage, client = _client(tmp_path, monkeypatch)
    resp = client.post("/attempts/preview", json={"case_id": "c1", "report": report_dict(findings=["lvh"])})
    assert resp.status_code == 200
    assert resp.json()["xp"]["final_xp"] == 85
    _add_event(client, "2x")
    resp = client.post("/attempts/preview", json={"case_id": "c1", "report": report_dict(findings=["lvh"])})
    assert resp.json()["xp"]["final_xp"] == int(85 * 1.125)
    assert storage.list_attempts() == []


def test_feedback_and_html(tmp_path, monkeypatch):
    _storage, client = _client(tmp_path, monkeypatch)
    attempt_id = _submit(client, "2024-01-01", findings=()).json()["attempt_id"]

    fb = client.post(f"/attempts/{attempt_id}/feedback")
    assert fb.status_code == 200
    assert fb.json()["feedback"]["points"][0]["field"] == "findings"
    assert client.get(f"/attempts/{attempt_id}").json()["feedback"]["backend"] == "template"

    html = client.get(f"/attempts/{attempt_id}/report.html")
    assert html.status_code == 200
    assert "text/html" in html.headers["content-type"]
    assert "62 / 100" in html.text
    assert client.post("/attempts/missing/feedback").status_code == 404


def test_leaderboard_orders_by_xp(tmp_path, monkeypatch):
    _storage, client = _client(tmp_path, monkeypatch)
    _submit(client, "2024-01-01", user="low", findings=())
    _submit(client, "2024-01-01", user="high")
    entries = client.get("/leaderboard").json()["entries"]
    assert [e["user_id"] for e in entries] == ["high", "low"]
    assert entries[0]["rank"] == 1
    assert len(client.get("/leaderboard", params={"limit": 1}).json()["entries"]) == 1


def test_admin_config_roundtrip(tmp_path, monkeypatch):
    _storage, client = _client(tmp_path, monkeypatch)
    assert client.get("/admin/gamification/config").json()["xp_per_ecg_base"] == 10
    resp = client.put("/admin/gamification/config", json={"xp_per_ecg_base": 20, "updated_by": "admin"})
    assert resp.status_code == 200
    assert client.get("/admin/gamification/config").json()["xp_per_ecg_base"] == 20
    assert _submit(client, "2024-01-01").json()["xp"]["final_xp"] == 95
    assert client.put("/admin/gamification/config", json={"bogus": 1}).status_code == 400
    assert client.put("/admin/gamification/config", json={"max_level": 0}).status_code == 400


def test_admin_streak_recalculation(tmp_path, monkeypatch):
    storage, client = _client(tmp_path, monkeypatch)
    _submit(client, "2024-01-01")
    _submit(client, "2024-01-02")
    raw = json.loads(storage.STATS_PATH.read_text())
    raw["u1"]["longest_streak"] = 9
    storage.STATS_PATH.write_text(json.dumps(raw))

    preview = client.get("/admin/recalculate-streaks").json()
    assert preview["applied"] is False
    assert preview["drifted"] == 1
    assert preview["rows"][0]["longest_streak"] == 2
    assert storage.load_stats("u1")["longest_streak"] == 9

    csv_resp = client.get("/admin/recalculate-streaks.csv")
    assert csv_resp.text.splitlines()[0].startswith("user_id,")

    applied = client.post("/admin/recalculate-streaks").json()
    assert applied["applied"] is True
    assert storage.load_stats("u1")["longest_streak"] == 2


def test_admin_backfill(tmp_path, monkeypatch):
    storage, client = _client(tmp_path, monkeypatch)
    _submit(client, "2024-01-01")
    raw = json.loads(storage.STATS_PATH.read_text())
    raw["u1"]["total_xp"] = 10
    storage.STATS_PATH.write_text(json.dumps(raw))

    dry = client.post("/admin/backfill-xp", params={"dry_run": True}).json()
    assert dry["xp_awarded"] == 75
    assert storage.load_stats("u1")["total_xp"] == 10

    done = client.post("/admin/backfill-xp").json()
    assert done["applied"] is True
    assert storage.load_stats("u1")["total_xp"] == 85


def test_incomplete_case_is_rejected(tmp_path, monkeypatch):
    _storage, client = _client(tmp_path, monkeypatch)
    resp = client.put("/cases/c2", json={"rhythm": ["sinus"]})
    assert resp.status_code == 422
    assert resp.json()["detail"] == {"kind": "missing_required_field", "field": "official.heart_rate"}
    assert client.get("/cases/c2").status_code == 404

    resp = client.put("/cases/c3", json=report_dict(rhythm=[]))
    assert resp.json()["detail"]["field"] == "official.rhythm"
    assert client.get("/cases/c3").status_code == 404
    # an existing case is not overwritten by a broken one
    assert client.put("/cases/c1", json=report_dict(axis=None)).status_code == 422
    assert client.get("/cases/c1").json()["axis"] == "normal"


def test_stored_result_survives_case_edit(tmp_path, monkeypatch):
    _storage, client = _client(tmp_path, monkeypatch)
    attempt_id = _submit(client, "2024-01-01").json()["attempt_id"]
    assert client.put("/cases/c1", json=report_dict(findings=["rbbb"])).status_code == 200

    html = client.get(f"/attempts/{attempt_id}/report.html").text
    assert "100 / 100" in html
    assert "ECG Report: c1" in html
    fb = client.post(f"/attempts/{attempt_id}/feedback").json()["feedback"]
    assert fb["points"] == []
    assert fb["summary"].startswith("Perfect")


def test_comparisons_csv(tmp_path, monkeypatch):
    _storage, client = _client(tmp_path, monkeypatch)
    attempt_id = _submit(client, "2024-01-01", findings=()).json()["attempt_id"]
    resp = client.get(f"/attempts/{attempt_id}/comparisons.csv")
    assert resp.status_code == 200
    assert "text/csv" in resp.headers["content-type"]
    rows = list(csv.DictReader(io.StringIO(resp.text)))
    assert len(rows) == 8
    by_field = {r["field"]: r for r in rows}
    assert by_field["findings"]["is_correct"] == "False"
    assert by_field["rhythm"]["is_correct"] == "True"
    assert client.get("/attempts/missing/comparisons.csv").status_code == 404


def test_client_cannot_pick_xp_event(tmp_path, monkeypatch):
    _storage, client = _client(tmp_path, monkeypatch)
    resp = client.post(
        "/attempts",
        json={
            "user_id": "u1",
            "case_id": "c1",
            "report": report_dict(findings=["lvh"]),
            "attempted_at": "2024-01-01T10:00:00Z",
            "event": "3x",
        },
    )
    assert resp.status_code == 200
    assert resp.json()["xp"]["event_bonus"] == 0.0
    assert resp.json()["xp"]["final_xp"] == 85


def test_out_of_window_event_gives_no_bonus(tmp_path, monkeypatch):
    storage, client = _client(tmp_path, monkeypatch)
    _add_event(client, "3x", start=-48, end=-24)
    _add_event(client, "3x", start=24, end=48)
    body = _submit(client, "2024-01-01").json()
    assert body["xp"]["final_xp"] == 85
    assert storage.load_attempt(body["attempt_id"])["event"] is None


def test_active_event_applies_by_server_time(tmp_path, monkeypatch):
    storage, client = _client(tmp_path, monkeypatch)
    _add_event(client, "2x")
    _add_event(client, "3x")
    # attempted_at lies outside the window; the award is judged when it is received
    body = _submit(client, "2024-01-01").json()
    assert body["xp"]["event_bonus"] == 0.25
    assert body["xp"]["final_xp"] == 106
    assert storage.load_attempt(body["attempt_id"])["event"] == "3x"


def test_user_targeted_event(tmp_path, monkeypatch):
    _storage, client = _client(tmp_path, monkeypatch)
    _add_event(client, "3x", user_id="u2")
    assert _submit(client, "2024-01-01", user="u1").json()["xp"]["final_xp"] == 85
    assert _submit(client, "2024-01-01", user="u2").json()["xp"]["final_xp"] == 106


def test_admin_events_crud(tmp_path, monkeypatch):
    _storage, client = _client(tmp_path, monkeypatch)
    live = _add_event(client, "2x")
    _add_event(client, "3x", start=-48, end=-24)
    assert len(client.get("/admin/gamification/events").json()["events"]) == 2
    active = client.get("/admin/gamification/events", params={"active_only": True}).json()["events"]
    assert [e["id"] for e in active] == [live["id"]]

    now = datetime.now(timezone.utc)
    backwards = {"kind": "2x", "start_at": now.isoformat(), "end_at": (now - timedelta(hours=1)).isoformat()}
    assert client.post("/admin/gamification/events", json=backwards).status_code == 400
    assert client.post("/admin/gamification/events", json={**backwards, "kind": "5x"}).status_code == 422

    assert client.delete(f"/admin/gamification/events/{live['id']}").json() == {"deleted": live["id"]}
    assert client.delete(f"/admin/gamification/events/{live['id']}").status_code == 404
    assert _submit(client, "2024-01-01").json()["xp"]["final_xp"] == 85
