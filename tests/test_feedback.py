from __future__ import annotations

import json
from types import SimpleNamespace

import ecg_core.feedback as feedback
from ecg_core.scoring import score_report

from tests.conftest import build_official, build_user


def _result():
    return score_report(build_user(findings=["lvh"], axis="left"), build_official())


def test_template_lists_missed_fields(monkeypatch):
    monkeypatch.delenv("LLM_BACKEND", raising=False)
    fb = feedback.generate_feedback(_result())
    assert fb["backend"] == "template"
    assert [p["field"] for p in fb["points"]] == ["axis", "findings"]
    assert fb["points"][0]["correct_answer"] == "Normal axis"
    assert "below the passing mark" in fb["summary"]


def test_perfect_has_no_points(monkeypatch):
    monkeypatch.delenv("LLM_BACKEND", raising=False)
    fb = feedback.generate_feedback(score_report(build_user(), build_official()))
    assert fb["points"] == []
    assert fb["summary"].startswith("Perfect")


def _fake_azure(content):
    def create(**kwargs):
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])

    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


def test_azure_backend_used(monkeypatch):
    monkeypatch.setenv("LLM_BACKEND", "azure")
    monkeypatch.setattr(feedback, "azure_settings", lambda: SimpleNamespace(deployment="dep"))
    payload = {"summary": "Look at lead I.", "points": [{"field": "axis", "tip": "aVF"}]}
    monkeypatch.setattr(feedback, "azure_client", lambda: _fake_azure(json.dumps(payload)))
    fb = feedback.generate_feedback(_result())
    assert fb == {"backend": "azure", **payload}


def test_azure_failure_falls_back(monkeypatch, caplog):
    monkeypatch.setenv("LLM_BACKEND", "azure")

    def boom():
        raise RuntimeError("Azure OpenAI not configured. Missing: endpoint")

    monkeypatch.setattr(feedback, "azure_settings", boom)
    fb = feedback.generate_feedback(_result())
    assert fb["backend"] == "template"
    assert "LLM feedback failed" in caplog.text


def test_azure_bad_json_falls_back(monkeypatch):
    monkeypatch.setenv("LLM_BACKEND", "azure")
    monkeypatch.setattr(feedback, "azure_settings", lambda: SimpleNamespace(deployment="dep"))
    monkeypatch.setattr(feedback, "azure_client", lambda: _fake_azure("not json"))
    assert feedback.generate_feedback(_result())["backend"] == "template"


def test_use_llm_feedback_off_keeps_template(monkeypatch):
    monkeypatch.setenv("LLM_BACKEND", "azure")
    monkeypatch.setenv("USE_LLM_FEEDBACK", "0")

    def unreachable():
        raise AssertionError("azure must not be called")

    monkeypatch.setattr(feedback, "azure_settings", unreachable)
    monkeypatch.setattr(feedback, "azure_client", unreachable)
    assert feedback.backend_in_use() == "none"
    assert feedback.generate_feedback(_result())["backend"] == "template"

    monkeypatch.setenv("USE_LLM_FEEDBACK", "1")
    assert feedback.backend_in_use() == "azure"
