from __future__ import annotations
from fastapi import FastAPI, HTTPException, Body, Query, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from pydantic import BaseModel
from dataclasses import asdict
from datetime import datetime, timezone
import logging, os, uuid, typing as t

# ---- Engine imports ----
from ecg_core import azure_cfg
from ecg_core.achievements import describe, evaluate_achievements
from ecg_core.catalog import is_known_finding
from ecg_core.config import GamificationConfig, load_config, reporting_tz
from ecg_core.engine import GamificationEngine
from ecg_core.errors import InvalidArgumentError, ValidationError
from ecg_core.events import XPEvent, active_kind
from ecg_core.export import COMPARISON_FIELDS, STREAK_FIELDS, render_result_html, to_csv, to_json
from ecg_core.feedback import backend_in_use, generate_feedback
from ecg_core.leveling import level_progress
from ecg_core.reconcile import backfill_xp, group_attempts_by_user, recalculate_streaks
from ecg_core.scoring import ReportScorer, validate_report
from ecg_core.streaks import streak_status
from ecg_core.types import AttemptRecord, OfficialReport, ScoringResult, UserGamificationStats, UserReport
from ecg_core.xp import award_xp
from . import storage

log = logging.getLogger(__name__)

app = FastAPI(title="ECG Practice API")


@app.get("/")
def root():
    return {"status": "ok", "service": "ecg-practice-api"}


ALLOWED_ORIGINS = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)

# ---- Schemas ----
Rhythm = t.Literal["sinus", "afib", "aflutter", "svt", "vtach", "vfib", "junctional", "paced", "asystole", "other"]
Axis = t.Literal["normal", "left", "right", "extreme"]
PR = t.Literal["normal", "prolonged", "short", "na"]
QRS = t.Literal["normal", "wide"]
QT = t.Literal["normal", "short", "prolonged"]
Swap = t.Literal["la_ra", "la_ll", "ra_ll", "v1_v2", "v2_v3", "precordial_other", "other"]
Difficulty = t.Literal["easy", "medium", "hard"]
Category = t.Literal["arrhythmia", "ischemia", "structural", "emergency", "normal", "routine", "advanced", "rare", "other"]


class ReportIn(BaseModel):
    # fields stay optional so a missing one is reported by the scorer, not by request parsing
    rhythm: list[Rhythm] | None = None
    heart_rate: int | None = None
    axis: Axis | None = None
    pr_interval: PR | None = None
    qrs_duration: QRS | None = None
    qt_interval: QT | None = None
    findings: list[str] | None = None
    electrode_swap: list[Swap] | None = None


class CaseIn(ReportIn):
    difficulty: Difficulty = "medium"
    categories: list[Category] = []


class AttemptIn(BaseModel):
    user_id: str
    case_id: str
    report: ReportIn
    attempted_at: datetime | None = None


class PreviewIn(BaseModel):
    case_id: str
    report: ReportIn
    user_id: str | None = None


class EventIn(BaseModel):
    kind: t.Literal["2x", "3x"]
    start_at: datetime
    end_at: datetime
    user_id: str | None = None
    name: str = ""
    is_active: bool = True


# ---- Helpers ----
def _config() -> GamificationConfig:
    return load_config(storage.CONFIG_PATH)


def _load_events() -> list[XPEvent]:
    events = []
    for raw in storage.list_events():
        try:
            events.append(XPEvent.from_dict(raw))
        except (KeyError, InvalidArgumentError) as e:
            log.warning("skipping malformed xp event %s: %s", raw.get("id"), e)
    return events


def _event_for(user_id: str | None, at: datetime) -> str | None:
    return active_kind(_load_events(), user_id, at)


def _check_findings(report: ReportIn) -> None:
    for tag in report.findings or []:
        if not is_known_finding(tag):
            raise InvalidArgumentError("finding", tag)


def _bad_request(e: Exception) -> HTTPException:
    if isinstance(e, ValidationError):
        log.warning("rejected report: %s", e)
        return HTTPException(422, {"kind": e.kind, "field": e.field})
    log.warning("rejected request: %s", e)
    return HTTPException(400, str(e))


def _load_case(case_id: str) -> OfficialReport:
    case = storage.load_case(case_id)
    if not case:
        raise HTTPException(404, "case not found")
    return OfficialReport.from_dict({**case, "case_id": case_id})


def _score(report: ReportIn, official: OfficialReport) -> ScoringResult:
    try:
        _check_findings(report)
        return ReportScorer().score(UserReport.from_dict(report.model_dump()), official)
    except (ValidationError, InvalidArgumentError) as e:
        raise _bad_request(e) from e


def _serialize_result(res: ScoringResult) -> dict[str, t.Any]:
    out = asdict(res)
    out["comparisons"] = [asdict(c) for c in res.comparisons]
    return out


# ---- Health ----
@app.get("/health")
def health():
    return {
        "llm_backend": backend_in_use(),
        "azure_config_present": azure_cfg.is_configured(),
        "data_dir": str(storage.DATA_ROOT),
    }


# ---- Cases ----
@app.put("/cases/{case_id}")
def put_case(case_id: str, req: CaseIn):
    payload = req.model_dump()
    try:
        _check_findings(req)
        validate_report(OfficialReport.from_dict(payload), "official")
        if not payload["rhythm"]:
            raise ValidationError("official.rhythm")
    except (ValidationError, InvalidArgumentError) as e:
        raise _bad_request(e) from e
    storage.save_case(case_id, payload)
    return {"case_id": case_id, **payload}


@app.get("/cases/{case_id}")
def get_case(case_id: str):
    case = storage.load_case(case_id)
    if not case:
        raise HTTPException(404, "case not found")
    return {"case_id": case_id, **case}


# ---- Attempts ----
@app.post("/attempts/preview")
def preview_attempt(req: PreviewIn):
    official = _load_case(req.case_id)
    result = _score(req.report, official)
    cfg = _config()
    stats = storage.load_stats(req.user_id) if req.user_id else None
    current = UserGamificationStats.from_dict(stats) if stats else None
    try:
        xp = award_xp(
            result.score,
            official.difficulty,
            cfg,
            current_level=current.current_level if current else 1,
            current_streak=current.current_streak if current else 0,
            event=_event_for(req.user_id, datetime.now(timezone.utc)),
        )
    except InvalidArgumentError as e:
        raise _bad_request(e) from e
    return {"result": _serialize_result(result), "xp": {**xp.breakdown, "final_xp": xp.final_xp}}


@app.post("/attempts")
def submit_attempt(req: AttemptIn):
    official = _load_case(req.case_id)
    result = _score(req.report, official)
    cfg = _config()
    engine = GamificationEngine(cfg, tz=reporting_tz())

    attempt_id = str(uuid.uuid4())
    attempted_at = req.attempted_at or datetime.now(timezone.utc)
    if attempted_at.tzinfo is None:
        attempted_at = attempted_at.replace(tzinfo=timezone.utc)
    # bonus windows are judged by server time, never by the client's attempted_at
    event = _event_for(req.user_id, datetime.now(timezone.utc))
    record = AttemptRecord(
        score=result.score,
        difficulty=official.difficulty,
        attempted_at=attempted_at,
        user_id=req.user_id,
        case_id=req.case_id,
        attempt_id=attempt_id,
    )

    def _apply(current: dict[str, t.Any] | None):
        stats = UserGamificationStats.from_dict(current) if current else None
        history = [AttemptRecord.from_dict(a) for a in storage.list_attempts(req.user_id)]
        outcome = engine.apply_attempt(stats, record, history, event=event)
        storage.save_attempt(
            attempt_id,
            {
                "user_id": req.user_id,
                "case_id": req.case_id,
                "score": result.score,
                "difficulty": official.difficulty,
                "attempted_at": attempted_at.isoformat(),
                "report": req.report.model_dump(),
                "result": _serialize_result(result),
                "xp": outcome.xp.final_xp,
                "event": event,
            },
        )
        return outcome.stats.to_dict(), outcome

    try:
        outcome = storage.update_stats(req.user_id, _apply)
    except InvalidArgumentError as e:
        raise _bad_request(e) from e

    return {
        "attempt_id": attempt_id,
        "result": _serialize_result(result),
        "xp": {**outcome.xp.breakdown, "final_xp": outcome.xp.final_xp},
        "leveled_up": outcome.leveled_up,
        "previous_level": outcome.previous_level,
        "new_level": outcome.new_level,
        "streak_milestone": outcome.streak_milestone,
        "achievements_unlocked": describe(outcome.achievements_unlocked),
        "stats": outcome.stats.to_dict(),
    }


@app.get("/attempts/{attempt_id}")
def get_attempt(attempt_id: str):
    attempt = storage.load_attempt(attempt_id)
    if not attempt:
        raise HTTPException(404, "attempt not found")
    return {"id": attempt_id, **attempt}


def _stored_result(attempt_id: str) -> tuple[dict[str, t.Any], OfficialReport | None, ScoringResult]:
    attempt = storage.load_attempt(attempt_id)
    if not attempt:
        raise HTTPException(404, "attempt not found")
    case = storage.load_case(attempt["case_id"])
    official = OfficialReport.from_dict({**case, "case_id": attempt["case_id"]}) if case else None
    # the result is the one the user was awarded for; later case edits do not rescore it
    return attempt, official, ScoringResult.from_dict(attempt["result"])


@app.post("/attempts/{attempt_id}/feedback")
def attempt_feedback(attempt_id: str, force: bool = Query(False, description="Regenerate even if cached")):
    attempt, official, result = _stored_result(attempt_id)
    existing = attempt.get("feedback")
    if existing and not force:
        return {"attempt_id": attempt_id, "feedback": existing}
    fb = generate_feedback(result, official)
    attempt["feedback"] = fb
    storage.save_attempt(attempt_id, attempt)
    return {"attempt_id": attempt_id, "feedback": fb}


@app.get("/attempts/{attempt_id}/report.html", response_class=HTMLResponse)
def attempt_report_html(attempt_id: str):
    attempt, _official, result = _stored_result(attempt_id)
    title = f"ECG Report: {attempt['case_id']}"
    return HTMLResponse(render_result_html(result, title=title, feedback=attempt.get("feedback")))


@app.get("/attempts/{attempt_id}/comparisons.csv")
def attempt_comparisons_csv(attempt_id: str):
    _attempt, _official, result = _stored_result(attempt_id)
    return Response(
        content=to_csv(result.comparisons, COMPARISON_FIELDS),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=\"comparisons_{attempt_id}.csv\""},
    )


# ---- Users ----
@app.get("/users/{user_id}/stats")
def user_stats(user_id: str):
    raw = storage.load_stats(user_id)
    if not raw:
        raise HTTPException(404, "stats not found")
    cfg = _config()
    stats = UserGamificationStats.from_dict(raw)
    status = streak_status(stats.last_activity_date, stats.current_streak, cfg, tz=reporting_tz())
    return {
        "stats": stats.to_dict(),
        "level_progress": asdict(level_progress(stats.total_xp, cfg)),
        "streak_status": asdict(status),
        "achievements": describe(evaluate_achievements(stats)),
    }


@app.get("/users/{user_id}/attempts")
def user_attempts(user_id: str):
    return {"attempts": storage.list_attempts(user_id)}


@app.get("/leaderboard")
def leaderboard(limit: int | None = Query(None, ge=1)):
    cfg = _config()
    rows = sorted(
        storage.load_all_stats().values(),
        key=lambda s: (-int(s.get("total_xp", 0) or 0), str(s.get("user_id", ""))),
    )
    top = rows[: limit or cfg.ranking_top_n_visible]
    return {
        "entries": [
            {
                "rank": i + 1,
                "user_id": s.get("user_id"),
                "total_xp": s.get("total_xp", 0),
                "current_level": s.get("current_level", 1),
                "current_streak": s.get("current_streak", 0),
            }
            for i, s in enumerate(top)
        ]
    }


# ---- Admin ----
@app.get("/admin/gamification/config")
def get_gamification_config():
    return _config().to_dict()


@app.put("/admin/gamification/config")
def put_gamification_config(payload: dict[str, t.Any] = Body(...)):
    try:
        cfg = GamificationConfig.from_mapping({**storage.load_config_overrides(), **payload})
    except (ValueError, TypeError) as e:
        raise _bad_request(e) from e
    stored = cfg.to_dict()
    stored["updated_at"] = storage.utcnow_iso()
    if payload.get("updated_by"):
        stored["updated_by"] = str(payload["updated_by"])
    storage.save_config(stored)
    log.info("gamification config updated")
    return cfg.to_dict()


@app.get("/admin/gamification/events")
def list_xp_events(active_only: bool = Query(False)):
    now = datetime.now(timezone.utc)
    return {"events": [ev.to_dict() for ev in _load_events() if not active_only or ev.covers(now)]}


@app.post("/admin/gamification/events")
def create_xp_event(req: EventIn):
    try:
        ev = XPEvent.from_dict({"id": str(uuid.uuid4()), **req.model_dump()})
    except InvalidArgumentError as e:
        raise _bad_request(e) from e
    payload = ev.to_dict()
    storage.save_event(ev.id, payload)
    log.info("xp event %s created: %s %s..%s", ev.id, ev.kind, payload["start_at"], payload["end_at"])
    return payload


@app.delete("/admin/gamification/events/{event_id}")
def delete_xp_event(event_id: str):
    if not storage.delete_event(event_id):
        raise HTTPException(404, "event not found")
    return {"deleted": event_id}


def _streak_run(apply: bool) -> list[t.Any]:
    tz = reporting_tz()

    def _run(all_stats: dict[str, dict[str, t.Any]]):
        stored = {uid: UserGamificationStats.from_dict(d) for uid, d in all_stats.items()}
        attempts = group_attempts_by_user(AttemptRecord.from_dict(a) for a in storage.list_attempts())
        rows, updated = recalculate_streaks(stored, attempts, apply=apply, tz=tz)
        return {uid: s.to_dict() for uid, s in updated.items()}, rows

    return storage.batch_update_stats(_run)


def _streak_payload(rows: list[t.Any], applied: bool) -> dict[str, t.Any]:
    return {
        "applied": applied,
        "users": len(rows),
        "drifted": sum(1 for r in rows if r.drifted),
        **to_json([r for r in rows if r.drifted], STREAK_FIELDS),
    }


@app.get("/admin/recalculate-streaks")
def preview_recalculate_streaks():
    return _streak_payload(_streak_run(apply=False), applied=False)


@app.post("/admin/recalculate-streaks")
def apply_recalculate_streaks():
    return _streak_payload(_streak_run(apply=True), applied=True)


@app.get("/admin/recalculate-streaks.csv")
def recalculate_streaks_csv():
    rows = _streak_run(apply=False)
    return Response(
        content=to_csv(rows, STREAK_FIELDS),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=\"streak_drift.csv\""},
    )


@app.post("/admin/backfill-xp")
def admin_backfill_xp(dry_run: bool = Query(False)):
    cfg = _config()
    tz = reporting_tz()

    def _run(all_stats: dict[str, dict[str, t.Any]]):
        stored = {uid: UserGamificationStats.from_dict(d) for uid, d in all_stats.items()}
        attempts = group_attempts_by_user(AttemptRecord.from_dict(a) for a in storage.list_attempts())
        rows, updated = backfill_xp(stored, attempts, cfg, tz=tz)
        if dry_run:
            return {}, rows
        return {uid: s.to_dict() for uid, s in updated.items()}, rows

    try:
        rows = storage.batch_update_stats(_run)
    except InvalidArgumentError as e:
        raise _bad_request(e) from e
    return {
        "applied": not dry_run,
        "users": len(rows),
        "xp_awarded": sum(r.xp_awarded for r in rows),
        "rows": [asdict(r) for r in rows if r.changed],
    }
