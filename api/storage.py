"""Utility helpers for persisting cases, attempts, gamification stats, config and XP events.

The production deployment should ideally swap this module for a proper
database-backed implementation. For now we use simple JSON files stored on
disk. Every read-modify-write runs under one process-wide lock so that two
concurrent attempts by the same user cannot lose an XP award.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

log = logging.getLogger(__name__)

DATA_ROOT = Path(os.getenv("DATA_DIR", "data")).resolve()
CASES_PATH = DATA_ROOT / "cases.json"
ATTEMPTS_PATH = DATA_ROOT / "attempts.json"
STATS_PATH = DATA_ROOT / "stats.json"
CONFIG_PATH = DATA_ROOT / "gamification_config.json"
EVENTS_PATH = DATA_ROOT / "xp_events.json"

# re-entrant so update callbacks may append attempts inside the same critical section
_LOCK = threading.RLock()


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        log.warning("could not read %s: %s", path, e)
        return default


def _write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
    tmp.replace(path)


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---- cases ----
def save_case(case_id: str, case: Dict[str, Any]) -> None:
    with _LOCK:
        cases: Dict[str, Dict[str, Any]] = _read_json(CASES_PATH, {})
        cases[case_id] = case
        _write_json(CASES_PATH, cases)


def load_case(case_id: str) -> Optional[Dict[str, Any]]:
    return _read_json(CASES_PATH, {}).get(case_id)


# ---- attempts ----
def save_attempt(attempt_id: str, attempt: Dict[str, Any]) -> None:
    with _LOCK:
        attempts: Dict[str, Dict[str, Any]] = _read_json(ATTEMPTS_PATH, {})
        attempts[attempt_id] = attempt
        _write_json(ATTEMPTS_PATH, attempts)


def load_attempt(attempt_id: str) -> Optional[Dict[str, Any]]:
    return _read_json(ATTEMPTS_PATH, {}).get(attempt_id)


def list_attempts(user_id: Optional[str] = None) -> List[Dict[str, Any]]:
    attempts: Dict[str, Dict[str, Any]] = _read_json(ATTEMPTS_PATH, {})
    out: List[Dict[str, Any]] = []
    for aid, payload in attempts.items():
        if user_id is not None and payload.get("user_id") != user_id:
            continue
        item = {"id": aid}
        item.update({k: v for k, v in payload.items() if k != "id"})
        out.append(item)
    out.sort(key=lambda r: r.get("attempted_at", ""))
    return out


# ---- stats ----
def load_stats(user_id: str) -> Optional[Dict[str, Any]]:
    return _read_json(STATS_PATH, {}).get(user_id)


def load_all_stats() -> Dict[str, Dict[str, Any]]:
    return _read_json(STATS_PATH, {})


def batch_update_stats(
    fn: Callable[[Dict[str, Dict[str, Any]]], Tuple[Dict[str, Dict[str, Any]], Any]],
) -> Any:
    """Like `update_stats` but over every user; `fn` returns only the changed records."""
    with _LOCK:
        stats: Dict[str, Dict[str, Any]] = _read_json(STATS_PATH, {})
        updates, result = fn(dict(stats))
        if updates:
            stats.update(updates)
            _write_json(STATS_PATH, stats)
        return result


def update_stats(
    user_id: str,
    fn: Callable[[Optional[Dict[str, Any]]], Tuple[Dict[str, Any], Any]],
) -> Any:
    """
    Read-compute-write one user's stats atomically.

    `fn` receives the stored stats (or None) and returns `(new_stats, result)`;
    `result` is passed back to the caller. If `fn` raises, nothing is written.
    """
    with _LOCK:
        stats: Dict[str, Dict[str, Any]] = _read_json(STATS_PATH, {})
        new, result = fn(stats.get(user_id))
        stats[user_id] = new
        _write_json(STATS_PATH, stats)
        return result


# ---- config ----
def load_config_overrides() -> Dict[str, Any]:
    return _read_json(CONFIG_PATH, {})


def save_config(payload: Dict[str, Any]) -> None:
    with _LOCK:
        _write_json(CONFIG_PATH, payload)


# ---- xp events ----
def save_event(event_id: str, event: Dict[str, Any]) -> None:
    with _LOCK:
        events: Dict[str, Dict[str, Any]] = _read_json(EVENTS_PATH, {})
        events[event_id] = event
        _write_json(EVENTS_PATH, events)


def list_events() -> List[Dict[str, Any]]:
    events: Dict[str, Dict[str, Any]] = _read_json(EVENTS_PATH, {})
    out = [{**payload, "id": eid} for eid, payload in events.items()]
    out.sort(key=lambda r: r.get("start_at", ""))
    return out


def delete_event(event_id: str) -> bool:
    with _LOCK:
        events: Dict[str, Dict[str, Any]] = _read_json(EVENTS_PATH, {})
        if events.pop(event_id, None) is None:
            return False
        _write_json(EVENTS_PATH, events)
        return True
