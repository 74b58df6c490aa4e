from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Mapping, Optional

from .errors import InvalidArgumentError
from .xp import XP_EVENTS

log = logging.getLogger(__name__)


def _parse_ts(raw: Any, name: str) -> datetime:
    if isinstance(raw, str):
        try:
            raw = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            raise InvalidArgumentError(name, raw) from None
    if not isinstance(raw, datetime):
        raise InvalidArgumentError(name, raw)
    return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class XPEvent:
    """A scheduled XP bonus window, global or for a single user."""

    id: str
    kind: str
    start_at: datetime
    end_at: datetime
    user_id: Optional[str] = None
    name: str = ""
    is_active: bool = True

    def __post_init__(self) -> None:
        if self.kind not in XP_EVENTS:
            raise InvalidArgumentError("event", self.kind)
        if self.end_at <= self.start_at:
            raise InvalidArgumentError("end_at", self.end_at.isoformat(), "end_at must be after start_at")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "XPEvent":
        return cls(
            id=str(data["id"]),
            kind=str(data.get("kind") or data.get("multiplier_type") or ""),
            start_at=_parse_ts(data.get("start_at"), "start_at"),
            end_at=_parse_ts(data.get("end_at"), "end_at"),
            user_id=data.get("user_id") or None,
            name=str(data.get("name") or ""),
            is_active=bool(data.get("is_active", True)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "start_at": self.start_at.isoformat(),
            "end_at": self.end_at.isoformat(),
            "user_id": self.user_id,
            "name": self.name,
            "is_active": self.is_active,
        }

    def covers(self, at: datetime) -> bool:
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
        return self.is_active and self.start_at <= at <= self.end_at


def active_event(events: Iterable[XPEvent], user_id: Optional[str], at: datetime) -> Optional[XPEvent]:
    """
    The event that applies to `user_id` at `at`, or None.

    An event aimed at the user wins over a global one; within the same
    audience 3x wins over 2x. Inactive and out-of-window events never apply.
    """
    mine: list[XPEvent] = []
    everyone: list[XPEvent] = []
    for ev in events:
        if not ev.covers(at):
            continue
        if ev.user_id is None:
            everyone.append(ev)
        elif user_id is not None and ev.user_id == user_id:
            mine.append(ev)
    for pool in (mine, everyone):
        if pool:
            # "3x" sorts after "2x"
            return max(pool, key=lambda e: (e.kind, e.start_at))
    return None


def active_kind(events: Iterable[XPEvent], user_id: Optional[str], at: datetime) -> Optional[str]:
    ev = active_event(events, user_id, at)
    if ev is not None:
        log.info("xp event %s (%s) applies to %s", ev.id, ev.kind, user_id or "anonymous")
    return ev.kind if ev else None


__all__ = ["XPEvent", "active_event", "active_kind"]
