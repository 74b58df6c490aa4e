# tools/recalculate_streaks.py
from __future__ import annotations
import argparse
import logging
from pathlib import Path

from api import storage
from ecg_core.config import reporting_tz
from ecg_core.export import STREAK_FIELDS, to_csv
from ecg_core.reconcile import group_attempts_by_user, recalculate_streaks
from ecg_core.types import AttemptRecord, UserGamificationStats

log = logging.getLogger(__name__)


def run(apply: bool, user: str | None = None):
    tz = reporting_tz()

    def _run(all_stats):
        stored = {
            uid: UserGamificationStats.from_dict(d)
            for uid, d in all_stats.items()
            if user is None or uid == user
        }
        attempts = group_attempts_by_user(AttemptRecord.from_dict(a) for a in storage.list_attempts(user))
        rows, updated = recalculate_streaks(stored, attempts, apply=apply, tz=tz)
        return {uid: s.to_dict() for uid, s in updated.items()}, rows

    return storage.batch_update_stats(_run)


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Recompute current/longest streaks from attempt history.")
    ap.add_argument("--user", help="only this user id")
    mode = ap.add_mutually_exclusive_group()
    mode.add_argument("--apply", action="store_true", help="write corrected streaks")
    mode.add_argument("--dry-run", action="store_true", help="preview only (default)")
    ap.add_argument("--csv", help="write all rows to this CSV file")
    args = ap.parse_args(argv)

    rows = run(apply=args.apply, user=args.user)
    for r in rows:
        flag = "fixed" if r.fixed else ("drift" if r.drifted else "ok")
        print(
            f"{r.user_id}: current {r.previous_current}->{r.current_streak} "
            f"longest {r.previous_longest}->{r.longest_streak} [{flag}]"
        )
    if args.csv:
        Path(args.csv).write_text(to_csv(rows, STREAK_FIELDS), encoding="utf-8")
        log.info("wrote %s", args.csv)

    drifted = sum(1 for r in rows if r.drifted)
    log.info("%s user(s), %s with drift%s", len(rows), drifted, " (applied)" if args.apply else "")
    return 2 if drifted and not args.apply else 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    raise SystemExit(main())
