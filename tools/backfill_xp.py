# tools/backfill_xp.py
from __future__ import annotations
import argparse
import logging
from pathlib import Path

from api import storage
from ecg_core.config import load_config, reporting_tz
from ecg_core.export import BACKFILL_FIELDS, to_csv
from ecg_core.reconcile import backfill_xp, group_attempts_by_user
from ecg_core.types import AttemptRecord, UserGamificationStats

log = logging.getLogger(__name__)


def run(apply: bool, user: str | None = None):
    cfg = load_config(storage.CONFIG_PATH)
    tz = reporting_tz()

    def _run(all_stats):
        stored = {
            uid: UserGamificationStats.from_dict(d)
            for uid, d in all_stats.items()
            if user is None or uid == user
        }
        attempts = group_attempts_by_user(AttemptRecord.from_dict(a) for a in storage.list_attempts(user))
        rows, updated = backfill_xp(stored, attempts, cfg, tz=tz)
        if not apply:
            return {}, rows
        return {uid: s.to_dict() for uid, s in updated.items()}, rows

    return storage.batch_update_stats(_run)


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Award XP missing from stored stats; never lowers XP.")
    ap.add_argument("--user", help="only this user id")
    mode = ap.add_mutually_exclusive_group()
    mode.add_argument("--apply", action="store_true", help="write awarded XP")
    mode.add_argument("--dry-run", action="store_true", help="preview only (default)")
    ap.add_argument("--csv", help="write all rows to this CSV file")
    args = ap.parse_args(argv)

    rows = run(apply=args.apply, user=args.user)
    for r in rows:
        print(
            f"{r.user_id}: attempts={r.attempts} stored={r.stored_xp} computed={r.computed_xp} "
            f"+{r.xp_awarded} level {r.level_before}->{r.level_after}"
        )
    if args.csv:
        Path(args.csv).write_text(to_csv(rows, BACKFILL_FIELDS), encoding="utf-8")
        log.info("wrote %s", args.csv)

    changed = [r for r in rows if r.changed]
    log.info(
        "%s user(s), %s changed, %s XP%s",
        len(rows),
        len(changed),
        sum(r.xp_awarded for r in changed),
        " awarded" if args.apply else " pending",
    )
    return 2 if changed and not args.apply else 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    raise SystemExit(main())
