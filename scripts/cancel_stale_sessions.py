#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT))

from tableside.core.config import DATABASE_URL, STALE_SESSION_HOURS  # noqa: E402
from tableside.core.database import Database  # noqa: E402
from tableside.core.logging_setup import configure_logging  # noqa: E402
from tableside.core.result import Err, capture  # noqa: E402
from tableside.services.container import ServiceContainer  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Cancel table sessions left open for too long.")
    parser.add_argument("--staff-user-id", type=int, required=True, help="Staff account performing the cancel")
    parser.add_argument("--hours", type=int, default=STALE_SESSION_HOURS, help="Age threshold in hours")
    parser.add_argument("--restaurant", type=int, help="Only this restaurant")
    parser.add_argument("--dry-run", action="store_true", help="List sessions without cancelling")
    return parser.parse_args()


def cancel_stale_sessions(db, services: ServiceContainer, *, staff_user_id: int, hours: int, restaurant_id=None, dry_run=False):
    """Return (session_id, Ok|Err) per stale session."""
    older_than = datetime.now(timezone.utc) - timedelta(hours=hours)
    stale = services.sessions.list_stale_sessions(db, older_than)
    if restaurant_id is not None:
        stale = [session for session in stale if session.restaurant_id == restaurant_id]

    outcomes = []
    for session in stale:
        session_id = session.id
        if dry_run:
            outcomes.append((session_id, None))
            continue
        outcomes.append((session_id, capture(services.sessions.cancel_session, db, session_id, staff_user_id)))
    return outcomes


def main() -> int:
    args = parse_args()
    configure_logging()

    database = Database(DATABASE_URL)
    services = ServiceContainer.build()
    db = database.session()
    failures = 0
    try:
        outcomes = cancel_stale_sessions(
            db,
            services,
            staff_user_id=args.staff_user_id,
            hours=args.hours,
            restaurant_id=args.restaurant,
            dry_run=args.dry_run,
        )
        for session_id, result in outcomes:
            if result is None:
                print(f"session {session_id}: would cancel")
            elif isinstance(result, Err):
                failures += 1
                print(f"session {session_id}: {result.kind.value} {result.message}")
            else:
                print(f"session {session_id}: cancelled")
    finally:
        db.close()
        database.dispose()
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
