"""Scheduled job: backfill recurring task instances due in the near term.

Run from cron or on each session start. Generation is idempotent, so running
it more often than needed only costs a few queries.
"""

import argparse
import logging

from projectflow.core.config import get_settings
from projectflow.db.session import SessionLocal
from projectflow.services import recurring_tasks


def main(argv=None):
    settings = get_settings()
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--days-ahead",
        type=int,
        default=settings.recurrence_days_ahead,
        help="Horizon in days (default: %(default)s)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=settings.log_level.upper())

    db = SessionLocal()
    try:
        results = recurring_tasks.generate_due_instances_for_all_projects(db, args.days_ahead)
    finally:
        db.close()

    total = sum(results.values())
    print(f"Generated {total} recurring instance(s) across {len(results)} project(s).")


if __name__ == "__main__":
    main()
