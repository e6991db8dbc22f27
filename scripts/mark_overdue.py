# scripts/mark_overdue.py
"""
Flag bills past their due date as Overdue. Meant to run once a day from
cron or a similar scheduler:

    python scripts/mark_overdue.py
    python scripts/mark_overdue.py --as-of 2026-10-31
"""

import argparse
import logging
from datetime import date

from utilitrack.config import today
from utilitrack.db.engine import build_engine
from utilitrack.services.bills import mark_overdue_bills

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
logger = logging.getLogger(__name__)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Mark overdue bills")
    parser.add_argument("--as-of", type=date.fromisoformat, default=None)
    args = parser.parse_args(argv)

    as_of = args.as_of or today()

    engine = build_engine()
    with engine.begin() as conn:
        count = mark_overdue_bills(conn, as_of)

    logger.info("Overdue run for %s complete: %s bills updated", as_of, count)
    return count


if __name__ == "__main__":
    main()
