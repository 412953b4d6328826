"""
Run the daily consensus batch.

Run from the project root:
    python3 -m consensus_engine.scripts.run_consensus_batch
    python3 -m consensus_engine.scripts.run_consensus_batch --date 2025-03-14 --year 2025

Defaults: snapshot date = today in KST, current year = snapshot year.
"""

import argparse
import json
import logging
from datetime import date

from consensus_engine.database import Base, SessionLocal, engine
from consensus_engine.orchestrator.consensus_batch import run_consensus_batch

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> dict:
    parser = argparse.ArgumentParser(description="Compute consensus metrics and diff logs")
    parser.add_argument("--date", type=date.fromisoformat, default=None,
                        help="snapshot date YYYY-MM-DD (default: today, KST)")
    parser.add_argument("--year", type=int, default=None,
                        help="current fiscal year (default: snapshot year)")
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s: %(message)s")

    Base.metadata.create_all(bind=engine)
    with SessionLocal() as session:
        summary = run_consensus_batch(session, snapshot_date=args.date, current_year=args.year)

    result = summary.as_dict()
    logger.info("Summary: %s", json.dumps(result, ensure_ascii=False))
    return result


if __name__ == "__main__":
    main()
