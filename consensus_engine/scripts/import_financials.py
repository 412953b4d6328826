"""
Load scraped EPS/PER facts from CSV into financial_data_extended.

Run from the project root:
    python3 -m consensus_engine.scripts.import_financials data_exports/financials.csv

Expected header (extra columns are ignored):
    company_id,ticker,company_name,year,eps,per,data_source,scrape_date
"""

import argparse
import csv
import logging
from datetime import date
from pathlib import Path
from typing import Any

from sqlalchemy.orm import Session
from sqlalchemy.sql.sqltypes import Date, Float, Integer

from consensus_engine.database import Base, SessionLocal, engine
from consensus_engine.models import FinancialDataExtended
from consensus_engine.repositories import financials_repo

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)

NULL_VALUES = {"", "null", "none", "na", "nan", "n/a", "-"}


def parse_value(raw: str | None, column_type):
    """CSV cell -> value for `column_type`. Numbers may carry thousands separators."""
    if raw is None or raw.strip().lower() in NULL_VALUES:
        return None

    text = raw.strip()
    if isinstance(column_type, Date):
        # timestamps keep only their date part
        return date.fromisoformat(text[:10])
    if isinstance(column_type, Integer):
        return int(text.replace(",", ""))
    if isinstance(column_type, Float):
        return float(text.replace(",", ""))
    return text


def read_csv(csv_path: Path) -> tuple[list[dict[str, Any]], int]:
    mapped_columns = {
        col.name: col for col in FinancialDataExtended.__table__.columns if col.name != "id"
    }
    records: list[dict[str, Any]] = []
    skipped_count = 0

    with csv_path.open("r", encoding="utf-8-sig", newline="") as handle:
        reader = csv.DictReader(handle)
        for line_no, row in enumerate(reader, start=2):
            try:
                records.append({
                    name: parse_value(row.get(name), column.type)
                    for name, column in mapped_columns.items()
                    if name in row
                })
            except ValueError as exc:
                skipped_count += 1
                logger.warning("%s:%s skipped row: %s", csv_path.name, line_no, exc)

    return records, skipped_count


def import_csv(session: Session, csv_path: Path) -> dict[str, int]:
    records, parse_skipped = read_csv(csv_path)
    counts = financials_repo.upsert_facts(session, records)
    counts["skipped"] += parse_skipped
    return counts


def main() -> None:
    parser = argparse.ArgumentParser(description="Import financial facts CSV")
    parser.add_argument("csv_path", type=Path)
    args = parser.parse_args()

    Base.metadata.create_all(bind=engine)
    if not args.csv_path.exists():
        logger.error("Missing file: %s", args.csv_path)
        raise SystemExit(1)

    with SessionLocal() as session:
        counts = import_csv(session, args.csv_path)
    logger.info("%s -> %s", args.csv_path.name, counts)


if __name__ == "__main__":
    main()
