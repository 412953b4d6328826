"""
FinancialDataExtended repository.

Idempotency key: (company_id, year, data_source, scrape_date)

Upsert behavior:
  - For each record: check if the key already exists
  - If exists: update eps / per / ticker / company_name with the new values
  - If not: create new record
  - Non-finite eps / per are stored as NULL

Reads hand back FinancialFact records for source_resolver; choosing
between sources and scrape dates happens there, not here.
"""

import logging
import math
from collections.abc import Iterable
from datetime import date
from typing import Any

from sqlalchemy import and_, select
from sqlalchemy.orm import Session

from consensus_engine.models import FinancialDataExtended
from consensus_engine.services.source_resolver import FinancialFact

logger = logging.getLogger(__name__)

CHUNK_SIZE: int = 1000


def _parse_date(d: Any) -> date | None:
    if d is None:
        return None
    if isinstance(d, date):
        return d
    if isinstance(d, str):
        try:
            return date.fromisoformat(d[:10])
        except ValueError:
            return None
    return None


def _finite_or_none(v: Any) -> float | None:
    if isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v):
        return float(v)
    return None


def _row_to_fact(row: FinancialDataExtended) -> FinancialFact:
    return FinancialFact(
        company_id=row.company_id,
        ticker=row.ticker,
        company_name=row.company_name,
        year=row.year,
        eps=row.eps,
        per=row.per,
        data_source=row.data_source,
        scrape_date=row.scrape_date,
    )


def upsert_facts(db: Session, records: Iterable[dict[str, Any]]) -> dict[str, int]:
    """
    Upsert financial facts. Returns {"inserted": N, "updated": N, "skipped": N}.

    Records without company_id / ticker / year / data_source / a parseable
    scrape_date are skipped with a warning.
    """
    inserted = updated = skipped = 0

    for rec in records:
        scrape_date = _parse_date(rec.get("scrape_date"))
        if (
            rec.get("company_id") is None or not rec.get("ticker")
            or rec.get("year") is None or not rec.get("data_source")
            or scrape_date is None
        ):
            logger.warning("[DB][Financials] skipping incomplete record: %s", rec)
            skipped += 1
            continue

        values = {
            "ticker": rec["ticker"],
            "company_name": rec.get("company_name"),
            "eps": _finite_or_none(rec.get("eps")),
            "per": _finite_or_none(rec.get("per")),
        }
        existing = db.scalars(
            select(FinancialDataExtended).where(
                and_(
                    FinancialDataExtended.company_id == rec["company_id"],
                    FinancialDataExtended.year == rec["year"],
                    FinancialDataExtended.data_source == rec["data_source"],
                    FinancialDataExtended.scrape_date == scrape_date,
                )
            )
        ).first()

        if existing:
            for k, v in values.items():
                setattr(existing, k, v)
            updated += 1
        else:
            db.add(FinancialDataExtended(
                company_id=rec["company_id"],
                year=rec["year"],
                data_source=rec["data_source"],
                scrape_date=scrape_date,
                **values,
            ))
            inserted += 1

    try:
        db.commit()
    except Exception as exc:
        db.rollback()
        raise RuntimeError(f"Financial facts upsert failed: {exc}") from exc

    logger.info("[DB][Financials] inserted=%d updated=%d skipped=%d", inserted, updated, skipped)
    return {"inserted": inserted, "updated": updated, "skipped": skipped}


def get_company_names(db: Session, tickers: Iterable[str]) -> dict[str, str]:
    """ticker -> company_name from the newest scrape that carries a name."""
    rows = db.execute(
        select(FinancialDataExtended.ticker, FinancialDataExtended.company_name)
        .where(
            FinancialDataExtended.ticker.in_(list(tickers)),
            FinancialDataExtended.company_name.is_not(None),
        )
        .order_by(FinancialDataExtended.scrape_date.asc(), FinancialDataExtended.id.asc())
    ).all()
    # later rows overwrite earlier ones
    return {ticker: name for ticker, name in rows}


def list_facts(db: Session, years: Iterable[int]) -> list[FinancialFact]:
    """All facts for the given years, newest scrape_date first, read in chunks."""
    year_list = list(years)
    facts: list[FinancialFact] = []
    offset = 0
    while True:
        rows = db.scalars(
            select(FinancialDataExtended)
            .where(FinancialDataExtended.year.in_(year_list))
            .order_by(FinancialDataExtended.scrape_date.desc(), FinancialDataExtended.id.asc())
            .limit(CHUNK_SIZE)
            .offset(offset)
        ).all()
        facts.extend(_row_to_fact(r) for r in rows)
        logger.debug("[DB][Financials] fetched %d rows (total %d)", len(rows), len(facts))
        if len(rows) < CHUNK_SIZE:
            break
        offset += CHUNK_SIZE
    return facts
