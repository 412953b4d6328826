"""
Financial fact resolution: one preferred EPS/PER fact per (company, year).

Precedence between two facts for the same (company, year):
  1. newer scrape_date wins
  2. same scrape_date -> higher source priority wins (fnguide > naver_wise > naver)
  3. otherwise the fact already held stays

The resolved facts are turned into one YearPair per configured target
year pair, e.g. (cy-1, cy) "current growth" and (cy, cy+1) "next outlook".
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from consensus_engine.schemas import TickerYearPair, YearPair

logger = logging.getLogger(__name__)

SOURCE_PRIORITY: dict[str, int] = {
    "fnguide": 3,
    "naver_wise": 2,
    "naver": 1,
}

KST = timezone(timedelta(hours=9), name="KST")


@dataclass(frozen=True)
class FinancialFact:
    company_id: int
    ticker: str
    year: int
    eps: float | None
    per: float | None
    data_source: str
    scrape_date: date
    company_name: str | None = None


@dataclass
class CompanyFacts:
    company_id: int
    ticker: str
    company_name: str | None = None
    by_year: dict[int, FinancialFact] = field(default_factory=dict)


def source_priority(data_source: str | None) -> int:
    return SOURCE_PRIORITY.get(data_source or "", 0)


def is_preferred(candidate: FinancialFact, incumbent: FinancialFact) -> bool:
    """True if `candidate` should replace `incumbent` for the same (company, year)."""
    if candidate.scrape_date != incumbent.scrape_date:
        return candidate.scrape_date > incumbent.scrape_date
    return source_priority(candidate.data_source) > source_priority(incumbent.data_source)


def resolve_latest_facts(facts: Iterable[FinancialFact]) -> dict[int, CompanyFacts]:
    companies: dict[int, CompanyFacts] = {}
    for fact in facts:
        company = companies.get(fact.company_id)
        if company is None:
            company = CompanyFacts(
                company_id=fact.company_id,
                ticker=fact.ticker,
                company_name=fact.company_name,
            )
            companies[fact.company_id] = company

        incumbent = company.by_year.get(fact.year)
        if incumbent is None or is_preferred(fact, incumbent):
            company.by_year[fact.year] = fact

    logger.debug("[SOURCE] resolved %d companies", len(companies))
    return companies


def target_year_pairs(current_year: int) -> list[tuple[int, int]]:
    return [(current_year - 1, current_year), (current_year, current_year + 1)]


def build_year_pairs(
    company: CompanyFacts,
    year_pairs: Iterable[tuple[int, int]],
) -> list[TickerYearPair]:
    """
    One TickerYearPair per configured pair with both years on file and
    both EPS values present. Missing PER is left for the edge case
    detector to report.
    """
    out: list[TickerYearPair] = []
    for y1, y2 in year_pairs:
        fact_y1 = company.by_year.get(y1)
        fact_y2 = company.by_year.get(y2)
        if fact_y1 is None or fact_y2 is None:
            continue
        if fact_y1.eps is None or fact_y2.eps is None:
            continue
        out.append(TickerYearPair(
            ticker=company.ticker,
            company_id=company.company_id,
            pair=YearPair(
                target_y1=y1,
                target_y2=y2,
                eps_y1=fact_y1.eps,
                eps_y2=fact_y2.eps,
                per_y1=fact_y1.per,
                per_y2=fact_y2.per,
            ),
        ))
    return out


def kst_today(now: datetime | None = None) -> date:
    """Snapshot date in Korea Standard Time (UTC+9)."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(KST).date()
