"""
Daily consensus batch.

Execution order:
  1. Read financial facts for cy-1 .. cy+1          (financials_repo.list_facts)
  2. Keep one preferred fact per (company, year)    (source_resolver)
  3. Build year pairs (cy-1, cy) and (cy, cy+1)
  4. Assemble a result per pair                     (consensus_calculator)
  5. Upsert consensus_metric_daily
  6. Locate D1 / W1 / M1 baselines, build the diff log, upsert consensus_diff_log

Failure behavior:
  - Per-row persistence failures are logged and counted, the batch continues.
  - The orchestrator returns a summary and does not raise for row failures.
"""

import logging
import time
from datetime import date, timedelta

from sqlalchemy.orm import Session

from consensus_engine.repositories import consensus_repo, financials_repo
from consensus_engine.schemas import CalcStatus, MetricSnapshot
from consensus_engine.services import consensus_calculator, diff_log_builder, source_resolver

logger = logging.getLogger(__name__)

HORIZON_LAGS: dict[str, timedelta] = {
    "d1": timedelta(days=1),
    "w1": timedelta(days=7),
    "m1": timedelta(days=30),
}


class BatchRunSummary:
    def __init__(self, snapshot_date: date):
        self.snapshot_date = snapshot_date
        self.total = 0
        self.by_status: dict[str, int] = {s.value: 0 for s in CalcStatus}
        self.metrics_saved = 0
        self.diff_logs_saved = 0
        self.failed = 0
        self.errors: list[str] = []
        self.elapsed_s = 0.0

    def record_failure(self, what: str, error: Exception) -> None:
        msg = f"{what}: {error}"
        logger.error("[CONSENSUS] %s", msg)
        self.failed += 1
        self.errors.append(msg)

    def as_dict(self) -> dict:
        return {
            "snapshot_date": self.snapshot_date.isoformat(),
            "total": self.total,
            "by_status": dict(self.by_status),
            "metrics_saved": self.metrics_saved,
            "diff_logs_saved": self.diff_logs_saved,
            "failed": self.failed,
            "errors": list(self.errors),
            "elapsed_s": round(self.elapsed_s, 2),
        }


def locate_baselines(db: Session, current: MetricSnapshot) -> dict[str, MetricSnapshot | None]:
    """Closest available snapshot at or before each horizon's lag date."""
    return {
        name: consensus_repo.find_baseline(
            db,
            current.ticker,
            current.target_y1,
            current.target_y2,
            on_or_before=current.snapshot_date - lag,
            before=current.snapshot_date,
        )
        for name, lag in HORIZON_LAGS.items()
    }


def run_consensus_batch(
    db: Session,
    snapshot_date: date | None = None,
    current_year: int | None = None,
) -> BatchRunSummary:
    started = time.monotonic()
    snapshot_date = snapshot_date or source_resolver.kst_today()
    current_year = current_year or snapshot_date.year
    summary = BatchRunSummary(snapshot_date)

    year_pairs = source_resolver.target_year_pairs(current_year)
    years = sorted({y for pair in year_pairs for y in pair})
    logger.info("[CONSENSUS] snapshot=%s years=%s", snapshot_date, years)

    facts = financials_repo.list_facts(db, years)
    companies = source_resolver.resolve_latest_facts(facts)
    logger.info("[CONSENSUS] %d facts -> %d companies", len(facts), len(companies))

    for company in companies.values():
        for item in source_resolver.build_year_pairs(company, year_pairs):
            result = consensus_calculator.calculate_consensus_result(item.pair)
            summary.total += 1
            summary.by_status[result.status.value] += 1
            if result.status is CalcStatus.ERROR:
                logger.debug("[CONSENSUS] %s %d-%d: %s", item.ticker,
                             item.pair.target_y1, item.pair.target_y2, result.reason)

            current = MetricSnapshot(
                snapshot_date=snapshot_date,
                ticker=item.ticker,
                company_id=item.company_id,
                result=result,
            )
            label = f"{item.ticker} {item.pair.target_y1}-{item.pair.target_y2}"

            try:
                consensus_repo.upsert_metric_daily(db, current)
                summary.metrics_saved += 1
            except RuntimeError as exc:
                summary.record_failure(f"metric {label}", exc)
                continue

            try:
                diff = diff_log_builder.build_diff_log(current, **locate_baselines(db, current))
                consensus_repo.upsert_diff_log(db, diff)
                summary.diff_logs_saved += 1
            except RuntimeError as exc:
                summary.record_failure(f"diff log {label}", exc)

    summary.elapsed_s = time.monotonic() - started
    logger.info(
        "[CONSENSUS] done: total=%d normal=%d turnaround=%d deficit=%d error=%d "
        "diff_logs=%d failed=%d in %.2fs",
        summary.total,
        summary.by_status[CalcStatus.NORMAL.value],
        summary.by_status[CalcStatus.TURNAROUND.value],
        summary.by_status[CalcStatus.DEFICIT.value],
        summary.by_status[CalcStatus.ERROR.value],
        summary.diff_logs_saved,
        summary.failed,
        summary.elapsed_s,
    )
    return summary
