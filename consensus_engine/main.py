import logging
from dataclasses import asdict
from datetime import date, timedelta
from typing import Any, Literal

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy.orm import Session

from consensus_engine.database import Base, engine, get_db
from consensus_engine.models import ConsensusDiffLog, ConsensusMetricDaily
from consensus_engine.repositories import consensus_repo, financials_repo
from consensus_engine.schemas import CalcStatus, Outlook, QuadPosition, SignalTag, TrendDirection
from consensus_engine.services.batch_aggregator import calculate_priority
from consensus_engine.services.period_comparison import (
    compare_snapshots,
    interpret_changes,
    summarize_series,
)
from consensus_engine.services.source_resolver import kst_today

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Consensus Metrics Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Base.metadata.create_all(bind=engine)

MAX_PAGE_SIZE = 100
QUADRANT_MAX_POINTS = 5000
HISTORY_DAYS = 90
MAX_TREND_TICKERS = 10
DEFAULT_TREND_DAYS = 30

SortField = Literal["fvb_score", "hgs_score", "rrs_score", "eps_growth_pct", "per_growth_pct", "ticker"]
SortOrder = Literal["asc", "desc"]

_FLAG_COLS = ("is_overheat", "is_target_zone", "is_turnaround", "is_high_growth", "is_healthy")


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class MetricsPage(BaseModel):
    data: list[dict[str, Any]]
    pagination: Pagination


class QuadrantStats(BaseModel):
    total: int
    by_quadrant: dict[str, int]


class QuadrantResponse(BaseModel):
    snapshot_date: date | None
    data: list[dict[str, Any]]
    stats: QuadrantStats


class RankingResponse(BaseModel):
    snapshot_date: date | None
    data: list[dict[str, Any]]


class TrendPoint(BaseModel):
    snapshot_date: date
    target_y1: int
    target_y2: int
    calc_status: CalcStatus
    fvb_score: float | None
    hgs_score: float | None
    rrs_score: float | None
    quad_position: QuadPosition | None
    eps_growth_pct: float | None
    per_growth_pct: float | None


class TrendStats(BaseModel):
    data_points: int
    fvb_trend: TrendDirection | None
    hgs_trend: TrendDirection | None
    latest_quad: QuadPosition | None


class TickerTrend(BaseModel):
    ticker: str
    company_name: str
    data: list[TrendPoint]
    stats: TrendStats


class DateRange(BaseModel):
    start: date
    end: date
    days: int


class TrendsResponse(BaseModel):
    trends: list[TickerTrend]
    date_range: DateRange


class ComparisonChanges(BaseModel):
    fvb_change: float
    hgs_change: float
    rrs_change: float
    eps_growth_change: float
    per_growth_change: float
    quad_changed: bool
    days_diff: int


class ComparisonInterpretation(BaseModel):
    overall: Outlook
    signals: list[str]
    summary: str


class ComparisonResponse(BaseModel):
    ticker: str
    current: dict[str, Any]
    previous: dict[str, Any] | None
    changes: ComparisonChanges | None
    interpretation: ComparisonInterpretation | None


def _merge_diff(metric: ConsensusMetricDaily, diff: ConsensusDiffLog | None) -> dict[str, Any]:
    """Metric row + its tags/flags. Absent diff log -> no tags, flags False."""
    row = consensus_repo.row_to_dict(metric)
    row["signal_tags"] = consensus_repo.decode_tags(diff.signal_tags) if diff else []
    for flag in _FLAG_COLS:
        row[flag] = bool(getattr(diff, flag)) if diff else False
    return row


def _resolve_date(db: Session, requested: date | None) -> date | None:
    return requested or consensus_repo.get_latest_snapshot_date(db)


def _parse_tags(raw: list[str]) -> list[SignalTag]:
    tags = []
    for t in raw:
        try:
            tags.append(SignalTag(t))
        except ValueError:
            logger.warning("[API] ignoring unknown signal tag %r", t)
    return tags


@app.get("/health")
def healthcheck():
    return {"status": "ok"}


@app.get("/consensus/metrics", response_model=MetricsPage)
def list_consensus_metrics(
    snapshot_date: date | None = Query(None, alias="date"),
    target_y1: int | None = None,
    target_y2: int | None = None,
    quad: list[QuadPosition] | None = Query(None),
    status: list[CalcStatus] | None = Query(None),
    tags: list[SignalTag] | None = Query(None),
    min_fvb: float | None = None,
    max_fvb: float | None = None,
    min_hgs: float | None = None,
    max_hgs: float | None = None,
    min_rrs: float | None = None,
    max_rrs: float | None = None,
    sort_by: SortField = "hgs_score",
    sort_order: SortOrder = "desc",
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1),
    db: Session = Depends(get_db),
):
    limit = min(limit, MAX_PAGE_SIZE)
    resolved = _resolve_date(db, snapshot_date)
    if resolved is None:
        return MetricsPage(data=[], pagination=Pagination(total=0, page=page, limit=limit, pages=0))

    rows, total = consensus_repo.list_metrics(
        db,
        resolved,
        target_y1=target_y1,
        target_y2=target_y2,
        quads=[q.value for q in quad] if quad else None,
        statuses=[s.value for s in status] if status else None,
        ranges={
            "fvb_score": (min_fvb, max_fvb),
            "hgs_score": (min_hgs, max_hgs),
            "rrs_score": (min_rrs, max_rrs),
        },
        tags=[t.value for t in tags] if tags else None,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=limit,
        offset=(page - 1) * limit,
    )
    return MetricsPage(
        data=[_merge_diff(m, d) for m, d in rows],
        pagination=Pagination(total=total, page=page, limit=limit, pages=-(-total // limit)),
    )


@app.get("/consensus/quadrant", response_model=QuadrantResponse)
def get_quadrant(
    snapshot_date: date | None = Query(None, alias="date"),
    target_y1: int | None = None,
    target_y2: int | None = None,
    min_hgs: float | None = None,
    max_rrs: float | None = None,
    db: Session = Depends(get_db),
):
    """Scatter-plot points (NORMAL rows only) plus per-quadrant counts."""
    by_quadrant = {q.value: 0 for q in QuadPosition}
    resolved = _resolve_date(db, snapshot_date)
    if resolved is None:
        return QuadrantResponse(snapshot_date=None, data=[], stats=QuadrantStats(total=0, by_quadrant=by_quadrant))

    rows, _ = consensus_repo.list_metrics(
        db,
        resolved,
        target_y1=target_y1,
        target_y2=target_y2,
        ranges={"hgs_score": (min_hgs, None), "rrs_score": (None, max_rrs)},
        limit=QUADRANT_MAX_POINTS,
    )

    points = []
    for metric, diff in rows:
        merged = _merge_diff(metric, diff)
        points.append({
            k: merged[k] for k in (
                "ticker", "quad_x", "quad_y", "quad_position",
                "fvb_score", "hgs_score", "rrs_score",
                "signal_tags", "is_target_zone", "is_high_growth",
            )
        })
        by_quadrant[metric.quad_position] += 1

    return QuadrantResponse(
        snapshot_date=resolved,
        data=points,
        stats=QuadrantStats(total=len(points), by_quadrant=by_quadrant),
    )


@app.get("/consensus/company/{ticker}")
def get_company_consensus(
    ticker: str,
    snapshot_date: date | None = Query(None, alias="date"),
    db: Session = Depends(get_db),
):
    ticker = ticker.strip().upper()
    metric = consensus_repo.get_latest_metric(db, ticker, snapshot_date)
    if metric is None:
        raise HTTPException(status_code=404, detail=f"No consensus data found for {ticker}")

    diff = consensus_repo.get_diff_log(
        db, ticker, metric.snapshot_date, metric.target_y1, metric.target_y2,
    )
    history = consensus_repo.get_company_history(
        db, ticker, metric.target_y1, metric.target_y2,
        since=metric.snapshot_date - timedelta(days=HISTORY_DAYS),
    )

    def horizon(suffix: str) -> dict[str, Any]:
        return {
            "fvb": getattr(diff, f"fvb_diff_{suffix}") if diff else None,
            "hgs": getattr(diff, f"hgs_diff_{suffix}") if diff else None,
            "rrs": getattr(diff, f"rrs_diff_{suffix}") if diff else None,
            "quad_shift": getattr(diff, f"quad_shift_{suffix}") if diff else None,
        }

    return {
        "ticker": ticker,
        "latest_metric": _merge_diff(metric, diff),
        "changes": {
            "daily": horizon("d1"),
            "weekly": horizon("w1"),
            "monthly": horizon("m1"),
            "trends": {
                "fvb": diff.fvb_trend if diff else None,
                "hgs": diff.hgs_trend if diff else None,
                "rrs": diff.rrs_trend if diff else None,
            },
        },
        "historical": [
            {
                "snapshot_date": h.snapshot_date.isoformat(),
                "calc_status": h.calc_status,
                "fvb_score": h.fvb_score,
                "hgs_score": h.hgs_score,
                "rrs_score": h.rrs_score,
                "quad_position": h.quad_position,
                "eps_growth_pct": h.eps_growth_pct,
                "per_growth_pct": h.per_growth_pct,
            }
            for h in history
        ],
    }


@app.get("/consensus/ranking", response_model=RankingResponse)
def get_ranking(
    snapshot_date: date | None = Query(None, alias="date"),
    target_y1: int | None = None,
    target_y2: int | None = None,
    limit: int = Query(50, ge=1),
    db: Session = Depends(get_db),
):
    """Rows ordered by the tag/metric priority heuristic, ties by ticker."""
    limit = min(limit, MAX_PAGE_SIZE)
    resolved = _resolve_date(db, snapshot_date)
    if resolved is None:
        return RankingResponse(snapshot_date=None, data=[])

    rows, _ = consensus_repo.list_metrics(
        db,
        resolved,
        target_y1=target_y1,
        target_y2=target_y2,
        statuses=[s.value for s in CalcStatus if s is not CalcStatus.ERROR],
        sort_by="ticker",
        sort_order="asc",
        limit=QUADRANT_MAX_POINTS,
    )

    ranked = []
    for metric, diff in rows:
        merged = _merge_diff(metric, diff)
        merged["priority"] = calculate_priority(_parse_tags(merged["signal_tags"]), metric)
        ranked.append(merged)
    ranked.sort(key=lambda r: -r["priority"])

    return RankingResponse(snapshot_date=resolved, data=ranked[:limit])


@app.get("/consensus/trends", response_model=TrendsResponse)
def get_trends(
    tickers: str = "",
    days: int = Query(DEFAULT_TREND_DAYS, ge=1),
    end_date: date | None = None,
    target_y1: int | None = None,
    target_y2: int | None = None,
    db: Session = Depends(get_db),
):
    """
    Time series for up to MAX_TREND_TICKERS comma-separated tickers over
    [end_date - days, end_date], plus first-to-last FVB/HGS trends.
    end_date defaults to today in KST.
    """
    requested = list(dict.fromkeys(t.strip().upper() for t in tickers.split(",") if t.strip()))
    if not requested:
        raise HTTPException(status_code=400, detail="At least one ticker is required")
    if len(requested) > MAX_TREND_TICKERS:
        raise HTTPException(status_code=400, detail=f"At most {MAX_TREND_TICKERS} tickers allowed")

    end = end_date or kst_today()
    start = end - timedelta(days=days)
    rows = consensus_repo.get_metric_series(db, requested, start, end, target_y1, target_y2)
    names = financials_repo.get_company_names(db, requested)

    by_ticker: dict[str, list[ConsensusMetricDaily]] = {}
    for row in rows:
        by_ticker.setdefault(row.ticker, []).append(row)

    trends = []
    for ticker in requested:
        series = by_ticker.get(ticker)
        if not series:
            continue
        stats = summarize_series([consensus_repo.row_to_snapshot(r) for r in series])
        trends.append(TickerTrend(
            ticker=ticker,
            company_name=names.get(ticker, ticker),
            data=[
                TrendPoint(**{k: getattr(r, k) for k in TrendPoint.model_fields})
                for r in series
            ],
            stats=TrendStats(**asdict(stats)),
        ))
    logger.info("[API] trends for %d/%d tickers %s..%s", len(trends), len(requested), start, end)

    return TrendsResponse(trends=trends, date_range=DateRange(start=start, end=end, days=days))


@app.get("/consensus/comparison", response_model=ComparisonResponse)
def compare_periods(
    ticker: str = "",
    current_date: date | None = None,
    compare_date: date | None = None,
    target_y1: int | None = None,
    target_y2: int | None = None,
    db: Session = Depends(get_db),
):
    """
    Latest NORMAL snapshot (on current_date when given) against the newest
    earlier NORMAL snapshot of the same year pair (on or before
    compare_date when given). previous/changes/interpretation are null when
    there is nothing earlier to compare against.
    """
    ticker = ticker.strip().upper()
    if not ticker:
        raise HTTPException(status_code=400, detail="ticker parameter is required")

    current = consensus_repo.get_latest_normal(db, ticker, current_date, target_y1, target_y2)
    if current is None:
        raise HTTPException(status_code=404, detail=f"Current consensus data not found for {ticker}")

    previous = consensus_repo.get_previous_normal(
        db, ticker, current.target_y1, current.target_y2,
        before=current.snapshot_date, on_or_before=compare_date,
    )
    if previous is None:
        return ComparisonResponse(
            ticker=ticker,
            current=consensus_repo.row_to_dict(current),
            previous=None,
            changes=None,
            interpretation=None,
        )

    current_snapshot = consensus_repo.row_to_snapshot(current)
    previous_snapshot = consensus_repo.row_to_snapshot(previous)
    changes = compare_snapshots(current_snapshot, previous_snapshot)
    interpretation = interpret_changes(changes, current_snapshot, previous_snapshot)

    return ComparisonResponse(
        ticker=ticker,
        current=consensus_repo.row_to_dict(current),
        previous=consensus_repo.row_to_dict(previous),
        changes=ComparisonChanges(**asdict(changes)),
        interpretation=ComparisonInterpretation(**asdict(interpretation)),
    )
