"""
Consensus repository.

Idempotency key (both tables): (snapshot_date, ticker, target_y1, target_y2)

Upsert behavior:
  - consensus_metric_daily: full overwrite of every engine column. A row is
    a whole calculation; partial patching would mix two runs.
  - consensus_diff_log: full overwrite, signal_tags stored as a sorted JSON list.
  - On DB failure: rollback, raise RuntimeError chained to the original.

Baselines for diffs are located here, not in the engine:
  find_baseline -> closest snapshot at or before `on_or_before`
                   and strictly before the current snapshot.
"""

import json
import logging
from datetime import date, datetime
from typing import Any

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from consensus_engine.models import ConsensusDiffLog, ConsensusMetricDaily
from consensus_engine.schemas import (
    CalcStatus,
    CalculatedMetrics,
    ComputedValues,
    ConsensusCalculationResult,
    ConsensusDiffLog as DiffLogRecord,
    MetricSnapshot,
    QuadPosition,
    QuadrantCoords,
    YearPair,
)

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = frozenset([
    "fvb_score", "hgs_score", "rrs_score", "eps_growth_pct", "per_growth_pct", "ticker",
])

_KEY_COLS = ("snapshot_date", "ticker", "target_y1", "target_y2")


def row_to_dict(row: Any) -> dict[str, Any]:
    """ORM row -> plain dict. Dates as ISO strings, signal_tags decoded."""
    result: dict[str, Any] = {}
    for col in row.__table__.columns:
        val = getattr(row, col.name)
        if isinstance(val, (date, datetime)):
            val = val.isoformat()
        result[col.name] = val
    if "signal_tags" in result:
        result["signal_tags"] = decode_tags(result["signal_tags"])
    return result


def decode_tags(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        tags = json.loads(raw)
    except ValueError:
        logger.warning("[DB][ConsensusDiffLog] undecodable signal_tags: %r", raw)
        return []
    if not isinstance(tags, list):
        logger.warning("[DB][ConsensusDiffLog] signal_tags is not a list: %r", raw)
        return []
    return [t for t in tags if isinstance(t, str)]


def row_to_snapshot(row: ConsensusMetricDaily) -> MetricSnapshot:
    """Rebuild the engine record from a stored consensus_metric_daily row."""
    status = CalcStatus(row.calc_status)
    computed = None
    if status is CalcStatus.NORMAL:
        computed = ComputedValues(
            metrics=CalculatedMetrics(
                eps_growth_pct=row.eps_growth_pct,
                per_growth_pct=row.per_growth_pct,
                fvb_score=row.fvb_score,
                hgs_score=row.hgs_score,
                rrs_score=row.rrs_score,
            ),
            quadrant=QuadrantCoords(
                quad_x=row.quad_x,
                quad_y=row.quad_y,
                quad_position=QuadPosition(row.quad_position),
            ),
        )
    return MetricSnapshot(
        snapshot_date=row.snapshot_date,
        ticker=row.ticker,
        company_id=row.company_id,
        result=ConsensusCalculationResult(
            status=status,
            reason=row.calc_error,
            pair=YearPair(
                target_y1=row.target_y1,
                target_y2=row.target_y2,
                eps_y1=row.eps_y1,
                eps_y2=row.eps_y2,
                per_y1=row.per_y1,
                per_y2=row.per_y2,
            ),
            computed=computed,
        ),
    )


def _key_filter(model, snapshot_date: date, ticker: str, target_y1: int, target_y2: int):
    return and_(
        model.snapshot_date == snapshot_date,
        model.ticker == ticker,
        model.target_y1 == target_y1,
        model.target_y2 == target_y2,
    )


def _upsert(db: Session, model, payload: dict[str, Any], label: str) -> str:
    key = {k: payload[k] for k in _KEY_COLS}
    existing = db.scalars(select(model).where(_key_filter(model, **key))).first()
    try:
        if existing:
            for k, v in payload.items():
                if k not in _KEY_COLS:
                    setattr(existing, k, v)
            outcome = "updated"
        else:
            db.add(model(**payload))
            outcome = "inserted"
        db.commit()
    except Exception as exc:
        db.rollback()
        raise RuntimeError(
            f"{label} upsert failed for {key['ticker']} {key['target_y1']}-{key['target_y2']} "
            f"@ {key['snapshot_date']}: {exc}"
        ) from exc
    logger.debug("[DB][%s] %s %s %s", label, outcome, key["ticker"], key["snapshot_date"])
    return outcome


def upsert_metric_daily(db: Session, snapshot: MetricSnapshot) -> str:
    """Returns "inserted" or "updated"."""
    return _upsert(db, ConsensusMetricDaily, snapshot.to_row(), "ConsensusMetricDaily")


def upsert_diff_log(db: Session, diff: DiffLogRecord) -> str:
    """Returns "inserted" or "updated"."""
    payload = diff.to_row()
    payload["signal_tags"] = json.dumps(payload["signal_tags"])
    return _upsert(db, ConsensusDiffLog, payload, "ConsensusDiffLog")


def find_baseline(
    db: Session,
    ticker: str,
    target_y1: int,
    target_y2: int,
    on_or_before: date,
    before: date,
) -> MetricSnapshot | None:
    """Closest stored snapshot with snapshot_date <= on_or_before and < before."""
    row = db.scalars(
        select(ConsensusMetricDaily)
        .where(
            ConsensusMetricDaily.ticker == ticker,
            ConsensusMetricDaily.target_y1 == target_y1,
            ConsensusMetricDaily.target_y2 == target_y2,
            ConsensusMetricDaily.snapshot_date <= on_or_before,
            ConsensusMetricDaily.snapshot_date < before,
        )
        .order_by(ConsensusMetricDaily.snapshot_date.desc())
        .limit(1)
    ).first()
    return row_to_snapshot(row) if row else None


def get_latest_snapshot_date(db: Session) -> date | None:
    return db.scalar(select(func.max(ConsensusMetricDaily.snapshot_date)))


def get_latest_metric(
    db: Session,
    ticker: str,
    snapshot_date: date | None = None,
) -> ConsensusMetricDaily | None:
    q = select(ConsensusMetricDaily).where(ConsensusMetricDaily.ticker == ticker)
    if snapshot_date:
        q = q.where(ConsensusMetricDaily.snapshot_date == snapshot_date)
    q = q.order_by(
        ConsensusMetricDaily.snapshot_date.desc(),
        ConsensusMetricDaily.target_y1.desc(),
    ).limit(1)
    return db.scalars(q).first()


def get_diff_log(
    db: Session,
    ticker: str,
    snapshot_date: date,
    target_y1: int,
    target_y2: int,
) -> ConsensusDiffLog | None:
    return db.scalars(
        select(ConsensusDiffLog).where(
            _key_filter(ConsensusDiffLog, snapshot_date, ticker, target_y1, target_y2)
        )
    ).first()


def get_company_history(
    db: Session,
    ticker: str,
    target_y1: int,
    target_y2: int,
    since: date,
) -> list[ConsensusMetricDaily]:
    return list(db.scalars(
        select(ConsensusMetricDaily)
        .where(
            ConsensusMetricDaily.ticker == ticker,
            ConsensusMetricDaily.target_y1 == target_y1,
            ConsensusMetricDaily.target_y2 == target_y2,
            ConsensusMetricDaily.snapshot_date >= since,
        )
        .order_by(ConsensusMetricDaily.snapshot_date.asc())
    ).all())


def get_metric_series(
    db: Session,
    tickers: list[str],
    start: date,
    end: date,
    target_y1: int | None = None,
    target_y2: int | None = None,
) -> list[ConsensusMetricDaily]:
    """Rows for the tickers with start <= snapshot_date <= end, oldest first."""
    q = select(ConsensusMetricDaily).where(
        ConsensusMetricDaily.ticker.in_(tickers),
        ConsensusMetricDaily.snapshot_date >= start,
        ConsensusMetricDaily.snapshot_date <= end,
    )
    if target_y1 is not None:
        q = q.where(ConsensusMetricDaily.target_y1 == target_y1)
    if target_y2 is not None:
        q = q.where(ConsensusMetricDaily.target_y2 == target_y2)
    q = q.order_by(
        ConsensusMetricDaily.snapshot_date.asc(),
        ConsensusMetricDaily.ticker.asc(),
        ConsensusMetricDaily.target_y1.asc(),
    )
    return list(db.scalars(q).all())


def get_latest_normal(
    db: Session,
    ticker: str,
    snapshot_date: date | None = None,
    target_y1: int | None = None,
    target_y2: int | None = None,
) -> ConsensusMetricDaily | None:
    """Newest NORMAL row for the ticker (on `snapshot_date` when given)."""
    q = select(ConsensusMetricDaily).where(
        ConsensusMetricDaily.ticker == ticker,
        ConsensusMetricDaily.calc_status == CalcStatus.NORMAL.value,
    )
    if snapshot_date:
        q = q.where(ConsensusMetricDaily.snapshot_date == snapshot_date)
    if target_y1 is not None:
        q = q.where(ConsensusMetricDaily.target_y1 == target_y1)
    if target_y2 is not None:
        q = q.where(ConsensusMetricDaily.target_y2 == target_y2)
    q = q.order_by(
        ConsensusMetricDaily.snapshot_date.desc(),
        ConsensusMetricDaily.target_y1.desc(),
    ).limit(1)
    return db.scalars(q).first()


def get_previous_normal(
    db: Session,
    ticker: str,
    target_y1: int,
    target_y2: int,
    before: date,
    on_or_before: date | None = None,
) -> ConsensusMetricDaily | None:
    """Newest NORMAL row of the same year pair strictly before `before`."""
    q = select(ConsensusMetricDaily).where(
        ConsensusMetricDaily.ticker == ticker,
        ConsensusMetricDaily.target_y1 == target_y1,
        ConsensusMetricDaily.target_y2 == target_y2,
        ConsensusMetricDaily.calc_status == CalcStatus.NORMAL.value,
        ConsensusMetricDaily.snapshot_date < before,
    )
    if on_or_before:
        q = q.where(ConsensusMetricDaily.snapshot_date <= on_or_before)
    q = q.order_by(ConsensusMetricDaily.snapshot_date.desc()).limit(1)
    return db.scalars(q).first()


def list_metrics(
    db: Session,
    snapshot_date: date,
    *,
    target_y1: int | None = None,
    target_y2: int | None = None,
    quads: list[str] | None = None,
    statuses: list[str] | None = None,
    ranges: dict[str, tuple[float | None, float | None]] | None = None,
    tags: list[str] | None = None,
    sort_by: str = "hgs_score",
    sort_order: str = "desc",
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[tuple[ConsensusMetricDaily, ConsensusDiffLog | None]], int]:
    """
    Metric rows for one snapshot date, each paired with its diff log (or None).

    ranges: {"fvb_score": (min, max), ...}; either bound may be None.
    tags:   match rows carrying ANY of the given tags.
    sort_by must be one of SORTABLE_FIELDS (ValueError otherwise); rows
    missing the sort value go last.
    Returns (rows, total_count_before_pagination).
    """
    if sort_by not in SORTABLE_FIELDS:
        raise ValueError(f"cannot sort by {sort_by!r}; expected one of {sorted(SORTABLE_FIELDS)}")
    if sort_order not in ("asc", "desc"):
        raise ValueError(f"sort_order must be 'asc' or 'desc', got {sort_order!r}")

    m, d = ConsensusMetricDaily, ConsensusDiffLog
    join_on = and_(
        d.snapshot_date == m.snapshot_date,
        d.ticker == m.ticker,
        d.target_y1 == m.target_y1,
        d.target_y2 == m.target_y2,
    )

    conditions = [m.snapshot_date == snapshot_date]
    if target_y1 is not None:
        conditions.append(m.target_y1 == target_y1)
    if target_y2 is not None:
        conditions.append(m.target_y2 == target_y2)
    if quads:
        conditions.append(m.quad_position.in_(quads))
    conditions.append(m.calc_status.in_(statuses or [CalcStatus.NORMAL.value]))
    for column_name, (lo, hi) in (ranges or {}).items():
        column = getattr(m, column_name)
        if lo is not None:
            conditions.append(column >= lo)
        if hi is not None:
            conditions.append(column <= hi)
    if tags:
        conditions.append(or_(*[d.signal_tags.like(f'%"{t}"%') for t in tags]))

    base = select(m, d).outerjoin(d, join_on).where(*conditions)
    total = db.scalar(select(func.count()).select_from(base.subquery())) or 0

    column = getattr(m, sort_by)
    ordered = column.asc() if sort_order == "asc" else column.desc()
    base = base.order_by(column.is_(None), ordered, m.ticker.asc())

    rows = db.execute(base.limit(limit).offset(offset)).all()
    return [(row[0], row[1]) for row in rows], total
