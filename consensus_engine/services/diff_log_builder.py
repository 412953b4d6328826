"""
Diff log builder.

Given the current snapshot and up to three baselines (previous day /
week / month, already located by the caller), computes per-horizon
deltas and quadrant shifts, per-metric trends, tags and alert flags.

  *_diff     = current - baseline   (None if either side is None)
  quad_shift = "BASE->CURRENT"      (when the quadrants differ; a side with no
                                     quadrant is named by its calc_status)
  trend      = determine_trend(diff_d1, diff_m1)

A diff log is built even with no baselines: all diffs are None and tags
come from the current snapshot alone.
"""

from __future__ import annotations

from consensus_engine.schemas import ConsensusDiffLog, HorizonDiff, MetricSnapshot
from consensus_engine.services.consensus_calculator import round_half_up
from consensus_engine.services.tag_generator import (
    QUAD_SHIFT_SEPARATOR,
    determine_trend,
    generate_alert_flags,
    generate_tags,
)

EMPTY_HORIZON = HorizonDiff()


def _diff(current: float | None, baseline: float | None, decimals: int) -> float | None:
    if current is None or baseline is None:
        return None
    return round_half_up(current - baseline, decimals)


def _quad_token(snapshot: MetricSnapshot) -> str:
    # Rows without a quadrant are named by their status
    quad = snapshot.quad_position
    return quad.value if quad is not None else snapshot.calc_status.value


def quad_shift(current: MetricSnapshot, baseline: MetricSnapshot) -> str | None:
    if baseline.quad_position is current.quad_position:
        return None
    return f"{_quad_token(baseline)}{QUAD_SHIFT_SEPARATOR}{_quad_token(current)}"


def horizon_diff(current: MetricSnapshot, baseline: MetricSnapshot | None) -> HorizonDiff:
    if baseline is None:
        return EMPTY_HORIZON
    return HorizonDiff(
        fvb_diff=_diff(current.fvb_score, baseline.fvb_score, 4),
        hgs_diff=_diff(current.hgs_score, baseline.hgs_score, 2),
        rrs_diff=_diff(current.rrs_score, baseline.rrs_score, 2),
        quad_shift=quad_shift(current, baseline),
    )


def build_diff_log(
    current: MetricSnapshot,
    d1: MetricSnapshot | None = None,
    w1: MetricSnapshot | None = None,
    m1: MetricSnapshot | None = None,
) -> ConsensusDiffLog:
    daily = horizon_diff(current, d1)
    weekly = horizon_diff(current, w1)
    monthly = horizon_diff(current, m1)

    # Tags see the monthly context only when a monthly baseline exists
    monthly_context = monthly if m1 is not None else None

    return ConsensusDiffLog(
        snapshot_date=current.snapshot_date,
        ticker=current.ticker,
        company_id=current.company_id,
        target_y1=current.target_y1,
        target_y2=current.target_y2,
        d1=daily,
        w1=weekly,
        m1=monthly,
        signal_tags=generate_tags(current, monthly_context),
        fvb_trend=determine_trend(daily.fvb_diff, monthly.fvb_diff),
        hgs_trend=determine_trend(daily.hgs_diff, monthly.hgs_diff),
        rrs_trend=determine_trend(daily.rrs_diff, monthly.rrs_diff),
        flags=generate_alert_flags(current, monthly_context),
    )
