"""
Signal tags, alert flags and trend directions for consensus snapshots.

Tags are independent conditions (no priority or exclusion between them):
  HEALTHY_DERATING   Q2 and FVB > 0.2
  TURNAROUND         calc_status TURNAROUND
  HIGH_GROWTH        EPS growth > 50% and HGS > 30
  OVERHEAT           RRS > 30
  IMPROVING_TREND    monthly FVB diff > 0.1              (needs diff)
  DECLINING_TREND    monthly FVB diff < -0.1             (needs diff)
  QUAD_SHIFT         monthly quadrant moved "A->B", A!=B (needs diff)
  DEFICIT_IMPROVING  DEFICIT and monthly HGS diff > 5    (needs diff)

Null metrics never satisfy a threshold.
"""

from __future__ import annotations

from consensus_engine.schemas import (
    AlertFlags,
    CalcStatus,
    HorizonDiff,
    MetricSnapshot,
    QuadPosition,
    SignalTag,
    TrendDirection,
)

QUAD_SHIFT_SEPARATOR = "->"

HEALTHY_DERATING_MIN_FVB = 0.2
HIGH_GROWTH_MIN_EPS_GROWTH = 50.0
HIGH_GROWTH_MIN_HGS = 30.0
OVERHEAT_MIN_RRS = 30.0
TREND_TAG_FVB_DIFF = 0.1
DEFICIT_IMPROVING_MIN_HGS_DIFF = 5.0

HEALTHY_MIN_HGS = 20.0
HEALTHY_MAX_RRS = 10.0

# (monthly, daily) thresholds for determine_trend
TREND_MONTHLY_THRESHOLD = 0.05
TREND_DAILY_THRESHOLD = 0.02


def _gt(v: float | None, threshold: float) -> bool:
    return v is not None and v > threshold


def _lt(v: float | None, threshold: float) -> bool:
    return v is not None and v < threshold


def is_quad_shift(shift: str | None) -> bool:
    """
    True when a "FROM->TO" shift string names two different sides. A side is
    a quadrant, or the calc_status of a row that has none.
    """
    if not shift or QUAD_SHIFT_SEPARATOR not in shift:
        return False
    origin, _, target = shift.partition(QUAD_SHIFT_SEPARATOR)
    return origin != target


def generate_tags(metric: MetricSnapshot, monthly: HorizonDiff | None = None) -> frozenset[SignalTag]:
    tags: set[SignalTag] = set()

    if metric.quad_position is QuadPosition.Q2_GROWTH_DERATING and _gt(metric.fvb_score, HEALTHY_DERATING_MIN_FVB):
        tags.add(SignalTag.HEALTHY_DERATING)

    if metric.calc_status is CalcStatus.TURNAROUND:
        tags.add(SignalTag.TURNAROUND)

    if _gt(metric.eps_growth_pct, HIGH_GROWTH_MIN_EPS_GROWTH) and _gt(metric.hgs_score, HIGH_GROWTH_MIN_HGS):
        tags.add(SignalTag.HIGH_GROWTH)

    if _gt(metric.rrs_score, OVERHEAT_MIN_RRS):
        tags.add(SignalTag.OVERHEAT)

    if monthly is not None:
        if _gt(monthly.fvb_diff, TREND_TAG_FVB_DIFF):
            tags.add(SignalTag.IMPROVING_TREND)
        if _lt(monthly.fvb_diff, -TREND_TAG_FVB_DIFF):
            tags.add(SignalTag.DECLINING_TREND)
        if is_quad_shift(monthly.quad_shift):
            tags.add(SignalTag.QUAD_SHIFT)
        if metric.calc_status is CalcStatus.DEFICIT and _gt(monthly.hgs_diff, DEFICIT_IMPROVING_MIN_HGS_DIFF):
            tags.add(SignalTag.DEFICIT_IMPROVING)

    return frozenset(tags)


def generate_alert_flags(metric: MetricSnapshot, monthly: HorizonDiff | None = None) -> AlertFlags:
    # Flags read the current snapshot only; `monthly` is unused.
    return AlertFlags(
        is_overheat=_gt(metric.rrs_score, OVERHEAT_MIN_RRS),
        is_target_zone=metric.quad_position is QuadPosition.Q2_GROWTH_DERATING,
        is_turnaround=metric.calc_status is CalcStatus.TURNAROUND,
        is_high_growth=_gt(metric.hgs_score, HIGH_GROWTH_MIN_HGS),
        is_healthy=_gt(metric.hgs_score, HEALTHY_MIN_HGS) and _lt(metric.rrs_score, HEALTHY_MAX_RRS),
    )


def determine_trend(diff_daily: float | None, diff_monthly: float | None) -> TrendDirection | None:
    """
    Monthly diff first; a monthly diff inside its band falls through to
    the daily diff. STABLE when neither clears its threshold, None when
    both are absent.
    """
    if diff_daily is None and diff_monthly is None:
        return None

    if diff_monthly is not None:
        if diff_monthly > TREND_MONTHLY_THRESHOLD:
            return TrendDirection.IMPROVING
        if diff_monthly < -TREND_MONTHLY_THRESHOLD:
            return TrendDirection.DECLINING

    if diff_daily is not None:
        if diff_daily > TREND_DAILY_THRESHOLD:
            return TrendDirection.IMPROVING
        if diff_daily < -TREND_DAILY_THRESHOLD:
            return TrendDirection.DECLINING

    return TrendDirection.STABLE
