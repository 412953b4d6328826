"""
Acceptance tests: Diff log builder

Acceptance requirements:
  1. *_diff = current - baseline, None when either side has no value.
  2. quad_shift is "BASE->CURRENT" when the quadrants differ; a side with no
     quadrant is named by its calc_status.
  3. Tags use the monthly diff context; trends use daily + monthly diffs.
  4. A diff log is built even with no baselines.
"""

from datetime import date

import pytest
from consensus_engine.schemas import (
    CalcStatus,
    CalculatedMetrics,
    ComputedValues,
    ConsensusCalculationResult,
    MetricSnapshot,
    QuadPosition,
    QuadrantCoords,
    SignalTag,
    TrendDirection,
    YearPair,
)
from consensus_engine.services.diff_log_builder import build_diff_log, horizon_diff, quad_shift

_PAIR = YearPair(2025, 2026, 100, 150, 10, 8)


def _snapshot(day, fvb=0.1, hgs=10.0, rrs=-15.0, quad=QuadPosition.Q2_GROWTH_DERATING,
              eps_growth=10.0, per_growth=-5.0):
    return MetricSnapshot(
        snapshot_date=day,
        ticker="005930",
        company_id=1,
        result=ConsensusCalculationResult(
            status=CalcStatus.NORMAL,
            reason=None,
            pair=_PAIR,
            computed=ComputedValues(
                metrics=CalculatedMetrics(eps_growth, per_growth, fvb, hgs, rrs),
                quadrant=QuadrantCoords(eps_growth, per_growth, quad),
            ),
        ),
    )


def _skipped(day, status=CalcStatus.TURNAROUND):
    return MetricSnapshot(
        snapshot_date=day,
        ticker="005930",
        company_id=1,
        result=ConsensusCalculationResult(status=status, reason="skipped", pair=_PAIR),
    )


TODAY = date(2025, 3, 14)


# ---------------------------------------------------------------------------
# Concrete scenarios
# ---------------------------------------------------------------------------

def test_monthly_quadrant_shift_with_improving_fvb():
    current = _snapshot(TODAY, fvb=0.5, quad=QuadPosition.Q2_GROWTH_DERATING)
    month_ago = _snapshot(date(2025, 2, 12), fvb=0.3, quad=QuadPosition.Q1_GROWTH_RERATING)

    log = build_diff_log(current, m1=month_ago)

    assert log.m1.fvb_diff == pytest.approx(0.2)
    assert log.m1.quad_shift == "Q1_GROWTH_RERATING->Q2_GROWTH_DERATING"
    assert log.fvb_trend is TrendDirection.IMPROVING
    assert SignalTag.IMPROVING_TREND in log.signal_tags
    assert SignalTag.QUAD_SHIFT in log.signal_tags
    assert SignalTag.HEALTHY_DERATING in log.signal_tags
    assert log.tag_count == len(log.signal_tags) == 3


def test_no_baselines():
    log = build_diff_log(_snapshot(TODAY))

    for horizon in (log.d1, log.w1, log.m1):
        assert horizon.fvb_diff is None
        assert horizon.hgs_diff is None
        assert horizon.rrs_diff is None
        assert horizon.quad_shift is None
    assert log.fvb_trend is None
    assert log.hgs_trend is None
    assert log.rrs_trend is None
    assert log.signal_tags == frozenset()
    assert log.tag_count == 0
    assert log.flags.is_target_zone is True


def test_identity_copied_from_current():
    log = build_diff_log(_snapshot(TODAY))
    assert (log.snapshot_date, log.ticker, log.company_id, log.target_y1, log.target_y2) == (
        TODAY, "005930", 1, 2025, 2026,
    )


# ---------------------------------------------------------------------------
# Diffs and quadrant shifts
# ---------------------------------------------------------------------------

def test_diffs_are_current_minus_baseline():
    current = _snapshot(TODAY, fvb=0.6931, hgs=60.0, rrs=-80.0)
    yesterday = _snapshot(date(2025, 3, 13), fvb=0.6286, hgs=50.0, rrs=-70.0)

    diff = horizon_diff(current, yesterday)
    assert diff.fvb_diff == pytest.approx(0.0645)
    assert diff.hgs_diff == 10.0
    assert diff.rrs_diff == -10.0
    assert diff.quad_shift is None


def test_deficit_to_quadrant_is_a_shift():
    current = _snapshot(TODAY, quad=QuadPosition.Q2_GROWTH_DERATING)
    month_ago = _skipped(date(2025, 2, 12), CalcStatus.DEFICIT)

    log = build_diff_log(current, m1=month_ago)
    assert log.m1.quad_shift == "DEFICIT->Q2_GROWTH_DERATING"
    assert log.m1.fvb_diff is None
    assert log.m1.hgs_diff is None
    assert log.m1.rrs_diff is None
    assert SignalTag.QUAD_SHIFT in log.signal_tags


def test_quadrant_to_turnaround_is_a_shift():
    diff = horizon_diff(_skipped(TODAY), _snapshot(date(2025, 3, 13)))
    assert diff.fvb_diff is None
    assert diff.quad_shift == "Q2_GROWTH_DERATING->TURNAROUND"


def test_status_change_without_quadrants_is_not_a_shift():
    diff = horizon_diff(_skipped(TODAY), _skipped(date(2025, 3, 13), CalcStatus.DEFICIT))
    assert diff.quad_shift is None


def test_quad_shift_requires_change():
    a = _snapshot(TODAY, quad=QuadPosition.Q3_DECLINE_RERATING)
    b = _snapshot(date(2025, 3, 7), quad=QuadPosition.Q3_DECLINE_RERATING)
    c = _snapshot(date(2025, 3, 7), quad=QuadPosition.Q4_DECLINE_DERATING)
    assert quad_shift(a, b) is None
    assert quad_shift(a, c) == "Q4_DECLINE_DERATING->Q3_DECLINE_RERATING"


def test_weekly_shift_does_not_tag():
    current = _snapshot(TODAY, quad=QuadPosition.Q2_GROWTH_DERATING)
    week_ago = _snapshot(date(2025, 3, 7), quad=QuadPosition.Q4_DECLINE_DERATING)

    log = build_diff_log(current, w1=week_ago)
    assert log.w1.quad_shift == "Q4_DECLINE_DERATING->Q2_GROWTH_DERATING"
    assert SignalTag.QUAD_SHIFT not in log.signal_tags


# ---------------------------------------------------------------------------
# Trends
# ---------------------------------------------------------------------------

def test_daily_diff_drives_trend_without_monthly_baseline():
    current = _snapshot(TODAY, fvb=0.5, hgs=10.0, rrs=-15.0)
    yesterday = _snapshot(date(2025, 3, 13), fvb=0.45, hgs=10.01, rrs=-15.0)

    log = build_diff_log(current, d1=yesterday)
    assert log.fvb_trend is TrendDirection.IMPROVING
    assert log.hgs_trend is TrendDirection.STABLE
    assert log.rrs_trend is TrendDirection.STABLE
    assert SignalTag.IMPROVING_TREND not in log.signal_tags


def test_monthly_diff_overrides_daily():
    current = _snapshot(TODAY, fvb=0.5)
    yesterday = _snapshot(date(2025, 3, 13), fvb=0.4)
    month_ago = _snapshot(date(2025, 2, 12), fvb=0.7)

    log = build_diff_log(current, d1=yesterday, m1=month_ago)
    assert log.fvb_trend is TrendDirection.DECLINING
    assert SignalTag.DECLINING_TREND in log.signal_tags


def test_turnaround_row_still_gets_a_log():
    log = build_diff_log(_skipped(TODAY), d1=_snapshot(date(2025, 3, 13)))
    assert log.signal_tags == {SignalTag.TURNAROUND}
    assert log.flags.is_turnaround is True
    assert log.fvb_trend is None


# ---------------------------------------------------------------------------
# Row shape
# ---------------------------------------------------------------------------

def test_to_row_flattens_horizons_and_sorts_tags():
    current = _snapshot(TODAY, fvb=0.5, quad=QuadPosition.Q2_GROWTH_DERATING)
    month_ago = _snapshot(date(2025, 2, 12), fvb=0.3, quad=QuadPosition.Q1_GROWTH_RERATING)

    row = build_diff_log(current, m1=month_ago).to_row()
    assert row["fvb_diff_d1"] is None
    assert row["quad_shift_m1"] == "Q1_GROWTH_RERATING->Q2_GROWTH_DERATING"
    assert row["signal_tags"] == ["HEALTHY_DERATING", "IMPROVING_TREND", "QUAD_SHIFT"]
    assert row["tag_count"] == 3
    assert row["fvb_trend"] == "IMPROVING"
    assert row["is_target_zone"] is True
