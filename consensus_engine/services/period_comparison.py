"""
Period comparison over stored snapshots.

Series trend (first vs last NORMAL point of a window):
  fvb: > +0.1 IMPROVING, < -0.1 DECLINING, else STABLE
  hgs: > +5   IMPROVING, < -5   DECLINING, else STABLE
  fewer than two NORMAL points -> no trend

Two-snapshot comparison (both NORMAL, current later than previous):
  *_change = current - previous
  signals:  |fvb| > 0.1, |hgs| > 5, |rrs| > 5, |eps_growth| > 10
            a rising RRS counts against, the other three count for
            entering Q2 counts for, leaving Q2 counts against,
            any other quadrant move is reported without counting
  overall:  UPGRADED    upgrades > downgrades + 1
            DOWNGRADED  downgrades > upgrades + 1
            STABLE      no signal either way
            MIXED       otherwise
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from consensus_engine.schemas import MetricSnapshot, Outlook, QuadPosition, TrendDirection
from consensus_engine.services.consensus_calculator import round_half_up

SERIES_FVB_THRESHOLD = 0.1
SERIES_HGS_THRESHOLD = 5.0

SIGNAL_FVB_THRESHOLD = 0.1
SIGNAL_HGS_THRESHOLD = 5.0
SIGNAL_RRS_THRESHOLD = 5.0
SIGNAL_EPS_GROWTH_THRESHOLD = 10.0

TARGET_QUAD = QuadPosition.Q2_GROWTH_DERATING


@dataclass(frozen=True)
class SeriesStats:
    data_points: int
    fvb_trend: TrendDirection | None
    hgs_trend: TrendDirection | None
    latest_quad: QuadPosition | None


@dataclass(frozen=True)
class PeriodChanges:
    fvb_change: float
    hgs_change: float
    rrs_change: float
    eps_growth_change: float
    per_growth_change: float
    quad_changed: bool
    days_diff: int


@dataclass(frozen=True)
class Interpretation:
    overall: Outlook
    signals: list[str]
    summary: str


def _direction(change: float, threshold: float) -> TrendDirection:
    if change > threshold:
        return TrendDirection.IMPROVING
    if change < -threshold:
        return TrendDirection.DECLINING
    return TrendDirection.STABLE


def summarize_series(points: Sequence[MetricSnapshot]) -> SeriesStats:
    """Points in date order; only NORMAL points (fvb present) are counted."""
    valid = [p for p in points if p.fvb_score is not None]
    if not valid:
        return SeriesStats(data_points=0, fvb_trend=None, hgs_trend=None, latest_quad=None)

    first, last = valid[0], valid[-1]
    fvb_trend = hgs_trend = None
    if len(valid) >= 2:
        fvb_trend = _direction(last.fvb_score - first.fvb_score, SERIES_FVB_THRESHOLD)
        hgs_trend = _direction(last.hgs_score - first.hgs_score, SERIES_HGS_THRESHOLD)

    return SeriesStats(
        data_points=len(valid),
        fvb_trend=fvb_trend,
        hgs_trend=hgs_trend,
        latest_quad=last.quad_position,
    )


def compare_snapshots(current: MetricSnapshot, previous: MetricSnapshot) -> PeriodChanges:
    """Both snapshots must be NORMAL. Changes are rounded like the metrics."""
    return PeriodChanges(
        fvb_change=round_half_up(current.fvb_score - previous.fvb_score, 4),
        hgs_change=round_half_up(current.hgs_score - previous.hgs_score, 2),
        rrs_change=round_half_up(current.rrs_score - previous.rrs_score, 2),
        eps_growth_change=round_half_up(current.eps_growth_pct - previous.eps_growth_pct, 2),
        per_growth_change=round_half_up(current.per_growth_pct - previous.per_growth_pct, 2),
        quad_changed=current.quad_position is not previous.quad_position,
        days_diff=(current.snapshot_date - previous.snapshot_date).days,
    )


def interpret_changes(
    changes: PeriodChanges,
    current: MetricSnapshot,
    previous: MetricSnapshot,
) -> Interpretation:
    signals: list[str] = []
    upgrades = downgrades = 0

    if abs(changes.fvb_change) > SIGNAL_FVB_THRESHOLD:
        if changes.fvb_change > 0:
            signals.append(f"Undervaluation widening (FVB {changes.fvb_change:+.2f})")
            upgrades += 1
        else:
            signals.append(f"Overvaluation concern rising (FVB {changes.fvb_change:+.2f})")
            downgrades += 1

    if abs(changes.hgs_change) > SIGNAL_HGS_THRESHOLD:
        if changes.hgs_change > 0:
            signals.append(f"Growth outlook improved (HGS {changes.hgs_change:+.1f})")
            upgrades += 1
        else:
            signals.append(f"Growth outlook worsened (HGS {changes.hgs_change:+.1f})")
            downgrades += 1

    if abs(changes.rrs_change) > SIGNAL_RRS_THRESHOLD:
        if changes.rrs_change > 0:
            signals.append(f"Overheat risk rising (RRS {changes.rrs_change:+.1f})")
            downgrades += 1
        else:
            signals.append(f"Overheat risk easing (RRS {changes.rrs_change:+.1f})")
            upgrades += 1

    if abs(changes.eps_growth_change) > SIGNAL_EPS_GROWTH_THRESHOLD:
        if changes.eps_growth_change > 0:
            signals.append(f"Earnings outlook raised (EPS growth {changes.eps_growth_change:+.1f}%p)")
            upgrades += 1
        else:
            signals.append(f"Earnings outlook cut (EPS growth {changes.eps_growth_change:+.1f}%p)")
            downgrades += 1

    if changes.quad_changed:
        move = f"{previous.quad_position.value} -> {current.quad_position.value}"
        if current.quad_position is TARGET_QUAD:
            signals.append(f"Entered target zone ({move})")
            upgrades += 1
        elif previous.quad_position is TARGET_QUAD:
            signals.append(f"Left target zone ({move})")
            downgrades += 1
        else:
            signals.append(f"Quadrant moved ({move})")

    if upgrades > downgrades + 1:
        overall = Outlook.UPGRADED
        summary = f"Consensus revised up ({upgrades} positive signals)"
    elif downgrades > upgrades + 1:
        overall = Outlook.DOWNGRADED
        summary = f"Consensus revised down ({downgrades} negative signals)"
    elif upgrades == 0 and downgrades == 0:
        overall = Outlook.STABLE
        summary = "Consensus steady (no meaningful change)"
    else:
        overall = Outlook.MIXED
        summary = f"Consensus mixed ({upgrades} positive, {downgrades} negative)"

    return Interpretation(overall=overall, signals=signals, summary=summary)
