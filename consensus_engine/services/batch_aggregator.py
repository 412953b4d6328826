"""
Batch statistics, filtering, sorting and ranking over consensus results.

Averages are taken over NORMAL results only. Missing metric values sort
last in either direction.

Priority heuristic (higher = more interesting):
  +100  HEALTHY_DERATING
  +80   TURNAROUND and IMPROVING_TREND
  +60   HIGH_GROWTH and not OVERHEAT
  +20   fvb_score > 0
  -30   OVERHEAT
  -20   DECLINING_TREND
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Literal

from consensus_engine.schemas import (
    CalcStatus,
    ConsensusCalculationResult,
    QuadPosition,
    SignalTag,
)
from consensus_engine.services.consensus_calculator import round_half_up

SortMetric = Literal["fvb_score", "hgs_score", "rrs_score", "eps_growth_pct", "per_growth_pct"]
SortDirection = Literal["asc", "desc"]

_AVG_DECIMALS: dict[str, int] = {
    "eps_growth_pct": 2,
    "per_growth_pct": 2,
    "fvb_score": 4,
    "hgs_score": 2,
    "rrs_score": 2,
}


def get_batch_statistics(results: Mapping[str, ConsensusCalculationResult]) -> dict[str, Any]:
    """
    {
        "total": int, "calculated": int, "skipped": int,
        "by_status": {status: n}, "by_quadrant": {quad: n},
        "avg_metrics": {metric: avg over NORMAL rows (0 when none)},
    }
    """
    by_status: dict[str, int] = {}
    by_quadrant: dict[str, int] = {}
    sums = {name: 0.0 for name in _AVG_DECIMALS}
    calculated = 0

    for result in results.values():
        by_status[result.status.value] = by_status.get(result.status.value, 0) + 1
        if result.status is not CalcStatus.NORMAL:
            continue
        calculated += 1
        quad = result.quad_position.value
        by_quadrant[quad] = by_quadrant.get(quad, 0) + 1
        for name in sums:
            sums[name] += getattr(result, name)

    avg_metrics = {name: 0.0 for name in _AVG_DECIMALS}
    if calculated:
        avg_metrics = {
            name: round_half_up(total / calculated, _AVG_DECIMALS[name])
            for name, total in sums.items()
        }

    return {
        "total": len(results),
        "calculated": calculated,
        "skipped": len(results) - calculated,
        "by_status": by_status,
        "by_quadrant": by_quadrant,
        "avg_metrics": avg_metrics,
    }


def filter_by_quadrant(
    results: Mapping[str, ConsensusCalculationResult],
    quadrant: QuadPosition,
) -> dict[str, ConsensusCalculationResult]:
    return {ticker: r for ticker, r in results.items() if r.quad_position is quadrant}


def sort_by_metric(
    results: Mapping[str, ConsensusCalculationResult],
    metric: SortMetric,
    direction: SortDirection = "desc",
) -> list[tuple[str, ConsensusCalculationResult]]:
    present = [(t, r) for t, r in results.items() if getattr(r, metric) is not None]
    missing = [(t, r) for t, r in results.items() if getattr(r, metric) is None]
    present.sort(key=lambda item: getattr(item[1], metric), reverse=(direction == "desc"))
    return present + missing


def calculate_priority(tags: Iterable[SignalTag], metric: Any) -> int:
    """`metric` is any record exposing fvb_score (result, snapshot or ORM row)."""
    tag_set = frozenset(tags)
    score = 0

    if SignalTag.HEALTHY_DERATING in tag_set:
        score += 100
    if SignalTag.TURNAROUND in tag_set and SignalTag.IMPROVING_TREND in tag_set:
        score += 80
    if SignalTag.HIGH_GROWTH in tag_set and SignalTag.OVERHEAT not in tag_set:
        score += 60
    if metric.fvb_score is not None and metric.fvb_score > 0:
        score += 20
    if SignalTag.OVERHEAT in tag_set:
        score -= 30
    if SignalTag.DECLINING_TREND in tag_set:
        score -= 20

    return score
