"""
Edge case detector for consensus year pairs.

Classifies a YearPair before any arithmetic is attempted. Rules are
evaluated in fixed priority order, first match wins:

  1. any EPS/PER missing (None or non-finite)   -> ERROR
  2. per_y1 <= 0 or per_y2 <= 0                 -> ERROR  (invalid PER)
  3. per_y1 > 1000 or per_y2 > 1000             -> ERROR  (extreme PER)
  4. eps_y1 <= 0 and eps_y2 > 0                 -> TURNAROUND
  5. eps_y1 <= 0 or eps_y2 <= 0                 -> DEFICIT
  6. |eps_y1| < 10 or |eps_y2| < 10             -> ERROR  (EPS too small)
  7. |EPS growth %| > 1000                      -> ERROR  (unrealistic growth)
  8. otherwise                                  -> NORMAL

Never raises for bad input: ERROR is a classification, not an exception.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from typing import Any

from consensus_engine.schemas import CalcStatus, EdgeCaseResult, TickerYearPair, YearPair

MAX_PER: float = 1000.0
MIN_EPS_ABS: float = 10.0
MAX_EPS_GROWTH_PCT: float = 1000.0

_SKIP_REASONS: dict[CalcStatus, str] = {
    CalcStatus.TURNAROUND: "Turnaround stock - metrics not meaningful",
    CalcStatus.DEFICIT: "Deficit stock - EPS negative",
    CalcStatus.ERROR: "Invalid data - cannot calculate",
}


def _is_num(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)


def detect_edge_case(pair: YearPair) -> EdgeCaseResult:
    eps_y1, eps_y2 = pair.eps_y1, pair.eps_y2
    per_y1, per_y2 = pair.per_y1, pair.per_y2

    missing = [
        name for name, v in (
            ("eps_y1", eps_y1), ("eps_y2", eps_y2),
            ("per_y1", per_y1), ("per_y2", per_y2),
        )
        if not _is_num(v)
    ]
    if missing:
        return EdgeCaseResult(
            CalcStatus.ERROR,
            f"Missing required values (null: {', '.join(missing)})",
        )

    if per_y1 <= 0 or per_y2 <= 0:
        return EdgeCaseResult(
            CalcStatus.ERROR,
            f"Invalid PER values (PER_Y1: {per_y1}, PER_Y2: {per_y2})",
        )

    if per_y1 > MAX_PER or per_y2 > MAX_PER:
        return EdgeCaseResult(
            CalcStatus.ERROR,
            f"Extreme PER values (PER_Y1: {per_y1}, PER_Y2: {per_y2})",
        )

    # Ratios against a non-positive base are meaningless, so both the
    # turnaround and deficit cases skip the metric calculation.
    if eps_y1 <= 0 and eps_y2 > 0:
        return EdgeCaseResult(
            CalcStatus.TURNAROUND,
            f"Turnaround stock (EPS {eps_y1} -> {eps_y2})",
        )

    if eps_y1 <= 0 or eps_y2 <= 0:
        return EdgeCaseResult(
            CalcStatus.DEFICIT,
            f"Deficit stock (EPS_Y1: {eps_y1}, EPS_Y2: {eps_y2})",
        )

    if abs(eps_y1) < MIN_EPS_ABS or abs(eps_y2) < MIN_EPS_ABS:
        return EdgeCaseResult(
            CalcStatus.ERROR,
            f"EPS values too small for calculation (EPS_Y1: {eps_y1}, EPS_Y2: {eps_y2})",
        )

    growth_rate = ((eps_y2 - eps_y1) / eps_y1) * 100
    if abs(growth_rate) > MAX_EPS_GROWTH_PCT:
        return EdgeCaseResult(
            CalcStatus.ERROR,
            f"Unrealistic EPS growth rate: {growth_rate:.2f}%",
        )

    return EdgeCaseResult(CalcStatus.NORMAL)


def should_calculate(status: CalcStatus) -> bool:
    return status is CalcStatus.NORMAL


def get_skip_reason(status: CalcStatus) -> str:
    """Fixed human-readable label for a skipped status ("" for NORMAL)."""
    return _SKIP_REASONS.get(status, "")


def validate_batch(pairs: Iterable[TickerYearPair]) -> dict[str, EdgeCaseResult]:
    return {p.ticker: detect_edge_case(p.pair) for p in pairs}


def summarize_results(results: dict[str, EdgeCaseResult]) -> dict[CalcStatus, int]:
    summary = {status: 0 for status in CalcStatus}
    for result in results.values():
        summary[result.status] += 1
    return summary


def filter_by_status(
    pairs: Iterable[TickerYearPair],
    target_status: CalcStatus,
) -> list[TickerYearPair]:
    return [p for p in pairs if detect_edge_case(p.pair).status is target_status]
