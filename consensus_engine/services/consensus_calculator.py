"""
Consensus metrics calculator.

Key formulas:
  epsRatio       = eps_y2 / eps_y1
  perRatio       = per_y2 / per_y1
  eps_growth_pct = (epsRatio - 1) * 100                    [2 dp]
  per_growth_pct = (perRatio - 1) * 100                    [2 dp]
  FVB            = ln(epsRatio) - ln(perRatio)             [4 dp]
  HGS            = eps_growth_pct - max(per_growth_pct, 0) [2 dp]
  RRS            = per_growth_pct - max(eps_growth_pct, 0) [2 dp]

HGS/RRS are computed from the unrounded growth rates and rounded once.

Quadrants (zero counts as the growth / re-rating side):
  Q1: EPS >= 0, PER >= 0   growth + re-rating   (may be overheating)
  Q2: EPS >= 0, PER <  0   growth + de-rating   (target zone)
  Q3: EPS <  0, PER >= 0   decline + re-rating  (theme / speculation)
  Q4: EPS <  0, PER <  0   decline + de-rating  (distress)
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

from consensus_engine.schemas import (
    CalculatedMetrics,
    ComputedValues,
    ConsensusCalculationResult,
    QuadPosition,
    QuadrantCoords,
    TickerYearPair,
    YearPair,
)
from consensus_engine.services.edge_case_detector import detect_edge_case, should_calculate

logger = logging.getLogger(__name__)


def round_half_up(value: float, decimals: int) -> float:
    """
    Round half away from zero on the exact binary value of `value`.

    Matches fixed-point formatting of the stored figures; the builtin
    round() would send ties to even.
    """
    quantum = Decimal(1).scaleb(-decimals)
    return float(Decimal(value).quantize(quantum, rounding=ROUND_HALF_UP))


def calculate_metrics(pair: YearPair) -> CalculatedMetrics:
    """
    Compute growth rates and FVB/HGS/RRS for a pair already classified NORMAL.

    Does not re-validate: degenerate input yields garbage or raises.
    """
    eps_ratio = pair.eps_y2 / pair.eps_y1
    per_ratio = pair.per_y2 / pair.per_y1

    eps_growth_pct = (eps_ratio - 1) * 100
    per_growth_pct = (per_ratio - 1) * 100

    # Positive FVB: earnings outpacing the multiple
    fvb_score = math.log(eps_ratio) - math.log(per_ratio)
    hgs_score = eps_growth_pct - max(per_growth_pct, 0)
    rrs_score = per_growth_pct - max(eps_growth_pct, 0)

    return CalculatedMetrics(
        eps_growth_pct=round_half_up(eps_growth_pct, 2),
        per_growth_pct=round_half_up(per_growth_pct, 2),
        fvb_score=round_half_up(fvb_score, 4),
        hgs_score=round_half_up(hgs_score, 2),
        rrs_score=round_half_up(rrs_score, 2),
    )


def classify_quadrant(eps_growth: float, per_growth: float) -> QuadrantCoords:
    if eps_growth >= 0 and per_growth >= 0:
        quad = QuadPosition.Q1_GROWTH_RERATING
    elif eps_growth >= 0:
        quad = QuadPosition.Q2_GROWTH_DERATING
    elif per_growth >= 0:
        quad = QuadPosition.Q3_DECLINE_RERATING
    else:
        quad = QuadPosition.Q4_DECLINE_DERATING

    return QuadrantCoords(
        quad_x=round_half_up(eps_growth, 2),
        quad_y=round_half_up(per_growth, 2),
        quad_position=quad,
    )


def calculate_consensus_result(pair: YearPair) -> ConsensusCalculationResult:
    """
    Edge-case screen, then metrics + quadrant for NORMAL pairs.

    The raw pair is always carried on the result for audit.
    """
    edge = detect_edge_case(pair)
    if not should_calculate(edge.status):
        return ConsensusCalculationResult(status=edge.status, reason=edge.reason, pair=pair)

    metrics = calculate_metrics(pair)
    quadrant = classify_quadrant(metrics.eps_growth_pct, metrics.per_growth_pct)
    return ConsensusCalculationResult(
        status=edge.status,
        reason=None,
        pair=pair,
        computed=ComputedValues(metrics=metrics, quadrant=quadrant),
    )


def calculate_batch(pairs: Iterable[TickerYearPair]) -> dict[str, ConsensusCalculationResult]:
    """
    Assemble one result per ticker. Tickers are independent of each other.

    Keyed by ticker: pass one year pair per ticker (a later pair for the
    same ticker replaces an earlier one).
    """
    results: dict[str, ConsensusCalculationResult] = {}
    for item in pairs:
        if item.ticker in results:
            logger.debug("[CONSENSUS] %s: duplicate ticker in batch, keeping %d-%d pair",
                         item.ticker, item.pair.target_y1, item.pair.target_y2)
        results[item.ticker] = calculate_consensus_result(item.pair)
    return results
