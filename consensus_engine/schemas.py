"""
Consensus engine data types.

A result is either "computed" (status NORMAL, metrics + quadrant present)
or "skipped" (TURNAROUND / DEFICIT / ERROR, no metrics). The `computed`
block is a single optional field so the two shapes cannot be mixed:

    quad_position is not None  <=>  calc_status == NORMAL  <=>  fvb_score is not None

All records are frozen; nothing in the engine mutates its inputs.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date
from typing import Any


class CalcStatus(str, enum.Enum):
    NORMAL = "NORMAL"
    TURNAROUND = "TURNAROUND"
    DEFICIT = "DEFICIT"
    ERROR = "ERROR"


class QuadPosition(str, enum.Enum):
    Q1_GROWTH_RERATING = "Q1_GROWTH_RERATING"    # EPS up, PER up
    Q2_GROWTH_DERATING = "Q2_GROWTH_DERATING"    # EPS up, PER down (target zone)
    Q3_DECLINE_RERATING = "Q3_DECLINE_RERATING"  # EPS down, PER up
    Q4_DECLINE_DERATING = "Q4_DECLINE_DERATING"  # EPS down, PER down


class SignalTag(str, enum.Enum):
    HEALTHY_DERATING = "HEALTHY_DERATING"
    TURNAROUND = "TURNAROUND"
    HIGH_GROWTH = "HIGH_GROWTH"
    OVERHEAT = "OVERHEAT"
    IMPROVING_TREND = "IMPROVING_TREND"
    DECLINING_TREND = "DECLINING_TREND"
    QUAD_SHIFT = "QUAD_SHIFT"
    DEFICIT_IMPROVING = "DEFICIT_IMPROVING"


class TrendDirection(str, enum.Enum):
    IMPROVING = "IMPROVING"
    DECLINING = "DECLINING"
    STABLE = "STABLE"


class Outlook(str, enum.Enum):
    UPGRADED = "UPGRADED"
    DOWNGRADED = "DOWNGRADED"
    STABLE = "STABLE"
    MIXED = "MIXED"


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class YearPair:
    target_y1: int
    target_y2: int
    eps_y1: float | None
    eps_y2: float | None
    per_y1: float | None
    per_y2: float | None


@dataclass(frozen=True)
class TickerYearPair:
    """A YearPair tagged with the company it belongs to (batch input)."""
    ticker: str
    company_id: int
    pair: YearPair


@dataclass(frozen=True)
class EdgeCaseResult:
    status: CalcStatus
    reason: str | None = None


# ---------------------------------------------------------------------------
# Calculation outputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CalculatedMetrics:
    eps_growth_pct: float
    per_growth_pct: float
    fvb_score: float
    hgs_score: float
    rrs_score: float


@dataclass(frozen=True)
class QuadrantCoords:
    quad_x: float
    quad_y: float
    quad_position: QuadPosition


@dataclass(frozen=True)
class ComputedValues:
    metrics: CalculatedMetrics
    quadrant: QuadrantCoords


@dataclass(frozen=True)
class ConsensusCalculationResult:
    status: CalcStatus
    reason: str | None
    pair: YearPair
    computed: ComputedValues | None = None

    def __post_init__(self) -> None:
        if self.status is CalcStatus.NORMAL and self.computed is None:
            raise ValueError("NORMAL result requires computed metrics")
        if self.status is not CalcStatus.NORMAL and self.computed is not None:
            raise ValueError(f"{self.status.value} result must not carry metrics")

    def _metric(self, name: str) -> float | None:
        return getattr(self.computed.metrics, name) if self.computed else None

    @property
    def eps_growth_pct(self) -> float | None:
        return self._metric("eps_growth_pct")

    @property
    def per_growth_pct(self) -> float | None:
        return self._metric("per_growth_pct")

    @property
    def fvb_score(self) -> float | None:
        return self._metric("fvb_score")

    @property
    def hgs_score(self) -> float | None:
        return self._metric("hgs_score")

    @property
    def rrs_score(self) -> float | None:
        return self._metric("rrs_score")

    @property
    def quad_position(self) -> QuadPosition | None:
        return self.computed.quadrant.quad_position if self.computed else None

    @property
    def quad_x(self) -> float | None:
        return self.computed.quadrant.quad_x if self.computed else None

    @property
    def quad_y(self) -> float | None:
        return self.computed.quadrant.quad_y if self.computed else None

    def to_row(self) -> dict[str, Any]:
        """Flatten to the consensus_metric_daily column names."""
        return {
            "calc_status": self.status.value,
            "calc_error": self.reason,
            "eps_y1": self.pair.eps_y1,
            "eps_y2": self.pair.eps_y2,
            "per_y1": self.pair.per_y1,
            "per_y2": self.pair.per_y2,
            "eps_growth_pct": self.eps_growth_pct,
            "per_growth_pct": self.per_growth_pct,
            "fvb_score": self.fvb_score,
            "hgs_score": self.hgs_score,
            "rrs_score": self.rrs_score,
            "quad_position": self.quad_position.value if self.quad_position else None,
            "quad_x": self.quad_x,
            "quad_y": self.quad_y,
        }


@dataclass(frozen=True)
class MetricSnapshot:
    """
    A ConsensusCalculationResult bound to its identity key
    (snapshot_date, ticker, company_id, target_y1, target_y2).

    Also used to carry historical rows read back from the store, so the
    diff builder and tag generator only ever see one shape.
    """
    snapshot_date: date
    ticker: str
    company_id: int
    result: ConsensusCalculationResult

    @property
    def target_y1(self) -> int:
        return self.result.pair.target_y1

    @property
    def target_y2(self) -> int:
        return self.result.pair.target_y2

    @property
    def calc_status(self) -> CalcStatus:
        return self.result.status

    @property
    def eps_growth_pct(self) -> float | None:
        return self.result.eps_growth_pct

    @property
    def per_growth_pct(self) -> float | None:
        return self.result.per_growth_pct

    @property
    def fvb_score(self) -> float | None:
        return self.result.fvb_score

    @property
    def hgs_score(self) -> float | None:
        return self.result.hgs_score

    @property
    def rrs_score(self) -> float | None:
        return self.result.rrs_score

    @property
    def quad_position(self) -> QuadPosition | None:
        return self.result.quad_position

    def to_row(self) -> dict[str, Any]:
        return {
            "snapshot_date": self.snapshot_date,
            "ticker": self.ticker,
            "company_id": self.company_id,
            "target_y1": self.target_y1,
            "target_y2": self.target_y2,
            **self.result.to_row(),
        }


# ---------------------------------------------------------------------------
# Diff log
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HorizonDiff:
    fvb_diff: float | None = None
    hgs_diff: float | None = None
    rrs_diff: float | None = None
    quad_shift: str | None = None


@dataclass(frozen=True)
class AlertFlags:
    is_overheat: bool
    is_target_zone: bool
    is_turnaround: bool
    is_high_growth: bool
    is_healthy: bool


@dataclass(frozen=True)
class ConsensusDiffLog:
    snapshot_date: date
    ticker: str
    company_id: int
    target_y1: int
    target_y2: int
    d1: HorizonDiff
    w1: HorizonDiff
    m1: HorizonDiff
    signal_tags: frozenset[SignalTag]
    fvb_trend: TrendDirection | None
    hgs_trend: TrendDirection | None
    rrs_trend: TrendDirection | None
    flags: AlertFlags
    tag_count: int = field(init=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "tag_count", len(self.signal_tags))

    def to_row(self) -> dict[str, Any]:
        """Flatten to the consensus_diff_log column names."""
        row: dict[str, Any] = {
            "snapshot_date": self.snapshot_date,
            "ticker": self.ticker,
            "company_id": self.company_id,
            "target_y1": self.target_y1,
            "target_y2": self.target_y2,
        }
        for suffix, horizon in (("d1", self.d1), ("w1", self.w1), ("m1", self.m1)):
            row[f"fvb_diff_{suffix}"] = horizon.fvb_diff
            row[f"hgs_diff_{suffix}"] = horizon.hgs_diff
            row[f"rrs_diff_{suffix}"] = horizon.rrs_diff
            row[f"quad_shift_{suffix}"] = horizon.quad_shift
        row["signal_tags"] = sorted(t.value for t in self.signal_tags)
        row["tag_count"] = self.tag_count
        row["fvb_trend"] = self.fvb_trend.value if self.fvb_trend else None
        row["hgs_trend"] = self.hgs_trend.value if self.hgs_trend else None
        row["rrs_trend"] = self.rrs_trend.value if self.rrs_trend else None
        row.update(
            is_overheat=self.flags.is_overheat,
            is_target_zone=self.flags.is_target_zone,
            is_turnaround=self.flags.is_turnaround,
            is_high_growth=self.flags.is_high_growth,
            is_healthy=self.flags.is_healthy,
        )
        return row
