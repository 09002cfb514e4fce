from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Mapping, Optional, Tuple

import numpy as np


@dataclass(frozen=True)
class Candle:
    open_time: int         # unix ms
    open: float
    high: float
    low: float
    close: float
    volume: float
    close_time: int        # unix ms
    quote_volume: float = 0.0
    trade_count: int = 0
    taker_buy_base_volume: float = 0.0
    taker_buy_quote_volume: float = 0.0


@dataclass(frozen=True)
class CandleSeries:
    """Chronological candles for one (symbol, interval) pair."""

    symbol: str
    interval: str
    candles: Tuple[Candle, ...]

    def __len__(self) -> int:
        return len(self.candles)

    @property
    def closes(self) -> np.ndarray:
        return np.array([c.close for c in self.candles], dtype=np.float64)

    @property
    def highs(self) -> np.ndarray:
        return np.array([c.high for c in self.candles], dtype=np.float64)

    @property
    def lows(self) -> np.ndarray:
        return np.array([c.low for c in self.candles], dtype=np.float64)

    @property
    def last_close(self) -> float:
        if not self.candles:
            return float("nan")
        return self.candles[-1].close


class Condition(str, Enum):
    ABOVE = "above"
    BELOW = "below"
    NONE = "none"


@dataclass(frozen=True)
class TimeframeResult:
    trend_value: float
    baseline_value: float
    trend_condition: Condition
    baseline_condition: Condition


@dataclass(frozen=True)
class AnalysisSummary:
    below_all_trend: bool
    below_all_baseline: bool
    below_all_both: bool
    above_all_trend: bool
    above_all_baseline: bool
    above_all_both: bool

    @property
    def aligned(self) -> bool:
        return self.above_all_both or self.below_all_both


@dataclass(frozen=True)
class InstrumentAnalysis:
    symbol: str
    current_price: float
    timeframes: Mapping[str, TimeframeResult]  # read-only view
    summary: AnalysisSummary


@dataclass(frozen=True)
class AlertState:
    above_all_both: bool
    below_all_both: bool

    @classmethod
    def from_summary(cls, summary: AnalysisSummary) -> "AlertState":
        return cls(above_all_both=summary.above_all_both, below_all_both=summary.below_all_both)

    @property
    def aligned(self) -> bool:
        return self.above_all_both or self.below_all_both


@dataclass
class SubscriberStatus:
    chat_id: str
    active: bool = True
    last_alert_at: Optional[float] = None


@dataclass
class SweepReport:
    started_at: float
    duration: float = 0.0
    analyses: List[InstrumentAnalysis] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)
    alerts_sent: int = 0
