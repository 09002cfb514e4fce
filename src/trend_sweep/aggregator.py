from __future__ import annotations

import asyncio
import logging
from types import MappingProxyType
from typing import List, Mapping, Optional, Sequence

from .indicators import BASELINE_PERIOD, NOISE_BUFFER_PCT, TREND_EMA_PERIOD, compute_conditions
from .models import AnalysisSummary, CandleSeries, Condition, InstrumentAnalysis, TimeframeResult

logger = logging.getLogger("trend_sweep.aggregator")


def summarize(results: Mapping[str, TimeframeResult]) -> AnalysisSummary:
    values = list(results.values())

    def every(trend: Optional[Condition] = None, baseline: Optional[Condition] = None) -> bool:
        return all(
            (trend is None or r.trend_condition == trend)
            and (baseline is None or r.baseline_condition == baseline)
            for r in values
        )

    return AnalysisSummary(
        below_all_trend=every(trend=Condition.BELOW),
        below_all_baseline=every(baseline=Condition.BELOW),
        below_all_both=every(Condition.BELOW, Condition.BELOW),
        above_all_trend=every(trend=Condition.ABOVE),
        above_all_baseline=every(baseline=Condition.ABOVE),
        above_all_both=every(Condition.ABOVE, Condition.ABOVE),
    )


def aggregate(symbol: str, current_price: float, results: Mapping[str, TimeframeResult]) -> InstrumentAnalysis:
    assert results, "aggregate() needs at least one timeframe"
    return InstrumentAnalysis(
        symbol=symbol,
        current_price=current_price,
        timeframes=MappingProxyType(dict(results)),
        summary=summarize(results),
    )


class InstrumentAnalyzer:
    """Fetches every configured timeframe for a symbol and folds them into one analysis."""

    def __init__(
        self,
        fetcher,
        timeframes: Sequence[str],
        candle_limit: int = 200,
        trend_period: int = TREND_EMA_PERIOD,
        baseline_period: int = BASELINE_PERIOD,
        buffer_pct: float = NOISE_BUFFER_PCT,
    ):
        if not timeframes:
            raise ValueError("at least one timeframe is required")
        self.fetcher = fetcher
        self.timeframes = list(timeframes)
        self.candle_limit = candle_limit
        self.trend_period = trend_period
        self.baseline_period = baseline_period
        self.buffer_pct = buffer_pct

    async def fetch_all(self, symbol: str) -> List[CandleSeries]:
        # Fan out per timeframe; every fetch still goes through the shared limiter.
        outcomes = await asyncio.gather(
            *(self.fetcher.fetch(symbol, tf, self.candle_limit) for tf in self.timeframes),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        return outcomes

    async def analyze(self, symbol: str) -> InstrumentAnalysis:
        series_list = await self.fetch_all(symbol)
        results = {
            timeframe: compute_conditions(
                series, self.trend_period, self.baseline_period, self.buffer_pct
            )
            for timeframe, series in zip(self.timeframes, series_list)
        }
        analysis = aggregate(symbol, series_list[0].last_close, results)
        logger.debug(
            f"{symbol} analyzed | price={analysis.current_price} | "
            f"above_all_both={analysis.summary.above_all_both} | below_all_both={analysis.summary.below_all_both}"
        )
        return analysis
