import math

import numpy as np
from numba import njit

from .models import CandleSeries, Condition, TimeframeResult

TREND_EMA_PERIOD = 155
BASELINE_PERIOD = 55
NOISE_BUFFER_PCT = 0.001


@njit("f8[:](f8[:], i8)", nogil=True, cache=True)
def ema_loop(data, period):
    """EMA seeded with the SMA of the first full window; NaN before that - O(n)"""
    n = len(data)
    out = np.full(n, np.nan, dtype=np.float64)
    if period <= 0 or n < period:
        return out

    alpha = 2.0 / (period + 1.0)
    seed = 0.0
    for i in range(period):
        seed += data[i]
    out[period - 1] = seed / period
    for i in range(period, n):
        out[i] = alpha * data[i] + (1.0 - alpha) * out[i - 1]
    return out


@njit("f8[:](f8[:], f8[:], i8)", nogil=True, cache=True)
def rolling_midpoint(high, low, period):
    """(highest high + lowest low) / 2 over a trailing window, Kijun-sen style"""
    n = len(high)
    out = np.full(n, np.nan, dtype=np.float64)
    if period <= 0:
        return out
    for i in range(period - 1, n):
        hi = high[i]
        lo = low[i]
        for j in range(i - period + 1, i):
            if high[j] > hi:
                hi = high[j]
            if low[j] < lo:
                lo = low[j]
        out[i] = (hi + lo) / 2.0
    return out


def classify(price: float, value: float, buffer_pct: float = NOISE_BUFFER_PCT) -> Condition:
    # Strict comparisons: landing exactly on the buffer edge is never "above"/"below".
    if math.isnan(price) or math.isnan(value):
        return Condition.NONE
    buffer = price * buffer_pct
    if price > value + buffer:
        return Condition.ABOVE
    if price < value - buffer:
        return Condition.BELOW
    return Condition.NONE


def compute_conditions(
    series: CandleSeries,
    trend_period: int = TREND_EMA_PERIOD,
    baseline_period: int = BASELINE_PERIOD,
    buffer_pct: float = NOISE_BUFFER_PCT,
) -> TimeframeResult:
    """
    Classify the latest close against the trend EMA and the baseline.

    Series shorter than a look-back yield a NaN value for that indicator and
    therefore a ``none`` condition; the fetch window is sized by the caller.
    """
    closes = series.closes
    trend = ema_loop(closes, trend_period)
    baseline = rolling_midpoint(series.highs, series.lows, baseline_period)

    trend_value = float(trend[-1]) if len(trend) else float("nan")
    baseline_value = float(baseline[-1]) if len(baseline) else float("nan")
    price = series.last_close

    return TimeframeResult(
        trend_value=trend_value,
        baseline_value=baseline_value,
        trend_condition=classify(price, trend_value, buffer_pct),
        baseline_condition=classify(price, baseline_value, buffer_pct),
    )
