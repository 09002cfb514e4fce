import asyncio
from typing import Dict, Iterable, List, Optional, Tuple

from trend_sweep.config import BotConfig
from trend_sweep.errors import FetchExhausted
from trend_sweep.models import Candle, CandleSeries

HOUR_MS = 3_600_000
BASE_OPEN_MS = 1_735_689_600_000  # 2025-01-01 00:00 UTC


def kline_rows(closes: Iterable[float], spread: float = 0.5, interval_ms: int = HOUR_MS) -> List[list]:
    """Upstream-shaped kline rows (12 positional fields, decimals as strings)."""
    rows = []
    prev = None
    for i, close in enumerate(closes):
        open_price = close if prev is None else prev
        open_time = BASE_OPEN_MS + i * interval_ms
        rows.append([
            open_time,
            f"{open_price:.8f}",
            f"{max(open_price, close) + spread:.8f}",
            f"{min(open_price, close) - spread:.8f}",
            f"{close:.8f}",
            "1000.00000000",
            open_time + interval_ms - 1,
            f"{close * 1000:.8f}",
            42,
            "500.00000000",
            f"{close * 500:.8f}",
            "0",
        ])
        prev = close
    return rows


def make_series(
    closes: Iterable[float],
    symbol: str = "BTCUSDT",
    interval: str = "1h",
    spread: float = 0.5,
) -> CandleSeries:
    candles = []
    prev = None
    for i, close in enumerate(closes):
        open_price = close if prev is None else prev
        open_time = BASE_OPEN_MS + i * HOUR_MS
        candles.append(Candle(
            open_time=open_time,
            open=open_price,
            high=max(open_price, close) + spread,
            low=min(open_price, close) - spread,
            close=close,
            volume=1000.0,
            close_time=open_time + HOUR_MS - 1,
        ))
        prev = close
    return CandleSeries(symbol=symbol, interval=interval, candles=tuple(candles))


def uptrend(count: int = 200, start: float = 100.0, step: float = 1.0) -> List[float]:
    return [start + i * step for i in range(count)]


def downtrend(count: int = 200, start: float = 400.0, step: float = 1.0) -> List[float]:
    return [start - i * step for i in range(count)]


def flat(count: int = 200, price: float = 100.0) -> List[float]:
    return [price] * count


def make_config(**overrides) -> BotConfig:
    params = {
        "SYMBOLS": ["BTCUSDT"],
        "TIMEFRAMES": ["1h"],
        "BATCH_DELAY_SECONDS": 0.0,
        "HEALTH_SERVER_ENABLED": False,
    }
    params.update(overrides)
    return BotConfig(**params)


class FakeClock:
    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stands in for asyncio.sleep; optionally moves a FakeClock forward."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


class FakeKlinesClient:
    """get_klines() stand-in: per-symbol closes, optional failures before success."""

    def __init__(self, closes_by_symbol: Dict[str, List[float]], failures: int = 0, error: Exception = None):
        self.closes_by_symbol = closes_by_symbol
        self.failures = failures
        self.error = error or RuntimeError("connection reset")
        self.calls: List[Tuple[str, str, int]] = []

    async def get_klines(self, symbol: str, interval: str, limit: int) -> List[list]:
        self.calls.append((symbol, interval, limit))
        if len(self.calls) <= self.failures:
            raise self.error
        return kline_rows(self.closes_by_symbol[symbol][-limit:])


class StaticFetcher:
    """RetryingFetcher stand-in returning canned series; listed symbols exhaust."""

    def __init__(self, closes_by_symbol: Dict[str, List[float]], failing: Iterable[str] = ()):
        self.closes_by_symbol = closes_by_symbol
        self.failing = set(failing)
        self.calls: List[Tuple[str, str, int]] = []

    async def fetch(self, symbol: str, interval: str, limit: int, max_retries: Optional[int] = None) -> CandleSeries:
        self.calls.append((symbol, interval, limit))
        if symbol in self.failing:
            raise FetchExhausted(symbol, interval, 3, RuntimeError("HTTP 500"))
        return make_series(self.closes_by_symbol[symbol][-limit:], symbol=symbol, interval=interval)


class RecordingNotifier:
    def __init__(self, failing_chats: Iterable[str] = ()):
        self.failing_chats = set(failing_chats)
        self.sent: List[Tuple[str, str]] = []
        self.edits: List[Tuple[str, int, str]] = []

    async def send_text(self, chat_id: str, text: str, parse_mode: str = "HTML") -> Optional[int]:
        if chat_id in self.failing_chats:
            raise RuntimeError("chat not found")
        self.sent.append((chat_id, text))
        return len(self.sent)

    async def edit_text(self, chat_id: str, message_id: int, text: str) -> None:
        self.edits.append((chat_id, message_id, text))


class YieldingFetcher(StaticFetcher):
    """StaticFetcher that yields to the loop first, like a real network call."""

    async def fetch(self, symbol: str, interval: str, limit: int, max_retries: Optional[int] = None) -> CandleSeries:
        await asyncio.sleep(0)
        return await super().fetch(symbol, interval, limit, max_retries)
