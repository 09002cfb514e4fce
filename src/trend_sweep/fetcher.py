from __future__ import annotations

import asyncio
import logging
import ssl
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import aiohttp
import orjson
from aiohttp import TCPConnector

from . import __version__
from .config import BotConfig
from .errors import (
    QUOTA_STATUSES,
    FetchExhausted,
    MalformedPayload,
    QuotaExceeded,
    UpstreamHTTPError,
    categorize_exception,
    is_quota_exceeded,
)
from .models import Candle, CandleSeries
from .rate_limiter import RateLimiter

logger = logging.getLogger("trend_sweep.fetcher")

KLINE_FIELDS = 12


class SessionManager:
    """Owns the pooled aiohttp session shared by the market-data and Telegram clients."""

    _session_reuse_limit = 2000

    def __init__(self, cfg: BotConfig):
        self.cfg = cfg
        self._session: Optional[aiohttp.ClientSession] = None
        self._ssl_context: Optional[ssl.SSLContext] = None
        self._lock = asyncio.Lock()
        self._creation_time = 0.0
        self._request_count = 0

    def _get_ssl_context(self) -> ssl.SSLContext:
        if self._ssl_context is None:
            ctx = ssl.create_default_context()
            ctx.minimum_version = ssl.TLSVersion.TLSv1_2
            self._ssl_context = ctx
        return self._ssl_context

    def _usable(self) -> bool:
        return (
            self._session is not None
            and not self._session.closed
            and self._request_count < self._session_reuse_limit
        )

    async def get_session(self) -> aiohttp.ClientSession:
        if self._usable():
            return self._session

        async with self._lock:
            if self._usable():
                return self._session

            if self._session is not None and not self._session.closed:
                logger.info(f"Session recreation triggered: request limit reached ({self._request_count})")
                await self._session.close()

            connector = TCPConnector(
                limit=self.cfg.TCP_CONN_LIMIT,
                limit_per_host=self.cfg.TCP_CONN_LIMIT_PER_HOST,
                ssl=self._get_ssl_context(),
                ttl_dns_cache=3600,
                keepalive_timeout=90,
            )
            timeout = aiohttp.ClientTimeout(
                total=self.cfg.HTTP_TIMEOUT,
                connect=8,
                sock_read=self.cfg.HTTP_TIMEOUT,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=timeout,
                headers={
                    "User-Agent": f"trend-sweep-bot/{__version__}",
                    "Accept": "application/json",
                },
                raise_for_status=False,
            )
            self._creation_time = time.time()
            self._request_count = 0
            logger.debug("HTTP session created")
            return self._session

    def track_request(self) -> None:
        self._request_count += 1

    async def close(self) -> None:
        async with self._lock:
            if self._session is not None and not self._session.closed:
                age = time.time() - self._creation_time
                logger.debug(f"Closing HTTP session | Age: {age:.1f}s | Requests served: {self._request_count}")
                await self._session.close()
                logger.info("HTTP session closed")
            self._session = None
            self._request_count = 0

    def get_stats(self) -> Dict[str, Any]:
        if self._session is None:
            return {"active": False, "request_count": 0}
        return {
            "active": not self._session.closed,
            "request_count": self._request_count,
            "age_seconds": round(time.time() - self._creation_time, 1),
        }


class KlinesClient:
    """Thin client for ``GET /klines`` on a Binance-compatible REST API."""

    def __init__(self, api_base: str, sessions: SessionManager):
        self.api_base = api_base.rstrip("/")
        self.sessions = sessions

    async def get_klines(self, symbol: str, interval: str, limit: int) -> List[List[Any]]:
        session = await self.sessions.get_session()
        params = {"symbol": symbol, "interval": interval, "limit": str(limit)}
        async with session.get(f"{self.api_base}/klines", params=params) as resp:
            self.sessions.track_request()
            if resp.status in QUOTA_STATUSES:
                raise QuotaExceeded(resp.status, await resp.text())
            if resp.status < 200 or resp.status >= 300:
                raise UpstreamHTTPError(resp.status, await resp.text())
            return await resp.json(loads=orjson.loads)


def parse_klines(symbol: str, interval: str, rows: Any) -> CandleSeries:
    """Map the positional array-of-arrays kline encoding into a CandleSeries."""
    if not isinstance(rows, list):
        raise MalformedPayload(f"{symbol} {interval}: expected a list of klines, got {type(rows).__name__}")

    candles = []
    for idx, row in enumerate(rows):
        if not isinstance(row, Sequence) or len(row) < KLINE_FIELDS:
            raise MalformedPayload(f"{symbol} {interval}: kline #{idx} has unexpected shape")
        try:
            candles.append(Candle(
                open_time=int(row[0]),
                open=float(row[1]),
                high=float(row[2]),
                low=float(row[3]),
                close=float(row[4]),
                volume=float(row[5]),
                close_time=int(row[6]),
                quote_volume=float(row[7]),
                trade_count=int(row[8]),
                taker_buy_base_volume=float(row[9]),
                taker_buy_quote_volume=float(row[10]),
            ))
        except (TypeError, ValueError) as exc:
            raise MalformedPayload(f"{symbol} {interval}: kline #{idx} is not numeric ({exc})") from exc

    return CandleSeries(symbol=symbol, interval=interval, candles=tuple(candles))


class RetryingFetcher:
    """
    Fetches one candle series with bounded retries.

    Every attempt is paced by the shared RateLimiter. Failed attempts back off
    linearly (``backoff_seconds * attempt``); quota-exceeded errors add a fixed
    cooldown on top. After ``max_retries`` failed attempts FetchExhausted is
    raised, chained to the last underlying error.
    """

    def __init__(
        self,
        client: Any,
        rate_limiter: RateLimiter,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        quota_cooldown_seconds: float = 5.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.rate_limiter = rate_limiter
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.quota_cooldown_seconds = quota_cooldown_seconds
        self._sleep = sleep
        self.fetch_stats = {
            "candles_success": 0,
            "candles_failed": 0,
            "retries": 0,
            "quota_hits": 0,
        }

    async def fetch(
        self,
        symbol: str,
        interval: str,
        limit: int,
        max_retries: Optional[int] = None,
    ) -> CandleSeries:
        retries = self.max_retries if max_retries is None else max_retries
        if limit < 1:
            raise ValueError("limit must be a positive candle count")
        if retries < 1:
            raise ValueError("max_retries must be >= 1")

        for attempt in range(1, retries + 1):
            await self.rate_limiter.wait()
            try:
                rows = await self.client.get_klines(symbol, interval, limit)
                series = parse_klines(symbol, interval, rows)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                category = categorize_exception(exc)
                logger.warning(
                    f"Fetch failed {symbol} {interval} | Attempt {attempt}/{retries} | "
                    f"Category: {category} | Error: {str(exc)[:120]}"
                )
                if attempt >= retries:
                    self.fetch_stats["candles_failed"] += 1
                    raise FetchExhausted(symbol, interval, attempt, exc) from exc

                self.fetch_stats["retries"] += 1
                if is_quota_exceeded(exc):
                    self.fetch_stats["quota_hits"] += 1
                    logger.warning(f"Quota exceeded, cooling down {self.quota_cooldown_seconds:.1f}s")
                    await self._sleep(self.quota_cooldown_seconds)
                await self._sleep(self.backoff_seconds * attempt)
                continue

            self.fetch_stats["candles_success"] += 1
            if attempt > 1:
                logger.info(f"Fetch succeeded after retries | {symbol} {interval} | Attempts: {attempt}")
            return series

        raise RuntimeError("retry loop exited without a result")

    def get_stats(self) -> Dict[str, Any]:
        stats = dict(self.fetch_stats)
        stats["rate_limiter"] = self.rate_limiter.get_stats()
        total = stats["candles_success"] + stats["candles_failed"]
        if total > 0:
            stats["candles_success_rate"] = round(stats["candles_success"] / total * 100, 1)
        return stats
