import asyncio
import re
from typing import Optional

import aiohttp


class TrendSweepError(Exception):
    pass


class ConfigError(TrendSweepError):
    pass


class TransientUpstreamError(TrendSweepError):
    """Upstream failure worth retrying (HTTP error status, network hiccup)."""


class UpstreamHTTPError(TransientUpstreamError):
    def __init__(self, status: int, body: str = ""):
        self.status = status
        self.body = body
        super().__init__(f"HTTP {status}: {body[:200]}")


class QuotaExceeded(UpstreamHTTPError):
    pass


class MalformedPayload(TrendSweepError):
    pass


class FetchExhausted(TrendSweepError):
    def __init__(self, symbol: str, interval: str, attempts: int, last_error: Optional[BaseException] = None):
        self.symbol = symbol
        self.interval = interval
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error}" if last_error is not None else ""
        super().__init__(f"{symbol} {interval} failed after {attempts} attempts{detail}")


class NotificationError(TrendSweepError):
    pass


QUOTA_STATUSES = (418, 429)
QUOTA_ERROR_CODE = "-1003"

# only for errors that carry no HTTP status of their own
_QUOTA_TEXT = re.compile(r"\bHTTP (429|418)\b|-1003|too many requests|rate limit", re.IGNORECASE)


class RetryCategory:
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    API_ERROR = "api_error"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


def is_quota_exceeded(exc: BaseException) -> bool:
    if isinstance(exc, QuotaExceeded):
        return True
    if isinstance(exc, UpstreamHTTPError):
        return exc.status in QUOTA_STATUSES or QUOTA_ERROR_CODE in exc.body
    return bool(_QUOTA_TEXT.search(str(exc)))


def categorize_exception(exc: BaseException) -> str:
    if isinstance(exc, asyncio.TimeoutError):
        return RetryCategory.TIMEOUT
    if is_quota_exceeded(exc):
        return RetryCategory.RATE_LIMIT
    if isinstance(exc, UpstreamHTTPError):
        return RetryCategory.API_ERROR
    if isinstance(exc, aiohttp.ClientResponseError):
        return RetryCategory.API_ERROR
    if isinstance(exc, aiohttp.ClientError):
        return RetryCategory.NETWORK
    return RetryCategory.UNKNOWN
