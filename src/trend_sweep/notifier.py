from __future__ import annotations

import asyncio
import html
import logging
import random
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import aiohttp

from .config import Constants
from .errors import NotificationError
from .fetcher import SessionManager
from .models import AlertState, Condition, InstrumentAnalysis, SweepReport
from .rate_limiter import RateLimiter

logger = logging.getLogger("trend_sweep.notifier")


class Notifier(Protocol):
    async def send_text(self, chat_id: str, text: str, parse_mode: str = "HTML") -> Optional[int]:
        ...

    async def edit_text(self, chat_id: str, message_id: int, text: str) -> None:
        ...


class TelegramNotifier:
    """sendMessage / editMessageText over the Telegram Bot API, paced by the shared limiter."""

    def __init__(
        self,
        token: str,
        rate_limiter: RateLimiter,
        sessions: SessionManager,
        retries: int = 3,
        api_base: str = Constants.TELEGRAM_API_BASE,
    ):
        self.token = token
        self.rate_limiter = rate_limiter
        self.sessions = sessions
        self.retries = retries
        self.api_base = api_base.rstrip("/")

    async def _call(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.api_base}/bot{self.token}/{method}"
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.retries + 1):
            await self.rate_limiter.wait()
            session = await self.sessions.get_session()
            try:
                async with session.post(url, json=payload) as resp:
                    status = resp.status
                    if status == 429:
                        wait_sec = min(int(resp.headers.get("Retry-After", 1)), Constants.RETRY_AFTER_MAX_WAIT)
                        logger.warning(f"Telegram rate limited, waiting {wait_sec}s")
                        last_error = NotificationError("Telegram API error 429")
                        await asyncio.sleep(wait_sec + random.uniform(0.1, 0.5))
                        continue
                    if status == 200:
                        return await resp.json()
                    body = await resp.text()
            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                last_error = e
                logger.warning(f"Telegram {method} attempt {attempt} failed: {e}")
            else:
                if status in (400, 401, 403, 404):
                    raise NotificationError(f"Telegram API error {status} - check token/chat_id: {body[:200]}")
                last_error = NotificationError(f"Telegram API error {status}")
                logger.warning(f"Telegram {method} attempt {attempt} failed: HTTP {status}")
            if attempt < self.retries:
                await asyncio.sleep(min(2 ** (attempt - 1), 30))

        raise NotificationError(f"Telegram {method} failed after {self.retries} attempts: {last_error}")

    async def send_text(self, chat_id: str, text: str, parse_mode: str = "HTML") -> Optional[int]:
        data = await self._call("sendMessage", {
            "chat_id": chat_id,
            "text": text[:Constants.TELEGRAM_MAX_MESSAGE_LENGTH],
            "parse_mode": parse_mode,
            "disable_web_page_preview": True,
        })
        return (data.get("result") or {}).get("message_id")

    async def edit_text(self, chat_id: str, message_id: int, text: str) -> None:
        await self._call("editMessageText", {
            "chat_id": chat_id,
            "message_id": message_id,
            "text": text[:Constants.TELEGRAM_MAX_MESSAGE_LENGTH],
            "parse_mode": "HTML",
        })


class LoggingNotifier:
    """Dry-run transport: logs what would have been sent."""

    def __init__(self):
        self._next_id = 0

    async def send_text(self, chat_id: str, text: str, parse_mode: str = "HTML") -> Optional[int]:
        self._next_id += 1
        logger.info(f"[DRY RUN] message #{self._next_id}:\n{text}")
        return self._next_id

    async def edit_text(self, chat_id: str, message_id: int, text: str) -> None:
        logger.info(f"[DRY RUN] edit #{message_id}:\n{text}")


_CONDITION_MARK = {
    Condition.ABOVE: "🟢 above",
    Condition.BELOW: "🔴 below",
    Condition.NONE: "⚪ none",
}


def _fmt_price(value: float) -> str:
    if value != value:
        return "n/a"
    return f"{value:,.4f}" if value < 10 else f"{value:,.2f}"


def _fmt_ts(ts: Optional[float]) -> str:
    if ts is None:
        return "never"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%d-%m-%Y %H:%M UTC")


def format_analysis(analysis: InstrumentAnalysis) -> str:
    lines = [f"<b>{html.escape(analysis.symbol)}</b> - {_fmt_price(analysis.current_price)}"]
    for timeframe, result in analysis.timeframes.items():
        lines.append(
            f"{html.escape(timeframe)}: EMA {_fmt_price(result.trend_value)} {_CONDITION_MARK[result.trend_condition]}"
            f" | Base {_fmt_price(result.baseline_value)} {_CONDITION_MARK[result.baseline_condition]}"
        )
    summary = analysis.summary
    if summary.above_all_both:
        lines.append("<b>Above EMA and baseline on all timeframes</b>")
    elif summary.below_all_both:
        lines.append("<b>Below EMA and baseline on all timeframes</b>")
    return "\n".join(lines)


def format_alert(analysis: InstrumentAnalysis, previous: Optional[AlertState] = None) -> str:
    summary = analysis.summary
    if summary.above_all_both:
        headline = "🚀 <b>ALL TIMEFRAMES ABOVE</b>"
    elif summary.below_all_both:
        headline = "🔻 <b>ALL TIMEFRAMES BELOW</b>"
    elif previous is not None and previous.above_all_both:
        headline = "⚠️ <b>Left the all-above state</b>"
    elif previous is not None and previous.below_all_both:
        headline = "⚠️ <b>Left the all-below state</b>"
    else:
        headline = "ℹ️ <b>State change</b>"
    return f"{headline}\n{format_analysis(analysis)}"


def format_sweep_summary(report: SweepReport) -> str:
    lines = [
        "<b>Check complete</b>",
        f"Analyzed: {len(report.analyses)} | Skipped: {len(report.skipped)} | Alerts: {report.alerts_sent}",
        f"Duration: {report.duration:.1f}s",
    ]
    for symbol, reason in report.skipped:
        lines.append(f"❌ {html.escape(symbol)}: {html.escape(reason[:120])}")
    return "\n".join(lines)


def format_status(active: bool, last_alert_at: Optional[float]) -> str:
    state = "ON ✅" if active else "OFF ⏸"
    return f"<b>Alerts:</b> {state}\n<b>Last alert:</b> {_fmt_ts(last_alert_at)}"
