from __future__ import annotations

import html
import logging
import time
from typing import Callable, Optional

from .aggregator import InstrumentAnalyzer
from .config import BotConfig
from .models import InstrumentAnalysis, SubscriberStatus, SweepReport
from .notifier import Notifier, format_analysis, format_status, format_sweep_summary
from .scheduler import Scheduler
from .state_store import SubscriberStore

logger = logging.getLogger("trend_sweep.bot")


class TrendAlertBot:
    """
    Subscriber-facing entry points.

    A command router (Telegram updates, HTTP, anything) calls these; parsing
    and help text live outside. Replies go through the same notifier as
    alerts.
    """

    def __init__(
        self,
        cfg: BotConfig,
        analyzer: InstrumentAnalyzer,
        scheduler: Scheduler,
        subscribers: SubscriberStore,
        notifier: Notifier,
        clock: Callable[[], float] = time.time,
    ):
        self.cfg = cfg
        self.analyzer = analyzer
        self.scheduler = scheduler
        self.subscribers = subscribers
        self.notifier = notifier
        self._clock = clock
        self.last_force_check: Optional[float] = None

    async def toggle_alerts(self, chat_id: str) -> bool:
        active = self.subscribers.toggle(chat_id)
        text = "🔔 Alerts enabled" if active else "🔕 Alerts disabled"
        await self.notifier.send_text(chat_id, text)
        return active

    async def status(self, chat_id: str) -> SubscriberStatus:
        status = self.subscribers.get(chat_id) or SubscriberStatus(chat_id=str(chat_id), active=False)
        await self.notifier.send_text(chat_id, format_status(status.active, status.last_alert_at))
        return status

    async def analyze_coin(self, chat_id: str, symbol: str) -> Optional[InstrumentAnalysis]:
        symbol = symbol.strip().upper()
        try:
            analysis = await self.analyzer.analyze(symbol)
        except Exception as e:
            logger.warning(f"On-demand analysis of {symbol} failed: {e}")
            await self.notifier.send_text(chat_id, f"❌ <b>{html.escape(symbol)}</b>: {html.escape(str(e))}")
            return None
        await self.notifier.send_text(chat_id, format_analysis(analysis))
        return analysis

    async def run_periodic_check(self) -> SweepReport:
        return await self.scheduler.run_sweep()

    async def force_check(self, chat_id: str) -> Optional[SweepReport]:
        now = self._clock()
        cooldown = self.cfg.FORCE_CHECK_COOLDOWN_SECONDS
        if self.last_force_check is not None and now - self.last_force_check < cooldown:
            remaining = cooldown - (now - self.last_force_check)
            await self.notifier.send_text(chat_id, f"⏳ Please wait {int(remaining // 60) + 1} min before the next check")
            return None
        if self.scheduler.sweep_running:
            await self.notifier.send_text(chat_id, "⏳ A check is already running, results will follow")
            return None

        self.last_force_check = now
        message_id = await self.notifier.send_text(chat_id, "🔍 Running check...")
        report = await self.run_periodic_check()
        summary = format_sweep_summary(report)
        if message_id is not None:
            await self.notifier.edit_text(chat_id, message_id, summary)
        else:
            await self.notifier.send_text(chat_id, summary)
        return report
