import asyncio

import pytest

from trend_sweep.aggregator import InstrumentAnalyzer
from trend_sweep.bot import TrendAlertBot
from trend_sweep.dedup import AlertDeduplicator
from trend_sweep.scheduler import Scheduler
from trend_sweep.state_store import AlertStateStore, SubscriberStore
from tests.fixtures import (
    FakeClock,
    RecordingNotifier,
    RecordingSleep,
    StaticFetcher,
    YieldingFetcher,
    make_config,
    uptrend,
)


def make_bot(fetcher=None, chat_ids=("100",)):
    cfg = make_config(SYMBOLS=["BTCUSDT"])
    clock = FakeClock()
    fetcher = fetcher or StaticFetcher({"BTCUSDT": uptrend()})
    analyzer = InstrumentAnalyzer(fetcher, cfg.TIMEFRAMES)
    subscribers = SubscriberStore(chat_ids, clock=clock)
    notifier = RecordingNotifier()
    scheduler = Scheduler(
        cfg,
        analyzer,
        AlertDeduplicator(AlertStateStore()),
        subscribers,
        notifier,
        clock=clock,
        sleep=RecordingSleep(clock),
    )
    bot = TrendAlertBot(cfg, analyzer, scheduler, subscribers, notifier, clock=clock)
    return bot, notifier, clock


class TestForceCheck:
    @pytest.mark.asyncio
    async def test_runs_sweep_and_edits_progress_message(self):
        bot, notifier, _ = make_bot()

        report = await bot.force_check("100")

        assert report is not None
        assert len(report.analyses) == 1
        assert notifier.sent[0] == ("100", "🔍 Running check...")
        chat_id, message_id, text = notifier.edits[0]
        assert chat_id == "100"
        assert message_id == 1
        assert "Check complete" in text
        assert "Analyzed: 1" in text

    @pytest.mark.asyncio
    async def test_cooldown_rejects_second_request(self):
        bot, notifier, clock = make_bot()

        await bot.force_check("100")
        clock.advance(60)
        report = await bot.force_check("200")

        assert report is None
        assert notifier.sent[-1] == ("200", "⏳ Please wait 15 min before the next check")
        assert len(notifier.edits) == 1

    @pytest.mark.asyncio
    async def test_allowed_again_after_cooldown(self):
        bot, notifier, clock = make_bot()

        await bot.force_check("100")
        clock.advance(900)
        report = await bot.force_check("100")

        assert report is not None
        assert len(notifier.edits) == 2

    @pytest.mark.asyncio
    async def test_rejected_while_a_sweep_is_running(self):
        bot, notifier, _ = make_bot(YieldingFetcher({"BTCUSDT": uptrend()}))

        sweep, forced = await asyncio.gather(bot.scheduler.run_sweep(), bot.force_check("100"))

        assert len(sweep.analyses) == 1
        assert forced is None
        assert ("100", "⏳ A check is already running, results will follow") in notifier.sent
        assert notifier.edits == []
        # the rejected request does not start the cooldown
        assert await bot.force_check("100") is not None


class TestSubscriberCommands:
    @pytest.mark.asyncio
    async def test_toggle_flips_subscription(self):
        bot, notifier, _ = make_bot()

        assert await bot.toggle_alerts("100") is False
        assert await bot.toggle_alerts("100") is True
        assert [t for _, t in notifier.sent] == ["🔕 Alerts disabled", "🔔 Alerts enabled"]

    @pytest.mark.asyncio
    async def test_toggle_from_unknown_chat_subscribes(self):
        bot, _, _ = make_bot(chat_ids=())

        assert await bot.toggle_alerts("555") is True
        assert bot.subscribers.active_chat_ids() == ["555"]

    @pytest.mark.asyncio
    async def test_status_reports_state(self):
        bot, notifier, _ = make_bot()

        status = await bot.status("100")

        assert status.active
        assert "ON" in notifier.sent[-1][1]
        assert "never" in notifier.sent[-1][1]

    @pytest.mark.asyncio
    async def test_status_for_unknown_chat_is_inactive(self):
        bot, notifier, _ = make_bot()

        status = await bot.status("999")

        assert not status.active
        assert "OFF" in notifier.sent[-1][1]


class TestAnalyzeCoin:
    @pytest.mark.asyncio
    async def test_replies_with_analysis(self):
        bot, notifier, _ = make_bot()

        analysis = await bot.analyze_coin("100", " btcusdt ")

        assert analysis.symbol == "BTCUSDT"
        assert "<b>BTCUSDT</b>" in notifier.sent[-1][1]

    @pytest.mark.asyncio
    async def test_failure_is_reported_not_raised(self):
        bot, notifier, _ = make_bot(StaticFetcher({}, failing=["DOGEUSDT"]))

        analysis = await bot.analyze_coin("100", "DOGEUSDT")

        assert analysis is None
        assert notifier.sent[-1][1].startswith("❌ <b>DOGEUSDT</b>")
