import logging

import pytest

from trend_sweep.app import build_components, cli, parse_args
from trend_sweep.notifier import LoggingNotifier, TelegramNotifier
from tests.fixtures import make_config


@pytest.fixture
def restore_logging():
    logger = logging.getLogger("trend_sweep")
    handlers, level, propagate = logger.handlers[:], logger.level, logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


class TestBuildComponents:
    def test_dry_run_without_token(self):
        components = build_components(make_config(TELEGRAM_CHAT_IDS=["1", "2"]))

        assert isinstance(components.notifier, LoggingNotifier)
        assert components.subscribers.active_chat_ids() == ["1", "2"]
        assert components.rate_limiter.min_interval == pytest.approx(0.075)
        assert components.scheduler.subscribers is components.subscribers

    def test_telegram_when_token_configured(self):
        components = build_components(make_config(TELEGRAM_BOT_TOKEN="123456:" + "a" * 30))
        assert isinstance(components.notifier, TelegramNotifier)


class TestCli:
    def test_parse_args(self):
        args = parse_args(["--config", "x.json", "--once"])
        assert args.config == "x.json"
        assert args.once
        assert not args.validate_only

    def test_validate_only(self, tmp_path, restore_logging):
        path = tmp_path / "config.json"
        path.write_text('{"SYMBOLS": ["BTCUSDT"], "DRY_RUN_MODE": true}')

        assert cli(["--config", str(path), "--validate-only"]) == 0

    def test_invalid_config_exit_code(self, tmp_path, restore_logging):
        path = tmp_path / "config.json"
        path.write_text('{"CANDLE_LIMIT": 10}')

        assert cli(["--config", str(path), "--validate-only"]) == 1
