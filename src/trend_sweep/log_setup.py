import logging
import re
import sys
from contextvars import ContextVar

from .config import BotConfig

TRACE_ID: ContextVar[str] = ContextVar("trace_id", default="")
SYMBOL_ID: ContextVar[str] = ContextVar("symbol_id", default="")


class CompiledPatterns:
    SECRET_TOKEN = re.compile(r"\b\d{6,}:[A-Za-z0-9_-]{20,}\b")
    CHAT_ID = re.compile(r"chat_id=-?\d+")
    BOT_URL = re.compile(r"/bot[^/\s]+/")


class SecretFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        msg = str(record.getMessage())
        if any(x in msg for x in ("TOKEN", "/bot", "chat_id")):
            msg = CompiledPatterns.SECRET_TOKEN.sub("[REDACTED_TELEGRAM_TOKEN]", msg)
            msg = CompiledPatterns.BOT_URL.sub("/bot[REDACTED]/", msg)
            msg = CompiledPatterns.CHAT_ID.sub("chat_id=[REDACTED]", msg)
            record.msg = msg
            record.args = None
        return True


class TraceContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = TRACE_ID.get()
        record.symbol_id = SYMBOL_ID.get()
        return True


class SafeFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)
        formatted = CompiledPatterns.SECRET_TOKEN.sub("[REDACTED_TOKEN]", formatted)
        formatted = CompiledPatterns.BOT_URL.sub("/bot[REDACTED]/", formatted)
        return formatted


def setup_logging(cfg: BotConfig) -> logging.Logger:
    logger = logging.getLogger("trend_sweep")
    for h in logger.handlers[:]:
        logger.removeHandler(h)

    level = logging.DEBUG if cfg.DEBUG_MODE else getattr(logging, cfg.LOG_LEVEL, logging.INFO)
    logger.setLevel(level)
    logger.propagate = False
    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(SafeFormatter(
        fmt="%(asctime)s.%(msecs)03d | %(levelname)-8s | %(name)s | [%(trace_id)s] %(symbol_id)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    console.addFilter(SecretFilter())
    console.addFilter(TraceContextFilter())
    logger.addHandler(console)
    logger.debug(f"Logging configured | Level: {logging.getLevelName(level)} | Output: stdout")
    return logger
