from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import orjson
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .errors import ConfigError


class Constants:
    FORCE_CHECK_COOLDOWN_SEC = 15 * 60
    TELEGRAM_MAX_MESSAGE_LENGTH = 3800
    TELEGRAM_API_BASE = "https://api.telegram.org"
    RETRY_AFTER_MAX_WAIT = 300


DEFAULT_SYMBOLS = [
    "BTCUSDT", "ETHUSDT", "BNBUSDT", "SOLUSDT", "XRPUSDT",
    "ADAUSDT", "AVAXUSDT", "DOTUSDT", "LINKUSDT", "LTCUSDT",
    "BCHUSDT", "SUIUSDT", "AAVEUSDT", "DOGEUSDT", "TRXUSDT",
]

DEFAULT_TIMEFRAMES = ["1h", "4h", "1d"]

_INTERVAL = re.compile(r"^\d+[smhdwM]$")
_BOT_TOKEN = re.compile(r"^\d+:[A-Za-z0-9_-]+$")


class BotConfig(BaseModel):
    TELEGRAM_BOT_TOKEN: Optional[str] = None
    TELEGRAM_CHAT_IDS: List[str] = Field(default_factory=list)
    MARKET_API_BASE: str = "https://api.binance.com/api/v3"
    DEBUG_MODE: bool = False
    LOG_LEVEL: str = "INFO"
    BOT_NAME: str = "Trend Sweep Bot"
    DRY_RUN_MODE: bool = Field(default=False, description="Dry-run: log alerts without sending")

    SYMBOLS: List[str] = Field(default_factory=lambda: list(DEFAULT_SYMBOLS), min_length=1)
    TIMEFRAMES: List[str] = Field(default_factory=lambda: list(DEFAULT_TIMEFRAMES), min_length=1)
    CANDLE_LIMIT: int = Field(default=200, ge=1, le=1000)
    TREND_EMA_PERIOD: int = Field(default=155, ge=2)
    BASELINE_PERIOD: int = Field(default=55, ge=1)
    NOISE_BUFFER_PCT: float = Field(default=0.001, ge=0.0, lt=0.1)

    CHECK_INTERVAL_SECONDS: float = Field(default=3600.0, gt=0)
    BATCH_SIZE: int = Field(default=5, ge=1)
    BATCH_DELAY_SECONDS: float = Field(default=2.0, ge=0)
    RUN_ON_STARTUP: bool = True

    WEIGHT_BUDGET_PER_MINUTE: int = Field(default=1200, ge=1)
    RATE_LIMIT_SAFETY_FACTOR: float = Field(default=1.5, gt=0)
    FETCH_MAX_RETRIES: int = Field(default=3, ge=1, le=10)
    RETRY_BACKOFF_SECONDS: float = Field(default=1.0, ge=0)
    QUOTA_COOLDOWN_SECONDS: float = Field(default=5.0, ge=0)

    HTTP_TIMEOUT: int = Field(default=15, ge=1)
    TCP_CONN_LIMIT: int = 16
    TCP_CONN_LIMIT_PER_HOST: int = 8
    TELEGRAM_RETRIES: int = Field(default=3, ge=1)

    FORCE_CHECK_COOLDOWN_SECONDS: float = Field(default=Constants.FORCE_CHECK_COOLDOWN_SEC, ge=0)
    HEALTH_SERVER_ENABLED: bool = True
    HEALTH_HOST: str = "0.0.0.0"
    HEALTH_PORT: int = Field(default=8080, ge=1, le=65535)

    @field_validator("TELEGRAM_BOT_TOKEN")
    def validate_token(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        if not _BOT_TOKEN.match(v.strip()):
            raise ValueError("Invalid Telegram bot token format")
        return v.strip()

    @field_validator("TELEGRAM_CHAT_IDS", mode="before")
    def split_chat_ids(cls, v: Any) -> Any:
        if isinstance(v, (str, int)):
            v = str(v).split(",")
        if isinstance(v, list):
            return [str(x).strip() for x in v if str(x).strip()]
        return v

    @field_validator("MARKET_API_BASE")
    def validate_api_base(cls, v: str) -> str:
        if not re.match(r"^(https?://)[A-Za-z0-9\.\-:_/]+$", v.strip()):
            raise ValueError("MARKET_API_BASE must be a valid http(s) URL")
        return v.strip().rstrip("/")

    @field_validator("SYMBOLS")
    def normalize_symbols(cls, v: List[str]) -> List[str]:
        symbols = [s.strip().upper() for s in v if s.strip()]
        if len(set(symbols)) != len(symbols):
            raise ValueError("SYMBOLS contains duplicates")
        return symbols

    @field_validator("TIMEFRAMES")
    def validate_timeframes(cls, v: List[str]) -> List[str]:
        for interval in v:
            if not _INTERVAL.match(interval):
                raise ValueError(f"Invalid kline interval: {interval!r}")
        return v

    @field_validator("LOG_LEVEL")
    def validate_log_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown LOG_LEVEL {v!r}")
        return level

    @model_validator(mode="after")
    def validate_logic(self) -> "BotConfig":
        required = max(self.TREND_EMA_PERIOD, self.BASELINE_PERIOD)
        if self.CANDLE_LIMIT < required:
            raise ValueError(
                f"CANDLE_LIMIT ({self.CANDLE_LIMIT}) must cover the longest look-back ({required})"
            )
        return self

    @property
    def min_request_interval(self) -> float:
        return 60.0 * self.RATE_LIMIT_SAFETY_FACTOR / self.WEIGHT_BUDGET_PER_MINUTE

    @property
    def notifications_enabled(self) -> bool:
        return bool(self.TELEGRAM_BOT_TOKEN) and not self.DRY_RUN_MODE


ENV_KEYS = (
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_IDS",
    "MARKET_API_BASE",
    "DEBUG_MODE",
    "LOG_LEVEL",
    "DRY_RUN_MODE",
    "HEALTH_PORT",
)


def load_config(config_file: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> BotConfig:
    """Build the config from an optional JSON file overlaid with environment variables."""
    env = os.environ if environ is None else environ
    path = Path(config_file or env.get("CONFIG_FILE", "config_trend.json"))
    data: Dict[str, Any] = {}

    if path.exists():
        try:
            data = orjson.loads(path.read_bytes())
        except orjson.JSONDecodeError as exc:
            raise ConfigError(f"Config file {path} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {path} must contain a JSON object")

    for key in ENV_KEYS:
        value = env.get(key)
        if value:
            data[key] = value

    try:
        return BotConfig(**data)
    except ValidationError as exc:
        raise ConfigError(f"Config validation failed: {exc}") from exc
