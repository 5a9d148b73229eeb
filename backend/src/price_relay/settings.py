from __future__ import annotations

import os
from typing import Iterable

from pydantic import BaseModel, Field

DEFAULT_SOURCE_URL = "https://www.tradingview.com/symbols/{ticker}/?exchange=BINANCE"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36"
)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _env_ms(name: str, default: int) -> float:
    """Read a millisecond value from the environment and return seconds."""

    return int(os.getenv(name, str(default))) / 1000.0


def _env_optional_int(name: str) -> int | None:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return None
    value = int(raw)
    return value if value > 0 else None


def _normalize_tickers(raw: str | Iterable[str] | None) -> list[str]:
    """Split, clean and de-duplicate a ticker list while keeping its order."""

    if raw is None:
        return []
    items = raw.split(",") if isinstance(raw, str) else list(raw)
    out: list[str] = []
    seen: set[str] = set()
    for item in items:
        ticker = str(item).strip().upper()
        if not ticker or ticker in seen:
            continue
        seen.add(ticker)
        out.append(ticker)
    return out


class Settings(BaseModel):
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8080"))
    cors_origins: list[str] = [
        origin.strip()
        for origin in os.getenv(
            "CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"
        ).split(",")
        if origin.strip()
    ]

    source_url_template: str = os.getenv("SOURCE_URL_TEMPLATE", DEFAULT_SOURCE_URL)
    simulation_mode: bool = _env_bool("SIMULATION_MODE")
    initial_tickers: list[str] = Field(
        default_factory=lambda: _normalize_tickers(os.getenv("INITIAL_TICKERS"))
    )

    # monitors
    sample_interval: float = _env_ms("SAMPLE_INTERVAL_MS", 1000)
    stop_grace: float = _env_ms("STOP_GRACE_MS", 2000)
    max_consecutive_failures: int | None = _env_optional_int("MAX_CONSECUTIVE_FAILURES")
    min_price: float = float(os.getenv("MIN_PRICE", "0.01"))
    max_price: float = float(os.getenv("MAX_PRICE", "1000000"))

    # batching and fan-out
    batch_delay: float = _env_ms("BATCH_DELAY_MS", 50)
    subscriber_timeout: float = float(os.getenv("SUBSCRIBER_TIMEOUT_S", "60"))
    sweep_interval: float = float(os.getenv("SWEEP_INTERVAL_S", "30"))
    keepalive_interval: float = float(os.getenv("KEEPALIVE_INTERVAL_S", "30"))
    subscriber_queue_size: int = int(os.getenv("SUBSCRIBER_QUEUE_SIZE", "100"))
    delivery_timeout: float = float(os.getenv("DELIVERY_TIMEOUT_S", "5"))

    # page driver
    page_load_timeout: float = _env_ms("PAGE_LOAD_TIMEOUT_MS", 30000)
    page_settle_delay: float = _env_ms("PAGE_SETTLE_MS", 5000)
    browser_headless: bool = _env_bool("BROWSER_HEADLESS", "true")
    browser_user_agent: str = os.getenv("BROWSER_USER_AGENT", DEFAULT_USER_AGENT)

    def source_url(self, ticker: str) -> str:
        return self.source_url_template.format(ticker=ticker)


settings = Settings()
