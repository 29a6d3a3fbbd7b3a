from __future__ import annotations

"""Configuration loader for the application."""

import os
from pathlib import Path
from typing import Any

import tomllib


DEFAULT_BITCOIN_INTERVAL_MINUTES = 30
DEFAULT_STOCK_INTERVAL_MINUTES = 30
DEFAULT_HOLDINGS_INTERVAL_MINUTES = 360
DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; BTC-Treasury-Bot/1.0)"
DEFAULT_STOCK_PACING_SECONDS = 1.0
DEFAULT_SCHEDULER_MAX_WORKERS = 1
DEFAULT_COINGECKO_URL = "https://api.coingecko.com/api/v3"
DEFAULT_YAHOO_CHART_URL = "https://query1.finance.yahoo.com/v8/finance"
DEFAULT_YAHOO_QUOTE_URL = "https://finance.yahoo.com/quote"
DEFAULT_DATABASE_PATH = "data/treasury.db"

ROOT_DIR = Path(__file__).resolve().parents[1]

_CONFIG_CACHE: dict[str, Any] | None = None


def load_config() -> dict[str, Any]:
    """Load configuration from the repository root config file.

    Args:
        None

    Returns:
        dict[str, Any]: Parsed configuration values.
    """
    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None:
        return _CONFIG_CACHE
    config_path = ROOT_DIR / "config.toml"
    _CONFIG_CACHE = (
        tomllib.loads(config_path.read_text(encoding="utf-8")) if config_path.exists() else {}
    )
    return _CONFIG_CACHE


def get_refresh_intervals() -> tuple[int, int, int]:
    """Return refresh intervals in minutes for the Bitcoin, stock and holdings cycles.

    Environment variables take precedence over ``config.toml``.

    Args:
        None

    Returns:
        tuple[int, int, int]: Bitcoin, stock and holdings intervals in minutes.
    """
    scheduler = _section("scheduler")
    bitcoin = _coerce_int(
        _env_or(scheduler, "bitcoin_interval_minutes", "BITCOIN_PRICE_UPDATE_INTERVAL"),
        DEFAULT_BITCOIN_INTERVAL_MINUTES,
    )
    stock = _coerce_int(
        _env_or(scheduler, "stock_interval_minutes", "STOCK_PRICE_UPDATE_INTERVAL"),
        DEFAULT_STOCK_INTERVAL_MINUTES,
    )
    holdings = _coerce_int(
        _env_or(scheduler, "holdings_interval_minutes", "HOLDINGS_UPDATE_INTERVAL"),
        DEFAULT_HOLDINGS_INTERVAL_MINUTES,
    )
    return bitcoin, stock, holdings


def get_stock_market_hours_gating() -> bool:
    """Return True when off-hours stock refreshes should run at half frequency."""
    scheduler = _section("scheduler")
    return _coerce_bool(scheduler.get("stock_market_hours_gating"), False)


def get_scheduler_max_workers() -> int:
    """Return the worker count for the scheduler executor."""
    scheduler = _section("scheduler")
    return _coerce_int(scheduler.get("max_workers"), DEFAULT_SCHEDULER_MAX_WORKERS)


def get_request_timeout() -> float:
    """Return the outbound request timeout in seconds."""
    http = _section("http")
    return _coerce_float(http.get("timeout_seconds"), DEFAULT_REQUEST_TIMEOUT)


def get_user_agent() -> str:
    """Return the User-Agent header used on outbound fetches."""
    http = _section("http")
    return _coerce_str(_env_or(http, "user_agent", "USER_AGENT"), DEFAULT_USER_AGENT)


def get_stock_pacing_seconds() -> float:
    """Return the delay inserted between per-ticker stock fetches."""
    stocks = _section("stocks")
    return _coerce_float(stocks.get("pacing_seconds"), DEFAULT_STOCK_PACING_SECONDS)


def get_coingecko_url() -> str:
    """Return the base URL of the crypto spot-price API."""
    providers = _section("providers")
    return _coerce_str(
        _env_or(providers, "coingecko_url", "COINGECKO_API_URL"),
        DEFAULT_COINGECKO_URL,
    ).rstrip("/")


def get_yahoo_chart_url() -> str:
    """Return the base URL of the structured stock-quote API."""
    providers = _section("providers")
    return _coerce_str(
        _env_or(providers, "yahoo_chart_url", "YAHOO_FINANCE_API_URL"),
        DEFAULT_YAHOO_CHART_URL,
    ).rstrip("/")


def get_yahoo_quote_url() -> str:
    """Return the base URL of the HTML quote page used as a fallback."""
    providers = _section("providers")
    return _coerce_str(providers.get("yahoo_quote_url"), DEFAULT_YAHOO_QUOTE_URL).rstrip("/")


def get_database_path() -> Path:
    """Return the SQLite database path, resolved against the repository root.

    Args:
        None

    Returns:
        Path: Filesystem location of the database.
    """
    database = _section("database")
    raw_path = _coerce_str(_env_or(database, "path", "DATABASE_PATH"), DEFAULT_DATABASE_PATH)
    path = Path(raw_path)
    return path if path.is_absolute() else ROOT_DIR / path


def get_holdings_csv_path() -> Path | None:
    """Return the optional treasuries CSV export used as the holdings source."""
    holdings = _section("holdings")
    raw_path = _coerce_str(holdings.get("csv_path"), "")
    if not raw_path:
        return None
    path = Path(raw_path)
    return path if path.is_absolute() else ROOT_DIR / path


def _section(name: str) -> dict[str, Any]:
    """Return a config table, or an empty dict when missing."""
    config = load_config()
    section = config.get(name, {}) if isinstance(config, dict) else {}
    return section if isinstance(section, dict) else {}


def _env_or(section: dict[str, Any], key: str, env_name: str) -> object:
    """Return an environment override when set, else the config value."""
    env_value = os.getenv(env_name)
    if env_value is not None and env_value.strip():
        return env_value
    return section.get(key)


def _coerce_float(value: object, default: float) -> float:
    """Coerce a value to float with a default fallback.

    Args:
        value (object): Raw value to convert.
        default (float): Default to return on error.

    Returns:
        float: Parsed float or default.
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return default
    return default


def _coerce_int(value: object, default: int) -> int:
    """Coerce a value to int with a default fallback."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return default
    return default


def _coerce_bool(value: object, default: bool) -> bool:
    """Coerce a value to bool, accepting common string spellings."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return default


def _coerce_str(value: object, default: str) -> str:
    """Coerce a value to a stripped string with a default fallback."""
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip()
    return str(value)
