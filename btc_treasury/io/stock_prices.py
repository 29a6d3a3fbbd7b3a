from __future__ import annotations

"""Stock price adapter: structured quote API, HTML quote page, last known price."""

import logging
import re
import sys
import time
from datetime import UTC, datetime
from typing import TypedDict

import requests  # type: ignore[import-untyped]
from pydantic import ValidationError
from sqlalchemy import Engine
from tqdm import tqdm  # type: ignore[import-untyped]

from btc_treasury.config import (
    get_request_timeout,
    get_stock_pacing_seconds,
    get_user_agent,
    get_yahoo_chart_url,
    get_yahoo_quote_url,
)
from btc_treasury.domain.schemas import StockPricePoint, normalize_ticker
from btc_treasury.errors import PriceUnavailable
from btc_treasury.io.database import (
    get_company,
    get_latest_stock_price,
    get_stock_price_history,
    get_tickers,
    insert_stock_price,
    upsert_company,
)
from btc_treasury.logic.fallback import (
    PriceQuote,
    PriceTier,
    QuoteFetchResult,
    run_fallback_chain,
)
from btc_treasury.logic.metrics import SHARES_UNIT
from btc_treasury.types.upstream import ChartResponse


logger = logging.getLogger(__name__)

PRICE_PATTERN = re.compile(r'regularMarketPrice":\{"raw":(\d+\.?\d*)')
SHARES_PATTERN = re.compile(r'sharesOutstanding":\{"raw":(\d+)')


class RefreshSummary(TypedDict):
    total: int
    updated: int
    failures: int
    failed_tickers: list[str]


def fetch_stock_price(engine: Engine, ticker: str) -> PriceQuote:
    """Fetch a stock price through the three-tier fallback chain.

    Args:
        engine (Engine): SQLAlchemy engine used for the last-known fallback.
        ticker (str): Ticker symbol to quote.

    Returns:
        PriceQuote: Price plus shares outstanding (raw count) when available.

    Raises:
        PriceUnavailable: When every tier fails; carries the chart API error.
    """
    normalized = normalize_ticker(ticker)
    tiers: list[PriceTier] = [
        ("chart", lambda: _fetch_chart_result(normalized)),
        ("quote_page", lambda: _fetch_quote_page_result(normalized)),
        ("last_known", lambda: _last_known_price_result(engine, normalized)),
    ]
    outcome = run_fallback_chain(tiers, label=normalized)
    quote = outcome.quote
    if quote is None:
        logger.error("All attempts failed for %s", normalized)
        raise PriceUnavailable(normalized, outcome.root_cause)
    if quote.stale:
        logger.warning("Using last known price for %s: $%.4f", normalized, quote.price)
    elif quote.source == "quote_page":
        logger.info("Fetched stock price for %s via fallback: $%.4f", normalized, quote.price)
    else:
        logger.info("Fetched stock price for %s: $%.4f", normalized, quote.price)
    return quote


def update_stock_price(
    engine: Engine,
    ticker: str,
    now: datetime | None = None,
) -> StockPricePoint:
    """Fetch and store a stock price, refreshing shares outstanding when quoted.

    Args:
        engine (Engine): SQLAlchemy engine for SQLite.
        ticker (str): Ticker symbol to refresh.
        now (datetime | None): Observation timestamp, defaults to now.

    Returns:
        StockPricePoint: The stored observation.
    """
    normalized = normalize_ticker(ticker)
    retrieval = now or datetime.now(UTC)
    quote = fetch_stock_price(engine, normalized)
    point = insert_stock_price(
        engine,
        normalized,
        quote.price,
        currency="USD",
        timestamp=retrieval,
    )
    shares = quote.shares_outstanding
    if not quote.stale and shares and shares > 0 and get_company(engine, normalized) is not None:
        shares_millions = shares / SHARES_UNIT
        upsert_company(
            engine,
            normalized,
            {"shares_outstanding_millions": shares_millions},
            now=retrieval,
        )
        logger.debug("Updated shares outstanding for %s: %.2fM", normalized, shares_millions)
    logger.info("Updated stock price for %s: $%.4f", normalized, point.price)
    return point


def update_all_stock_prices(
    engine: Engine,
    pacing_seconds: float | None = None,
) -> RefreshSummary:
    """Refresh every known ticker in turn, isolating per-ticker failures.

    Args:
        engine (Engine): SQLAlchemy engine for SQLite.
        pacing_seconds (float | None): Delay between tickers, defaults to config.

    Returns:
        RefreshSummary: Counts of attempted, updated and failed tickers.
    """
    delay = get_stock_pacing_seconds() if pacing_seconds is None else pacing_seconds
    tickers = get_tickers(engine)
    summary: RefreshSummary = {
        "total": len(tickers),
        "updated": 0,
        "failures": 0,
        "failed_tickers": [],
    }
    if not tickers:
        logger.info("No companies stored; skipping stock price refresh")
        return summary
    logger.info("Refreshing stock prices for %d tickers", len(tickers))
    ticker_iterator = tqdm(
        tickers,
        total=len(tickers),
        desc="Stock prices",
        unit="ticker",
        ascii=True,
        disable=not sys.stderr.isatty(),
    )
    for index, ticker in enumerate(ticker_iterator):
        if index > 0 and delay > 0:
            time.sleep(delay)
        try:
            update_stock_price(engine, ticker)
        except Exception as exc:
            summary["failures"] += 1
            summary["failed_tickers"].append(ticker)
            logger.error("Failed to update price for %s: %s", ticker, exc)
            continue
        summary["updated"] += 1
    if summary["failures"]:
        logger.warning(
            "Stock price refresh finished with %d of %d failures: %s",
            summary["failures"],
            summary["total"],
            summary["failed_tickers"],
        )
    else:
        logger.info("Stock price refresh complete for %d tickers", summary["total"])
    return summary


def get_last_price(engine: Engine, ticker: str) -> StockPricePoint | None:
    """Return the most recent stored price for a ticker."""
    return get_latest_stock_price(engine, ticker)


def get_price_history(engine: Engine, ticker: str, hours: float = 24) -> list[StockPricePoint]:
    """Return stored prices for a ticker over the last ``hours`` hours, newest first."""
    return get_stock_price_history(engine, ticker, hours)


def _fetch_chart_result(ticker: str) -> QuoteFetchResult:
    """Fetch a quote from the structured chart endpoint with error details."""
    try:
        response = requests.get(
            f"{get_yahoo_chart_url()}/chart/{ticker}",
            headers={"User-Agent": get_user_agent()},
            timeout=get_request_timeout(),
        )
        response.raise_for_status()
        payload = response.json()
    except requests.HTTPError as exc:
        status = exc.response.status_code if exc.response is not None else None
        return QuoteFetchResult.failure("http_error", str(exc), http_status=status)
    except requests.RequestException as exc:
        return QuoteFetchResult.failure("request_error", str(exc))
    except ValueError as exc:
        return QuoteFetchResult.failure("decode_error", str(exc))
    try:
        chart = ChartResponse.model_validate(payload)
    except ValidationError as exc:
        return QuoteFetchResult.failure("payload_error", f"Invalid chart payload for {ticker}: {exc}")
    meta = chart.first_meta()
    if meta is None:
        return QuoteFetchResult.failure("payload_error", f"No data found for ticker {ticker}")
    price = meta.regularMarketPrice or meta.previousClose
    if not price or price <= 0:
        return QuoteFetchResult.failure("payload_error", f"No price data found for ticker {ticker}")
    return QuoteFetchResult.success(
        PriceQuote(
            price=float(price),
            source="chart",
            shares_outstanding=meta.sharesOutstanding,
        )
    )


def _fetch_quote_page_result(ticker: str) -> QuoteFetchResult:
    """Scrape a price from the human-facing quote page."""
    try:
        response = requests.get(
            f"{get_yahoo_quote_url()}/{ticker}",
            headers={"User-Agent": get_user_agent()},
            timeout=get_request_timeout(),
        )
        response.raise_for_status()
    except requests.HTTPError as exc:
        status = exc.response.status_code if exc.response is not None else None
        return QuoteFetchResult.failure("http_error", str(exc), http_status=status)
    except requests.RequestException as exc:
        return QuoteFetchResult.failure("request_error", str(exc))
    return parse_quote_page(response.text or "")


def parse_quote_page(html: str) -> QuoteFetchResult:
    """Extract price and shares outstanding from embedded JSON in quote page markup.

    Args:
        html (str): Quote page markup.

    Returns:
        QuoteFetchResult: Parsed quote, or a ``parse_error`` result.
    """
    price_match = PRICE_PATTERN.search(html)
    if price_match is None:
        return QuoteFetchResult.failure("parse_error", "No price found in quote page")
    try:
        price = float(price_match.group(1))
    except ValueError:
        return QuoteFetchResult.failure("parse_error", "Unparseable price in quote page")
    if price <= 0:
        return QuoteFetchResult.failure("parse_error", "Non-positive price in quote page")
    shares_match = SHARES_PATTERN.search(html)
    shares = float(shares_match.group(1)) if shares_match is not None else None
    return QuoteFetchResult.success(
        PriceQuote(price=price, source="quote_page", shares_outstanding=shares)
    )


def _last_known_price_result(engine: Engine, ticker: str) -> QuoteFetchResult:
    """Return the last stored price for a ticker as a stale quote."""
    point = get_latest_stock_price(engine, ticker)
    if point is None:
        return QuoteFetchResult.failure("no_cached_price", f"No stored price for {ticker}")
    return QuoteFetchResult.success(PriceQuote(price=point.price, source="last_known", stale=True))
