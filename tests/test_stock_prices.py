from __future__ import annotations

"""Tests for the stock price adapter and the all-tickers refresh."""

from datetime import UTC, datetime, timedelta
from typing import Any, Callable

import pytest
import requests  # type: ignore[import-untyped]
from sqlalchemy.engine import Engine

from btc_treasury.errors import PriceUnavailable
from btc_treasury.io import stock_prices
from btc_treasury.io.database import (
    get_company,
    get_latest_stock_price,
    insert_stock_price,
    upsert_company,
)
from conftest import DummyResponse


InstallRequests = Callable[[Callable[[str], object]], list[dict[str, Any]]]

QUOTE_PAGE = (
    '<script>{"regularMarketPrice":{"raw":312.45,"fmt":"312.45"},'
    '"sharesOutstanding":{"raw":19500000,"fmt":"19.5M"}}</script>'
)


def _chart(price: float | None, shares: float | None = None, previous: float | None = None) -> dict:
    meta: dict[str, object] = {"currency": "USD", "symbol": "MSTR"}
    if price is not None:
        meta["regularMarketPrice"] = price
    if previous is not None:
        meta["previousClose"] = previous
    if shares is not None:
        meta["sharesOutstanding"] = shares
    return {"chart": {"result": [{"meta": meta}], "error": None}}


def _add_company(engine: Engine, ticker: str, holdings: float = 100.0) -> None:
    upsert_company(engine, ticker, {"name": f"{ticker} Inc", "btc_holdings": holdings})


def test_chart_tier_wins_and_skips_later_tiers(engine: Engine, fake_requests: InstallRequests) -> None:
    calls = fake_requests(lambda url: DummyResponse(_chart(300.5, shares=19_500_000)))

    quote = stock_prices.fetch_stock_price(engine, "mstr")

    assert quote.price == 300.5
    assert quote.source == "chart"
    assert quote.shares_outstanding == 19_500_000
    assert len(calls) == 1
    assert calls[0]["url"].endswith("/chart/MSTR")
    assert "User-Agent" in calls[0]["headers"]


def test_chart_uses_previous_close_when_market_price_missing(
    engine: Engine, fake_requests: InstallRequests
) -> None:
    fake_requests(lambda url: DummyResponse(_chart(None, previous=299.0)))

    assert stock_prices.fetch_stock_price(engine, "MSTR").price == 299.0


def test_quote_page_fallback(engine: Engine, fake_requests: InstallRequests) -> None:
    def handler(url: str) -> object:
        if "/chart/" in url:
            return DummyResponse({"chart": {"result": None, "error": {"code": "Not Found"}}})
        return DummyResponse(text_payload=QUOTE_PAGE)

    calls = fake_requests(handler)

    quote = stock_prices.fetch_stock_price(engine, "MSTR")

    assert quote.price == 312.45
    assert quote.source == "quote_page"
    assert quote.shares_outstanding == 19_500_000
    assert len(calls) == 2


def test_last_known_fallback_is_stale(engine: Engine, fake_requests: InstallRequests) -> None:
    insert_stock_price(engine, "MSTR", 280.0, timestamp=datetime.now(UTC) - timedelta(hours=2))

    def handler(url: str) -> object:
        raise requests.Timeout("timed out")

    fake_requests(handler)

    quote = stock_prices.fetch_stock_price(engine, "MSTR")

    assert quote.price == 280.0
    assert quote.stale


def test_all_tiers_failing_raises_with_ticker_and_root_cause(
    engine: Engine, fake_requests: InstallRequests
) -> None:
    def handler(url: str) -> object:
        if "/chart/" in url:
            return DummyResponse(status_code=404)
        return DummyResponse(text_payload="<html>no data</html>")

    fake_requests(handler)

    with pytest.raises(PriceUnavailable) as excinfo:
        stock_prices.fetch_stock_price(engine, "NOPE")

    assert excinfo.value.ticker == "NOPE"
    assert excinfo.value.cause is not None
    assert "404" in excinfo.value.cause
    assert "NOPE" in str(excinfo.value)


def test_parse_quote_page_without_price() -> None:
    result = stock_prices.parse_quote_page("<html></html>")

    assert result.quote is None
    assert result.error_code == "parse_error"


def test_update_stock_price_stores_point_and_shares_in_millions(
    engine: Engine, fake_requests: InstallRequests
) -> None:
    _add_company(engine, "MSTR")
    fake_requests(lambda url: DummyResponse(_chart(300.0, shares=19_500_000)))
    stamp = datetime(2026, 1, 5, 15, 0, tzinfo=UTC)

    point = stock_prices.update_stock_price(engine, "MSTR", now=stamp)

    assert point.price == 300.0
    assert point.timestamp == stamp
    company = get_company(engine, "MSTR")
    assert company is not None
    assert company.shares_outstanding_millions == pytest.approx(19.5)


def test_update_stock_price_keeps_shares_when_quote_has_none(
    engine: Engine, fake_requests: InstallRequests
) -> None:
    upsert_company(engine, "MSTR", {"name": "MicroStrategy", "shares_outstanding_millions": 19.5})
    fake_requests(lambda url: DummyResponse(_chart(300.0)))

    stock_prices.update_stock_price(engine, "MSTR")

    company = get_company(engine, "MSTR")
    assert company is not None
    assert company.shares_outstanding_millions == 19.5


def test_update_all_isolates_failures_and_paces(
    engine: Engine,
    fake_requests: InstallRequests,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _add_company(engine, "AAA", 300)
    _add_company(engine, "BBB", 200)
    _add_company(engine, "CCC", 100)
    sleeps: list[float] = []
    monkeypatch.setattr(stock_prices.time, "sleep", lambda seconds: sleeps.append(seconds))

    def handler(url: str) -> object:
        if "BBB" in url:
            return DummyResponse(status_code=500)
        return DummyResponse(_chart(10.0))

    fake_requests(handler)

    summary = stock_prices.update_all_stock_prices(engine, pacing_seconds=1.0)

    assert summary == {"total": 3, "updated": 2, "failures": 1, "failed_tickers": ["BBB"]}
    assert get_latest_stock_price(engine, "AAA") is not None
    assert get_latest_stock_price(engine, "BBB") is None
    assert get_latest_stock_price(engine, "CCC") is not None
    assert sleeps == [1.0, 1.0]


def test_update_all_with_no_companies(engine: Engine) -> None:
    summary = stock_prices.update_all_stock_prices(engine, pacing_seconds=0)

    assert summary["total"] == 0
    assert summary["updated"] == 0
