from __future__ import annotations

"""Tests for derived treasury valuation metrics."""

import math
from datetime import UTC, datetime

import pytest

from btc_treasury.domain.schemas import Company, StockPricePoint
from btc_treasury.errors import NoBitcoinPriceAvailable
from btc_treasury.logic.metrics import build_treasury_views, calculate_treasury_view


def _company(
    ticker: str = "ACME",
    btc_holdings: float = 10000,
    shares_millions: float | None = 500,
) -> Company:
    return Company(
        ticker=ticker,
        name=f"{ticker} Corp",
        btc_holdings=btc_holdings,
        shares_outstanding_millions=shares_millions,
    )


def test_calculate_treasury_view_end_to_end_values() -> None:
    """Known inputs produce the documented metric values."""
    view = calculate_treasury_view(_company(), stock_price=2.0, bitcoin_price=50_000.0)

    assert view.metrics_available
    assert view.market_cap == pytest.approx(1e9)
    assert view.btc_value == pytest.approx(5e8)
    assert view.btc_nav_multiple == pytest.approx(2.0)
    assert view.btc_per_share == pytest.approx(0.00002)
    assert view.btc_holdings_percentage == pytest.approx(50.0)


def test_calculate_treasury_view_per_share_for_small_float() -> None:
    view = calculate_treasury_view(
        _company(btc_holdings=1000, shares_millions=1), stock_price=10.0, bitcoin_price=20_000.0
    )

    assert view.btc_per_share == pytest.approx(0.001)
    assert view.market_cap == pytest.approx(1e7)


@pytest.mark.parametrize("shares", [None, 0.0])
def test_missing_or_zero_shares_leaves_metrics_empty(shares: float | None) -> None:
    view = calculate_treasury_view(
        _company(shares_millions=shares), stock_price=2.0, bitcoin_price=50_000.0
    )

    assert not view.metrics_available
    assert view.market_cap is None
    assert view.btc_value is None
    assert view.btc_nav_multiple is None
    assert view.btc_per_share is None
    assert view.btc_holdings_percentage is None
    assert view.stock_price == 2.0


@pytest.mark.parametrize("stock_price", [None, 0.0, -1.0, math.nan])
def test_unusable_stock_price_leaves_metrics_empty(stock_price: float | None) -> None:
    view = calculate_treasury_view(_company(), stock_price=stock_price, bitcoin_price=50_000.0)

    assert view.stock_price is None
    assert view.market_cap is None


def test_zero_holdings_does_not_fault() -> None:
    """A zero-holdings company yields a zero NAV multiple instead of dividing by zero."""
    view = calculate_treasury_view(
        _company(btc_holdings=0), stock_price=2.0, bitcoin_price=50_000.0
    )

    assert view.btc_value == 0.0
    assert view.btc_nav_multiple == 0.0
    assert view.btc_per_share == 0.0
    assert view.btc_holdings_percentage == 0.0


@pytest.mark.parametrize("bitcoin_price", [None, 0.0, math.inf])
def test_missing_bitcoin_price_raises(bitcoin_price: float | None) -> None:
    with pytest.raises(NoBitcoinPriceAvailable):
        calculate_treasury_view(_company(), stock_price=2.0, bitcoin_price=bitcoin_price)


def test_calculation_is_idempotent() -> None:
    company = _company()
    first = calculate_treasury_view(company, stock_price=3.5, bitcoin_price=61_000.0)
    second = calculate_treasury_view(company, stock_price=3.5, bitcoin_price=61_000.0)

    assert first == second


def test_build_treasury_views_joins_latest_prices() -> None:
    stamp = datetime(2026, 1, 5, 15, 0, tzinfo=UTC)
    companies = [_company("AAA", 200), _company("BBB", 100)]
    prices = {"AAA": StockPricePoint(ticker="AAA", price=4.0, timestamp=stamp)}

    views = build_treasury_views(companies, prices, 40_000.0)

    assert [view.company.ticker for view in views] == ["AAA", "BBB"]
    assert views[0].price_timestamp == stamp
    assert views[0].metrics_available
    assert views[1].stock_price is None
    assert not views[1].metrics_available
    assert all(view.bitcoin_price == 40_000.0 for view in views)


def test_build_treasury_views_requires_bitcoin_price() -> None:
    with pytest.raises(NoBitcoinPriceAvailable):
        build_treasury_views([_company()], {}, None)


def test_price_timestamp_passes_through() -> None:
    stamp = datetime(2026, 1, 5, 15, 0, tzinfo=UTC)

    view = calculate_treasury_view(
        _company(), stock_price=2.0, bitcoin_price=50_000.0, price_timestamp=stamp
    )

    assert view.price_timestamp == stamp
