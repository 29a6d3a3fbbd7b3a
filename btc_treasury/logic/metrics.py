from __future__ import annotations

"""Derived valuation metrics for Bitcoin treasury companies."""

import math
from datetime import datetime
from typing import Iterable, Mapping

from btc_treasury.domain.schemas import Company, StockPricePoint, TreasuryView
from btc_treasury.errors import NoBitcoinPriceAvailable

SHARES_UNIT = 1_000_000


def calculate_treasury_view(
    company: Company,
    stock_price: float | None,
    bitcoin_price: float | None,
    price_timestamp: datetime | None = None,
) -> TreasuryView:
    """Combine a company with its latest prices into a TreasuryView.

    Derived fields are left as None unless both the stock price and the
    share count are positive finite numbers.

    Args:
        company (Company): Company row.
        stock_price (float | None): Latest stock price, if any.
        bitcoin_price (float | None): Latest Bitcoin price.
        price_timestamp (datetime | None): Timestamp of the stock price, passed through.

    Returns:
        TreasuryView: Company with derived valuation fields.

    Raises:
        NoBitcoinPriceAvailable: When the Bitcoin price is missing or invalid.
    """
    btc_price = _positive(bitcoin_price)
    if btc_price is None:
        raise NoBitcoinPriceAvailable()
    base = {
        "company": company,
        "bitcoin_price": btc_price,
        "stock_price": stock_price if _positive(stock_price) is not None else None,
        "price_timestamp": price_timestamp,
    }
    price = _positive(stock_price)
    shares_millions = _positive(company.shares_outstanding_millions)
    if price is None or shares_millions is None:
        return TreasuryView(**base)
    shares = shares_millions * SHARES_UNIT
    market_cap = price * shares
    btc_value = company.btc_holdings * btc_price
    return TreasuryView(
        **base,
        market_cap=market_cap,
        btc_value=btc_value,
        btc_nav_multiple=market_cap / btc_value if btc_value > 0 else 0.0,
        btc_per_share=company.btc_holdings / shares,
        btc_holdings_percentage=(btc_value / market_cap) * 100 if market_cap > 0 else 0.0,
    )


def build_treasury_views(
    companies: Iterable[Company],
    latest_stock_prices: Mapping[str, StockPricePoint],
    bitcoin_price: float | None,
) -> list[TreasuryView]:
    """Compute TreasuryViews for companies, keeping their order.

    Args:
        companies (Iterable[Company]): Companies to value.
        latest_stock_prices (Mapping[str, StockPricePoint]): Latest price by ticker.
        bitcoin_price (float | None): Latest Bitcoin price.

    Returns:
        list[TreasuryView]: One view per company.
    """
    if _positive(bitcoin_price) is None:
        raise NoBitcoinPriceAvailable()
    views = []
    for company in companies:
        point = latest_stock_prices.get(company.ticker)
        views.append(
            calculate_treasury_view(
                company,
                point.price if point is not None else None,
                bitcoin_price,
                price_timestamp=point.timestamp if point is not None else None,
            )
        )
    return views


def _positive(value: object) -> float | None:
    """Return the value as float when it is a positive finite number."""
    if value is None or isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    number = float(value)
    if not math.isfinite(number) or number <= 0:
        return None
    return number
