from __future__ import annotations

import logging

from sqlalchemy import Engine

from btc_treasury.domain.schemas import TreasuryView
from btc_treasury.errors import NoBitcoinPriceAvailable
from btc_treasury.io.database import (
    get_latest_bitcoin_price,
    get_latest_stock_prices,
    list_companies,
)
from btc_treasury.logic.metrics import build_treasury_views


logger = logging.getLogger(__name__)


def get_treasury_data(engine: Engine) -> list[TreasuryView]:
    """Load companies with their latest prices and derived metrics.

    Args:
        engine (Engine): SQLAlchemy engine for SQLite.

    Returns:
        list[TreasuryView]: Views ordered by Bitcoin holdings, largest first.

    Raises:
        NoBitcoinPriceAvailable: When no Bitcoin price has been stored yet.
    """
    bitcoin_point = get_latest_bitcoin_price(engine)
    if bitcoin_point is None:
        raise NoBitcoinPriceAvailable()
    companies = list_companies(engine)
    latest_prices = get_latest_stock_prices(engine)
    views = build_treasury_views(companies, latest_prices, bitcoin_point.price)
    missing = [view.company.ticker for view in views if not view.metrics_available]
    if missing:
        logger.debug("Metrics not computable for %d companies: %s", len(missing), missing)
    return views
