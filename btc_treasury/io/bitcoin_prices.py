from __future__ import annotations

"""Bitcoin spot price adapter with last-known-price fallback."""

import logging
from datetime import datetime

import requests  # type: ignore[import-untyped]
from pydantic import ValidationError
from sqlalchemy import Engine

from btc_treasury.config import get_coingecko_url, get_request_timeout
from btc_treasury.domain.schemas import BitcoinPricePoint
from btc_treasury.errors import PriceUnavailable
from btc_treasury.io.database import (
    get_bitcoin_price_history,
    get_latest_bitcoin_price,
    insert_bitcoin_price,
)
from btc_treasury.logic.fallback import (
    PriceQuote,
    PriceTier,
    QuoteFetchResult,
    run_fallback_chain,
)
from btc_treasury.types.upstream import SpotPriceResponse


logger = logging.getLogger(__name__)

ASSET_ID = "bitcoin"
QUOTE_CURRENCY = "usd"


def fetch_current_price(engine: Engine) -> float:
    """Fetch the current Bitcoin price, falling back to the last stored price.

    Args:
        engine (Engine): SQLAlchemy engine used for the last-known fallback.

    Returns:
        float: Bitcoin price in USD.

    Raises:
        PriceUnavailable: When the upstream fails and nothing is stored.
    """
    tiers: list[PriceTier] = [
        ("coingecko", _fetch_spot_price_result),
        ("last_known", lambda: _last_known_price_result(engine)),
    ]
    outcome = run_fallback_chain(tiers, label="Bitcoin")
    quote = outcome.quote
    if quote is None:
        logger.error("All Bitcoin price sources failed")
        raise PriceUnavailable(None, outcome.root_cause)
    if quote.stale:
        logger.warning("Using last known Bitcoin price: $%.2f", quote.price)
    else:
        logger.info("Fetched Bitcoin price: $%.2f", quote.price)
    return quote.price


def update_price(engine: Engine, now: datetime | None = None) -> BitcoinPricePoint:
    """Fetch the Bitcoin price and append it to the price series.

    Args:
        engine (Engine): SQLAlchemy engine for SQLite.
        now (datetime | None): Observation timestamp, defaults to now.

    Returns:
        BitcoinPricePoint: The stored observation.
    """
    price = fetch_current_price(engine)
    point = insert_bitcoin_price(engine, price, currency="USD", timestamp=now)
    logger.info("Updated Bitcoin price: $%.2f", point.price)
    return point


def get_last_price(engine: Engine) -> BitcoinPricePoint | None:
    """Return the most recent stored Bitcoin price."""
    return get_latest_bitcoin_price(engine)


def get_price_history(engine: Engine, hours: float = 24) -> list[BitcoinPricePoint]:
    """Return stored Bitcoin prices for the last ``hours`` hours, newest first."""
    return get_bitcoin_price_history(engine, hours)


def _fetch_spot_price_result() -> QuoteFetchResult:
    """Fetch the spot price from the crypto price API with error details."""
    try:
        response = requests.get(
            f"{get_coingecko_url()}/simple/price",
            params={"ids": ASSET_ID, "vs_currencies": QUOTE_CURRENCY},
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
        spot = SpotPriceResponse.model_validate(payload)
    except ValidationError as exc:
        return QuoteFetchResult.failure("payload_error", f"Invalid spot price payload: {exc}")
    price = spot.price_for(ASSET_ID, QUOTE_CURRENCY)
    if not price or price <= 0:
        return QuoteFetchResult.failure("payload_error", "Invalid response from spot price API")
    return QuoteFetchResult.success(PriceQuote(price=float(price), source="coingecko"))


def _last_known_price_result(engine: Engine) -> QuoteFetchResult:
    """Return the last stored Bitcoin price as a stale quote."""
    point = get_latest_bitcoin_price(engine)
    if point is None:
        return QuoteFetchResult.failure("no_cached_price", "No stored Bitcoin price")
    return QuoteFetchResult.success(PriceQuote(price=point.price, source="last_known", stale=True))
