from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_TICKER_LENGTH = 10


def normalize_ticker(ticker: str) -> str:
    """Normalize a ticker into its stored form.

    Args:
        ticker (str): Raw ticker symbol.

    Returns:
        str: Uppercased, trimmed ticker symbol.

    Raises:
        ValueError: When the ticker is empty or longer than 10 characters.
    """
    normalized = ticker.strip().upper() if isinstance(ticker, str) else ""
    if not normalized:
        raise ValueError("ticker must be a non-empty string")
    if len(normalized) > MAX_TICKER_LENGTH:
        raise ValueError(f"ticker {normalized!r} exceeds {MAX_TICKER_LENGTH} characters")
    return normalized


class Company(BaseModel):
    model_config = ConfigDict(frozen=True)

    ticker: str
    name: str
    exchange: str | None = None
    country_code: str | None = None
    btc_holdings: float = Field(default=0.0, ge=0)
    shares_outstanding_millions: float | None = None
    last_holdings_update: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("ticker")
    @classmethod
    def _normalize_ticker(cls, value: str) -> str:
        return normalize_ticker(value)


class StockPricePoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    ticker: str
    price: float = Field(gt=0)
    currency: str = "USD"
    timestamp: datetime

    @field_validator("ticker")
    @classmethod
    def _normalize_ticker(cls, value: str) -> str:
        return normalize_ticker(value)


class BitcoinPricePoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    price: float = Field(gt=0)
    currency: str = "USD"
    timestamp: datetime


class ScrapedCompany(BaseModel):
    """A company record as reported by the holdings source."""

    model_config = ConfigDict(frozen=True)

    name: str
    ticker: str
    btc_holdings: float = Field(ge=0)
    country: str | None = None
    exchange: str | None = None
    shares_outstanding_millions: float | None = None

    @field_validator("ticker")
    @classmethod
    def _normalize_ticker(cls, value: str) -> str:
        return normalize_ticker(value)


class TreasuryView(BaseModel):
    """A company joined with its latest prices and derived valuation fields.

    Derived fields are None when they cannot be computed; consumers must
    render them as "not available" rather than as zero.
    """

    model_config = ConfigDict(frozen=True)

    company: Company
    bitcoin_price: float
    stock_price: float | None = None
    price_timestamp: datetime | None = None
    market_cap: float | None = None
    btc_value: float | None = None
    btc_nav_multiple: float | None = None
    btc_per_share: float | None = None
    btc_holdings_percentage: float | None = None

    @property
    def metrics_available(self) -> bool:
        """Return True when the derived fields were computed."""
        return self.market_cap is not None
