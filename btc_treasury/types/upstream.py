from __future__ import annotations

from typing import Dict, Tuple

from pydantic import BaseModel, ConfigDict, RootModel


class SpotPriceResponse(RootModel[Dict[str, Dict[str, float | None]]]):
    """Crypto spot-price payload shaped as ``{asset: {currency: price}}``."""

    def price_for(self, asset: str, currency: str) -> float | None:
        """Return the quoted price for an asset/currency pair, if present.

        Args:
            asset (str): Asset identifier (e.g. "bitcoin").
            currency (str): Quote currency (e.g. "usd").

        Returns:
            float | None: The quoted price, or None when missing.
        """
        quotes = self.root.get(asset)
        if quotes is None:
            return None
        return quotes.get(currency)


class ChartMeta(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    regularMarketPrice: float | None = None
    previousClose: float | None = None
    sharesOutstanding: float | None = None
    currency: str | None = None


class ChartResult(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    meta: ChartMeta


class Chart(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    result: Tuple[ChartResult, ...] | None = None
    error: object | None = None


class ChartResponse(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    chart: Chart

    def first_meta(self) -> ChartMeta | None:
        """Return the meta block of the first chart result, if any."""
        results = self.chart.result or ()
        return results[0].meta if results else None
