from __future__ import annotations

"""Error taxonomy for the refresh pipeline."""


class TreasuryError(Exception):
    """Base class for pipeline errors."""


class UpstreamUnavailable(TreasuryError):
    """A price source failed and no cached fallback existed."""


class PriceUnavailable(UpstreamUnavailable):
    """Every tier of a price fallback chain failed."""

    def __init__(self, ticker: str | None, cause: str | None) -> None:
        self.ticker = ticker
        self.cause = cause
        subject = ticker if ticker is not None else "Bitcoin"
        super().__init__(f"Failed to fetch price for {subject}: {cause or 'unknown error'}")


class NoBitcoinPriceAvailable(TreasuryError):
    """No Bitcoin price has been stored yet, so valuations cannot be computed."""

    def __init__(self, message: str = "No Bitcoin price available") -> None:
        super().__init__(message)
