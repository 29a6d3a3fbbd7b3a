from __future__ import annotations

"""Ordered fallback chains for obtaining a price from unreliable sources."""

import logging
from dataclasses import dataclass
from typing import Callable, Sequence

from more_itertools import first


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PriceQuote:
    """A price obtained from one tier, with optional share count."""

    price: float
    source: str
    shares_outstanding: float | None = None
    stale: bool = False


@dataclass(frozen=True)
class QuoteFetchResult:
    """Container for a single tier attempt."""

    quote: PriceQuote | None
    error_code: str | None
    message: str | None
    http_status: int | None = None
    tier: str | None = None

    @classmethod
    def success(cls, quote: PriceQuote) -> "QuoteFetchResult":
        return cls(quote=quote, error_code=None, message=None, tier=quote.source)

    @classmethod
    def failure(
        cls,
        error_code: str,
        message: str,
        http_status: int | None = None,
    ) -> "QuoteFetchResult":
        return cls(quote=None, error_code=error_code, message=message, http_status=http_status)


@dataclass(frozen=True)
class FallbackOutcome:
    """Result of running a fallback chain."""

    result: QuoteFetchResult | None
    failures: tuple[QuoteFetchResult, ...]

    @property
    def quote(self) -> PriceQuote | None:
        return self.result.quote if self.result is not None else None

    @property
    def root_cause(self) -> str | None:
        """Return the message of the first failed tier."""
        if not self.failures:
            return None
        return self.failures[0].message


PriceTier = tuple[str, Callable[[], QuoteFetchResult]]


def run_fallback_chain(tiers: Sequence[PriceTier], label: str) -> FallbackOutcome:
    """Evaluate tiers in order until one yields a quote.

    Tiers after the first success are never called. Exceptions raised by a
    tier are converted into failed results so the chain always continues.

    Args:
        tiers (Sequence[PriceTier]): Ordered ``(name, fetch)`` pairs.
        label (str): Subject of the chain for log messages (ticker or asset).

    Returns:
        FallbackOutcome: The winning result, if any, and all failed attempts.
    """
    failures: list[QuoteFetchResult] = []

    def _attempt(tier: PriceTier) -> QuoteFetchResult:
        name, fetch = tier
        try:
            result = fetch()
        except Exception as exc:
            logger.exception("Price tier %s raised for %s", name, label)
            result = QuoteFetchResult.failure("unexpected_error", str(exc))
        if result.tier is None:
            result = QuoteFetchResult(
                quote=result.quote,
                error_code=result.error_code,
                message=result.message,
                http_status=result.http_status,
                tier=name,
            )
        if result.quote is None:
            logger.warning(
                "Price tier %s failed for %s (%s): %s",
                name,
                label,
                result.error_code,
                result.message,
            )
            failures.append(result)
        return result

    winner = first(
        (result for result in map(_attempt, tiers) if result.quote is not None),
        None,
    )
    return FallbackOutcome(result=winner, failures=tuple(failures))
