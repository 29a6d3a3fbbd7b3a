from __future__ import annotations

"""Trading-hours check for the reference US exchange."""

from datetime import UTC, datetime

import pytz

EASTERN = pytz.timezone("US/Eastern")


def is_market_open(now: datetime | None = None) -> bool:
    """Return True when the US stock market is open.

    Open is Monday to Friday from 09:30 (inclusive) to 16:00 (exclusive),
    US/Eastern local time. Exchange holidays are not modelled.

    Args:
        now (datetime | None): Reference time; naive values are treated as UTC.

    Returns:
        bool: True during regular trading hours.
    """
    local = _to_eastern(now or datetime.now(UTC))
    if local.weekday() >= 5:
        return False
    hour, minute = local.hour, local.minute
    return (hour == 9 and minute >= 30) or (9 < hour < 16)


def market_status(now: datetime | None = None) -> dict[str, object]:
    """Describe the current market state for display."""
    is_open = is_market_open(now)
    return {
        "market_open": is_open,
        "message": "US stock market is open" if is_open else "US stock market is closed",
    }


def _to_eastern(value: datetime) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(EASTERN)
