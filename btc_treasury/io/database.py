from __future__ import annotations

import logging
import math
from datetime import UTC, datetime, timedelta
from typing import Mapping

from sqlalchemy import Engine, create_engine, text

from btc_treasury.domain.schemas import (
    BitcoinPricePoint,
    Company,
    StockPricePoint,
    normalize_ticker,
)


logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

COMPANY_FIELDS = (
    "name",
    "exchange",
    "country_code",
    "btc_holdings",
    "shares_outstanding_millions",
    "last_holdings_update",
)

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def get_engine(db_path: str) -> Engine:
    """Create a SQLAlchemy engine for SQLite.

    Args:
        db_path (str): Filesystem path to the SQLite database.

    Returns:
        Engine: SQLAlchemy engine bound to SQLite.
    """
    # Scheduler jobs run on worker threads; connections must be shareable.
    return create_engine(
        f"sqlite:///{db_path}",
        future=True,
        connect_args={"check_same_thread": False},
    )


def ensure_schema(engine: Engine) -> None:
    """Ensure the companies and price tables exist.

    Args:
        engine (Engine): SQLAlchemy engine for SQLite.

    Returns:
        None: Creates schema when missing.
    """
    schema_sql = """
    CREATE TABLE IF NOT EXISTS companies (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        ticker TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        exchange TEXT NULL,
        country_code TEXT NULL,
        btc_holdings REAL NOT NULL DEFAULT 0,
        shares_outstanding_millions REAL NULL,
        last_holdings_update TEXT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS IX_companies_btc_holdings
        ON companies (btc_holdings);
    CREATE TABLE IF NOT EXISTS stock_prices (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        ticker TEXT NOT NULL,
        price REAL NOT NULL,
        currency TEXT NOT NULL DEFAULT 'USD',
        timestamp TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS IX_stock_prices_ticker_timestamp
        ON stock_prices (ticker, timestamp);
    CREATE TABLE IF NOT EXISTS bitcoin_prices (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        price REAL NOT NULL,
        currency TEXT NOT NULL DEFAULT 'USD',
        timestamp TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS IX_bitcoin_prices_timestamp
        ON bitcoin_prices (timestamp);
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        applied_at TEXT NOT NULL
    )
    """
    with engine.begin() as conn:
        for statement in (stmt.strip() for stmt in schema_sql.split(";")):
            if statement:
                conn.exec_driver_sql(statement)
        current = conn.execute(text("SELECT MAX(version) FROM schema_version")).scalar()
        if current is None:
            conn.execute(
                text("INSERT INTO schema_version (version, applied_at) VALUES (:version, :applied_at)"),
                {"version": SCHEMA_VERSION, "applied_at": format_timestamp(datetime.now(UTC))},
            )
            logger.info("Database schema version %d initialized", SCHEMA_VERSION)


def insert_bitcoin_price(
    engine: Engine,
    price: float,
    currency: str = "USD",
    timestamp: datetime | None = None,
) -> BitcoinPricePoint:
    """Append a Bitcoin price observation.

    Args:
        engine (Engine): SQLAlchemy engine for SQLite.
        price (float): Observed price, must be positive.
        currency (str): Quote currency.
        timestamp (datetime | None): Observation time, defaults to now.

    Returns:
        BitcoinPricePoint: The stored observation.
    """
    point = BitcoinPricePoint(
        price=_require_price(price),
        currency=currency,
        timestamp=_as_utc(timestamp or datetime.now(UTC)),
    )
    insert_sql = text(
        """
        INSERT INTO bitcoin_prices (price, currency, timestamp)
        VALUES (:price, :currency, :timestamp)
        """
    )
    with engine.begin() as conn:
        conn.execute(
            insert_sql,
            {
                "price": point.price,
                "currency": point.currency,
                "timestamp": format_timestamp(point.timestamp),
            },
        )
    logger.debug("Stored Bitcoin price %.2f %s at %s", point.price, point.currency, point.timestamp)
    return point


def get_latest_bitcoin_price(engine: Engine) -> BitcoinPricePoint | None:
    """Fetch the most recent Bitcoin price observation.

    Args:
        engine (Engine): SQLAlchemy engine for SQLite.

    Returns:
        BitcoinPricePoint | None: Latest observation, or None when the series is empty.
    """
    query = text(
        """
        SELECT price, currency, timestamp
        FROM bitcoin_prices
        ORDER BY timestamp DESC, id DESC
        LIMIT 1
        """
    )
    with engine.begin() as conn:
        row = conn.execute(query).mappings().first()
    return _bitcoin_point(row) if row is not None else None


def get_bitcoin_price_history(
    engine: Engine,
    since_hours: float,
    now: datetime | None = None,
) -> list[BitcoinPricePoint]:
    """Return Bitcoin prices no older than ``since_hours``, newest first.

    Args:
        engine (Engine): SQLAlchemy engine for SQLite.
        since_hours (float): Maximum age of returned observations in hours.
        now (datetime | None): Reference time, defaults to now.

    Returns:
        list[BitcoinPricePoint]: Observations in descending time order.
    """
    cutoff = _history_cutoff(since_hours, now)
    query = text(
        """
        SELECT price, currency, timestamp
        FROM bitcoin_prices
        WHERE timestamp >= :cutoff
        ORDER BY timestamp DESC, id DESC
        """
    )
    with engine.begin() as conn:
        rows = conn.execute(query, {"cutoff": cutoff}).mappings().all()
    return [_bitcoin_point(row) for row in rows]


def insert_stock_price(
    engine: Engine,
    ticker: str,
    price: float,
    currency: str = "USD",
    timestamp: datetime | None = None,
) -> StockPricePoint:
    """Append a stock price observation for a ticker.

    Args:
        engine (Engine): SQLAlchemy engine for SQLite.
        ticker (str): Ticker symbol.
        price (float): Observed price, must be positive.
        currency (str): Quote currency.
        timestamp (datetime | None): Observation time, defaults to now.

    Returns:
        StockPricePoint: The stored observation.
    """
    point = StockPricePoint(
        ticker=normalize_ticker(ticker),
        price=_require_price(price),
        currency=currency,
        timestamp=_as_utc(timestamp or datetime.now(UTC)),
    )
    insert_sql = text(
        """
        INSERT INTO stock_prices (ticker, price, currency, timestamp)
        VALUES (:ticker, :price, :currency, :timestamp)
        """
    )
    with engine.begin() as conn:
        conn.execute(
            insert_sql,
            {
                "ticker": point.ticker,
                "price": point.price,
                "currency": point.currency,
                "timestamp": format_timestamp(point.timestamp),
            },
        )
    logger.debug("Stored stock price %.4f for %s at %s", point.price, point.ticker, point.timestamp)
    return point


def get_latest_stock_price(engine: Engine, ticker: str) -> StockPricePoint | None:
    """Fetch the most recent stock price observation for a ticker.

    Args:
        engine (Engine): SQLAlchemy engine for SQLite.
        ticker (str): Ticker symbol to query.

    Returns:
        StockPricePoint | None: Latest observation, or None when missing.
    """
    query = text(
        """
        SELECT ticker, price, currency, timestamp
        FROM stock_prices
        WHERE ticker = :ticker
        ORDER BY timestamp DESC, id DESC
        LIMIT 1
        """
    )
    with engine.begin() as conn:
        row = conn.execute(query, {"ticker": normalize_ticker(ticker)}).mappings().first()
    return _stock_point(row) if row is not None else None


def get_latest_stock_prices(engine: Engine) -> dict[str, StockPricePoint]:
    """Return the latest stock price observation for every ticker.

    Args:
        engine (Engine): SQLAlchemy engine for SQLite.

    Returns:
        dict[str, StockPricePoint]: Latest observation keyed by ticker.
    """
    query = text(
        """
        SELECT ticker, price, currency, timestamp
        FROM (
            SELECT
                ticker,
                price,
                currency,
                timestamp,
                ROW_NUMBER() OVER (
                    PARTITION BY ticker
                    ORDER BY timestamp DESC, id DESC
                ) AS rn
            FROM stock_prices
        ) ranked
        WHERE rn = 1
        """
    )
    with engine.begin() as conn:
        rows = conn.execute(query).mappings().all()
    return {point.ticker: point for point in map(_stock_point, rows)}


def get_stock_price_history(
    engine: Engine,
    ticker: str,
    since_hours: float,
    now: datetime | None = None,
) -> list[StockPricePoint]:
    """Return stock prices for a ticker no older than ``since_hours``, newest first.

    Args:
        engine (Engine): SQLAlchemy engine for SQLite.
        ticker (str): Ticker symbol to query.
        since_hours (float): Maximum age of returned observations in hours.
        now (datetime | None): Reference time, defaults to now.

    Returns:
        list[StockPricePoint]: Observations in descending time order.
    """
    cutoff = _history_cutoff(since_hours, now)
    query = text(
        """
        SELECT ticker, price, currency, timestamp
        FROM stock_prices
        WHERE ticker = :ticker
          AND timestamp >= :cutoff
        ORDER BY timestamp DESC, id DESC
        """
    )
    with engine.begin() as conn:
        rows = conn.execute(
            query,
            {"ticker": normalize_ticker(ticker), "cutoff": cutoff},
        ).mappings().all()
    return [_stock_point(row) for row in rows]


def upsert_company(
    engine: Engine,
    ticker: str,
    fields: Mapping[str, object],
    now: datetime | None = None,
) -> Company:
    """Insert a company when absent, else patch the named fields.

    Args:
        engine (Engine): SQLAlchemy engine for SQLite.
        ticker (str): Ticker symbol identifying the company.
        fields (Mapping[str, object]): Column values to write.
        now (datetime | None): Timestamp for created_at/updated_at bookkeeping.

    Returns:
        Company: The company row after the write.

    Raises:
        ValueError: On unknown field names, or when inserting without a name.
    """
    normalized = normalize_ticker(ticker)
    unknown = sorted(set(fields) - set(COMPANY_FIELDS))
    if unknown:
        raise ValueError(f"Unknown company fields: {', '.join(unknown)}")
    stamp = format_timestamp(_as_utc(now or datetime.now(UTC)))
    values = {key: _column_value(value) for key, value in fields.items()}
    with engine.begin() as conn:
        existing = conn.execute(
            text("SELECT id FROM companies WHERE ticker = :ticker"),
            {"ticker": normalized},
        ).scalar()
        if existing is None:
            if not values.get("name"):
                raise ValueError(f"Cannot insert company {normalized} without a name")
            columns = ["ticker", *values.keys(), "created_at", "updated_at"]
            params = {**values, "ticker": normalized, "created_at": stamp, "updated_at": stamp}
            insert_sql = text(
                f"""
                INSERT INTO companies ({", ".join(columns)})
                VALUES ({", ".join(f":{column}" for column in columns)})
                """
            )
            conn.execute(insert_sql, params)
            logger.debug("Inserted company %s", normalized)
        else:
            assignments = [f"{column} = :{column}" for column in values]
            assignments.append("updated_at = :updated_at")
            update_sql = text(
                f"""
                UPDATE companies
                SET {", ".join(assignments)}
                WHERE ticker = :ticker
                """
            )
            conn.execute(update_sql, {**values, "ticker": normalized, "updated_at": stamp})
            logger.debug("Updated company %s fields: %s", normalized, sorted(values))
        row = conn.execute(
            text(f"SELECT {_company_columns()} FROM companies WHERE ticker = :ticker"),
            {"ticker": normalized},
        ).mappings().one()
    return _company(row)


def list_companies(engine: Engine) -> list[Company]:
    """Return all companies ordered by Bitcoin holdings, largest first.

    Args:
        engine (Engine): SQLAlchemy engine for SQLite.

    Returns:
        list[Company]: Company rows.
    """
    query = text(
        f"""
        SELECT {_company_columns()}
        FROM companies
        ORDER BY btc_holdings DESC, ticker ASC
        """
    )
    with engine.begin() as conn:
        rows = conn.execute(query).mappings().all()
    return [_company(row) for row in rows]


def get_company(engine: Engine, ticker: str) -> Company | None:
    """Fetch one company by ticker.

    Args:
        engine (Engine): SQLAlchemy engine for SQLite.
        ticker (str): Ticker symbol to query.

    Returns:
        Company | None: The company, or None when missing.
    """
    query = text(f"SELECT {_company_columns()} FROM companies WHERE ticker = :ticker")
    with engine.begin() as conn:
        row = conn.execute(query, {"ticker": normalize_ticker(ticker)}).mappings().first()
    return _company(row) if row is not None else None


def get_tickers(engine: Engine) -> list[str]:
    """Return every known ticker in holdings order."""
    query = text("SELECT ticker FROM companies ORDER BY btc_holdings DESC, ticker ASC")
    with engine.begin() as conn:
        return [str(ticker) for ticker in conn.execute(query).scalars().all()]


def count_companies(engine: Engine) -> int:
    """Return the number of stored companies."""
    with engine.begin() as conn:
        result = conn.execute(text("SELECT COUNT(*) FROM companies")).scalar()
    return int(result or 0)


def format_timestamp(value: datetime) -> str:
    """Render a timestamp as a fixed-width UTC string.

    Fixed width keeps lexical ordering in SQLite equal to time ordering.

    Args:
        value (datetime): Timestamp to render; naive values are treated as UTC.

    Returns:
        str: Timestamp formatted as ``YYYY-MM-DDTHH:MM:SS.ffffffZ``.
    """
    return _as_utc(value).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: object) -> datetime | None:
    """Parse a stored timestamp into an aware UTC datetime.

    Args:
        value (object): Raw column value.

    Returns:
        datetime | None: Parsed timestamp, or None when unparseable.
    """
    if isinstance(value, datetime):
        return _as_utc(value)
    if not isinstance(value, str) or not value.strip():
        return None
    stripped = value.strip()
    try:
        return datetime.strptime(stripped, TIMESTAMP_FORMAT).replace(tzinfo=UTC)
    except ValueError:
        pass
    try:
        return _as_utc(datetime.fromisoformat(stripped.replace("Z", "+00:00")))
    except ValueError:
        return None


def _company_columns() -> str:
    """Return the column list selected for company rows."""
    return ", ".join(("ticker", *COMPANY_FIELDS, "created_at", "updated_at"))


def _company(row: Mapping[str, object]) -> Company:
    """Build a Company from a result mapping."""
    return Company(
        ticker=str(row["ticker"]),
        name=str(row["name"]),
        exchange=_optional_text(row.get("exchange")),
        country_code=_optional_text(row.get("country_code")),
        btc_holdings=_to_float(row.get("btc_holdings")) or 0.0,
        shares_outstanding_millions=_to_float(row.get("shares_outstanding_millions")),
        last_holdings_update=parse_timestamp(row.get("last_holdings_update")),
        created_at=parse_timestamp(row.get("created_at")),
        updated_at=parse_timestamp(row.get("updated_at")),
    )


def _stock_point(row: Mapping[str, object]) -> StockPricePoint:
    """Build a StockPricePoint from a result mapping."""
    return StockPricePoint(
        ticker=str(row["ticker"]),
        price=float(row["price"]),  # type: ignore[arg-type]
        currency=str(row.get("currency") or "USD"),
        timestamp=parse_timestamp(row["timestamp"]),
    )


def _bitcoin_point(row: Mapping[str, object]) -> BitcoinPricePoint:
    """Build a BitcoinPricePoint from a result mapping."""
    return BitcoinPricePoint(
        price=float(row["price"]),  # type: ignore[arg-type]
        currency=str(row.get("currency") or "USD"),
        timestamp=parse_timestamp(row["timestamp"]),
    )


def _history_cutoff(since_hours: float, now: datetime | None) -> str:
    """Return the formatted lower bound for a history query."""
    reference = _as_utc(now or datetime.now(UTC))
    return format_timestamp(reference - timedelta(hours=since_hours))


def _require_price(price: object) -> float:
    """Validate a price as a positive finite number.

    Args:
        price (object): Raw price value.

    Returns:
        float: The validated price.

    Raises:
        ValueError: When the price is missing, non-finite or not positive.
    """
    value = _to_float(price)
    if value is None or not math.isfinite(value) or value <= 0:
        raise ValueError(f"Price must be a positive number, got {price!r}")
    return value


def _column_value(value: object) -> object:
    """Convert a field value into a bindable column value."""
    if isinstance(value, datetime):
        return format_timestamp(value)
    return value


def _as_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime, treating naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _optional_text(value: object) -> str | None:
    """Return a stripped string or None for blank values."""
    if value is None:
        return None
    stripped = str(value).strip()
    return stripped or None


def _to_float(value: object) -> float | None:
    """Convert a column value to float when possible.

    Args:
        value (object): Raw value to convert.

    Returns:
        float | None: Parsed float, if possible.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            return float(stripped)
        except ValueError:
            return None
    return None
