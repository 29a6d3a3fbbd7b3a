from __future__ import annotations

"""Company holdings source, holdings refresh and first-run seeding."""

import logging
import re
from datetime import UTC, datetime
from pathlib import Path
from typing import Iterable

import pandas as pd
from pydantic import ValidationError
from sqlalchemy import Engine

from btc_treasury.config import get_holdings_csv_path
from btc_treasury.domain.schemas import ScrapedCompany
from btc_treasury.io.database import count_companies, upsert_company


logger = logging.getLogger(__name__)

# name, ticker, btc_holdings, country, exchange, shares_outstanding_millions
TREASURY_COMPANIES: tuple[tuple[str, str, float, str, str, float], ...] = (
    ("IBIT - iShares Bitcoin Trust", "IBIT", 1142370, "US", "NASDAQ", 1149),
    ("FBTC - Fidelity Wise Origin Bitcoin Fund", "FBTC", 210778, "US", "NYSE", 221),
    ("ARKB - ARK 21Shares Bitcoin ETF", "ARKB", 56454, "US", "NYSE", 155),
    ("BITB - Bitwise Bitcoin ETF", "BITB", 43507, "US", "NYSE", 73),
    ("BTC - VanEck Bitcoin Trust", "HODL", 12704, "US", "NYSE", 32),
    ("BRRR - Valkyrie Bitcoin Fund", "BRRR", 4047, "US", "NASDAQ", 13),
    ("BTCO - Invesco Galaxy Bitcoin ETF", "BTCO", 3247, "US", "NYSE", 30),
    ("EZBC - Franklin Bitcoin ETF", "EZBC", 2894, "US", "NYSE", 46),
    ("DEFI - Hashdex Bitcoin ETF", "DEFI", 1281, "US", "NYSE", 10),
    ("MicroStrategy", "MSTR", 444262, "US", "NASDAQ", 19.5),
    ("Marathon Digital Holdings", "MARA", 34794, "US", "NASDAQ", 240),
    ("Riot Platforms", "RIOT", 17429, "US", "NASDAQ", 170),
    ("Galaxy Digital Holdings", "GLXY.TO", 15449, "CA", "TSX", 32),
    ("Tesla", "TSLA", 9720, "US", "NASDAQ", 3180),
    ("Hut 8 Mining", "HUT", 9366, "CA", "NASDAQ", 90),
    ("Coinbase Global", "COIN", 9181, "US", "NASDAQ", 230),
    ("CleanSpark", "CLSK", 8445, "US", "NASDAQ", 220),
    ("Block", "SQ", 8027, "US", "NYSE", 580),
    ("Metaplanet", "3350.T", 1761, "JP", "TSE", 115),
    ("Bitfarms", "BITF", 1103, "CA", "NASDAQ", 440),
    ("Semler Scientific", "SMLR", 1058, "US", "NASDAQ", 7.8),
    ("Core Scientific", "CORZ", 890, "US", "NASDAQ", 250),
    ("Cipher Mining", "CIFR", 729, "US", "NASDAQ", 245),
    ("LQwD Technologies", "LQWD.V", 318, "CA", "CSE", 87),
    ("KULR Technology Group", "KULR", 217, "US", "NYSE", 26),
    ("Genius Group", "GNS", 110, "SG", "NYSE", 32),
    ("Acurx Pharmaceuticals", "ACXP", 46, "US", "NASDAQ", 97),
    ("Adopter Digital Health", "ADOP", 22, "US", "OTC", 45),
    ("Rumble", "RUM", 20, "US", "NASDAQ", 658),
)

SEED_COMPANIES: tuple[tuple[str, str, float, str, str, float], ...] = (
    ("MicroStrategy", "MSTR", 190000, "US", "NASDAQ", 19.5),
    ("Tesla", "TSLA", 9720, "US", "NASDAQ", 3180),
    ("Block Inc", "SQ", 8027, "US", "NYSE", 580),
    ("Coinbase", "COIN", 9000, "US", "NASDAQ", 230),
    ("Marathon Digital", "MARA", 15174, "US", "NASDAQ", 240),
    ("Riot Platforms", "RIOT", 7327, "US", "NASDAQ", 170),
    ("Hut 8 Mining", "HUT", 9086, "CA", "NASDAQ", 90),
    ("CleanSpark", "CLSK", 5165, "US", "NASDAQ", 220),
    ("Galaxy Digital", "GLXY.TO", 8100, "CA", "TSX", 32),
    ("Bitfarms", "BITF", 1000, "CA", "NASDAQ", 440),
)

FLAG_COUNTRIES = {
    "🇺🇸": "US",
    "🇨🇦": "CA",
    "🇯🇵": "JP",
    "🇩🇪": "DE",
    "🇬🇧": "GB",
    "🇫🇷": "FR",
    "🇨🇳": "CN",
    "🇭🇰": "HK",
    "🇸🇬": "SG",
    "🇦🇺": "AU",
    "🇰🇷": "KR",
    "🇳🇴": "NO",
    "🇸🇪": "SE",
    "🇧🇷": "BR",
    "🇦🇷": "AR",
    "🇲🇹": "MT",
    "🇹🇭": "TH",
    "🇹🇷": "TR",
    "🇰🇾": "KY",
    "🇯🇪": "JE",
    "🇮🇹": "IT",
    "🇧🇭": "BH",
    "🇦🇪": "AE",
    "🇬🇮": "GI",
    "🇪🇸": "ES",
    "🇿🇦": "ZA",
    "🇮🇳": "IN",
}

SUFFIX_EXCHANGES = (
    (".NGM", "NGM"),
    (".TO", "TSX"),
    (".HK", "HKEX"),
    (".AX", "ASX"),
    (".PA", "Euronext"),
    (".DE", "XETRA"),
    (".OL", "OSE"),
    (".ST", "OMX"),
    (".BK", "SET"),
    (".KQ", "KOSDAQ"),
    (".KS", "KRX"),
    (".MI", "Borsa Italiana"),
    (".SA", "B3"),
    (".JO", "JSE"),
    (".IS", "BIST"),
    (".AD", "ADX"),
    (".BH", "BHB"),
    (".BO", "BSE"),
    (".MC", "BME"),
    (".AQ", "NEX"),
    (".CN", "CNQ"),
    (".NE", "NEO"),
    (".DU", "Dusseldorf"),
    (".T", "TSE"),
    (".V", "TSXV"),
    (".L", "LSE"),
    (".F", "Frankfurt"),
)

COUNTRY_EXCHANGES = {
    "US": "NASDAQ",
    "CA": "TSX",
    "JP": "TSE",
    "GB": "LSE",
    "DE": "XETRA",
    "FR": "Euronext",
    "HK": "HKEX",
    "AU": "ASX",
}

HOLDINGS_PATTERN = re.compile(r"₿([\d,]*\.?\d*)")
TICKER_PATTERN = re.compile(r"([A-Z]{2,8}(?:\.[A-Z]{1,3})?)$")
NAME_SUFFIX_PATTERN = re.compile(
    r",?\s*(Inc\.?|Corp\.?|Ltd\.?|LLC|PLC|SE|AG|AB|AS|Group|Holdings?)$",
    re.IGNORECASE,
)


def scrape_companies(csv_path: Path | None = None) -> list[ScrapedCompany]:
    """Return the current list of Bitcoin treasury companies.

    Uses a bitcointreasuries CSV export when one is supplied or configured,
    otherwise the built-in list.

    Args:
        csv_path (Path | None): Optional CSV export to parse.

    Returns:
        list[ScrapedCompany]: Company records sorted as provided.
    """
    path = csv_path or get_holdings_csv_path()
    if path is not None:
        logger.info("Loading treasury companies from %s", path)
        return parse_treasuries_csv(path)
    companies = _records(TREASURY_COMPANIES)
    logger.info("Loaded %d companies from built-in treasuries list", len(companies))
    return companies


def parse_treasuries_csv(path: Path) -> list[ScrapedCompany]:
    """Parse a bitcointreasuries CSV export.

    Expected columns (by position): rank, country flag, "Company NameTICKER",
    holdings formatted like ``₿1,234``. Rows without holdings, with zero
    holdings, or without a recognizable ticker are skipped.

    Args:
        path (Path): CSV file to parse.

    Returns:
        list[ScrapedCompany]: Parsed company records.
    """
    frame = pd.read_csv(path, dtype=str, keep_default_na=False, encoding="utf-8")
    if frame.shape[1] < 4:
        logger.warning("Treasuries CSV %s has %d columns; expected at least 4", path, frame.shape[1])
        return []
    companies = [
        company
        for row in frame.iloc[:, :4].itertuples(index=False, name=None)
        for company in [_parse_csv_row(row)]
        if company is not None
    ]
    logger.info("Parsed %d companies from CSV", len(companies))
    return companies


def guess_exchange(ticker: str, country: str) -> str:
    """Guess a listing exchange from the ticker suffix, then the country."""
    upper = ticker.upper()
    for suffix, exchange in SUFFIX_EXCHANGES:
        if upper.endswith(suffix):
            return exchange
    return COUNTRY_EXCHANGES.get(country, "OTC")


def update_companies_from_source(
    engine: Engine,
    companies: Iterable[ScrapedCompany] | None = None,
    now: datetime | None = None,
) -> int:
    """Upsert company holdings from the holdings source.

    Args:
        engine (Engine): SQLAlchemy engine for SQLite.
        companies (Iterable[ScrapedCompany] | None): Records to apply, defaults to a fresh scrape.
        now (datetime | None): Timestamp for ``last_holdings_update``.

    Returns:
        int: Number of companies written.
    """
    records = list(companies) if companies is not None else scrape_companies()
    retrieval = now or datetime.now(UTC)
    for record in records:
        fields: dict[str, object] = {
            "name": record.name,
            "btc_holdings": record.btc_holdings,
            "country_code": record.country or "US",
            "exchange": record.exchange,
            "last_holdings_update": retrieval,
        }
        if record.shares_outstanding_millions is not None and record.shares_outstanding_millions > 0:
            fields["shares_outstanding_millions"] = record.shares_outstanding_millions
        upsert_company(engine, record.ticker, fields, now=retrieval)
    logger.info("Updated %d companies from holdings source", len(records))
    return len(records)


def seed_database(engine: Engine, now: datetime | None = None) -> int:
    """Insert the initial company list when no companies exist yet.

    Args:
        engine (Engine): SQLAlchemy engine for SQLite.
        now (datetime | None): Timestamp for the seeded rows.

    Returns:
        int: Number of companies inserted.
    """
    existing = count_companies(engine)
    if existing:
        logger.info("Database already contains %d companies", existing)
        return 0
    logger.info("No companies found, seeding database with initial data")
    inserted = update_companies_from_source(engine, _records(SEED_COMPANIES), now=now)
    logger.info("Successfully seeded %d companies", inserted)
    return inserted


def _records(
    rows: Iterable[tuple[str, str, float, str, str, float]],
) -> list[ScrapedCompany]:
    """Build ScrapedCompany records from static tuples."""
    return [
        ScrapedCompany(
            name=name,
            ticker=ticker,
            btc_holdings=holdings,
            country=country,
            exchange=exchange,
            shares_outstanding_millions=shares,
        )
        for name, ticker, holdings, country, exchange, shares in rows
    ]


def _parse_csv_row(row: tuple[object, ...]) -> ScrapedCompany | None:
    """Parse one CSV row into a ScrapedCompany, or None when unusable."""
    _, flag, name_and_ticker, holdings_text = (str(value).strip() for value in row)
    holdings_match = HOLDINGS_PATTERN.search(holdings_text)
    if holdings_match is None:
        return None
    try:
        holdings = float(holdings_match.group(1).replace(",", ""))
    except ValueError:
        return None
    if holdings <= 0:
        return None
    ticker_match = TICKER_PATTERN.search(name_and_ticker)
    if ticker_match is None:
        logger.debug("Skipping CSV row without ticker: %s", name_and_ticker)
        return None
    ticker = ticker_match.group(1)
    name = name_and_ticker[: ticker_match.start()].strip()
    name = NAME_SUFFIX_PATTERN.sub("", name).rstrip(",").strip() or ticker
    country = FLAG_COUNTRIES.get(flag, "US")
    try:
        return ScrapedCompany(
            name=name,
            ticker=ticker,
            btc_holdings=holdings,
            country=country,
            exchange=guess_exchange(ticker, country),
        )
    except ValidationError as exc:
        logger.warning("Skipping invalid CSV row for %s: %s", ticker, exc)
        return None
