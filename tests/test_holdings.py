from __future__ import annotations

"""Tests for the holdings source, holdings refresh and seeding."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy.engine import Engine

from btc_treasury.domain.schemas import ScrapedCompany
from btc_treasury.io import holdings
from btc_treasury.io.database import count_companies, get_company, list_companies, upsert_company


NOW = datetime(2026, 1, 5, 15, 0, tzinfo=UTC)

CSV_EXPORT = """Rank,Country,Company,Bitcoin
1,🇺🇸,"Strategy, Inc.MSTR","₿444,262"
2,🇨🇦,Galaxy Digital HoldingsGLXY.TO,"₿15,449"
3,🇯🇵,MetaplanetMTPLF,"₿1,761.5"
4,🇺🇸,Private Company,"₿5,000"
5,🇺🇸,Empty TreasuryEMPT,₿0
6,🇺🇸,Missing HoldingsMISS,
"""


def test_scrape_companies_uses_builtin_list(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(holdings, "get_holdings_csv_path", lambda: None)

    companies = holdings.scrape_companies()

    assert len(companies) == len(holdings.TREASURY_COMPANIES)
    tickers = {company.ticker for company in companies}
    assert {"MSTR", "TSLA", "GLXY.TO", "3350.T"} <= tickers
    assert all(company.btc_holdings > 0 for company in companies)


def test_parse_treasuries_csv(tmp_path: Path) -> None:
    path = tmp_path / "treasuries.csv"
    path.write_text(CSV_EXPORT, encoding="utf-8")

    companies = holdings.parse_treasuries_csv(path)

    by_ticker = {company.ticker: company for company in companies}
    assert set(by_ticker) == {"MSTR", "GLXY.TO", "MTPLF"}
    assert by_ticker["MSTR"].name == "Strategy"
    assert by_ticker["MSTR"].btc_holdings == 444262
    assert by_ticker["MSTR"].country == "US"
    assert by_ticker["GLXY.TO"].country == "CA"
    assert by_ticker["GLXY.TO"].exchange == "TSX"
    assert by_ticker["MTPLF"].btc_holdings == pytest.approx(1761.5)
    assert by_ticker["MTPLF"].exchange == "TSE"
    assert all(company.shares_outstanding_millions is None for company in companies)


def test_scrape_companies_prefers_configured_csv(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "treasuries.csv"
    path.write_text(CSV_EXPORT, encoding="utf-8")
    monkeypatch.setattr(holdings, "get_holdings_csv_path", lambda: path)

    assert [company.ticker for company in holdings.scrape_companies()] == ["MSTR", "GLXY.TO", "MTPLF"]


@pytest.mark.parametrize(
    ("ticker", "country", "expected"),
    [
        ("GLXY.TO", "CA", "TSX"),
        ("3350.T", "JP", "TSE"),
        ("LQWD.V", "CA", "TSXV"),
        ("SAGA", "GB", "LSE"),
        ("MSTR", "US", "NASDAQ"),
        ("ABCD", "ZZ", "OTC"),
    ],
)
def test_guess_exchange(ticker: str, country: str, expected: str) -> None:
    assert holdings.guess_exchange(ticker, country) == expected


def test_update_companies_from_source_upserts(engine: Engine) -> None:
    upsert_company(
        engine,
        "MSTR",
        {"name": "MicroStrategy", "btc_holdings": 190000, "shares_outstanding_millions": 19.5},
        now=NOW - timedelta(days=1),
    )
    records = [
        ScrapedCompany(name="MicroStrategy", ticker="MSTR", btc_holdings=444262, exchange="NASDAQ"),
        ScrapedCompany(
            name="Tesla",
            ticker="TSLA",
            btc_holdings=9720,
            country="US",
            exchange="NASDAQ",
            shares_outstanding_millions=3180,
        ),
    ]

    written = holdings.update_companies_from_source(engine, records, now=NOW)

    assert written == 2
    mstr = get_company(engine, "MSTR")
    assert mstr is not None
    assert mstr.btc_holdings == 444262
    assert mstr.country_code == "US"
    assert mstr.shares_outstanding_millions == 19.5
    assert mstr.last_holdings_update == NOW
    tsla = get_company(engine, "TSLA")
    assert tsla is not None
    assert tsla.shares_outstanding_millions == 3180


def test_seed_database_only_when_empty(engine: Engine) -> None:
    inserted = holdings.seed_database(engine, now=NOW)

    assert inserted == len(holdings.SEED_COMPANIES)
    assert count_companies(engine) == len(holdings.SEED_COMPANIES)
    assert list_companies(engine)[0].ticker == "MSTR"

    assert holdings.seed_database(engine, now=NOW) == 0
    assert count_companies(engine) == len(holdings.SEED_COMPANIES)
