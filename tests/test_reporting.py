from __future__ import annotations

"""Tests for treasury report rendering and the treasury data view."""

import math
from datetime import UTC, datetime
from pathlib import Path

import pandas as pd
import pytest
from openpyxl import load_workbook
from sqlalchemy.engine import Engine

from btc_treasury.errors import NoBitcoinPriceAvailable
from btc_treasury.io.database import insert_bitcoin_price, insert_stock_price, upsert_company
from btc_treasury.io.reporting import export_treasury_report, treasury_frame
from btc_treasury.io.treasury import get_treasury_data


NOW = datetime(2026, 1, 5, 15, 0, tzinfo=UTC)


def _populate(engine: Engine) -> None:
    upsert_company(
        engine,
        "MSTR",
        {"name": "MicroStrategy", "btc_holdings": 10000, "shares_outstanding_millions": 500},
        now=NOW,
    )
    upsert_company(engine, "NOSH", {"name": "No Shares Co", "btc_holdings": 50000}, now=NOW)
    insert_stock_price(engine, "MSTR", 2.0, timestamp=NOW)
    insert_stock_price(engine, "NOSH", 5.0, timestamp=NOW)
    insert_bitcoin_price(engine, 50_000.0, timestamp=NOW)


def test_get_treasury_data_requires_bitcoin_price(engine: Engine) -> None:
    upsert_company(engine, "MSTR", {"name": "MicroStrategy", "btc_holdings": 1}, now=NOW)

    with pytest.raises(NoBitcoinPriceAvailable):
        get_treasury_data(engine)


def test_get_treasury_data_computes_views(engine: Engine) -> None:
    _populate(engine)

    views = get_treasury_data(engine)

    assert [view.company.ticker for view in views] == ["NOSH", "MSTR"]
    nosh, mstr = views
    assert not nosh.metrics_available
    assert nosh.stock_price == 5.0
    assert mstr.market_cap == pytest.approx(1e9)
    assert mstr.btc_nav_multiple == pytest.approx(2.0)
    assert mstr.price_timestamp == NOW


def test_treasury_frame_keeps_missing_metrics_empty(engine: Engine) -> None:
    _populate(engine)

    frame = treasury_frame(get_treasury_data(engine))

    assert list(frame["Ticker"]) == ["NOSH", "MSTR"]
    assert math.isnan(frame.loc[0, "Market cap"])
    assert frame.loc[1, "Market cap"] == pytest.approx(1e9)
    assert frame.loc[1, "BTC holdings %"] == pytest.approx(50.0)


def test_export_treasury_report_xlsx(engine: Engine, tmp_path: Path) -> None:
    _populate(engine)
    output = tmp_path / "reports" / "treasury.xlsx"

    written = export_treasury_report(get_treasury_data(engine), output)

    assert written == output
    workbook = load_workbook(output)
    sheet = workbook["Treasuries"]
    assert sheet.cell(row=1, column=1).value == "Ticker"
    assert sheet.cell(row=3, column=1).value == "MSTR"
    assert not sheet.sheet_view.showGridLines


def test_export_treasury_report_csv(engine: Engine, tmp_path: Path) -> None:
    _populate(engine)
    output = tmp_path / "treasury.csv"

    export_treasury_report(get_treasury_data(engine), output)

    frame = pd.read_csv(output)
    assert list(frame["Ticker"]) == ["NOSH", "MSTR"]
    assert pd.isna(frame.loc[0, "NAV multiple"])
