from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

import pandas as pd

from btc_treasury.domain.schemas import TreasuryView


REPORT_COLUMNS = (
    ("ticker", "Ticker"),
    ("name", "Company"),
    ("exchange", "Exchange"),
    ("country_code", "Country"),
    ("btc_holdings", "BTC holdings"),
    ("shares_outstanding_millions", "Shares outstanding (M)"),
    ("stock_price", "Stock price"),
    ("market_cap", "Market cap"),
    ("btc_value", "BTC value"),
    ("btc_nav_multiple", "NAV multiple"),
    ("btc_per_share", "BTC per share"),
    ("btc_holdings_percentage", "BTC holdings %"),
    ("price_timestamp", "Price timestamp"),
)

NUMBER_FORMATS = {
    "BTC holdings": "#,##0.00",
    "Shares outstanding (M)": "#,##0.00",
    "Stock price": "#,##0.00",
    "Market cap": "#,##0",
    "BTC value": "#,##0",
    "NAV multiple": "0.00",
    "BTC per share": "0.00000000",
    "BTC holdings %": "0.00",
}


logger = logging.getLogger(__name__)


def treasury_frame(views: Iterable[TreasuryView]) -> pd.DataFrame:
    """Build a report DataFrame with one row per company.

    Metrics that cannot be computed stay empty (NaN), never zero.

    Args:
        views (Iterable[TreasuryView]): Treasury views to render.

    Returns:
        pd.DataFrame: Report rows sorted by Bitcoin holdings, largest first.
    """
    rows = [_view_row(view) for view in views]
    labels = [label for _, label in REPORT_COLUMNS]
    frame = pd.DataFrame(rows, columns=labels)
    if not frame.empty:
        frame = frame.sort_values("BTC holdings", ascending=False, kind="stable")
        frame = frame.reset_index(drop=True)
    return frame


def export_treasury_report(views: Iterable[TreasuryView], output_path: Path) -> Path:
    """Write treasury views to an Excel workbook or a CSV file.

    ``.xlsx`` paths are written with the openpyxl engine; any other suffix is
    written as CSV.

    Args:
        views (Iterable[TreasuryView]): Treasury views to export.
        output_path (Path): Destination path.

    Returns:
        Path: The written path.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    frame = treasury_frame(views)
    logger.debug("Exporting %d treasury rows to %s", len(frame), output_path)
    if output_path.suffix.lower() == ".xlsx":
        with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
            frame.to_excel(writer, sheet_name="Treasuries", index=False)
            _format_workbook(writer, frame)
    else:
        frame.to_csv(output_path, index=False)
    logger.info("Wrote treasury report to %s", output_path)
    return output_path


def _view_row(view: TreasuryView) -> dict[str, object]:
    """Flatten a TreasuryView into report columns."""
    company = view.company
    values = {
        **company.model_dump(),
        **view.model_dump(exclude={"company"}),
    }
    if view.price_timestamp is not None:
        values["price_timestamp"] = view.price_timestamp.isoformat()
    return {label: values.get(key) for key, label in REPORT_COLUMNS}


def _format_workbook(writer: pd.ExcelWriter, frame: pd.DataFrame) -> None:
    """Apply number formats and hide gridlines.

    Args:
        writer (pd.ExcelWriter): Excel writer with workbook/worksheets.
        frame (pd.DataFrame): Frame written to the sheet, for column lookup.

    Returns:
        None: Mutates workbook formatting.
    """
    columns = list(frame.columns)
    for sheet in writer.sheets.values():
        sheet.sheet_view.showGridLines = False
        for label, number_format in NUMBER_FORMATS.items():
            if label not in columns:
                continue
            column_index = columns.index(label) + 1
            for row in sheet.iter_rows(min_row=2, min_col=column_index, max_col=column_index):
                for cell in row:
                    cell.number_format = number_format
