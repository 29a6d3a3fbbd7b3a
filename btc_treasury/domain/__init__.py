from .schemas import (
    BitcoinPricePoint,
    Company,
    ScrapedCompany,
    StockPricePoint,
    TreasuryView,
    normalize_ticker,
)

__all__ = [
    "BitcoinPricePoint",
    "Company",
    "ScrapedCompany",
    "StockPricePoint",
    "TreasuryView",
    "normalize_ticker",
]
