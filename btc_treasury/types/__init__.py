from .upstream import Chart, ChartMeta, ChartResponse, ChartResult, SpotPriceResponse

__all__ = [
    "Chart",
    "ChartMeta",
    "ChartResponse",
    "ChartResult",
    "SpotPriceResponse",
]
