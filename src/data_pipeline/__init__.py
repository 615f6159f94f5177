"""Data pipeline module for fetching, validating, and storing GhostRegime data."""

from src.data_pipeline.fetchers import (
    CoinGeckoFetcher,
    FREDFetcher,
    SeriesFetcher,
    StooqFetcher,
    YFinanceFetcher,
)
from src.data_pipeline.gateway import (
    BatchResult,
    ChainEntry,
    ProviderGateway,
    Resolved,
    SymbolFetch,
    Unavailable,
)
from src.data_pipeline.validators import SeriesValidator
from src.data_pipeline.storage import DatabaseStorage

__all__ = [
    "SeriesFetcher",
    "StooqFetcher",
    "YFinanceFetcher",
    "FREDFetcher",
    "CoinGeckoFetcher",
    "ProviderGateway",
    "ChainEntry",
    "Resolved",
    "Unavailable",
    "SymbolFetch",
    "BatchResult",
    "SeriesValidator",
    "DatabaseStorage",
]
