"""
Vendor Fetchers for GhostRegime.

Each fetcher turns one vendor's API into a daily close series. Fetchers
are capability-equivalent: the gateway picks them by vendor name from a
per-symbol fallback chain, so none of them knows about the others.

Default vendors (no key needed except FRED):
    stooq      ETF daily CSV endpoint
    yfinance   Yahoo Finance through the yfinance library
    fred       Federal Reserve Economic Data (VIXCLS), needs FRED_API_KEY
    coingecko  Public market-chart range API (bitcoin)

Classes:
    SeriesFetcher: Protocol every vendor satisfies
    BaseFetcher: Shared rate limiting and date parsing
    StooqFetcher: Fetches CSV closes from Stooq
    YFinanceFetcher: Fetches adjusted closes from Yahoo Finance
    FREDFetcher: Fetches series from FRED
    CoinGeckoFetcher: Fetches daily USD prices from CoinGecko

Example:
    >>> fetcher = StooqFetcher()
    >>> closes = fetcher.fetch("SPY", "2024-01-01", "2024-06-30")
    >>> print(closes.tail())
"""

from datetime import datetime, timedelta
from io import StringIO
from typing import Dict, Optional, Protocol, Union
import logging
import os
import threading
import time

import pandas as pd
import requests

logger = logging.getLogger(__name__)

DateLike = Union[str, datetime]


class SeriesFetcher(Protocol):
    """Anything that can return a daily close series for an identifier."""

    vendor: str

    def fetch(
        self,
        symbol: str,
        start_date: DateLike,
        end_date: DateLike,
        timeout: float = 30,
    ) -> pd.Series:
        ...


class BaseFetcher:
    """Shared helpers for vendor fetchers.

    Attributes:
        rate_limit_per_minute: Maximum API calls allowed per minute
        request_count: Number of requests made in current minute window

    One instance is shared by every gateway worker thread, so the
    counter and window are updated under a lock.
    """

    vendor = "base"

    def __init__(self, rate_limit_per_minute: int = 60):
        self.rate_limit_per_minute = rate_limit_per_minute
        self.request_count = 0
        self._minute_start: Optional[datetime] = None
        self._rate_lock = threading.Lock()

    def _check_rate_limit(self) -> None:
        """Sleep if the per-minute budget is exhausted."""
        with self._rate_lock:
            self._consume_request()

    def _consume_request(self) -> None:
        now = datetime.now()

        if self._minute_start is None or (now - self._minute_start).seconds >= 60:
            self._minute_start = now
            self.request_count = 0

        if self.request_count >= self.rate_limit_per_minute:
            sleep_time = 60 - (now - self._minute_start).seconds
            if sleep_time > 0:
                logger.warning(
                    f"{self.vendor}: rate limit reached. Sleeping for {sleep_time} seconds."
                )
                time.sleep(sleep_time)
                self._minute_start = datetime.now()
                self.request_count = 0

        self.request_count += 1

    @staticmethod
    def _parse_date(date: DateLike) -> datetime:
        """Convert a YYYY-MM-DD string to datetime.

        Raises:
            ValueError: If date string is malformed
        """
        if isinstance(date, datetime):
            return date
        try:
            return datetime.strptime(str(date), "%Y-%m-%d")
        except ValueError as e:
            raise ValueError(
                f"Invalid date format: {date}. Expected YYYY-MM-DD."
            ) from e


class StooqFetcher(BaseFetcher):
    """Fetcher for Stooq daily CSV downloads.

    US ETFs are addressed as ``<ticker>.us``. Stooq answers unknown
    tickers with HTTP 200 and the body ``No data``, which is treated as a
    failure.

    Example:
        >>> closes = StooqFetcher().fetch("HYG", "2024-01-01", "2024-06-30")
    """

    vendor = "stooq"
    BASE_URL = "https://stooq.com/q/d/l/"

    def __init__(self, session: Optional[requests.Session] = None):
        super().__init__(rate_limit_per_minute=120)
        self.session = session or requests.Session()

    @staticmethod
    def _stooq_symbol(symbol: str) -> str:
        symbol = symbol.lower()
        if symbol.startswith("^") or "." in symbol:
            return symbol
        return f"{symbol}.us"

    def fetch(
        self,
        symbol: str,
        start_date: DateLike,
        end_date: DateLike,
        timeout: float = 30,
    ) -> pd.Series:
        """Fetch daily closes from Stooq.

        Args:
            symbol: Ticker (e.g. "SPY")
            start_date: Start date for data
            end_date: End date for data (inclusive)
            timeout: Request timeout in seconds

        Returns:
            Close prices indexed by date

        Raises:
            ConnectionError: If the request fails or returns no rows
        """
        self._check_rate_limit()

        start = self._parse_date(start_date)
        end = self._parse_date(end_date)
        params = {
            "s": self._stooq_symbol(symbol),
            "d1": start.strftime("%Y%m%d"),
            "d2": end.strftime("%Y%m%d"),
            "i": "d",
        }

        try:
            response = self.session.get(self.BASE_URL, params=params, timeout=timeout)
            response.raise_for_status()
            text = response.text.strip()

            if not text or text.startswith("No data") or "Close" not in text.splitlines()[0]:
                raise ValueError(f"No data returned for {symbol}")

            df = pd.read_csv(StringIO(text), parse_dates=["Date"])
            if df.empty:
                raise ValueError(f"No data returned for {symbol}")

            closes = df.set_index("Date")["Close"].sort_index()
            closes.name = symbol

            logger.info(f"Stooq: Fetched {len(closes)} observations for {symbol}")
            return closes

        except Exception as e:
            logger.warning(f"Stooq fetch failed for {symbol}: {e}")
            raise ConnectionError(f"Failed to fetch {symbol} from Stooq: {e}") from e


class YFinanceFetcher(BaseFetcher):
    """Fetcher for Yahoo Finance data via the yfinance library.

    Does not require an API key. Used as the fallback for every symbol.

    Example:
        >>> closes = YFinanceFetcher().fetch("^VIX", "2024-01-01", "2024-06-30")
    """

    vendor = "yfinance"

    def __init__(self):
        super().__init__(rate_limit_per_minute=2000)
        self._yf = None

    def _get_yf(self):
        """Lazily import yfinance."""
        if self._yf is None:
            import yfinance as yf
            self._yf = yf
        return self._yf

    def fetch(
        self,
        symbol: str,
        start_date: DateLike,
        end_date: DateLike,
        timeout: float = 30,
    ) -> pd.Series:
        """Fetch adjusted closes from Yahoo Finance.

        Raises:
            ConnectionError: If the download fails or is empty
        """
        self._check_rate_limit()

        start = self._parse_date(start_date)
        # yfinance excludes the end date
        end = self._parse_date(end_date) + timedelta(days=1)

        try:
            yf = self._get_yf()
            data = yf.download(
                symbol,
                start=start.strftime("%Y-%m-%d"),
                end=end.strftime("%Y-%m-%d"),
                progress=False,
                auto_adjust=True,
                timeout=timeout,
            )

            if data is None or data.empty:
                raise ValueError(f"No data returned for {symbol}")

            # yfinance 0.2.x returns MultiIndex columns even for one ticker
            if isinstance(data.columns, pd.MultiIndex):
                data.columns = data.columns.get_level_values(0)

            closes = data["Close"]
            if isinstance(closes, pd.DataFrame):
                closes = closes.iloc[:, 0]
            closes = closes.copy()
            closes.name = symbol

            logger.info(f"yfinance: Fetched {len(closes)} observations for {symbol}")
            return closes

        except Exception as e:
            logger.warning(f"yfinance fetch failed for {symbol}: {e}")
            raise ConnectionError(
                f"Failed to fetch {symbol} from Yahoo Finance: {e}"
            ) from e


class FREDFetcher(BaseFetcher):
    """Fetcher for Federal Reserve Economic Data.

    Requires the FRED_API_KEY environment variable. Without it every
    fetch fails fast, which moves the gateway on to the next vendor.

    Example:
        >>> vix = FREDFetcher().fetch("VIXCLS", "2024-01-01", "2024-06-30")
    """

    vendor = "fred"

    def __init__(self, api_key: Optional[str] = None):
        super().__init__(rate_limit_per_minute=120)

        self.api_key = api_key or os.getenv("FRED_API_KEY")
        if not self.api_key:
            logger.warning("FRED_API_KEY not found. FRED fetcher will be unavailable.")

        self._fred = None

    def _get_fred_client(self):
        """Lazily initialize FRED client."""
        if self._fred is None and self.api_key:
            from fredapi import Fred
            self._fred = Fred(api_key=self.api_key)
        return self._fred

    def fetch(
        self,
        symbol: str,
        start_date: DateLike,
        end_date: DateLike,
        timeout: float = 30,
    ) -> pd.Series:
        """Fetch a FRED series.

        Args:
            symbol: FRED series ID (e.g. "VIXCLS")
            start_date: Start date for data
            end_date: End date for data
            timeout: Unused, fredapi does not expose one

        Raises:
            ConnectionError: If the key is missing or the request fails
        """
        if not self.api_key:
            raise ConnectionError("FRED API key not configured")

        self._check_rate_limit()

        start = self._parse_date(start_date)
        end = self._parse_date(end_date)

        try:
            fred = self._get_fred_client()
            data = fred.get_series(
                symbol,
                observation_start=start,
                observation_end=end,
            )
            if data is None or len(data) == 0:
                raise ValueError(f"No observations for {symbol}")

            closes = pd.Series(data, dtype=float).dropna()
            closes.name = symbol

            logger.info(f"FRED: Fetched {len(closes)} observations for {symbol}")
            return closes

        except Exception as e:
            logger.warning(f"FRED fetch failed for {symbol}: {e}")
            raise ConnectionError(f"Failed to fetch {symbol} from FRED: {e}") from e


class CoinGeckoFetcher(BaseFetcher):
    """Fetcher for CoinGecko's public market-chart range endpoint.

    Prices arrive as ``[timestamp_ms, price]`` pairs. Intraday points are
    collapsed to the last price of each UTC day.

    Example:
        >>> btc = CoinGeckoFetcher().fetch("bitcoin", "2024-01-01", "2024-06-30")
    """

    vendor = "coingecko"
    BASE_URL = "https://api.coingecko.com/api/v3/coins/{coin}/market_chart/range"

    def __init__(self, session: Optional[requests.Session] = None):
        # Public tier allows roughly 30 calls per minute
        super().__init__(rate_limit_per_minute=30)
        self.session = session or requests.Session()

    def fetch(
        self,
        symbol: str,
        start_date: DateLike,
        end_date: DateLike,
        timeout: float = 30,
    ) -> pd.Series:
        """Fetch daily USD prices for a coin id.

        Raises:
            ConnectionError: If the request fails or returns no prices
        """
        self._check_rate_limit()

        start = self._parse_date(start_date)
        end = self._parse_date(end_date) + timedelta(days=1)
        params = {
            "vs_currency": "usd",
            "from": int(start.timestamp()),
            "to": int(end.timestamp()),
        }

        try:
            response = self.session.get(
                self.BASE_URL.format(coin=symbol), params=params, timeout=timeout
            )
            response.raise_for_status()
            prices = response.json().get("prices") or []
            if not prices:
                raise ValueError(f"No prices returned for {symbol}")

            df = pd.DataFrame(prices, columns=["ts", "price"])
            df["Date"] = pd.to_datetime(df["ts"], unit="ms", utc=True).dt.tz_localize(None).dt.normalize()
            closes = df.groupby("Date")["price"].last().sort_index()
            closes.name = symbol

            logger.info(f"CoinGecko: Fetched {len(closes)} observations for {symbol}")
            return closes

        except Exception as e:
            logger.warning(f"CoinGecko fetch failed for {symbol}: {e}")
            raise ConnectionError(
                f"Failed to fetch {symbol} from CoinGecko: {e}"
            ) from e


def default_fetchers() -> Dict[str, SeriesFetcher]:
    """Build the vendor registry used by the gateway."""
    return {
        StooqFetcher.vendor: StooqFetcher(),
        YFinanceFetcher.vendor: YFinanceFetcher(),
        FREDFetcher.vendor: FREDFetcher(),
        CoinGeckoFetcher.vendor: CoinGeckoFetcher(),
    }
