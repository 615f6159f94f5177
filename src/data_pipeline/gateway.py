"""
Provider Gateway for GhostRegime.

Resolves each symbol through an ordered chain of vendors. Every attempt
produces a tagged result, ``Resolved`` or ``Unavailable``; the gateway
never raises for a vendor failure. A symbol that no vendor can serve
comes back ``Unavailable`` and is recorded in the batch diagnostics.

Symbols are fetched concurrently on a thread pool. Each attempt has its
own timeout and the batch as a whole has a deadline; a symbol whose
worker misses the deadline is reported as unavailable with a timeout.

Classes:
    ChainEntry: One step in a symbol's vendor chain
    Resolved: Successful attempt
    Unavailable: Failed attempt, or total failure for a symbol
    SymbolFetch: Outcome for one symbol with all its attempts
    BatchResult: Outcomes for a batch plus provider diagnostics
    ProviderGateway: Runs chains for one symbol or many

Example:
    >>> gateway = ProviderGateway.from_config(config)
    >>> batch = gateway.fetch_all(["SPY", "VIX"], date(2024, 6, 28))
    >>> batch.diagnostics
    {'resolvedIds': {}, 'errors': {}, 'proxies': {}}
"""

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout, wait
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union
import logging

import pandas as pd

from src.data_pipeline.fetchers import SeriesFetcher, default_fetchers
from src.data_pipeline.validators import SeriesValidator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChainEntry:
    """One vendor attempt in a fallback chain.

    Attributes:
        vendor: Vendor name, a key of the fetcher registry
        id: Identifier at that vendor; defaults to the symbol itself
        proxy: Whether the identifier is a stand-in instrument
    """
    vendor: str
    id: Optional[str] = None
    proxy: bool = False

    def resolved_id(self, symbol: str) -> str:
        return self.id or symbol


@dataclass(frozen=True)
class Resolved:
    vendor: str
    resolved_id: str
    series: pd.Series
    proxy: bool = False


@dataclass(frozen=True)
class Unavailable:
    vendor: str
    resolved_id: str
    error: str


AttemptResult = Union[Resolved, Unavailable]


@dataclass
class SymbolFetch:
    """Final outcome for one symbol.

    Attributes:
        symbol: Requested symbol
        result: The winning ``Resolved`` attempt or the last ``Unavailable``
        attempts: Every attempt in chain order
    """
    symbol: str
    result: AttemptResult
    attempts: List[AttemptResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return isinstance(self.result, Resolved)

    @property
    def series(self) -> Optional[pd.Series]:
        return self.result.series if isinstance(self.result, Resolved) else None

    @property
    def provenance(self) -> Dict[str, Any]:
        """Vendor identity for the series actually used."""
        return {
            "vendor": self.result.vendor,
            "resolvedId": self.result.resolved_id,
            "proxy": isinstance(self.result, Resolved) and self.result.proxy,
        }

    @property
    def errors(self) -> List[Dict[str, str]]:
        return [
            {"vendor": a.vendor, "id": a.resolved_id, "error": a.error}
            for a in self.attempts
            if isinstance(a, Unavailable)
        ]


@dataclass
class BatchResult:
    """Outcomes for a batch of symbols."""
    results: Dict[str, SymbolFetch] = field(default_factory=dict)

    @property
    def series(self) -> Dict[str, pd.Series]:
        return {s: r.series for s, r in self.results.items() if r.ok}

    def unavailable(self) -> List[str]:
        return [s for s, r in self.results.items() if not r.ok]

    @property
    def diagnostics(self) -> Dict[str, Dict[str, Any]]:
        """Provider diagnostics in the wire shape.

        ``resolvedIds`` lists symbols that needed a fallback, ``errors``
        lists symbols no vendor could serve, ``proxies`` lists symbols
        served by a stand-in instrument.
        """
        resolved_ids: Dict[str, str] = {}
        errors: Dict[str, List[Dict[str, str]]] = {}
        proxies: Dict[str, str] = {}

        for symbol in sorted(self.results):
            fetch = self.results[symbol]
            result = fetch.result
            if isinstance(result, Resolved):
                if len(fetch.attempts) > 1:
                    resolved_ids[symbol] = f"{result.vendor}:{result.resolved_id}"
                if result.proxy:
                    proxies[symbol] = result.resolved_id
            else:
                errors[symbol] = fetch.errors or [
                    {"vendor": result.vendor, "id": result.resolved_id, "error": result.error}
                ]

        return {"resolvedIds": resolved_ids, "errors": errors, "proxies": proxies}


def parse_chains(raw: Mapping[str, Sequence[Mapping[str, Any]]]) -> Dict[str, List[ChainEntry]]:
    """Build chain entries from the ``market_data.chains`` config section."""
    return {
        symbol: [
            ChainEntry(
                vendor=entry["vendor"],
                id=entry.get("id"),
                proxy=bool(entry.get("proxy", False)),
            )
            for entry in entries
        ]
        for symbol, entries in raw.items()
    }


class ProviderGateway:
    """Fetches symbols through vendor fallback chains.

    Attributes:
        fetchers: Vendor name to fetcher
        chains: Symbol to ordered chain entries
        lookback_days: Calendar days of history requested per fetch
        attempt_timeout: Seconds allowed for one vendor attempt
        batch_timeout: Seconds allowed for a whole ``fetch_all``
        max_workers: Thread pool size for concurrent symbols
    """

    def __init__(
        self,
        fetchers: Mapping[str, SeriesFetcher],
        chains: Mapping[str, Sequence[ChainEntry]],
        validator: Optional[SeriesValidator] = None,
        lookback_days: int = 420,
        attempt_timeout: float = 20,
        batch_timeout: float = 90,
        max_workers: int = 6,
    ):
        self.fetchers = dict(fetchers)
        self.chains = {s: list(c) for s, c in chains.items()}
        self.validator = validator or SeriesValidator()
        self.lookback_days = lookback_days
        self.attempt_timeout = attempt_timeout
        self.batch_timeout = batch_timeout
        self.max_workers = max_workers

    @classmethod
    def from_config(
        cls,
        config: Dict[str, Any],
        fetchers: Optional[Mapping[str, SeriesFetcher]] = None,
    ) -> "ProviderGateway":
        market = config["market_data"]
        return cls(
            fetchers=fetchers if fetchers is not None else default_fetchers(),
            chains=parse_chains(market["chains"]),
            lookback_days=market.get("lookback_days", 420),
            attempt_timeout=market.get("attempt_timeout_seconds", 20),
            batch_timeout=market.get("batch_timeout_seconds", 90),
            max_workers=market.get("max_workers", 6),
        )

    def _attempt(self, symbol: str, entry: ChainEntry, as_of: date) -> AttemptResult:
        resolved_id = entry.resolved_id(symbol)
        fetcher = self.fetchers.get(entry.vendor)
        if fetcher is None:
            return Unavailable(entry.vendor, resolved_id, f"unknown vendor '{entry.vendor}'")

        start = as_of - timedelta(days=self.lookback_days)
        end = datetime.combine(as_of, datetime.min.time())
        start = datetime.combine(start, datetime.min.time())

        pool = ThreadPoolExecutor(max_workers=1)
        try:
            future = pool.submit(fetcher.fetch, resolved_id, start, end, self.attempt_timeout)
            raw = future.result(timeout=self.attempt_timeout)
            series, _ = self.validator.validate(raw, symbol=symbol)
            series = series[series.index <= pd.Timestamp(as_of)]
            if series.empty:
                raise ValueError(f"no observations on or before {as_of.isoformat()}")
            series.name = symbol
            return Resolved(entry.vendor, resolved_id, series, proxy=entry.proxy)
        except FutureTimeout:
            return Unavailable(
                entry.vendor, resolved_id, f"timeout after {self.attempt_timeout}s"
            )
        except Exception as e:
            return Unavailable(entry.vendor, resolved_id, str(e) or type(e).__name__)
        finally:
            # A timed-out attempt keeps running in the background; do not wait for it
            pool.shutdown(wait=False)

    def fetch_series(self, symbol: str, as_of: date) -> SymbolFetch:
        """Resolve one symbol through its chain.

        Args:
            symbol: Symbol to resolve
            as_of: Last date to include

        Returns:
            SymbolFetch whose ``result`` is the first ``Resolved`` attempt,
            or ``Unavailable`` when every vendor failed
        """
        chain = self.chains.get(symbol) or [ChainEntry("yfinance")]
        attempts: List[AttemptResult] = []

        for entry in chain:
            result = self._attempt(symbol, entry, as_of)
            attempts.append(result)
            if isinstance(result, Resolved):
                if len(attempts) > 1:
                    logger.info(
                        f"{symbol}: resolved via fallback {result.vendor}:{result.resolved_id}"
                    )
                return SymbolFetch(symbol, result, attempts)
            logger.warning(f"{symbol}: {result.vendor} attempt failed: {result.error}")

        last = attempts[-1]
        logger.warning(f"{symbol}: all {len(attempts)} vendors failed")
        return SymbolFetch(
            symbol,
            Unavailable(last.vendor, last.resolved_id, "all vendors failed"),
            attempts,
        )

    def fetch_all(self, symbols: Sequence[str], as_of: date) -> BatchResult:
        """Resolve many symbols concurrently.

        One symbol failing never affects the others.
        """
        batch = BatchResult()
        pool = ThreadPoolExecutor(max_workers=self.max_workers)
        try:
            futures = {
                pool.submit(self.fetch_series, symbol, as_of): symbol
                for symbol in symbols
            }
            done, not_done = wait(futures, timeout=self.batch_timeout)

            for future in done:
                symbol = futures[future]
                try:
                    batch.results[symbol] = future.result()
                except Exception as e:
                    logger.error(f"Unexpected gateway failure for {symbol}: {e}")
                    failure = Unavailable("gateway", symbol, str(e))
                    batch.results[symbol] = SymbolFetch(symbol, failure, [failure])

            for future in not_done:
                symbol = futures[future]
                future.cancel()
                failure = Unavailable("gateway", symbol, "timeout")
                batch.results[symbol] = SymbolFetch(symbol, failure, [failure])
                logger.warning(f"{symbol}: batch deadline exceeded")
        finally:
            pool.shutdown(wait=False)

        logger.info(
            f"Fetched {len(batch.series)}/{len(symbols)} symbols as of {as_of.isoformat()}"
        )
        return batch
