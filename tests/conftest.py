"""
Test configuration for GhostRegime.

Vendors are never hit: every test that needs market data gets
``FakeFetcher`` objects serving synthetic close series.
"""

import pytest
import sys
import os
import time
import tempfile
from copy import deepcopy
from datetime import date, datetime, timezone

import numpy as np
import pandas as pd

# Add repo root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.config import DEFAULT_CONFIG
from src.data_pipeline.storage import DatabaseStorage
from src.snapshot.history import HistoryStore
from src.snapshot.models import GhostRegimeRow


AS_OF = date(2024, 1, 8)
NOW = datetime(2024, 1, 8, 23, 0, tzinfo=timezone.utc)


# ─── Synthetic market data ────────────────────────────────────────


def make_series(
    end=AS_OF,
    periods: int = 300,
    start_value: float = 100.0,
    drift: float = 0.0,
    wiggle: float = 0.0,
    freq: str = "B",
    name=None,
) -> pd.Series:
    """Geometric close series ending at ``end``.

    ``wiggle`` multiplies alternate observations by (1 +/- wiggle), which
    gives a non-zero volatility while leaving returns over even spans
    untouched.
    """
    if freq == "B":
        index = pd.bdate_range(end=pd.Timestamp(end), periods=periods)
    else:
        index = pd.date_range(end=pd.Timestamp(end), periods=periods, freq="D")
    steps = np.arange(periods)
    values = start_value * (1 + drift) ** steps * (1 + wiggle * (-1.0) ** steps)
    return pd.Series(values, index=index, name=name)


# Risk axis: SPY, HYG/IEF and EEM/SPY vote +1, VIX is neutral.
# Inflation axis: PDBC, TLT and UUP vote -1, TIP/IEF is neutral.
MARKET_SPECS = {
    "SPY": dict(start_value=400.0, drift=0.001, wiggle=0.002),
    "HYG": dict(start_value=75.0, drift=0.0005),
    "IEF": dict(start_value=95.0),
    "VIX": dict(start_value=20.0, drift=-0.002),
    "EEM": dict(start_value=40.0, drift=0.0015),
    "PDBC": dict(start_value=15.0, drift=-0.001),
    "TIP": dict(start_value=105.0),
    "TLT": dict(start_value=90.0, drift=0.0005),
    "UUP": dict(start_value=28.0, drift=0.0005),
    "GLD": dict(start_value=180.0, drift=0.0005, wiggle=0.002),
}


def make_market(end=AS_OF):
    market = {
        symbol: make_series(end=end, name=symbol, **spec)
        for symbol, spec in MARKET_SPECS.items()
    }
    market["BTC-USD"] = make_series(
        end=end, periods=400, start_value=30000.0, drift=0.001,
        wiggle=0.002, freq="D", name="BTC-USD",
    )
    return market


class FakeFetcher:
    """In-memory vendor: serves series by identifier, records calls."""

    def __init__(self, vendor, data=None, delay=0.0):
        self.vendor = vendor
        self.data = dict(data or {})
        self.delay = delay
        self.calls = []

    def fetch(self, symbol, start_date, end_date, timeout=30):
        self.calls.append(symbol)
        if self.delay:
            time.sleep(self.delay)
        value = self.data.get(symbol)
        if value is None:
            raise ConnectionError(f"{self.vendor}: no data for {symbol}")
        if isinstance(value, Exception):
            raise value
        return value.copy()


def make_fetchers(market, drop=()):
    """Vendor registry matching the default chains.

    ``drop`` removes symbols from every vendor.
    """
    stooq = {
        s: v for s, v in market.items()
        if s not in ("VIX", "BTC-USD") and s not in drop
    }
    fred = {"VIXCLS": market["VIX"]} if "VIX" not in drop else {}
    coingecko = {"bitcoin": market["BTC-USD"]} if "BTC-USD" not in drop else {}
    return {
        "stooq": FakeFetcher("stooq", stooq),
        "yfinance": FakeFetcher("yfinance"),
        "fred": FakeFetcher("fred", fred),
        "coingecko": FakeFetcher("coingecko", coingecko),
    }


# ─── Rows ─────────────────────────────────────────────────────────


def make_row(day, regime="GOLDILOCKS", **overrides):
    values = {"date": day, "regime": regime, "source": "replay", "engine_version": "test"}
    values.update(overrides)
    return GhostRegimeRow.from_dict(values)


SEED_ROWS = [
    ("2024-01-01", "GOLDILOCKS", dict(stocks_scale=1.0, gold_scale=0.5, btc_scale=0.5)),
    ("2024-01-02", "GOLDILOCKS", dict(stocks_scale=1.0, gold_scale=0.5, btc_scale=0.5)),
    ("2024-01-03", "DEFLATION", dict(stocks_scale=0.5, gold_scale=1.0, btc_scale=0.0)),
    ("2024-01-04", "DEFLATION", dict(stocks_scale=0.5, gold_scale=1.0, btc_scale=0.0)),
    ("2024-01-05", "GOLDILOCKS", dict(stocks_scale=1.0, gold_scale=0.5, btc_scale=1.0)),
]


def seed_rows():
    return [make_row(day, regime, **extra) for day, regime, extra in SEED_ROWS]


def write_seed_csv(path, rows=None):
    rows = rows if rows is not None else seed_rows()
    df = pd.DataFrame([r.to_dict() for r in rows])
    df.to_csv(path, index=False)
    return path


# ─── Fixtures ─────────────────────────────────────────────────────


@pytest.fixture
def tmp_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def temp_storage(tmp_dir):
    """Empty SQLite storage in a temporary directory."""
    storage = DatabaseStorage(db_path=os.path.join(tmp_dir, "test_ghostregime.db"))
    yield storage
    # Dispose engine before tmpdir cleanup to release the SQLite file
    storage.engine.dispose()


@pytest.fixture
def store(temp_storage):
    return HistoryStore(temp_storage)


@pytest.fixture
def seeded_store(store):
    store.import_rows(seed_rows())
    return store


@pytest.fixture
def market():
    return make_market()


@pytest.fixture
def engine_config(tmp_dir):
    config = deepcopy(DEFAULT_CONFIG)
    config["storage"]["db_path"] = os.path.join(tmp_dir, "engine.db")
    config["storage"]["seed_path"] = write_seed_csv(os.path.join(tmp_dir, "seed.csv"))
    config["market_data"]["attempt_timeout_seconds"] = 5
    config["market_data"]["batch_timeout_seconds"] = 20
    config["scheduler"]["enabled"] = False
    return config


@pytest.fixture
def fetchers(market):
    return make_fetchers(market)


@pytest.fixture
def system(engine_config, fetchers):
    """Initialized GhostRegime seeded from a temporary CSV."""
    from src.main import GhostRegime

    instance = GhostRegime(config=engine_config, fetchers=fetchers, clock=lambda: NOW)
    instance.initialize()
    yield instance
    instance.shutdown()


def _client_for(instance):
    import api.dependencies as deps
    from contextlib import asynccontextmanager

    orig_system = deps._system
    orig_time = deps._startup_time

    deps._system = instance
    deps._startup_time = time.time()

    from api.main import app

    # Replace lifespan with a no-op so TestClient doesn't trigger
    # the real initialization.
    @asynccontextmanager
    async def _noop_lifespan(_app):
        yield

    saved_lifespan = app.router.lifespan_context
    app.router.lifespan_context = _noop_lifespan

    # Bypass the forced-recompute limiter; it is tested on its own app
    from api.middleware import ForceRateLimitMiddleware
    _orig_dispatch = ForceRateLimitMiddleware.dispatch

    async def _passthrough(self, request, call_next):
        return await call_next(request)

    ForceRateLimitMiddleware.dispatch = _passthrough

    from starlette.testclient import TestClient

    try:
        with TestClient(app) as client:
            yield client
    finally:
        ForceRateLimitMiddleware.dispatch = _orig_dispatch
        app.router.lifespan_context = saved_lifespan
        deps._system = orig_system
        deps._startup_time = orig_time


@pytest.fixture
def api_client(system):
    """FastAPI TestClient with a real, seeded GhostRegime injected."""
    yield from _client_for(system)


@pytest.fixture
def unseeded_client(engine_config, fetchers):
    """TestClient whose GhostRegime has no seed and no history."""
    from src.main import GhostRegime

    engine_config["storage"]["seed_path"] = os.path.join(
        os.path.dirname(engine_config["storage"]["db_path"]), "missing.csv"
    )
    instance = GhostRegime(config=engine_config, fetchers=fetchers, clock=lambda: NOW)
    instance.initialize()
    try:
        yield from _client_for(instance)
    finally:
        instance.shutdown()
