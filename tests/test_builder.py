"""
Tests for the snapshot builder and its staleness guard.

Validates:
    - A full pipeline run on synthetic data
    - Idempotence per date and forced replace-in-place, also under concurrency
    - Satellite contribution to the inflation score
    - Non-core failures only reach diagnostics
    - Missing core series produce a stale, unpersisted row
    - Determinism of compute_row
"""

from copy import deepcopy
from datetime import date
import threading

import pytest

from conftest import AS_OF, NOW, make_fetchers, make_market, make_series
from src.config import DEFAULT_CONFIG
from src.data_pipeline.gateway import ProviderGateway
from src.errors import NotReadyError, NotSeededError
from src.snapshot.builder import LAST_RUN_KEY, SnapshotBuilder, SnapshotResult
from src.snapshot.models import SOURCE_COMPUTED


def make_builder(store, fetchers):
    config = deepcopy(DEFAULT_CONFIG)
    config["market_data"]["attempt_timeout_seconds"] = 5
    config["market_data"]["batch_timeout_seconds"] = 20
    gateway = ProviderGateway.from_config(config, fetchers=fetchers)
    return SnapshotBuilder.from_config(config, store, gateway, clock=lambda: NOW)


@pytest.fixture
def builder(seeded_store, fetchers):
    return make_builder(seeded_store, fetchers)


class TestFreshRun:

    def test_goldilocks_row(self, builder, seeded_store):
        result = builder.build_snapshot()

        assert isinstance(result, SnapshotResult)
        assert result.stale is False
        assert result.computed is True

        row = result.row
        assert row.date == AS_OF.isoformat()
        assert row.regime == "GOLDILOCKS"
        assert row.risk_regime == "RISK ON"
        assert row.infl_axis == "Disinflation"
        assert row.risk_score == 3
        assert row.infl_score == -3
        assert row.infl_core_score == -3
        assert row.infl_sat_score == 0
        assert row.risk_confidence == "High"
        assert row.risk_conviction == 75
        assert row.risk_crowded is False
        assert (row.stocks_scale, row.gold_scale, row.btc_scale) == (1.0, 0.5, 1.0)
        assert (row.stocks_vams_state, row.gold_vams_state, row.btc_vams_state) == (2, 2, 2)
        assert row.flip_watch_status == "NONE"
        assert row.source == SOURCE_COMPUTED
        assert row.engine_version == DEFAULT_CONFIG["engine"]["version"]
        assert len(row.debug_votes) == 15
        kinds = [v.get("kind", "signal") for v in row.debug_votes]
        assert kinds.count("satellite") == 7

        assert seeded_store.latest == row
        assert seeded_store.storage.get_meta(LAST_RUN_KEY) == AS_OF.isoformat()

    def test_diagnostics(self, builder):
        diagnostics = builder.build_snapshot().diagnostics

        assert diagnostics["asof_date"] == "2024-01-08"
        status = diagnostics["core_symbol_status"]
        assert set(status) == set(builder.core_symbols)
        assert status["VIX"]["provider"] == "fred"
        assert all(s["ok"] for s in status.values())
        assert diagnostics["provider_diagnostics"]["errors"] == {}

    def test_second_run_is_idempotent(self, builder, fetchers, seeded_store):
        first = builder.build_snapshot()
        calls = len(fetchers["stooq"].calls)

        second = builder.build_snapshot()

        assert second.row == first.row
        assert len(fetchers["stooq"].calls) == calls
        assert len(seeded_store) == 6

    def test_force_replaces_in_place(self, builder, fetchers, seeded_store):
        builder.build_snapshot()
        calls = len(fetchers["stooq"].calls)

        result = builder.build_snapshot(force=True)

        assert result.computed is True
        assert len(fetchers["stooq"].calls) > calls
        assert len(seeded_store) == 6
        assert seeded_store.storage.count_rows() == 6

    def test_asof_follows_core_data(self, seeded_store):
        # Core closes end on Friday; a Monday run keys the row to Friday
        market = make_market(end=date(2024, 1, 5))
        builder = make_builder(seeded_store, make_fetchers(market))

        result = builder.build_snapshot(force=True)

        assert result.row.date == "2024-01-05"
        assert seeded_store.get("2024-01-05").source == SOURCE_COMPUTED
        assert len(seeded_store) == 5

    def test_concurrent_forced_builds_keep_one_row(self, builder, seeded_store):
        errors = []

        def run():
            try:
                builder.build_snapshot(as_of=AS_OF, force=True)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=run) for _ in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert errors == []
        assert seeded_store.dates.count("2024-01-08") == 1
        stored = [r["date"] for r in seeded_store.storage.load_rows()]
        assert stored.count("2024-01-08") == 1
        assert len(stored) == 6

    def test_existing_row_not_recomputed_without_force(self, seeded_store):
        market = make_market(end=date(2024, 1, 5))
        builder = make_builder(seeded_store, make_fetchers(market))

        result = builder.build_snapshot()

        assert result.computed is False
        assert result.row.source == "replay"


class TestSatellites:

    def test_falling_commodity_basket_adds_to_inflation_score(self, seeded_store, market):
        market["PDBC"] = make_series(name="PDBC", start_value=15.0, drift=-0.003)
        result = make_builder(seeded_store, make_fetchers(market)).build_snapshot()

        row = result.row
        assert row.infl_core_score == -3
        assert row.infl_sat_score == -1.0
        assert row.infl_score == -4.0
        assert row.regime == "GOLDILOCKS"

        votes = {v["name"]: v for v in row.debug_votes}
        assert votes["commodity_basket"]["vote"] == -1
        assert votes["commodity_basket"]["kind"] == "satellite"
        assert votes["truflation_yoy"]["source"] == "commodity_basket"

    def test_disabled_satellites(self, seeded_store, market):
        market["PDBC"] = make_series(name="PDBC", start_value=15.0, drift=-0.003)
        builder = make_builder(seeded_store, make_fetchers(market))
        builder.satellites.enabled = False

        row = builder.build_snapshot().row

        assert row.infl_score == -3
        assert row.infl_sat_score == 0
        assert len(row.debug_votes) == 8


class TestStalenessGuard:

    def test_non_core_failure_still_fresh(self, seeded_store, market):
        fetchers = make_fetchers(market, drop=("BTC-USD", "TIP"))
        result = make_builder(seeded_store, fetchers).build_snapshot()

        assert result.stale is False
        assert result.row.btc_vams_state is None
        errors = result.diagnostics["provider_diagnostics"]["errors"]
        assert set(errors) == {"BTC-USD", "TIP"}
        votes = {v["name"]: v for v in result.row.debug_votes}
        assert votes["tip_ief_tr63"]["status"] == "no_data"

    def test_missing_core_serves_stale_copy(self, seeded_store, market):
        fetchers = make_fetchers(market, drop=("VIX",))
        builder = make_builder(seeded_store, fetchers)

        result = builder.build_snapshot()

        assert result.stale is True
        assert result.computed is False
        assert result.row.date == "2024-01-05"
        assert result.row.stale is True
        assert result.row.stale_reason == "MISSING_CORE_SERIES: VIX"
        assert result.diagnostics["missing_core_symbols"] == ["VIX"]
        assert result.diagnostics["asof_date_attempted"] == "2024-01-08"
        assert result.diagnostics["core_symbol_status"]["VIX"]["ok"] is False

        # Nothing persisted
        assert len(seeded_store) == 5
        assert seeded_store.latest.stale is False
        assert seeded_store.storage.get_meta(LAST_RUN_KEY) is None

    def test_stale_run_is_retried(self, seeded_store, market):
        fetchers = make_fetchers(market, drop=("VIX",))
        builder = make_builder(seeded_store, fetchers)
        builder.build_snapshot()

        fetchers["fred"].data["VIXCLS"] = market["VIX"]
        result = builder.build_snapshot()

        assert result.stale is False
        assert result.row.date == "2024-01-08"

    def test_short_core_history_is_missing(self, seeded_store, market):
        market["HYG"] = market["HYG"].iloc[-40:]
        result = make_builder(seeded_store, make_fetchers(market)).build_snapshot()

        assert result.stale is True
        note = result.diagnostics["core_symbol_status"]["HYG"]["note"]
        assert note.startswith("Insufficient data")

    def test_to_dict_carries_diagnostics_when_stale(self, seeded_store, market):
        builder = make_builder(seeded_store, make_fetchers(market, drop=("SPY",)))
        payload = builder.build_snapshot().to_dict()

        assert payload["stale"] is True
        assert "diagnostics" in payload
        assert "debug_votes" not in payload


class TestPreconditions:

    def test_unseeded_store(self, store, fetchers):
        with pytest.raises(NotSeededError) as exc:
            make_builder(store, fetchers).build_snapshot()
        assert exc.value.http_status == 503
        assert exc.value.to_dict()["missing_files"] == [DEFAULT_CONFIG["storage"]["seed_path"]]

    def test_not_ready_without_fallback_row(self, seeded_store, market):
        builder = make_builder(seeded_store, make_fetchers(market, drop=("VIX",)))
        batch = builder.gateway.fetch_all(builder.symbols, AS_OF)
        status, missing = builder._core_status(batch)
        seeded_store._state = type(seeded_store._state).build(())

        with pytest.raises(NotReadyError) as exc:
            builder._stale_result(AS_OF, batch, status, missing)
        assert exc.value.to_dict()["diagnostics"]["missing_core_symbols"] == ["VIX"]


class TestComputeRow:

    def test_deterministic(self, builder, market):
        first = builder.compute_row(AS_OF, market)
        second = builder.compute_row(AS_OF, market)
        assert first == second
        assert first.debug_votes == second.debug_votes

    def test_ignores_data_after_asof(self, builder, market):
        later = make_market(end=date(2024, 1, 12))
        assert builder.compute_row(AS_OF, later) == builder.compute_row(AS_OF, market)

    def test_symbols_cover_core_signals_and_trend(self, builder):
        symbols = builder.symbols
        assert symbols[: len(builder.core_symbols)] == builder.core_symbols
        for symbol in ("TIP", "GLD", "BTC-USD"):
            assert symbol in symbols
        assert len(symbols) == len(set(symbols))
