"""
Tests for configuration loading, the GhostRegime coordinator and the CLI.
"""

import os
import sys
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
import yaml

from conftest import NOW, make_fetchers, make_market, write_seed_csv
from src.config import DEFAULT_CONFIG, _deep_merge, load_config
from src.errors import NotSeededError


# ─── Config ───────────────────────────────────────────────────────


class TestConfig:

    def test_deep_merge_keeps_siblings(self):
        merged = _deep_merge(DEFAULT_CONFIG, {"freshness": {"max_age_days": 7}})
        assert merged["freshness"]["max_age_days"] == 7
        assert merged["market_data"]["lookback_days"] == 420
        assert DEFAULT_CONFIG["freshness"]["max_age_days"] == 4

    def test_yaml_overrides(self, tmp_dir):
        path = os.path.join(tmp_dir, "ghostregime.yaml")
        with open(path, "w") as f:
            yaml.safe_dump({"signals": {"spy_tr63": {"upper": 0.03}}}, f)

        config = load_config(path)

        assert config["signals"]["spy_tr63"] == {"upper": 0.03, "lower": -0.02}
        assert config["signals"]["tlt_tr63"]["upper"] == 0.01

    def test_env_overrides(self, tmp_dir, monkeypatch):
        monkeypatch.setenv("GHOSTREGIME_DB_PATH", "/tmp/other.db")
        monkeypatch.setenv("GHOSTREGIME_MODEL_VERSION", "ghostregime-test")
        config = load_config(os.path.join(tmp_dir, "absent.yaml"))
        assert config["storage"]["db_path"] == "/tmp/other.db"
        assert config["engine"]["version"] == "ghostregime-test"

    def test_shipped_yaml_loads(self):
        root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
        config = load_config(os.path.join(root, "config", "ghostregime.yaml"))
        assert set(config["market_data"]["core_symbols"]) >= {"SPY", "VIX"}
        assert config["aggregation"]["conviction_method"] in ("net_vote", "product")


# ─── Coordinator ──────────────────────────────────────────────────


class TestGhostRegime:

    def test_auto_seeds_on_initialize(self, system):
        assert system.is_initialized
        assert system.is_seeded
        assert len(system.store) == 5
        assert system.scheduler is None

    def test_requires_initialize(self, engine_config, fetchers):
        from src.main import GhostRegime

        instance = GhostRegime(config=engine_config, fetchers=fetchers)
        with pytest.raises(RuntimeError):
            instance.history()

    def test_unseeded(self, engine_config, fetchers, tmp_dir):
        from src.main import GhostRegime

        engine_config["storage"]["seed_path"] = os.path.join(tmp_dir, "missing.csv")
        instance = GhostRegime(config=engine_config, fetchers=fetchers, clock=lambda: NOW)
        instance.initialize()
        try:
            assert not instance.is_seeded
            with pytest.raises(NotSeededError):
                instance.today()
            assert instance.health()["status"] == "NOT_READY"

            write_seed_csv(engine_config["storage"]["seed_path"])
            assert instance.seed() == 5
            assert instance.today().row.date == "2024-01-05"
        finally:
            instance.shutdown()

    def test_scheduler_built_when_enabled(self, engine_config, fetchers):
        from src.main import GhostRegime

        engine_config["scheduler"]["enabled"] = True
        instance = GhostRegime(config=engine_config, fetchers=fetchers, clock=lambda: NOW)
        instance.initialize()
        try:
            assert instance.scheduler is not None
            assert instance.scheduler.should_run() is True
        finally:
            instance.shutdown()

    def test_health_uses_clock(self, system):
        later = datetime(2024, 1, 12, tzinfo=timezone.utc)
        assert system.health(now=later)["status"] == "WARN"

    def test_diff_shape(self, system):
        result = system.diff("2024-01-04")
        assert result == {"date": "2024-01-04", "prev_date": "2024-01-03", "changes": "NO_CHANGES"}


# ─── CLI ──────────────────────────────────────────────────────────


@pytest.fixture
def cli_config(tmp_dir):
    path = os.path.join(tmp_dir, "cli.yaml")
    config = {
        "storage": {
            "db_path": os.path.join(tmp_dir, "cli.db"),
            "seed_path": write_seed_csv(os.path.join(tmp_dir, "seed.csv")),
        },
        "market_data": {"attempt_timeout_seconds": 5, "batch_timeout_seconds": 20},
        "scheduler": {"enabled": False},
    }
    with open(path, "w") as f:
        yaml.safe_dump(config, f)
    return path


def run_cli(*args):
    from src.main import main

    with patch.object(sys, "argv", ["ghostregime", *args]):
        return main()


class TestCLI:

    def test_seed_mode(self, cli_config, capsys):
        assert run_cli("--mode", "seed", "--config", cli_config) == 0
        # Initialization already imported the seed; a plain re-seed skips existing rows
        assert "Imported 0 rows" in capsys.readouterr().out

    def test_seed_overwrite(self, cli_config, capsys):
        assert run_cli("--mode", "seed", "--overwrite", "--config", cli_config) == 0
        assert "Imported 5 rows" in capsys.readouterr().out

    def test_run_mode(self, cli_config, capsys):
        fetchers = make_fetchers(make_market())
        with patch("src.data_pipeline.gateway.default_fetchers", return_value=fetchers):
            code = run_cli("--mode", "run", "--date", "2024-01-08", "--config", cli_config)

        assert code == 0
        out = capsys.readouterr().out
        assert "2024-01-08" in out
        assert "GOLDILOCKS" in out

    def test_run_mode_stale(self, cli_config, capsys):
        fetchers = make_fetchers(make_market(), drop=("SPY",))
        with patch("src.data_pipeline.gateway.default_fetchers", return_value=fetchers):
            code = run_cli("--mode", "run", "--date", "2024-01-08", "--config", cli_config)

        assert code == 0
        out = capsys.readouterr().out
        assert "(STALE)" in out
        assert "MISSING_CORE_SERIES: SPY" in out

    def test_bad_date_exits_nonzero(self, cli_config, capsys):
        assert run_cli("--mode", "run", "--date", "2024-02-30", "--config", cli_config) == 1
        assert "INVALID_DATE_FORMAT" in capsys.readouterr().out
