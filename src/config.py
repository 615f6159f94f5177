"""
Configuration loading for GhostRegime.

Defaults are defined here; ``config/ghostregime.yaml`` is deep-merged on
top of them and a handful of environment variables override the result.

Example:
    >>> config = load_config()
    >>> config["freshness"]["max_age_days"]
    4
"""

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Optional
import logging
import os

import yaml

logger = logging.getLogger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    "engine": {
        "version": "ghostregime-v1.0.1",
    },
    "storage": {
        "db_path": "data/ghostregime.db",
        "seed_path": "data/ghostregime/seed/ghostregime_replay_history.csv",
    },
    "market_data": {
        "lookback_days": 420,
        "attempt_timeout_seconds": 20,
        "batch_timeout_seconds": 90,
        "max_workers": 6,
        "core_symbols": ["SPY", "HYG", "IEF", "EEM", "PDBC", "TLT", "UUP", "VIX"],
        "chains": {
            "SPY": [{"vendor": "stooq"}, {"vendor": "yfinance"}],
            "HYG": [{"vendor": "stooq"}, {"vendor": "yfinance"}],
            "IEF": [{"vendor": "stooq"}, {"vendor": "yfinance"}],
            "EEM": [{"vendor": "stooq"}, {"vendor": "yfinance"}],
            "TLT": [{"vendor": "stooq"}, {"vendor": "yfinance"}],
            "UUP": [{"vendor": "stooq"}, {"vendor": "yfinance"}],
            "PDBC": [
                {"vendor": "stooq"},
                {"vendor": "yfinance"},
                {"vendor": "stooq", "id": "DBC", "proxy": True},
            ],
            "VIX": [
                {"vendor": "fred", "id": "VIXCLS"},
                {"vendor": "yfinance", "id": "^VIX"},
            ],
            "TIP": [{"vendor": "stooq"}, {"vendor": "yfinance"}],
            "GLD": [{"vendor": "stooq"}, {"vendor": "yfinance"}],
            "BTC-USD": [
                {"vendor": "coingecko", "id": "bitcoin"},
                {"vendor": "yfinance", "id": "BTC-USD"},
            ],
        },
    },
    "signals": {
        "spy_tr63": {"upper": 0.02, "lower": -0.02},
        "hyg_ief_tr63": {"upper": 0.01, "lower": -0.01},
        "vix_tr21": {"upper": 0.10, "lower": -0.10},
        "eem_spy_tr63": {"upper": 0.01, "lower": -0.01},
        "pdbc_tr63": {"upper": 0.02, "lower": -0.02},
        "tip_ief_tr63": {"upper": 0.005, "lower": -0.005},
        "tlt_tr63": {"upper": 0.01, "lower": -0.01},
        "uup_tr63": {"upper": 0.01, "lower": -0.01},
    },
    "satellites": {
        "enabled": True,
        "cap": 1.0,
        "series": {},
    },
    "stress_override": {
        "enabled": True,
        "vix_threshold": 30.0,
        "hyg_ief_threshold": -0.02,
    },
    "aggregation": {
        "conviction_method": "net_vote",
        "confidence": {
            "high_agreement_pct": 80,
            "medium_agreement_pct": 60,
            "coverage_pct": 50,
        },
        "crowded": {
            "conviction": 76,
            "agreement_pct": 80,
            "coverage_pct": 50,
        },
    },
    "allocation": {
        "targets": {
            "stocks_risk_on": 0.6,
            "stocks_risk_off": 0.3,
            "gold": 0.3,
            "btc_risk_on": 0.1,
            "btc_risk_off": 0.05,
        },
        "vams": {
            "threshold_high": 0.5,
            "threshold_low": -0.5,
        },
    },
    "flip_watch": {
        "confirmation_days": 2,
        "strong_flip_score": 2,
    },
    "freshness": {
        "max_age_days": 4,
    },
    "scheduler": {
        "enabled": False,
        "run_after_utc": "22:30",
        "poll_seconds": 300,
        "stale_retry_seconds": 900,
        "max_stale_runs": 4,
    },
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``."""
    merged = deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = deepcopy(value)
    return merged


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides in place."""
    db_path = os.getenv("GHOSTREGIME_DB_PATH")
    if db_path:
        config["storage"]["db_path"] = db_path

    seed_path = os.getenv("GHOSTREGIME_SEED_PATH")
    if seed_path:
        config["storage"]["seed_path"] = seed_path

    version = os.getenv("GHOSTREGIME_MODEL_VERSION")
    if version:
        config["engine"]["version"] = version

    return config


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load the GhostRegime configuration.

    Args:
        config_path: Path to a YAML file. If None, the default locations
            are searched.

    Returns:
        Configuration dictionary (defaults merged with YAML and env).
    """
    if config_path is None:
        default_paths = [
            "config/ghostregime.yaml",
            "../config/ghostregime.yaml",
            Path(__file__).parent.parent / "config" / "ghostregime.yaml",
        ]
        for path in default_paths:
            if Path(path).exists():
                config_path = str(path)
                break

    overrides: Dict[str, Any] = {}
    if config_path and Path(config_path).exists():
        with open(config_path, "r") as f:
            overrides = yaml.safe_load(f) or {}
        logger.info(f"Loaded configuration from {config_path}")
    else:
        logger.warning("No configuration file found, using defaults")

    return _apply_env_overrides(_deep_merge(DEFAULT_CONFIG, overrides))
