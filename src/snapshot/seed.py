"""
Seed history import for GhostRegime.

The engine refuses to serve until a replay history has been loaded.
The replay CSV has one row per date with at least ``date`` and
``regime``; every other column is optional and gets a default.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List
import logging

import numpy as np
import pandas as pd

from src.snapshot.models import SOURCE_REPLAY, GhostRegimeRow

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("date", "regime")
BOOL_COLUMNS = ("stale", "risk_tiebreaker_used", "infl_tiebreaker_used", "crowded", "stress_override")
INT_COLUMNS = (
    "risk_score", "infl_core_score",
    "stocks_vams_state", "gold_vams_state", "btc_vams_state",
    "risk_agreement_pct", "risk_coverage_pct", "risk_conviction",
    "infl_agreement_pct", "infl_coverage_pct", "infl_conviction",
    "regime_conviction",
)
FLOAT_COLUMNS = ("infl_score", "infl_sat_score")


@dataclass(frozen=True)
class SeedStatus:
    exists: bool
    is_empty: bool
    path: str

    @property
    def ready(self) -> bool:
        return self.exists and not self.is_empty


def check_seed_status(path: str) -> SeedStatus:
    """Whether the seed CSV exists and holds at least one data row."""
    seed = Path(path)
    if not seed.is_file():
        return SeedStatus(exists=False, is_empty=True, path=str(seed))

    try:
        with open(seed, "r", encoding="utf-8") as f:
            lines = [line for line in f.read().strip().splitlines() if line.strip()]
    except OSError as e:
        logger.warning(f"Cannot read seed file {seed}: {e}")
        return SeedStatus(exists=False, is_empty=True, path=str(seed))

    return SeedStatus(exists=True, is_empty=len(lines) <= 1, path=str(seed))


def _clean(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, float) and np.isnan(value):
        return None
    if isinstance(value, np.generic):
        return value.item()
    return value


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def load_seed_rows(path: str) -> List[GhostRegimeRow]:
    """Parse the replay CSV into rows.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If a required column is missing
    """
    df = pd.read_csv(path, dtype={"date": str})
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Seed file {path} is missing columns: {missing}")

    rows: List[GhostRegimeRow] = []
    for record in df.to_dict(orient="records"):
        values: Dict[str, Any] = {
            k: _clean(v) for k, v in record.items() if _clean(v) is not None
        }
        if not values.get("date") or not values.get("regime"):
            continue
        values["date"] = pd.Timestamp(values["date"]).date().isoformat()
        for column in BOOL_COLUMNS:
            if column in values:
                values[column] = _to_bool(values[column])
        for column in INT_COLUMNS:
            if column in values:
                values[column] = int(values[column])
        for column in FLOAT_COLUMNS:
            if column in values:
                values[column] = float(values[column])
        values["source"] = SOURCE_REPLAY
        values.pop("debug_votes", None)
        try:
            rows.append(GhostRegimeRow.from_dict(values))
        except (TypeError, ValueError) as e:
            logger.warning(f"Skipping seed row {values.get('date')}: {e}")

    logger.info(f"Loaded {len(rows)} seed rows from {path}")
    return rows


def seed_store(store, path: str, overwrite: bool = False) -> int:
    """Import the seed CSV into a HistoryStore.

    Returns:
        Number of rows imported (0 when the seed is missing or empty)
    """
    status = check_seed_status(path)
    if not status.ready:
        logger.warning(f"Seed file not available: {status.path}")
        return 0
    return store.import_rows(load_seed_rows(path), overwrite=overwrite)
