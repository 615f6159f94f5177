"""Daily snapshot assembly, history and diffing for GhostRegime."""

from src.snapshot.models import GhostRegimeRow, parse_iso_date
from src.snapshot.history import HistoryStore
from src.snapshot.differ import NO_CHANGES, ChangeDescription, diff
from src.snapshot.seed import SeedStatus, check_seed_status, load_seed_rows, seed_store
from src.snapshot.health import health_snapshot
from src.snapshot.builder import SnapshotBuilder, SnapshotResult

__all__ = [
    "GhostRegimeRow",
    "parse_iso_date",
    "HistoryStore",
    "NO_CHANGES",
    "ChangeDescription",
    "diff",
    "SeedStatus",
    "check_seed_status",
    "load_seed_rows",
    "seed_store",
    "health_snapshot",
    "SnapshotBuilder",
    "SnapshotResult",
]
