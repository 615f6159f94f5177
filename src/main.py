"""
GhostRegime - daily market regime classification engine.

Main entry point for snapshot runs, seeding and the HTTP service.

Usage:
    python -m src.main --mode=run
    python -m src.main --mode=run --date 2024-06-03 --force
    python -m src.main --mode=seed --overwrite
    python -m src.main --mode=serve --port 8000
"""

import argparse
import json
import logging
import sys
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from dotenv import load_dotenv

from src.config import load_config
from src.data_pipeline.fetchers import SeriesFetcher
from src.data_pipeline.gateway import ProviderGateway
from src.data_pipeline.storage import DatabaseStorage
from src.errors import GhostRegimeError, NotSeededError
from src.realtime.scheduler import DailySnapshotScheduler
from src.snapshot.builder import SnapshotBuilder, SnapshotResult
from src.snapshot.differ import NO_CHANGES, diff
from src.snapshot.health import health_snapshot
from src.snapshot.history import HistoryStore
from src.snapshot.models import GhostRegimeRow, parse_iso_date
from src.snapshot.seed import check_seed_status, seed_store

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler('ghostregime.log')
    ]
)
logger = logging.getLogger(__name__)


class GhostRegime:
    """Main GhostRegime system coordinator.

    Wires the layers together:
    - Persistence: DatabaseStorage + in-memory HistoryStore
    - Pipeline: ProviderGateway -> SnapshotBuilder
    - Scheduling: DailySnapshotScheduler (optional, API process only)

    The read helpers (``today``, ``history``, ``explain``, ``diff``,
    ``health``) are what the API routes call.

    Example:
        >>> system = GhostRegime()
        >>> system.initialize()
        >>> result = system.today(force=True)
        >>> print(result.row.regime, result.row.stocks_scale)
    """

    def __init__(
        self,
        config_path: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
        fetchers: Optional[Dict[str, SeriesFetcher]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize GhostRegime.

        Args:
            config_path: Path to a YAML config file
            config: Ready-made config dict (skips loading from disk)
            fetchers: Vendor fetchers keyed by vendor name (defaults to live vendors)
            clock: Returns the current UTC datetime
        """
        self.config = config if config is not None else load_config(config_path)
        self._fetchers = fetchers
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.storage: Optional[DatabaseStorage] = None
        self.store: Optional[HistoryStore] = None
        self.gateway: Optional[ProviderGateway] = None
        self.builder: Optional[SnapshotBuilder] = None
        self.scheduler: Optional[DailySnapshotScheduler] = None

        self._is_initialized = False

        logger.info("GhostRegime instance created")

    @property
    def engine_version(self) -> str:
        return self.config["engine"]["version"]

    @property
    def seed_path(self) -> str:
        return self.config["storage"]["seed_path"]

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized

    @property
    def is_seeded(self) -> bool:
        return self.store is not None and not self.store.is_empty

    def initialize(self) -> None:
        """Open storage, load history and build the pipeline.

        An empty database is seeded from the replay CSV when one exists.
        """
        logger.info("Initializing GhostRegime...")

        self.storage = DatabaseStorage(self.config["storage"]["db_path"])
        self.store = HistoryStore(self.storage)

        if self.store.is_empty:
            status = check_seed_status(self.seed_path)
            if status.ready:
                imported = seed_store(self.store, self.seed_path)
                logger.info(f"Seeded {imported} rows from {self.seed_path}")
            else:
                logger.warning(
                    f"History is empty and no seed is available at {self.seed_path}"
                )

        self.gateway = ProviderGateway.from_config(self.config, fetchers=self._fetchers)
        self.builder = SnapshotBuilder.from_config(
            self.config, self.store, self.gateway, clock=self._clock
        )

        sched = self.config.get("scheduler", {})
        if sched.get("enabled"):
            self.scheduler = DailySnapshotScheduler(
                self.builder,
                run_after_utc=sched.get("run_after_utc", "22:30"),
                poll_seconds=sched.get("poll_seconds", 300),
                stale_retry_seconds=sched.get("stale_retry_seconds", 900),
                max_stale_runs=sched.get("max_stale_runs", 4),
                clock=self._clock,
            )

        self._is_initialized = True
        logger.info(f"GhostRegime initialized: {len(self.store)} rows in history")

    def _require_initialized(self) -> None:
        if not self._is_initialized:
            raise RuntimeError("System not initialized")

    def require_seeded(self) -> None:
        """Raise NotSeededError until history holds at least one row."""
        self._require_initialized()
        if not self.is_seeded:
            raise NotSeededError(self.seed_path)

    def seed(self, overwrite: bool = False) -> int:
        """Import the replay CSV into history."""
        self._require_initialized()
        return seed_store(self.store, self.seed_path, overwrite=overwrite)

    # ── Read helpers ─────────────────────────────────────────

    def today(
        self,
        force: bool = False,
        as_of: Optional[str] = None,
    ) -> SnapshotResult:
        """Current snapshot.

        Without ``force`` this only reads: the last stale result if the
        latest run was stale, otherwise the latest row (or the row for
        ``as_of``). With ``force`` the builder recomputes synchronously.

        Raises:
            NotSeededError: History is empty
            InvalidInputError: ``as_of`` is not YYYY-MM-DD
        """
        self.require_seeded()
        target = parse_iso_date(as_of, "date") if as_of else None

        if force:
            return self.builder.build_snapshot(as_of=target, force=True)

        if target is not None:
            return SnapshotResult(self.store.explain(target))

        last = self.builder.last_result
        if last is not None and last.stale:
            return last
        return SnapshotResult(self.store.latest)

    def history(
        self,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> List[GhostRegimeRow]:
        self.require_seeded()
        return self.store.history(start_date, end_date)

    def explain(self, day: Optional[str]) -> GhostRegimeRow:
        self.require_seeded()
        return self.store.explain(day)

    def diff(self, day: Optional[str] = None, prev: Optional[str] = None) -> Dict[str, Any]:
        """Day-over-day change list.

        Args:
            day: Date to compare, latest row when omitted
            prev: Baseline date, the row before ``day`` when omitted
        """
        self.require_seeded()
        current = self.store.explain(day) if day else self.store.latest
        previous = self.store.explain(prev) if prev else self.store.previous(current.date)

        changes = diff(current, previous)
        return {
            "date": current.date,
            "prev_date": previous.date if previous else None,
            "changes": changes if changes == NO_CHANGES else [c.to_dict() for c in changes],
        }

    def health(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Health payload; NOT_READY until a row exists."""
        latest = self.store.latest if self.store is not None else None
        if self.builder is not None and self.builder.last_result is not None:
            last = self.builder.last_result
            if last.stale:
                latest = last.row
        return health_snapshot(
            latest,
            self.engine_version,
            now=now or self._clock(),
            max_age_days=self.config["freshness"]["max_age_days"],
        )

    def shutdown(self) -> None:
        if self.storage is not None:
            self.storage.dispose()
        self._is_initialized = False
        logger.info("GhostRegime shut down")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="GhostRegime - Daily Market Regime Engine")
    parser.add_argument("--mode", choices=["run", "seed", "serve"],
                       default="run", help="Operation mode")
    parser.add_argument("--config", type=str, default=None,
                       help="Path to YAML configuration file")
    parser.add_argument("--date", type=str, default=None,
                       help="Target date for --mode=run (YYYY-MM-DD)")
    parser.add_argument("--force", action="store_true",
                       help="Recompute even if the date already ran")
    parser.add_argument("--overwrite", action="store_true",
                       help="Replace existing rows when seeding")
    parser.add_argument("--host", type=str, default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)

    args = parser.parse_args()

    if args.mode == "serve":
        import uvicorn

        uvicorn.run("api.main:app", host=args.host, port=args.port)
        return 0

    system = GhostRegime(config_path=args.config)
    system.initialize()

    try:
        if args.mode == "seed":
            imported = system.seed(overwrite=args.overwrite)
            print(f"Imported {imported} rows from {system.seed_path}")
            return 0

        as_of: Optional[date] = parse_iso_date(args.date, "date") if args.date else None
        system.require_seeded()
        result = system.builder.build_snapshot(as_of=as_of, force=args.force)
    except GhostRegimeError as e:
        logger.error(f"{e.code}: {e.message}")
        print(json.dumps(e.to_dict(), indent=2))
        return 1
    finally:
        system.shutdown()

    print("=" * 60)
    print(f"GhostRegime {system.engine_version}")
    print("=" * 60)
    row = result.row
    print(f"\nDate:        {row.date}{'  (STALE)' if result.stale else ''}")
    print(f"Regime:      {row.regime} ({row.risk_regime}, {row.infl_axis})")
    print(f"Confidence:  {row.regime_confidence}  Conviction: {row.regime_conviction}")
    print(f"Flip watch:  {row.flip_watch_status}")
    print(f"Scales:      stocks={row.stocks_scale} gold={row.gold_scale} btc={row.btc_scale}")
    if result.stale:
        print(f"Reason:      {row.stale_reason}")
        print(json.dumps(result.diagnostics, indent=2, default=str))

    return 0


if __name__ == "__main__":
    sys.exit(main())
