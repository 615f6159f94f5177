"""
Snapshot Builder and Staleness Guard for GhostRegime.

Runs the daily pipeline:

    Provider Gateway -> Signal Bank -> Axis Aggregator
        -> Regime Classifier -> Exposure Scaler -> History Store

Only the builder writes history, and writes for one date are serialized
by a per-date lock, so a forced recompute racing a scheduled run for the
same day replaces the row in place instead of duplicating it.

When a core symbol cannot be resolved, nothing is written. The last good
row is served with ``stale=True`` and diagnostics, or ``NotReadyError``
is raised when no row exists at all. Non-core failures only show up in
the diagnostics.

Classes:
    SnapshotResult: Row plus staleness marker and diagnostics
    SnapshotBuilder: Builds, guards and commits daily snapshots

Example:
    >>> builder = SnapshotBuilder.from_config(config, store, gateway)
    >>> result = builder.build_snapshot()
    >>> result.row.regime, result.stale
    ('GOLDILOCKS', False)
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional
import logging
import threading

import pandas as pd

from src.allocation.exposure import TREND_SYMBOLS, ExposureScaler
from src.data_pipeline.gateway import BatchResult, ProviderGateway
from src.errors import NotReadyError, NotSeededError
from src.regime_detection.aggregator import AxisAggregator
from src.regime_detection.classifier import FlipWatch, RegimeClassifier, RISK_ON
from src.regime_detection.satellites import SatelliteBank
from src.regime_detection.signals import INFLATION, RISK, SignalBank
from src.regime_detection.windows import TR_63, last_date, truncate
from src.snapshot.history import HistoryStore
from src.snapshot.models import (
    INFLATION_LABEL,
    RISK_AXIS_OFF,
    RISK_AXIS_ON,
    SOURCE_COMPUTED,
    GhostRegimeRow,
)

logger = logging.getLogger(__name__)

LAST_RUN_KEY = "last_run_date"


@dataclass(frozen=True)
class SnapshotResult:
    """Outcome of one ``build_snapshot`` call.

    Attributes:
        row: Fresh row, or the last good row when stale
        stale: True when the row was not rebuilt for the requested date
        diagnostics: Provider and core-symbol diagnostics
        computed: True when a row was computed and committed by this call
    """
    row: GhostRegimeRow
    stale: bool = False
    diagnostics: Dict[str, Any] = field(default_factory=dict)
    computed: bool = False

    def to_dict(self, include_debug: bool = False, include_diagnostics: bool = False) -> Dict[str, Any]:
        payload = self.row.to_dict(include_debug=include_debug)
        if self.stale or include_diagnostics:
            if self.diagnostics:
                payload["diagnostics"] = self.diagnostics
        return payload


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SnapshotBuilder:
    """Builds and commits the daily GhostRegime snapshot.

    Attributes:
        store: History store (the only mutable shared resource)
        gateway: Provider gateway
        core_symbols: Symbols whose absence blocks a fresh row
        engine_version: Version stamped on every computed row
        seed_path: Reported in NOT_SEEDED errors
    """

    def __init__(
        self,
        store: HistoryStore,
        gateway: ProviderGateway,
        core_symbols: List[str],
        engine_version: str,
        seed_path: str,
        bank: Optional[SignalBank] = None,
        aggregator: Optional[AxisAggregator] = None,
        classifier: Optional[RegimeClassifier] = None,
        scaler: Optional[ExposureScaler] = None,
        flip_watch: Optional[FlipWatch] = None,
        satellites: Optional[SatelliteBank] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.gateway = gateway
        self.core_symbols = list(core_symbols)
        self.engine_version = engine_version
        self.seed_path = seed_path
        self.bank = bank or SignalBank()
        self.aggregator = aggregator or AxisAggregator()
        self.classifier = classifier or RegimeClassifier()
        self.scaler = scaler or ExposureScaler()
        self.flip_watch = flip_watch or FlipWatch()
        self.satellites = satellites or SatelliteBank()
        self.clock = clock

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._last_result: Optional[SnapshotResult] = None

    @classmethod
    def from_config(
        cls,
        config: Dict[str, Any],
        store: HistoryStore,
        gateway: ProviderGateway,
        clock: Callable[[], datetime] = _utcnow,
    ) -> "SnapshotBuilder":
        return cls(
            store=store,
            gateway=gateway,
            core_symbols=config["market_data"]["core_symbols"],
            engine_version=config["engine"]["version"],
            seed_path=config["storage"]["seed_path"],
            bank=SignalBank.from_config(config),
            aggregator=AxisAggregator.from_config(config),
            classifier=RegimeClassifier.from_config(config),
            scaler=ExposureScaler.from_config(config),
            flip_watch=FlipWatch(**config.get("flip_watch", {})),
            satellites=SatelliteBank.from_config(config),
            clock=clock,
        )

    @property
    def last_result(self) -> Optional[SnapshotResult]:
        return self._last_result

    @property
    def symbols(self) -> List[str]:
        """Every symbol a run fetches: core first, then signal and trend inputs."""
        ordered: List[str] = []
        candidates = (
            self.core_symbols
            + self.bank.symbols
            + self.satellites.symbols
            + list(TREND_SYMBOLS.values())
        )
        for symbol in candidates:
            if symbol not in ordered:
                ordered.append(symbol)
        return ordered

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(key, threading.Lock())

    def build_snapshot(self, as_of: Optional[date] = None, force: bool = False) -> SnapshotResult:
        """Build (or reuse) the snapshot for ``as_of``.

        Args:
            as_of: Target date, UTC today by default
            force: Recompute even if a run already completed for the date

        Returns:
            SnapshotResult

        Raises:
            NotSeededError: History has never been seeded
            NotReadyError: Core data missing and no row to fall back to
        """
        if self.store.is_empty:
            raise NotSeededError(self.seed_path)

        target = as_of or self.clock().date()
        key = target.isoformat()

        with self._lock_for(key):
            result = self._build_locked(target, force)

        self._last_result = result
        return result

    def _build_locked(self, target: date, force: bool) -> SnapshotResult:
        key = target.isoformat()

        if not force and self.store.storage.get_meta(LAST_RUN_KEY) == key:
            previous = self._last_result
            if previous is not None and not previous.stale:
                return previous
            latest = self.store.latest
            if latest is not None and latest.date <= key:
                logger.info(f"Run for {key} already completed; serving {latest.date}")
                return SnapshotResult(latest)

        batch = self.gateway.fetch_all(self.symbols, target)
        core_status, missing = self._core_status(batch)

        if missing:
            return self._stale_result(target, batch, core_status, missing)

        core_dates = [
            last_date(batch.results[symbol].series) for symbol in self.core_symbols
        ]
        asof = min(min(core_dates), target)
        diagnostics = {
            "asof_date": asof.isoformat(),
            "core_symbol_status": core_status,
            "provider_diagnostics": batch.diagnostics,
        }

        existing = self.store.get(asof)
        if existing is not None and not force:
            logger.info(f"Row for {asof.isoformat()} already exists; not recomputing")
            self.store.storage.set_meta(LAST_RUN_KEY, key)
            return SnapshotResult(existing, diagnostics=diagnostics)

        row = self.compute_row(asof, batch.series)
        self.store.commit(row)
        self.store.storage.set_meta(LAST_RUN_KEY, key)
        return SnapshotResult(row, diagnostics=diagnostics, computed=True)

    def _core_status(self, batch: BatchResult):
        status: Dict[str, Dict[str, Any]] = {}
        missing: List[str] = []

        for symbol in self.core_symbols:
            fetch = batch.results.get(symbol)
            series = fetch.series if fetch else None
            obs = 0 if series is None else len(series)
            last = last_date(series)
            note = None

            if fetch is None or not fetch.ok:
                note = "No data available"
            elif obs < TR_63:
                note = f"Insufficient data: {obs} < {TR_63} observations"

            ok = note is None
            if not ok:
                missing.append(symbol)

            status[symbol] = {
                "provider": fetch.result.vendor if fetch else None,
                "last_date": last.isoformat() if last else None,
                "obs": obs,
                "ok": ok,
                "note": note,
            }

        return status, missing

    def _stale_result(
        self,
        target: date,
        batch: BatchResult,
        core_status: Dict[str, Dict[str, Any]],
        missing: List[str],
    ) -> SnapshotResult:
        diagnostics = {
            "asof_date_attempted": target.isoformat(),
            "missing_core_symbols": missing,
            "core_symbol_status": core_status,
            "provider_diagnostics": batch.diagnostics,
        }

        latest = self.store.latest
        if latest is None:
            raise NotReadyError(diagnostics=diagnostics)

        reason = f"MISSING_CORE_SERIES: {', '.join(missing)}"
        logger.warning(f"Serving stale row {latest.date} for {target.isoformat()}: {reason}")
        return SnapshotResult(
            replace(latest, stale=True, stale_reason=reason),
            stale=True,
            diagnostics=diagnostics,
        )

    def compute_row(self, asof: date, series_by_symbol: Mapping[str, pd.Series]) -> GhostRegimeRow:
        """Compute the row for ``asof`` from series and prior history.

        A pure function of its inputs and the rows strictly before
        ``asof``: no wall-clock values enter the row.
        """
        series = {s: truncate(v, asof) for s, v in series_by_symbol.items()}
        votes = self.bank.evaluate(series, asof)

        prior = self.store.previous(asof)
        prior_risk = prior_infl = None
        if prior is not None:
            prior_risk = 1 if prior.risk_regime == RISK_ON else -1
            prior_infl = 1 if prior.infl_axis == INFLATION_LABEL else -1

        risk = self.aggregator.aggregate(RISK, votes, prior_risk)
        satellites = self.satellites.evaluate(series, asof)
        inflation = self.aggregator.aggregate(
            INFLATION, votes, prior_infl, satellite_score=satellites.score
        )
        stress = self.classifier.stress.triggered(series, asof)
        call = self.classifier.classify(risk, inflation, stress_override=stress)

        exposure = self.scaler.allocate(
            call.regime,
            call.risk,
            risk_crowded=call.risk_crowded,
            trend_states=self.scaler.trend_states(series),
        )

        history = [(r.as_date, r.regime) for r in self.store.before(asof, limit=10)]
        flip = self.flip_watch.status(
            asof, call.regime, call.risk.score, call.inflation.score, history
        )

        return GhostRegimeRow(
            date=asof.isoformat(),
            regime=call.regime,
            risk_regime=call.risk_regime,
            risk_axis=RISK_AXIS_ON if call.risk.sign > 0 else RISK_AXIS_OFF,
            infl_axis=call.inflation_regime,
            risk_score=call.risk.score,
            infl_score=call.inflation.score,
            infl_core_score=call.inflation.core_score,
            infl_sat_score=call.inflation.satellite_score,
            risk_tiebreaker_used=call.risk.tiebreaker_used,
            infl_tiebreaker_used=call.inflation.tiebreaker_used,
            risk_agreement_pct=call.risk.agreement_pct,
            risk_coverage_pct=call.risk.coverage_pct,
            risk_confidence=call.risk.confidence,
            risk_conviction=call.risk.conviction,
            risk_crowded=call.risk_crowded,
            infl_agreement_pct=call.inflation.agreement_pct,
            infl_coverage_pct=call.inflation.coverage_pct,
            infl_confidence=call.inflation.confidence,
            infl_conviction=call.inflation.conviction,
            infl_crowded=call.inflation_crowded,
            regime_conviction=call.conviction,
            regime_confidence=call.confidence,
            crowded=call.crowded,
            stress_override=call.stress_override,
            flip_watch_status=flip,
            engine_version=self.engine_version,
            source=SOURCE_COMPUTED,
            debug_votes=tuple(v.to_dict() for v in votes) + tuple(
                v.to_dict() for v in satellites.votes
            ),
            **exposure.to_dict(),
        )
