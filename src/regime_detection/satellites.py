"""
Inflation-axis satellites for GhostRegime.

Satellites are slower or external inflation gauges that nudge the
inflation axis on top of the core signal votes. Each satellite reads
one observation (value + observation date) and turns it into a raw
vote with its own band, then weights it by age:

    effective = raw_vote * weight * 0.5 ** (age_days / half_life_days)

Observations older than ``ttl_days`` are dropped. When a satellite's
own series is unavailable, the observation of its ``fallback`` series
fills the slot (one hop, judged against the primary's band). The summed
effective votes are clamped to [-cap, +cap], which bounds how much one
shared observation can move the axis.

The commodity basket is derived from PDBC closes and is always present
when market data is; the other series need an external provider.

Classes:
    SatelliteSpec: Declarative satellite definition
    SatelliteObservation: Latest value of one series
    SatelliteVote: One satellite's decayed vote
    SatelliteScore: Capped sum plus the per-satellite votes
    MarketSatelliteProvider: Market-derived and injected observations
    SatelliteBank: Resolves, decays and caps the satellite votes
"""

from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple
import logging

import pandas as pd

from src.regime_detection.signals import (
    INFLATION,
    STATUS_NEUTRAL,
    STATUS_NO_DATA,
    STATUS_VOTE,
)
from src.regime_detection.windows import TR_21, TR_63, last_date, trailing_return, truncate

logger = logging.getLogger(__name__)

STATUS_EXPIRED = "expired"

KIND_SATELLITE = "satellite"

DELTA_PP = "delta_pp"
LEVEL = "level"
TRAILING_RETURN = "trailing_return"
MEASURES = (DELTA_PP, LEVEL, TRAILING_RETURN)

COMMODITY_BASKET = "commodity_basket"


@dataclass(frozen=True)
class SatelliteObservation:
    value: float
    observed: date
    series: str = ""


@dataclass(frozen=True)
class SatelliteSpec:
    """Declarative definition of one satellite.

    Attributes:
        name: Unique series name
        measure: ``delta_pp``, ``level`` or ``trailing_return``
        upper: Value at or above which the satellite votes +1
        lower: Value at or below which it votes -1
        ttl_days: Observations older than this are ignored
        half_life_days: Age at which the vote is worth half
        weight: Vote weight before decay
        fallback: Series tried when this one has no observation
        symbol: Market symbol for market-derived series
        window: Observation window for ``trailing_return`` series
    """
    name: str
    measure: str
    upper: float
    lower: float
    ttl_days: int
    half_life_days: float
    weight: float = 1.0
    fallback: Optional[str] = None
    symbol: Optional[str] = None
    window: int = 0

    def __post_init__(self):
        if self.measure not in MEASURES:
            raise ValueError(f"Unknown satellite measure: {self.measure}")
        if self.lower > self.upper:
            raise ValueError(f"Satellite {self.name}: lower band above upper band")
        if self.half_life_days <= 0:
            raise ValueError(f"Satellite {self.name}: half_life_days must be positive")
        if self.ttl_days < 0:
            raise ValueError(f"Satellite {self.name}: ttl_days must not be negative")

    def raw_vote(self, value: float) -> int:
        if value >= self.upper:
            return 1
        if value <= self.lower:
            return -1
        return 0

    def decay(self, age_days: int) -> float:
        return 0.5 ** (age_days / self.half_life_days)


@dataclass(frozen=True)
class SatelliteVote:
    """One satellite's contribution to the inflation axis.

    ``vote`` is the raw -1/0/+1 band result; ``effective`` is the
    weighted, decayed value that enters the sum.
    """
    name: str
    vote: int
    status: str
    effective: float = 0.0
    value: Optional[float] = None
    source: Optional[str] = None
    age_days: Optional[int] = None
    decay: Optional[float] = None
    weight: float = 1.0
    threshold_hit: Optional[str] = None
    window: int = 0

    axis = INFLATION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "axis": self.axis,
            "kind": KIND_SATELLITE,
            "vote": self.vote,
            "status": self.status,
            "value": self.value,
            "threshold_hit": self.threshold_hit,
            "window": self.window,
            "source": self.source,
            "age_days": self.age_days,
            "weight": self.weight,
            "effective_vote": self.effective,
        }


@dataclass(frozen=True)
class SatelliteScore:
    """Capped satellite sum.

    Attributes:
        votes: One entry per configured satellite
        total: Sum of effective votes before the cap
        score: ``total`` clamped to [-cap, +cap]
    """
    votes: Tuple[SatelliteVote, ...] = ()
    total: float = 0.0
    score: float = 0.0


def default_satellite_specs(overrides: Optional[Mapping[str, Mapping[str, Any]]] = None) -> List[SatelliteSpec]:
    """Build the default satellite set.

    Args:
        overrides: Optional ``{name: {field: value}}`` overrides
    """
    base = [
        SatelliteSpec("cleveland_nowcast_yoy", DELTA_PP, 0.05, -0.05, 7, 3,
                      fallback="truflation_yoy"),
        SatelliteSpec("truflation_yoy", DELTA_PP, 0.05, -0.05, 7, 3,
                      fallback=COMMODITY_BASKET),
        SatelliteSpec(COMMODITY_BASKET, TRAILING_RETURN, 0.02, -0.02, 7, 3,
                      symbol="PDBC", window=TR_21),
        SatelliteSpec("ism_manufacturing_prices", LEVEL, 55, 45, 35, 14,
                      fallback="ism_services_prices"),
        SatelliteSpec("ism_services_prices", LEVEL, 55, 45, 35, 14,
                      fallback="nfib_price_plans"),
        SatelliteSpec("nfib_price_plans", LEVEL, 30, 20, 35, 14,
                      fallback="ism_manufacturing_prices"),
        SatelliteSpec("freight_pulse", TRAILING_RETURN, 0.10, -0.10, 21, 10,
                      fallback=COMMODITY_BASKET, window=TR_63),
    ]
    overrides = overrides or {}

    specs = []
    for spec in base:
        override = overrides.get(spec.name)
        if override:
            spec = replace(spec, **override)
        specs.append(spec)
    return specs


class SatelliteProvider(Protocol):
    def latest(
        self,
        spec: SatelliteSpec,
        series_by_symbol: Mapping[str, pd.Series],
        as_of: date,
    ) -> Optional[SatelliteObservation]:
        ...


@dataclass
class MarketSatelliteProvider:
    """Serves market-derived series and any injected observations.

    Attributes:
        observations: Latest external observations by series name
    """
    observations: Dict[str, SatelliteObservation] = field(default_factory=dict)

    def latest(
        self,
        spec: SatelliteSpec,
        series_by_symbol: Mapping[str, pd.Series],
        as_of: date,
    ) -> Optional[SatelliteObservation]:
        if spec.symbol is not None:
            series = truncate(series_by_symbol.get(spec.symbol), as_of)
            value = trailing_return(series, spec.window)
            if value is None:
                return None
            return SatelliteObservation(value, last_date(series), spec.name)

        observation = self.observations.get(spec.name)
        if observation is None or observation.observed > as_of:
            return None
        return observation


class SatelliteBank:
    """Resolves satellites and produces the capped inflation nudge.

    Attributes:
        specs: Satellites in evaluation order
        provider: Observation source
        cap: Absolute bound on the summed score
        enabled: When False, ``evaluate`` returns an empty score
    """

    def __init__(
        self,
        specs: Optional[List[SatelliteSpec]] = None,
        provider: Optional[SatelliteProvider] = None,
        cap: float = 1.0,
        enabled: bool = True,
    ):
        self.specs = list(specs) if specs is not None else default_satellite_specs()
        self.provider = provider or MarketSatelliteProvider()
        self.cap = float(cap)
        self.enabled = enabled
        self._by_name = {s.name: s for s in self.specs}
        if len(self._by_name) != len(self.specs):
            raise ValueError("Satellite names must be unique")

    @classmethod
    def from_config(
        cls,
        config: Dict[str, Any],
        provider: Optional[SatelliteProvider] = None,
    ) -> "SatelliteBank":
        sat = config.get("satellites", {})
        return cls(
            specs=default_satellite_specs(sat.get("series")),
            provider=provider,
            cap=sat.get("cap", 1.0),
            enabled=sat.get("enabled", True),
        )

    @property
    def symbols(self) -> List[str]:
        return [s.symbol for s in self.specs if s.symbol is not None]

    def _resolve(
        self,
        series_by_symbol: Mapping[str, pd.Series],
        as_of: date,
    ) -> Dict[str, Optional[SatelliteObservation]]:
        direct = {
            spec.name: self.provider.latest(spec, series_by_symbol, as_of)
            for spec in self.specs
        }

        resolved = dict(direct)
        for spec in self.specs:
            if resolved[spec.name] is not None or not spec.fallback:
                continue
            fallback = self._by_name.get(spec.fallback)
            if fallback is None:
                logger.warning(f"Satellite {spec.name}: unknown fallback {spec.fallback}")
                continue
            observation = direct.get(fallback.name)
            if observation is not None:
                logger.debug(f"Satellite {spec.name}: using fallback {fallback.name}")
                resolved[spec.name] = observation
        return resolved

    def vote(self, spec: SatelliteSpec, observation: Optional[SatelliteObservation], as_of: date) -> SatelliteVote:
        """Turn one observation into a decayed vote."""
        if observation is None:
            return SatelliteVote(spec.name, 0, STATUS_NO_DATA, weight=spec.weight, window=spec.window)

        age = max((as_of - observation.observed).days, 0)
        common = dict(
            value=observation.value,
            source=observation.series or spec.name,
            age_days=age,
            weight=spec.weight,
            window=spec.window,
        )
        if age > spec.ttl_days:
            return SatelliteVote(spec.name, 0, STATUS_EXPIRED, **common)

        raw = spec.raw_vote(observation.value)
        decay = spec.decay(age)
        if raw > 0:
            hit = f">= {spec.upper}"
        elif raw < 0:
            hit = f"<= {spec.lower}"
        else:
            hit = None
        return SatelliteVote(
            spec.name,
            raw,
            STATUS_VOTE if raw else STATUS_NEUTRAL,
            effective=round(raw * spec.weight * decay, 6),
            decay=round(decay, 6),
            threshold_hit=hit,
            **common,
        )

    def evaluate(
        self,
        series_by_symbol: Mapping[str, pd.Series],
        as_of: date,
    ) -> SatelliteScore:
        """Evaluate every satellite as of ``as_of``.

        Returns:
            SatelliteScore with the capped sum
        """
        if not self.enabled:
            return SatelliteScore()

        resolved = self._resolve(series_by_symbol, as_of)
        votes = tuple(self.vote(spec, resolved[spec.name], as_of) for spec in self.specs)
        total = sum(v.effective for v in votes)
        score = round(max(-self.cap, min(self.cap, total)), 6)

        logger.debug(f"Satellite score {score} (uncapped {total:.4f})")
        return SatelliteScore(votes=votes, total=round(total, 6), score=score)
