"""
Regime Classifier for GhostRegime.

Maps the pair of final axis signs to one of four regimes through a
fixed 2x2 table. A sign above zero means risk-on (or inflation); zero
and below mean risk-off (or disinflation), so there is never a fifth
state.

                     disinflation     inflation
    risk-on          GOLDILOCKS       REFLATION
    risk-off         DEFLATION        INFLATION

Also computes the crowded guardrail, the credit-stress override and the
flip-watch status.

Classes:
    CrowdedThresholds: Cut-offs for the crowded flag
    StressOverride: VIX / credit-spread stress rule
    RegimeCall: Classification result for one day
    RegimeClassifier: Builds RegimeCall objects
    FlipWatch: Day-over-day regime flip status
"""

from dataclasses import dataclass, replace
from datetime import date
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple
import logging

import pandas as pd

from src.regime_detection.aggregator import (
    CONFIDENCE_ORDER,
    HIGH,
    AxisState,
    round_half_up,
)
from src.regime_detection.windows import TR_63, last_value, ratio_return, truncate

logger = logging.getLogger(__name__)

GOLDILOCKS = "GOLDILOCKS"
REFLATION = "REFLATION"
INFLATION = "INFLATION"
DEFLATION = "DEFLATION"
REGIMES = (GOLDILOCKS, REFLATION, INFLATION, DEFLATION)

RISK_ON = "RISK ON"
RISK_OFF = "RISK OFF"
INFLATION_LABEL = "Inflation"
DISINFLATION_LABEL = "Disinflation"

# (risk-on, inflationary) -> regime
REGIME_TABLE: Dict[Tuple[bool, bool], str] = {
    (True, False): GOLDILOCKS,
    (True, True): REFLATION,
    (False, True): INFLATION,
    (False, False): DEFLATION,
}

FLIP_NONE = "NONE"
FLIP_BREWING = "BREWING"
FLIP_PENDING = "PENDING_CONFIRMATION"
FLIP_STRONG = "STRONG_FLIP"


def classify_regime(risk_sign: int, inflation_sign: int) -> str:
    return REGIME_TABLE[(risk_sign > 0, inflation_sign > 0)]


def risk_regime_for(regime: str) -> str:
    return RISK_ON if regime in (GOLDILOCKS, REFLATION) else RISK_OFF


def inflation_label(inflation_sign: int) -> str:
    return INFLATION_LABEL if inflation_sign > 0 else DISINFLATION_LABEL


@dataclass(frozen=True)
class CrowdedThresholds:
    conviction: int = 76
    agreement_pct: int = 80
    coverage_pct: int = 50


def is_crowded(
    conviction: Optional[int],
    confidence: str,
    agreement_pct: Optional[int],
    coverage_pct: Optional[int],
    thresholds: CrowdedThresholds = CrowdedThresholds(),
) -> bool:
    """True only when all four crowded conditions hold at once."""
    if conviction is None or agreement_pct is None or coverage_pct is None:
        return False
    return (
        conviction >= thresholds.conviction
        and confidence == HIGH
        and agreement_pct >= thresholds.agreement_pct
        and coverage_pct >= thresholds.coverage_pct
    )


@dataclass(frozen=True)
class StressOverride:
    """Force risk-off when VIX is high and credit underperforms.

    Triggers when the latest VIX close is above ``vix_threshold`` and
    TR63(HYG/IEF) is at or below ``hyg_ief_threshold``.
    """
    enabled: bool = True
    vix_threshold: float = 30.0
    hyg_ief_threshold: float = -0.02

    def triggered(
        self,
        series_by_symbol: Mapping[str, pd.Series],
        as_of: Optional[date] = None,
    ) -> bool:
        if not self.enabled:
            return False
        vix = last_value(truncate(series_by_symbol.get("VIX"), as_of))
        hyg_ief = ratio_return(
            truncate(series_by_symbol.get("HYG"), as_of),
            truncate(series_by_symbol.get("IEF"), as_of),
            TR_63,
        )
        if vix is None or hyg_ief is None:
            return False
        return vix > self.vix_threshold and hyg_ief <= self.hyg_ief_threshold


@dataclass(frozen=True)
class RegimeCall:
    """Classification result for one day.

    Composite metrics summarize both axes: conviction is the rounded mean
    of the available axis convictions, confidence is the lower of the two
    buckets, agreement and coverage are the lower axis values.
    """
    regime: str
    risk_regime: str
    inflation_regime: str
    risk: AxisState
    inflation: AxisState
    risk_crowded: bool
    inflation_crowded: bool
    conviction: Optional[int]
    confidence: str
    agreement_pct: Optional[int]
    coverage_pct: int
    crowded: bool
    stress_override: bool = False


def _min_optional(*values: Optional[int]) -> Optional[int]:
    present = [v for v in values if v is not None]
    return min(present) if present else None


class RegimeClassifier:
    """Turns two axis states into a ``RegimeCall``.

    Attributes:
        crowded: Crowded flag cut-offs
        stress: Stress override rule
    """

    def __init__(
        self,
        crowded: Optional[CrowdedThresholds] = None,
        stress: Optional[StressOverride] = None,
    ):
        self.crowded = crowded or CrowdedThresholds()
        self.stress = stress or StressOverride()

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "RegimeClassifier":
        return cls(
            crowded=CrowdedThresholds(**config.get("aggregation", {}).get("crowded", {})),
            stress=StressOverride(**config.get("stress_override", {})),
        )

    def _axis_crowded(self, state: AxisState) -> bool:
        return is_crowded(
            state.conviction,
            state.confidence,
            state.agreement_pct,
            state.coverage_pct,
            self.crowded,
        )

    def classify(
        self,
        risk: AxisState,
        inflation: AxisState,
        stress_override: bool = False,
    ) -> RegimeCall:
        """Classify one day.

        Args:
            risk: Aggregated risk axis
            inflation: Aggregated inflation axis
            stress_override: Force the risk axis sign to -1

        Returns:
            RegimeCall
        """
        if stress_override and risk.sign != -1:
            logger.warning("Stress override active: forcing risk axis to RISK OFF")
            risk = replace(risk, sign=-1)

        regime = classify_regime(risk.sign, inflation.sign)

        convictions = [c for c in (risk.conviction, inflation.conviction) if c is not None]
        conviction = (
            round_half_up(sum(convictions) / len(convictions)) if convictions else None
        )
        confidence = min(
            (risk.confidence, inflation.confidence),
            key=lambda c: CONFIDENCE_ORDER.get(c, 0),
        )
        agreement = _min_optional(risk.agreement_pct, inflation.agreement_pct)
        coverage = min(risk.coverage_pct, inflation.coverage_pct)

        return RegimeCall(
            regime=regime,
            risk_regime=risk_regime_for(regime),
            inflation_regime=inflation_label(inflation.sign),
            risk=risk,
            inflation=inflation,
            risk_crowded=self._axis_crowded(risk),
            inflation_crowded=self._axis_crowded(inflation),
            conviction=conviction,
            confidence=confidence,
            agreement_pct=agreement,
            coverage_pct=coverage,
            crowded=is_crowded(conviction, confidence, agreement, coverage, self.crowded),
            stress_override=stress_override,
        )


@dataclass(frozen=True)
class FlipWatch:
    """Regime flip detection constants."""
    confirmation_days: int = 2
    strong_flip_score: int = 2

    def status(
        self,
        as_of: date,
        regime: str,
        risk_score: float,
        inflation_score: float,
        prior: Sequence[Tuple[date, str]],
    ) -> str:
        """Flip-watch status for a new row.

        Args:
            as_of: Date of the new row
            regime: Regime of the new row
            risk_score: Net risk vote
            inflation_score: Net inflation vote plus satellites
            prior: ``(date, regime)`` of earlier rows, ascending

        Returns:
            NONE, STRONG_FLIP, PENDING_CONFIRMATION or BREWING
        """
        if not prior or prior[-1][1] == regime:
            return FLIP_NONE

        if max(abs(risk_score), abs(inflation_score)) >= self.strong_flip_score:
            return FLIP_STRONG

        last_flip: Optional[date] = None
        for (_, before), (day, after) in zip(prior, prior[1:]):
            if before != after:
                last_flip = day

        if last_flip is not None and (as_of - last_flip).days <= self.confirmation_days:
            return FLIP_PENDING
        return FLIP_BREWING
