"""
Exposure Scaler for GhostRegime.

Converts the regime call into discrete scale factors for the three
sleeves (stocks, gold, BTC). A scale is always one of 0.0, 0.5 or 1.0;
consumers round-trip it through the labels "off", "half size" and
"full size".

Regime ceilings:

    stocks  RISK ON -> 1.0; RISK OFF with a crowded risk axis -> 0.0;
            any other RISK OFF -> 0.5
    gold    GOLDILOCKS -> 0.5; REFLATION, INFLATION, DEFLATION -> 1.0
    btc     RISK OFF -> 0.0; RISK ON -> 1.0 / 0.5 / 0.0 for
            High / Medium / Low risk confidence

When a VAMS trend state exists for a sleeve the final scale is the
smaller of the ceiling and the trend scale. Actual weight is
``target * scale``; cash takes the remainder, clamped to [0, 1].
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional
import logging

from src.regime_detection.aggregator import HIGH, MEDIUM, AxisState
from src.regime_detection.classifier import GOLDILOCKS, RISK_ON, risk_regime_for
from src.allocation.vams import VamsModel

logger = logging.getLogger(__name__)

SCALE_LEVELS = (0.0, 0.5, 1.0)
SCALE_LABELS = {0.0: "off", 0.5: "half size", 1.0: "full size"}

SLEEVES = ("stocks", "gold", "btc")
TREND_SYMBOLS = {"stocks": "SPY", "gold": "GLD", "btc": "BTC-USD"}


def snap_scale(value: float) -> float:
    """Nearest discrete scale level."""
    return min(SCALE_LEVELS, key=lambda level: abs(level - value))


@dataclass(frozen=True)
class AllocationTargets:
    """House-model target weights."""
    stocks_risk_on: float = 0.6
    stocks_risk_off: float = 0.3
    gold: float = 0.3
    btc_risk_on: float = 0.1
    btc_risk_off: float = 0.05


@dataclass(frozen=True)
class Exposure:
    """Scales, trend states and resulting weights for one day."""
    stocks_scale: float
    gold_scale: float
    btc_scale: float
    stocks_vams_state: Optional[int]
    gold_vams_state: Optional[int]
    btc_vams_state: Optional[int]
    stocks_target: float
    gold_target: float
    btc_target: float
    stocks_actual: float
    gold_actual: float
    btc_actual: float
    cash: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ExposureScaler:
    """Maps regime and risk-axis state to sleeve scales.

    Example:
        >>> scaler = ExposureScaler()
        >>> scaler.scale("DEFLATION", risk_axis, risk_crowded=True)
        {'stocks': 0.0, 'gold': 1.0, 'btc': 0.0}
    """

    def __init__(
        self,
        targets: Optional[AllocationTargets] = None,
        vams: Optional[VamsModel] = None,
    ):
        self.targets = targets or AllocationTargets()
        self.vams = vams or VamsModel()

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ExposureScaler":
        alloc = config.get("allocation", {})
        return cls(
            targets=AllocationTargets(**alloc.get("targets", {})),
            vams=VamsModel(**alloc.get("vams", {})),
        )

    def scale(
        self,
        regime: str,
        risk_axis: AxisState,
        risk_crowded: bool = False,
    ) -> Dict[str, float]:
        """Regime ceilings for each sleeve.

        Args:
            regime: Regime name
            risk_axis: Aggregated risk axis (its confidence drives BTC)
            risk_crowded: Crowded flag of the risk axis

        Returns:
            ``{"stocks": s, "gold": g, "btc": b}`` with values in SCALE_LEVELS
        """
        risk_on = risk_regime_for(regime) == RISK_ON

        if risk_on:
            stocks = 1.0
        elif risk_crowded:
            stocks = 0.0
        else:
            stocks = 0.5

        gold = 0.5 if regime == GOLDILOCKS else 1.0

        if not risk_on:
            btc = 0.0
        elif risk_axis.confidence == HIGH:
            btc = 1.0
        elif risk_axis.confidence == MEDIUM:
            btc = 0.5
        else:
            btc = 0.0

        return {"stocks": stocks, "gold": gold, "btc": btc}

    def trend_states(self, series_by_symbol: Mapping[str, Any]) -> Dict[str, Optional[int]]:
        return {
            sleeve: self.vams.state(series_by_symbol.get(symbol))
            for sleeve, symbol in TREND_SYMBOLS.items()
        }

    def allocate(
        self,
        regime: str,
        risk_axis: AxisState,
        risk_crowded: bool = False,
        trend_states: Optional[Mapping[str, Optional[int]]] = None,
    ) -> Exposure:
        """Final scales and weights.

        Args:
            regime: Regime name
            risk_axis: Aggregated risk axis
            risk_crowded: Crowded flag of the risk axis
            trend_states: Sleeve to VAMS state (None when unknown)

        Returns:
            Exposure
        """
        ceilings = self.scale(regime, risk_axis, risk_crowded)
        trend_states = dict(trend_states or {})

        scales: Dict[str, float] = {}
        for sleeve in SLEEVES:
            trend_scale = self.vams.scale_for(trend_states.get(sleeve))
            value = ceilings[sleeve] if trend_scale is None else min(ceilings[sleeve], trend_scale)
            scales[sleeve] = snap_scale(value)

        risk_on = risk_regime_for(regime) == RISK_ON
        t = self.targets
        stocks_target = t.stocks_risk_on if risk_on else t.stocks_risk_off
        btc_target = t.btc_risk_on if risk_on else t.btc_risk_off

        stocks_actual = stocks_target * scales["stocks"]
        gold_actual = t.gold * scales["gold"]
        btc_actual = btc_target * scales["btc"]
        cash = max(0.0, min(1.0, 1.0 - stocks_actual - gold_actual - btc_actual))

        return Exposure(
            stocks_scale=scales["stocks"],
            gold_scale=scales["gold"],
            btc_scale=scales["btc"],
            stocks_vams_state=trend_states.get("stocks"),
            gold_vams_state=trend_states.get("gold"),
            btc_vams_state=trend_states.get("btc"),
            stocks_target=stocks_target,
            gold_target=t.gold,
            btc_target=btc_target,
            stocks_actual=round(stocks_actual, 6),
            gold_actual=round(gold_actual, 6),
            btc_actual=round(btc_actual, 6),
            cash=round(cash, 6),
        )
