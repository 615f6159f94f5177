"""
Signal Bank for GhostRegime.

Each signal is a fixed, interpretable rule over trailing returns that
votes -1, 0 or +1 on one or both macro axes. Signals are declared as
data (``SignalSpec``) and evaluated independently; there is no ordering
dependency between them.

A signal that lacks enough observations abstains with status
``no_data``. A signal whose measurement falls inside its band votes 0
with status ``neutral``. The two are kept apart so abstentions never
count toward agreement.

Default bank:

    risk       spy_tr63, hyg_ief_tr63, vix_tr21, eem_spy_tr63
    inflation  pdbc_tr63, tip_ief_tr63, tlt_tr63, uup_tr63

Classes:
    SignalSpec: Declarative signal definition
    SignalVote: One signal's vote on one axis
    SignalBank: Evaluates a list of specs against a set of series

Example:
    >>> bank = SignalBank.from_config(config)
    >>> votes = bank.evaluate(series_by_symbol, as_of=date(2024, 6, 28))
    >>> [v.vote for v in votes if v.axis == RISK]
    [1, 1, 0, -1]
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Tuple
import logging

import pandas as pd

from src.regime_detection.windows import (
    TR_21,
    TR_63,
    ratio_return,
    trailing_return,
    truncate,
)

logger = logging.getLogger(__name__)

RISK = "risk"
INFLATION = "inflation"
AXES = (RISK, INFLATION)

TRAILING_RETURN = "trailing_return"
RATIO_RETURN = "ratio_return"

STATUS_VOTE = "vote"
STATUS_NEUTRAL = "neutral"
STATUS_NO_DATA = "no_data"


@dataclass(frozen=True)
class SignalSpec:
    """Declarative definition of a signal.

    The measured value is compared against a band: ``value >= upper``
    is a raw +1, ``value <= lower`` a raw -1, anything between is
    neutral. The raw result is multiplied by the axis polarity, so a
    rising VIX (raw +1) becomes a risk-off vote with polarity -1.

    Attributes:
        name: Unique signal name
        kind: ``trailing_return`` (one symbol) or ``ratio_return`` (two)
        symbols: Symbols read by the signal, numerator first for ratios
        window: Observation window
        upper: Upper band edge
        lower: Lower band edge
        polarity: Axis to polarity (+1 or -1)
    """
    name: str
    kind: str
    symbols: Tuple[str, ...]
    window: int
    upper: float
    lower: float
    polarity: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self):
        if self.kind not in (TRAILING_RETURN, RATIO_RETURN):
            raise ValueError(f"Unknown signal kind: {self.kind}")
        if self.kind == RATIO_RETURN and len(self.symbols) != 2:
            raise ValueError(f"Ratio signal {self.name} needs exactly two symbols")
        if self.lower > self.upper:
            raise ValueError(f"Signal {self.name}: lower band above upper band")
        for axis, sign in self.polarity.items():
            if axis not in AXES or sign not in (1, -1):
                raise ValueError(f"Signal {self.name}: bad polarity {axis}={sign}")

    @property
    def axes(self) -> Tuple[str, ...]:
        return tuple(axis for axis in AXES if axis in self.polarity)

    def measure(self, series_by_symbol: Mapping[str, pd.Series]) -> Optional[float]:
        """Compute the signal's raw measurement, or None if data is short."""
        if self.kind == TRAILING_RETURN:
            return trailing_return(series_by_symbol.get(self.symbols[0]), self.window)
        return ratio_return(
            series_by_symbol.get(self.symbols[0]),
            series_by_symbol.get(self.symbols[1]),
            self.window,
        )


@dataclass(frozen=True)
class SignalVote:
    """One signal's vote on one axis.

    Attributes:
        name: Signal name
        axis: ``risk`` or ``inflation``
        vote: -1, 0 or +1
        status: ``vote``, ``neutral`` or ``no_data``
        value: Measured value (None when abstaining)
        threshold_hit: Band edge that produced the vote, e.g. ``>= 0.02``
        window: Observation window used
    """
    name: str
    axis: str
    vote: int
    status: str
    value: Optional[float] = None
    threshold_hit: Optional[str] = None
    window: int = 0

    @property
    def abstained(self) -> bool:
        return self.status == STATUS_NO_DATA

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "axis": self.axis,
            "vote": self.vote,
            "status": self.status,
            "value": self.value,
            "threshold_hit": self.threshold_hit,
            "window": self.window,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SignalVote":
        return cls(
            name=data["name"],
            axis=data["axis"],
            vote=int(data.get("vote", 0)),
            status=data.get("status", STATUS_NEUTRAL),
            value=data.get("value"),
            threshold_hit=data.get("threshold_hit"),
            window=int(data.get("window", 0)),
        )


def evaluate_spec(
    spec: SignalSpec,
    series_by_symbol: Mapping[str, pd.Series],
) -> List[SignalVote]:
    """Evaluate one spec into one vote per axis it is assigned to."""
    value = spec.measure(series_by_symbol)

    if value is None:
        return [
            SignalVote(spec.name, axis, 0, STATUS_NO_DATA, window=spec.window)
            for axis in spec.axes
        ]

    if value >= spec.upper:
        raw, hit = 1, f">= {spec.upper}"
    elif value <= spec.lower:
        raw, hit = -1, f"<= {spec.lower}"
    else:
        raw, hit = 0, None

    votes = []
    for axis in spec.axes:
        vote = raw * spec.polarity[axis]
        votes.append(SignalVote(
            name=spec.name,
            axis=axis,
            vote=vote,
            status=STATUS_VOTE if vote else STATUS_NEUTRAL,
            value=value,
            threshold_hit=hit,
            window=spec.window,
        ))
    return votes


def default_signal_specs(thresholds: Optional[Mapping[str, Mapping[str, float]]] = None) -> List[SignalSpec]:
    """Build the default eight-signal bank.

    Args:
        thresholds: Optional ``{name: {"upper": x, "lower": y}}`` overrides
    """
    base = [
        ("spy_tr63", TRAILING_RETURN, ("SPY",), TR_63, 0.02, -0.02, {RISK: 1}),
        ("hyg_ief_tr63", RATIO_RETURN, ("HYG", "IEF"), TR_63, 0.01, -0.01, {RISK: 1}),
        ("vix_tr21", TRAILING_RETURN, ("VIX",), TR_21, 0.10, -0.10, {RISK: -1}),
        ("eem_spy_tr63", RATIO_RETURN, ("EEM", "SPY"), TR_63, 0.01, -0.01, {RISK: 1}),
        ("pdbc_tr63", TRAILING_RETURN, ("PDBC",), TR_63, 0.02, -0.02, {INFLATION: 1}),
        ("tip_ief_tr63", RATIO_RETURN, ("TIP", "IEF"), TR_63, 0.005, -0.005, {INFLATION: 1}),
        ("tlt_tr63", TRAILING_RETURN, ("TLT",), TR_63, 0.01, -0.01, {INFLATION: -1}),
        ("uup_tr63", TRAILING_RETURN, ("UUP",), TR_63, 0.01, -0.01, {INFLATION: -1}),
    ]
    thresholds = thresholds or {}

    specs = []
    for name, kind, symbols, window, upper, lower, polarity in base:
        override = thresholds.get(name, {})
        specs.append(SignalSpec(
            name=name,
            kind=kind,
            symbols=symbols,
            window=window,
            upper=float(override.get("upper", upper)),
            lower=float(override.get("lower", lower)),
            polarity=polarity,
        ))
    return specs


class SignalBank:
    """Evaluates every signal against the available series.

    Attributes:
        specs: Signals in evaluation order
    """

    def __init__(self, specs: Optional[List[SignalSpec]] = None):
        self.specs = list(specs) if specs is not None else default_signal_specs()
        names = [s.name for s in self.specs]
        if len(set(names)) != len(names):
            raise ValueError("Signal names must be unique")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SignalBank":
        return cls(default_signal_specs(config.get("signals")))

    @property
    def symbols(self) -> List[str]:
        """Every symbol any signal reads, in first-use order."""
        seen: List[str] = []
        for spec in self.specs:
            for symbol in spec.symbols:
                if symbol not in seen:
                    seen.append(symbol)
        return seen

    def signals_for(self, axis: str) -> List[SignalSpec]:
        return [s for s in self.specs if axis in s.polarity]

    def evaluate(
        self,
        series_by_symbol: Mapping[str, pd.Series],
        as_of: Optional[date] = None,
    ) -> List[SignalVote]:
        """Evaluate the bank.

        Args:
            series_by_symbol: Close series; missing symbols are allowed
            as_of: Observations after this date are ignored

        Returns:
            One ``SignalVote`` per (signal, axis) pair
        """
        truncated = {
            symbol: truncate(series, as_of)
            for symbol, series in series_by_symbol.items()
            if series is not None
        }

        votes: List[SignalVote] = []
        for spec in self.specs:
            votes.extend(evaluate_spec(spec, truncated))

        abstained = [v.name for v in votes if v.abstained]
        if abstained:
            logger.info(f"Signals without enough data: {', '.join(abstained)}")
        return votes
