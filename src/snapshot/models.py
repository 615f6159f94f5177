"""
Snapshot row model for GhostRegime.

``GhostRegimeRow`` is the persisted daily snapshot and the central
entity of the system. Rows are immutable; a forced recompute for the
same date produces a new row that replaces the old one.

Every derived metric (agreement, coverage, confidence, conviction) is a
structured field. Display formatting is left to consumers.
"""

from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime
from typing import Any, Dict, Mapping, Optional, Tuple
import logging
import re

from src.errors import InvalidInputError
from src.regime_detection.classifier import (
    DISINFLATION_LABEL,
    INFLATION,
    INFLATION_LABEL,
    REFLATION,
    REGIMES,
    RISK_OFF,
    RISK_ON,
    risk_regime_for,
)

logger = logging.getLogger(__name__)

SOURCE_COMPUTED = "computed"
SOURCE_REPLAY = "replay"

RISK_AXIS_ON = "RiskOn"
RISK_AXIS_OFF = "RiskOff"

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_iso_date(value: Optional[str], param: str = "date") -> date:
    """Parse a strict, zero-padded YYYY-MM-DD calendar date.

    Raises:
        InvalidInputError: ``MISSING_DATE_PARAMETER`` when empty,
            ``INVALID_DATE_FORMAT`` when unparsable (e.g. 2024-02-30)
    """
    if value is None or str(value).strip() == "":
        raise InvalidInputError(
            f"{param} parameter is required (YYYY-MM-DD)",
            code="MISSING_DATE_PARAMETER",
        )
    text = str(value).strip()
    message = f"{param} must be a valid date in YYYY-MM-DD format, got '{value}'"
    if not ISO_DATE_RE.match(text):
        raise InvalidInputError(message)
    try:
        return datetime.strptime(text, "%Y-%m-%d").date()
    except ValueError as e:
        raise InvalidInputError(message) from e


@dataclass(frozen=True)
class GhostRegimeRow:
    """One day's regime snapshot.

    Attributes:
        date: ISO calendar date, the unique key
        regime: GOLDILOCKS, REFLATION, INFLATION or DEFLATION
        risk_regime: "RISK ON" or "RISK OFF"
        risk_axis: "RiskOn" or "RiskOff"
        infl_axis: "Inflation" or "Disinflation"
        infl_score: Core inflation votes plus the capped satellite score
        stocks_scale: Equity scale in {0, 0.5, 1}
        gold_scale: Gold scale in {0, 0.5, 1}
        btc_scale: Bitcoin scale in {0, 0.5, 1}
        flip_watch_status: NONE, BREWING, PENDING_CONFIRMATION or STRONG_FLIP
        source: "computed" or "replay"
        stale: True when served in place of a row that could not be built
        debug_votes: Per-signal vote breakdown, emitted only on request
    """
    date: str
    regime: str
    risk_regime: str
    risk_axis: str = RISK_AXIS_OFF
    infl_axis: str = DISINFLATION_LABEL

    risk_score: int = 0
    infl_score: float = 0
    infl_core_score: int = 0
    infl_sat_score: float = 0.0
    risk_tiebreaker_used: bool = False
    infl_tiebreaker_used: bool = False

    risk_agreement_pct: Optional[int] = None
    risk_coverage_pct: int = 0
    risk_confidence: str = "Low"
    risk_conviction: Optional[int] = None
    risk_crowded: bool = False
    infl_agreement_pct: Optional[int] = None
    infl_coverage_pct: int = 0
    infl_confidence: str = "Low"
    infl_conviction: Optional[int] = None
    infl_crowded: bool = False

    regime_conviction: Optional[int] = None
    regime_confidence: str = "Low"
    crowded: bool = False
    stress_override: bool = False

    stocks_scale: float = 0.5
    gold_scale: float = 0.5
    btc_scale: float = 0.5
    stocks_vams_state: Optional[int] = None
    gold_vams_state: Optional[int] = None
    btc_vams_state: Optional[int] = None
    stocks_target: float = 0.0
    gold_target: float = 0.0
    btc_target: float = 0.0
    stocks_actual: float = 0.0
    gold_actual: float = 0.0
    btc_actual: float = 0.0
    cash: float = 0.0

    flip_watch_status: str = "NONE"
    engine_version: Optional[str] = None
    source: str = SOURCE_COMPUTED
    stale: bool = False
    stale_reason: Optional[str] = None
    debug_votes: Tuple[Dict[str, Any], ...] = field(default=(), compare=False)

    def __post_init__(self):
        if self.regime not in REGIMES:
            raise ValueError(f"Unknown regime '{self.regime}' for {self.date}")
        if self.risk_regime not in (RISK_ON, RISK_OFF):
            raise ValueError(f"Unknown risk regime '{self.risk_regime}' for {self.date}")

    @property
    def as_date(self) -> date:
        return date.fromisoformat(self.date)

    def to_dict(self, include_debug: bool = False) -> Dict[str, Any]:
        data = asdict(self)
        votes = data.pop("debug_votes")
        if include_debug:
            data["debug_votes"] = list(votes)
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GhostRegimeRow":
        """Build a row from a stored or seeded mapping.

        Unknown keys are ignored and missing optional keys get defaults.
        ``risk_regime`` and the axis labels are derived when absent.
        """
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}

        regime = values["regime"]
        values.setdefault("risk_regime", risk_regime_for(regime))
        values.setdefault(
            "risk_axis",
            RISK_AXIS_ON if values["risk_regime"] == RISK_ON else RISK_AXIS_OFF,
        )
        values.setdefault(
            "infl_axis",
            INFLATION_LABEL if regime in (INFLATION, REFLATION) else DISINFLATION_LABEL,
        )
        values["debug_votes"] = tuple(values.get("debug_votes") or ())
        return cls(**values)
