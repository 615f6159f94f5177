"""
Axis Aggregator for GhostRegime.

Combines the votes cast on one axis into an ``AxisState``:

1. Partition votes into +1, -1, neutral and abstained.
2. Score = count(+1) - count(-1), plus any satellite score already
   capped by the caller; sign = sign(score).
3. A zero score takes the prior day's axis sign when one is known,
   otherwise stays 0.
4. Agreement % = majority count / non-neutral count (None if no votes).
5. Coverage % = non-neutral count / signals assigned to the axis.
6. Confidence: High if agreement >= 80 and coverage >= 50; Medium if
   agreement >= 60 or coverage >= 50; otherwise Low.
7. Conviction comes from a configurable ``ConvictionPolicy``.

Percentages are rounded half-up to integers.

Classes:
    ConvictionPolicy: Conviction index formula and its constants
    ConfidenceThresholds: Bucket cut-offs
    AxisState: Aggregated state of one axis
    AxisAggregator: Builds AxisState objects from votes
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Tuple
import logging
import math

from src.regime_detection.signals import SignalVote

logger = logging.getLogger(__name__)

HIGH = "High"
MEDIUM = "Medium"
LOW = "Low"
CONFIDENCE_ORDER = {LOW: 0, MEDIUM: 1, HIGH: 2}


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return int(math.floor(value + 0.5))


def sign(value: float) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0


@dataclass(frozen=True)
class ConvictionPolicy:
    """Conviction index formula.

    ``net_vote``: round(100 * |pos - neg| / total signals). Every
    abstaining or neutral signal and every dissenting vote pulls it
    down.

    ``product``: round(agreement% * coverage% / 100).

    Both return None when the axis has no non-neutral votes and both
    fall toward 0 as coverage drops.
    """
    method: str = "net_vote"

    METHODS = ("net_vote", "product")

    def __post_init__(self):
        if self.method not in self.METHODS:
            raise ValueError(
                f"Unknown conviction method '{self.method}', expected one of {self.METHODS}"
            )

    def compute(
        self,
        positive: int,
        negative: int,
        total_signals: int,
        agreement_pct: Optional[int],
        coverage_pct: int,
    ) -> Optional[int]:
        if positive + negative == 0 or total_signals == 0:
            return None
        if self.method == "product":
            return round_half_up((agreement_pct or 0) * coverage_pct / 100)
        return round_half_up(100 * abs(positive - negative) / total_signals)


@dataclass(frozen=True)
class ConfidenceThresholds:
    high_agreement_pct: int = 80
    medium_agreement_pct: int = 60
    coverage_pct: int = 50

    def bucket(self, agreement_pct: Optional[int], coverage_pct: int) -> str:
        agreement = agreement_pct if agreement_pct is not None else 0
        covered = coverage_pct >= self.coverage_pct
        if agreement >= self.high_agreement_pct and covered:
            return HIGH
        if agreement >= self.medium_agreement_pct or covered:
            return MEDIUM
        return LOW


@dataclass(frozen=True)
class AxisState:
    """Aggregated state of one axis.

    Attributes:
        axis: ``risk`` or ``inflation``
        votes: Every vote cast on the axis, abstentions included
        positive: Count of +1 votes
        negative: Count of -1 votes
        neutral_count: Signals that measured inside their band
        abstain_count: Signals without enough data
        total_signals: Signals assigned to the axis
        core_score: positive - negative
        satellite_score: Capped satellite contribution (inflation only)
        score: core_score + satellite_score
        sign: Final axis sign after tie-break (and any override)
        tiebreaker_used: Whether the prior day's sign decided a zero score
        agreement_pct: Majority share of non-neutral votes, None if none
        coverage_pct: Non-neutral share of assigned signals
        confidence: Low / Medium / High
        conviction: 0-100 index, None if no non-neutral votes
    """
    axis: str
    votes: Tuple[SignalVote, ...]
    positive: int
    negative: int
    neutral_count: int
    abstain_count: int
    total_signals: int
    core_score: int
    satellite_score: float
    score: float
    sign: int
    tiebreaker_used: bool
    agreement_pct: Optional[int]
    coverage_pct: int
    confidence: str
    conviction: Optional[int]

    @property
    def non_neutral(self) -> int:
        return self.positive + self.negative

    def to_dict(self) -> Dict[str, Any]:
        return {
            "axis": self.axis,
            "score": self.score,
            "core_score": self.core_score,
            "satellite_score": self.satellite_score,
            "sign": self.sign,
            "positive": self.positive,
            "negative": self.negative,
            "neutral_count": self.neutral_count,
            "abstain_count": self.abstain_count,
            "total_signals": self.total_signals,
            "tiebreaker_used": self.tiebreaker_used,
            "agreement_pct": self.agreement_pct,
            "coverage_pct": self.coverage_pct,
            "confidence": self.confidence,
            "conviction": self.conviction,
        }


class AxisAggregator:
    """Aggregates per-axis votes.

    Attributes:
        policy: Conviction formula
        thresholds: Confidence bucket cut-offs

    Example:
        >>> aggregator = AxisAggregator()
        >>> state = aggregator.aggregate("risk", votes, prior_sign=-1)
        >>> state.sign, state.agreement_pct, state.confidence
        (1, 75, 'Medium')
    """

    def __init__(
        self,
        policy: Optional[ConvictionPolicy] = None,
        thresholds: Optional[ConfidenceThresholds] = None,
    ):
        self.policy = policy or ConvictionPolicy()
        self.thresholds = thresholds or ConfidenceThresholds()

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "AxisAggregator":
        agg = config.get("aggregation", {})
        return cls(
            policy=ConvictionPolicy(method=agg.get("conviction_method", "net_vote")),
            thresholds=ConfidenceThresholds(**agg.get("confidence", {})),
        )

    def aggregate(
        self,
        axis: str,
        votes: Iterable[SignalVote],
        prior_sign: Optional[int] = None,
        satellite_score: float = 0,
    ) -> AxisState:
        """Aggregate the votes for ``axis``.

        Args:
            axis: Axis name; votes for other axes are ignored
            votes: Votes from the signal bank
            prior_sign: Previous day's final sign for this axis, if known
            satellite_score: Capped satellite nudge added before the sign

        Returns:
            AxisState
        """
        axis_votes = tuple(v for v in votes if v.axis == axis)
        positive = sum(1 for v in axis_votes if v.vote > 0)
        negative = sum(1 for v in axis_votes if v.vote < 0)
        abstain_count = sum(1 for v in axis_votes if v.abstained)
        neutral_count = len(axis_votes) - positive - negative - abstain_count
        total = len(axis_votes)
        non_neutral = positive + negative

        core_score = positive - negative
        score = core_score + satellite_score
        axis_sign = sign(score)
        tiebreaker_used = False
        if axis_sign == 0 and prior_sign:
            axis_sign = sign(prior_sign)
            tiebreaker_used = True

        agreement_pct = (
            round_half_up(100 * max(positive, negative) / non_neutral)
            if non_neutral else None
        )
        coverage_pct = round_half_up(100 * non_neutral / total) if total else 0

        state = AxisState(
            axis=axis,
            votes=axis_votes,
            positive=positive,
            negative=negative,
            neutral_count=neutral_count,
            abstain_count=abstain_count,
            total_signals=total,
            core_score=core_score,
            satellite_score=satellite_score,
            score=score,
            sign=axis_sign,
            tiebreaker_used=tiebreaker_used,
            agreement_pct=agreement_pct,
            coverage_pct=coverage_pct,
            confidence=self.thresholds.bucket(agreement_pct, coverage_pct),
            conviction=self.policy.compute(
                positive, negative, total, agreement_pct, coverage_pct
            ),
        )
        logger.debug(f"{axis} axis: {state.to_dict()}")
        return state
