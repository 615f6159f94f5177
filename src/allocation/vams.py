"""
Volatility-adjusted momentum (VAMS) trend overlay.

    momentum = 0.6 * TR126 + 0.4 * TR252
    vol      = stdev(last 63 daily returns) * sqrt(252)
    score    = momentum / vol

A score at or above +0.5 is state 2, at or below -0.5 is state -2,
anything else is state 0. States map to scales 1.0 / 0.0 / 0.5. A
series with fewer than 252 observations has no state.
"""

from dataclasses import dataclass
from typing import Dict, Optional
import logging

import pandas as pd

from src.regime_detection.windows import (
    TR_63,
    TR_126,
    TR_252,
    annualized_volatility,
    trailing_return,
)

logger = logging.getLogger(__name__)

VAMS_SCALE_MAP: Dict[int, float] = {2: 1.0, 0: 0.5, -2: 0.0}


@dataclass(frozen=True)
class VamsModel:
    threshold_high: float = 0.5
    threshold_low: float = -0.5

    def score(self, series: Optional[pd.Series]) -> Optional[float]:
        """VAMS score, or None when history is too short or flat."""
        if series is None or len(series) < TR_252:
            return None
        tr126 = trailing_return(series, TR_126)
        tr252 = trailing_return(series, TR_252)
        vol = annualized_volatility(series, TR_63)
        if tr126 is None or tr252 is None or not vol:
            return None
        return (0.6 * tr126 + 0.4 * tr252) / vol

    def state(self, series: Optional[pd.Series]) -> Optional[int]:
        score = self.score(series)
        if score is None:
            return None
        if score >= self.threshold_high:
            return 2
        if score <= self.threshold_low:
            return -2
        return 0

    @staticmethod
    def scale_for(state: Optional[int]) -> Optional[float]:
        if state is None:
            return None
        return VAMS_SCALE_MAP.get(state, 0.5)
