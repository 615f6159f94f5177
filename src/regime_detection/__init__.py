"""Regime detection module for GhostRegime.

Contains the voting pipeline that classifies the daily macro regime:
- Signal bank (fixed trailing-return rules voting on two axes)
- Inflation satellites (decayed external gauges, capped)
- Axis aggregator (score, agreement, coverage, confidence, conviction)
- Regime classifier (2x2 table, crowded flag, stress override, flip watch)
"""

from src.regime_detection.signals import (
    INFLATION,
    RISK,
    SignalBank,
    SignalSpec,
    SignalVote,
)
from src.regime_detection.aggregator import (
    AxisAggregator,
    AxisState,
    ConfidenceThresholds,
    ConvictionPolicy,
)
from src.regime_detection.satellites import (
    MarketSatelliteProvider,
    SatelliteBank,
    SatelliteObservation,
    SatelliteScore,
    SatelliteSpec,
)
from src.regime_detection.classifier import (
    CrowdedThresholds,
    FlipWatch,
    RegimeCall,
    RegimeClassifier,
    StressOverride,
    classify_regime,
    is_crowded,
)

__all__ = [
    "RISK",
    "INFLATION",
    "SignalBank",
    "SignalSpec",
    "SignalVote",
    "AxisAggregator",
    "AxisState",
    "ConfidenceThresholds",
    "ConvictionPolicy",
    "MarketSatelliteProvider",
    "SatelliteBank",
    "SatelliteObservation",
    "SatelliteScore",
    "SatelliteSpec",
    "CrowdedThresholds",
    "FlipWatch",
    "RegimeCall",
    "RegimeClassifier",
    "StressOverride",
    "classify_regime",
    "is_crowded",
]
