"""
GhostRegime - Daily Market Regime Classification Engine

Classifies each trading day into one of four macro regimes from a panel
of cross-asset market signals and turns the regime into sleeve exposure
scales.

Core Idea:
- Eight trailing-return signals vote on a Risk axis and an Inflation axis
- Net votes per axis pick GOLDILOCKS, REFLATION, INFLATION or DEFLATION
- Regime ceilings combined with a trend (VAMS) model give scales in {0, 0.5, 1}

Architecture:
- Layer 1: Provider Gateway (ordered vendor fallback chains)
- Layer 2: Signal Bank -> Axis Aggregator -> Regime Classifier -> Exposure Scaler
- Layer 3: Snapshot Builder, History Store and HTTP boundary
"""

__version__ = "1.0.1"
__author__ = "GhostRegime Development Team"

from src.snapshot.builder import SnapshotBuilder
from src.snapshot.history import HistoryStore

__all__ = [
    "SnapshotBuilder",
    "HistoryStore",
]
