"""Exposure scaling for GhostRegime sleeves (stocks, gold, BTC)."""

from src.allocation.exposure import (
    SCALE_LABELS,
    SCALE_LEVELS,
    AllocationTargets,
    Exposure,
    ExposureScaler,
)
from src.allocation.vams import VamsModel

__all__ = [
    "SCALE_LABELS",
    "SCALE_LEVELS",
    "AllocationTargets",
    "Exposure",
    "ExposureScaler",
    "VamsModel",
]
