"""
Day-over-day differ for GhostRegime snapshots.

Compares regime, risk regime and the three sleeve scales. A scale only
counts as changed when it moved by more than 0.01, so float noise such
as 0.30000001 vs 0.3 never shows up as a delta.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from src.snapshot.models import GhostRegimeRow

SCALE_CHANGE_THRESHOLD = 0.01
SCALE_FIELDS = ("stocks_scale", "gold_scale", "btc_scale")
LABEL_FIELDS = ("regime", "risk_regime")

NO_CHANGES = "NO_CHANGES"


@dataclass(frozen=True)
class ChangeDescription:
    field: str
    previous: Any
    current: Any

    @property
    def summary(self) -> str:
        return f"{self.field}: {self.previous} -> {self.current}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "previous": self.previous,
            "current": self.current,
            "summary": self.summary,
        }


def diff(
    current: GhostRegimeRow,
    previous: Optional[GhostRegimeRow],
) -> Union[List[ChangeDescription], str]:
    """Changes from ``previous`` to ``current``.

    Returns:
        List of ChangeDescription, or the ``NO_CHANGES`` sentinel when
        nothing changed (or there is no previous row)
    """
    if previous is None:
        return NO_CHANGES

    changes: List[ChangeDescription] = []
    for name in LABEL_FIELDS:
        before, after = getattr(previous, name), getattr(current, name)
        if before != after:
            changes.append(ChangeDescription(name, before, after))

    for name in SCALE_FIELDS:
        before, after = getattr(previous, name), getattr(current, name)
        if abs(float(after) - float(before)) > SCALE_CHANGE_THRESHOLD:
            changes.append(ChangeDescription(name, before, after))

    return changes or NO_CHANGES
