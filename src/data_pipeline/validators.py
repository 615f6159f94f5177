"""
Series Validators for GhostRegime.

Cleans the daily close series returned by vendors before they reach the
signal bank. Unlike a fill-forward cleaner, invalid observations are
dropped: window signals count observations, so a fabricated close would
shift every trailing return.

Validation checks:
- Missing closes (NaN)
- Non-positive closes
- Duplicate dates (last one wins)
- Unsorted index
- Outlier single-day moves (reported, never removed)

Classes:
    ValidationReport: Summary of issues found in one series
    SeriesValidator: Cleaner with per-symbol outlier thresholds

Example:
    >>> validator = SeriesValidator()
    >>> clean, report = validator.validate(raw_series, symbol="SPY")
    >>> print(report)
"""

from dataclasses import dataclass, field
from typing import Dict, List, Tuple
import logging

import pandas as pd

logger = logging.getLogger(__name__)


@dataclass
class ValidationReport:
    """Report containing validation results for a single series.

    Attributes:
        symbol: Symbol that was validated
        total_rows: Number of observations received
        valid_rows: Number of observations kept
        issues: List of issues found
    """
    symbol: str
    total_rows: int
    valid_rows: int = 0
    issues: List[Dict] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        """A series is usable when at least one observation survived."""
        return self.valid_rows > 0

    def __str__(self) -> str:
        lines = [
            f"Validation Report for {self.symbol}",
            f"Rows: {self.valid_rows}/{self.total_rows} kept",
        ]
        for issue in self.issues[:10]:
            lines.append(f"  - [{issue['severity'].upper()}] {issue['type']}: {issue['message']}")
        return "\n".join(lines)


class SeriesValidator:
    """Validates and cleans daily close series.

    Attributes:
        max_daily_return: Default single-day move that gets flagged
    """

    # Volatility indices and crypto move much more than ETFs
    MAX_DAILY_MOVE = {
        "VIX": 1.0,
        "BTC-USD": 0.5,
    }

    def __init__(self, max_daily_return: float = 0.20):
        self.max_daily_return = max_daily_return

    def validate(
        self,
        series: pd.Series,
        symbol: str,
    ) -> Tuple[pd.Series, ValidationReport]:
        """Validate and clean a close series.

        Args:
            series: Close prices indexed by date
            symbol: Symbol, used for outlier thresholds and messages

        Returns:
            Tuple of (cleaned series, ValidationReport)

        Raises:
            ValueError: If the series is empty before or after cleaning
        """
        if series is None or len(series) == 0:
            raise ValueError(f"Empty series provided for {symbol}")

        report = ValidationReport(symbol=symbol, total_rows=len(series))

        clean = pd.to_numeric(series, errors="coerce")
        clean.index = pd.to_datetime(clean.index).normalize()
        if getattr(clean.index, "tz", None) is not None:
            clean.index = clean.index.tz_localize(None)

        missing = int(clean.isna().sum())
        if missing:
            report.issues.append({
                "type": "missing_values",
                "severity": "warning",
                "message": f"{missing} missing closes dropped",
            })
            clean = clean.dropna()

        non_positive = int((clean <= 0).sum())
        if non_positive:
            report.issues.append({
                "type": "invalid_price",
                "severity": "warning",
                "message": f"{non_positive} non-positive closes dropped",
            })
            clean = clean[clean > 0]

        duplicated = clean.index.duplicated(keep="last")
        if duplicated.any():
            report.issues.append({
                "type": "duplicate_dates",
                "severity": "warning",
                "message": f"{int(duplicated.sum())} duplicate dates collapsed",
            })
            clean = clean[~duplicated]

        clean = clean.sort_index()
        clean.name = symbol

        max_move = self.MAX_DAILY_MOVE.get(symbol, self.max_daily_return)
        moves = clean.pct_change().abs()
        outliers = int((moves > max_move).sum())
        if outliers:
            report.issues.append({
                "type": "return_outlier",
                "severity": "warning",
                "message": f"{outliers} days with >{max_move:.0%} moves",
            })

        report.valid_rows = len(clean)
        if not report.is_valid:
            raise ValueError(f"No valid observations for {symbol}")

        if report.issues:
            logger.warning(str(report))
        return clean, report
