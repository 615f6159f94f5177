"""
Observation-window helpers for GhostRegime signals.

Windows count observations, not calendar days: ETFs and VIX skip
weekends and holidays on their own, BTC trades every day. ``TR_N`` is
the close-to-close return from the first to the last of the final N
observations at or before the as-of date.
"""

from datetime import date
from typing import Optional, Union
import math

import numpy as np
import pandas as pd

TR_21 = 21
TR_63 = 63
TR_126 = 126
TR_252 = 252

TRADING_DAYS_PER_YEAR = 252


def truncate(series: Optional[pd.Series], as_of: Optional[Union[date, pd.Timestamp]]) -> Optional[pd.Series]:
    """Drop observations after ``as_of``."""
    if series is None or as_of is None:
        return series
    return series[series.index <= pd.Timestamp(as_of)]


def has_sufficient_data(series: Optional[pd.Series], window: int) -> bool:
    return series is not None and len(series) >= window


def trailing_return(series: Optional[pd.Series], window: int) -> Optional[float]:
    """Return TR over the last ``window`` observations.

    Returns:
        The return, or None when fewer than ``window`` observations exist
    """
    if not has_sufficient_data(series, window) or window < 2:
        return None
    tail = series.iloc[-window:]
    first = float(tail.iloc[0])
    last = float(tail.iloc[-1])
    if first == 0:
        return None
    return (last - first) / first


def ratio_series(numerator: pd.Series, denominator: pd.Series) -> pd.Series:
    """Ratio of two close series over the dates they share."""
    aligned = pd.concat([numerator, denominator], axis=1, join="inner").dropna()
    aligned = aligned[aligned.iloc[:, 1] != 0]
    return (aligned.iloc[:, 0] / aligned.iloc[:, 1]).sort_index()


def ratio_return(
    numerator: Optional[pd.Series],
    denominator: Optional[pd.Series],
    window: int,
) -> Optional[float]:
    """TR of ``numerator / denominator`` over their last ``window`` common dates."""
    if numerator is None or denominator is None:
        return None
    return trailing_return(ratio_series(numerator, denominator), window)


def daily_returns(series: pd.Series, window: int) -> pd.Series:
    """Last ``window`` close-to-close daily returns."""
    return series.pct_change().dropna().iloc[-window:]


def annualized_volatility(series: Optional[pd.Series], window: int = TR_63) -> Optional[float]:
    """Population stdev of the last ``window`` daily returns, annualized."""
    if series is None or len(series) < window + 1:
        return None
    returns = daily_returns(series, window)
    return float(np.std(returns.to_numpy(), ddof=0)) * math.sqrt(TRADING_DAYS_PER_YEAR)


def last_value(series: Optional[pd.Series]) -> Optional[float]:
    if series is None or series.empty:
        return None
    return float(series.iloc[-1])


def last_date(series: Optional[pd.Series]) -> Optional[date]:
    if series is None or series.empty:
        return None
    return pd.Timestamp(series.index[-1]).date()
