"""
Pydantic response models for the GhostRegime API.

Rows carry structured numeric fields only; percentage and label
formatting is left to consumers.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


# ─── Row Schemas ──────────────────────────────────────────────────


class SignalVoteEntry(BaseModel):
    """Single signal or satellite vote from the debug breakdown."""

    name: str
    axis: str
    kind: str = Field("signal", description="signal or satellite")
    vote: int = Field(..., ge=-1, le=1)
    status: str = Field(..., description="vote, neutral, no_data or expired")
    value: Optional[float] = None
    threshold_hit: Optional[str] = None
    window: int

    # Satellites only
    source: Optional[str] = None
    age_days: Optional[int] = None
    weight: Optional[float] = None
    effective_vote: Optional[float] = None


class GhostRegimeRowResponse(BaseModel):
    """One day's regime snapshot."""

    date: str
    regime: str = Field(..., description="GOLDILOCKS, REFLATION, INFLATION or DEFLATION")
    risk_regime: str = Field(..., description="RISK ON or RISK OFF")
    risk_axis: str
    infl_axis: str

    risk_score: int
    infl_score: float
    infl_core_score: int = 0
    infl_sat_score: float = Field(0.0, description="Capped satellite contribution")
    risk_tiebreaker_used: bool = False
    infl_tiebreaker_used: bool = False

    risk_agreement_pct: Optional[int] = Field(None, ge=0, le=100)
    risk_coverage_pct: int = Field(0, ge=0, le=100)
    risk_confidence: str = "Low"
    risk_conviction: Optional[int] = Field(None, ge=0, le=100)
    risk_crowded: bool = False
    infl_agreement_pct: Optional[int] = Field(None, ge=0, le=100)
    infl_coverage_pct: int = Field(0, ge=0, le=100)
    infl_confidence: str = "Low"
    infl_conviction: Optional[int] = Field(None, ge=0, le=100)
    infl_crowded: bool = False

    regime_conviction: Optional[int] = None
    regime_confidence: str = "Low"
    crowded: bool = False
    stress_override: bool = False

    stocks_scale: float
    gold_scale: float
    btc_scale: float
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
    source: str
    stale: bool = False
    stale_reason: Optional[str] = None


class TodayResponse(GhostRegimeRowResponse):
    """Current snapshot, optionally with votes and diagnostics."""

    debug_votes: Optional[List[SignalVoteEntry]] = None
    diagnostics: Optional[Dict[str, Any]] = None


class ExplainResponse(GhostRegimeRowResponse):
    """Row for one date with its full vote breakdown."""

    debug_votes: List[SignalVoteEntry] = Field(default_factory=list)


# ─── Diff Schemas ─────────────────────────────────────────────────


class ChangeEntry(BaseModel):
    """Single field change between two rows."""

    field: str
    previous: Any
    current: Any
    summary: str


class DiffResponse(BaseModel):
    """Day-over-day change list, or ``NO_CHANGES``."""

    date: str
    prev_date: Optional[str] = None
    changes: Union[str, List[ChangeEntry]]


# ─── Health Schemas ───────────────────────────────────────────────


class FreshnessInfo(BaseModel):
    latest_date: str
    age_days: int
    max_age_days: int
    is_fresh: bool


class HealthResponse(BaseModel):
    """Health derived from the latest row."""

    ok: bool
    status: str = Field(..., description="OK, WARN or NOT_READY")
    service: str
    checked_at_utc: str
    engine_version: str
    latest: Optional[GhostRegimeRowResponse] = None
    freshness: Optional[FreshnessInfo] = None
    error: Optional[str] = None
    message: Optional[str] = None


# ─── Error Schemas ────────────────────────────────────────────────


class ErrorResponse(BaseModel):
    """Error body; extra keys (diagnostics, available_dates, ...) vary by code."""

    error: str
    message: str
