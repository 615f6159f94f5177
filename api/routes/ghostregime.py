"""
GhostRegime API routes.

Endpoints:
    GET /api/ghostregime/health   — Freshness of the latest row
    GET /api/ghostregime/today    — Current snapshot (force=true recomputes)
    GET /api/ghostregime/history  — Rows between inclusive dates
    GET /api/ghostregime/explain  — One row with its vote breakdown
    GET /api/ghostregime/diff     — Day-over-day changes

Every route except health answers 503 GHOSTREGIME_NOT_SEEDED until the
seed history has been loaded.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from api.dependencies import get_system
from api.schemas import (
    DiffResponse,
    ExplainResponse,
    GhostRegimeRowResponse,
    HealthResponse,
    TodayResponse,
)
from src.snapshot.health import STATUS_NOT_READY

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def get_health():
    """Health derived from the latest row; 503 before the first row exists."""
    system = get_system()
    payload = system.health()
    if payload["status"] == STATUS_NOT_READY:
        return JSONResponse(status_code=503, content=payload)
    return payload


@router.get(
    "/today",
    response_model=TodayResponse,
    response_model_exclude_unset=True,
)
async def get_today(
    debug: bool = Query(False, description="Include per-signal votes and diagnostics"),
    force: bool = Query(False, description="Recompute synchronously"),
    date: Optional[str] = Query(None, description="Target date YYYY-MM-DD (default: today)"),
):
    """Return the current snapshot, or recompute it when ``force`` is set."""
    system = get_system()
    result = await run_in_threadpool(system.today, force, date)
    return result.to_dict(include_debug=debug, include_diagnostics=debug)


@router.get("/history", response_model=List[GhostRegimeRowResponse])
async def get_history(
    startDate: Optional[str] = Query(None, description="Start date YYYY-MM-DD (inclusive)"),
    endDate: Optional[str] = Query(None, description="End date YYYY-MM-DD (inclusive)"),
):
    """Return rows in ascending date order; an empty list is valid."""
    system = get_system()
    return [row.to_dict() for row in system.history(startDate, endDate)]


@router.get("/explain", response_model=ExplainResponse)
async def get_explain(
    date: Optional[str] = Query(None, description="Date YYYY-MM-DD"),
):
    """Return the row for ``date`` including its debug votes."""
    system = get_system()
    return system.explain(date).to_dict(include_debug=True)


@router.get("/diff", response_model=DiffResponse)
async def get_diff(
    date: Optional[str] = Query(None, description="Date YYYY-MM-DD (default: latest)"),
    prev: Optional[str] = Query(None, description="Baseline date (default: previous row)"),
):
    """Return changes in regime, risk regime and sleeve scales."""
    system = get_system()
    return system.diff(date, prev)
