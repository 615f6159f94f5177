"""
GhostRegime API — FastAPI application entry point.

Run in development mode:
    uvicorn api.main:app --reload --port 8000

Swagger docs available at:
    http://localhost:8000/docs

Security:
    - Security headers on every response
    - Per-IP limit on forced recomputes
    - Global exception handlers (no stack traces leaked)
    - CORS origins from GHOSTREGIME_CORS_ORIGINS
"""

import logging
import os
import time

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.dependencies import get_startup_time, get_system, lifespan
from api.middleware import (
    ForceRateLimitMiddleware,
    SecurityHeadersMiddleware,
    register_exception_handlers,
)
from api.routes import ghostregime
from src import __version__

logger = logging.getLogger(__name__)

# ─── App ──────────────────────────────────────────────────────────

app = FastAPI(
    title="GhostRegime API",
    description="Daily market regime snapshots, history and explanations.",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if os.getenv("GHOSTREGIME_ENV") != "production" else None,
    redoc_url="/redoc" if os.getenv("GHOSTREGIME_ENV") != "production" else None,
)

# ─── Security ─────────────────────────────────────────────────────
register_exception_handlers(app)

app.add_middleware(SecurityHeadersMiddleware)

# Forced recomputes hit every vendor; 6 per minute per IP
app.add_middleware(ForceRateLimitMiddleware, max_requests=6, window_seconds=60)

# ─── CORS ─────────────────────────────────────────────────────────
_cors_origins = os.getenv(
    "GHOSTREGIME_CORS_ORIGINS",
    "http://localhost:3000,http://127.0.0.1:3000",
).split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in _cors_origins],
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["Content-Type"],
)

# ─── Routers ──────────────────────────────────────────────────────

app.include_router(ghostregime.router, prefix="/api/ghostregime", tags=["GhostRegime"])


# ─── System Routes ────────────────────────────────────────────────


@app.get("/api/status")
async def system_status():
    """Process-level state: initialization, seeding and scheduler."""
    try:
        system = get_system()
    except RuntimeError:
        return {"is_initialized": False}

    return {
        "is_initialized": system.is_initialized,
        "is_seeded": system.is_seeded,
        "engine_version": system.engine_version,
        "rows": len(system.store) if system.store is not None else 0,
        "scheduler": system.scheduler.get_status() if system.scheduler else None,
        "uptime_seconds": round(time.time() - get_startup_time(), 1),
    }
