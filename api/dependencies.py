"""
Dependency injection for the GhostRegime API.

Provides:
- GhostRegime singleton instance (initialized on startup)
- Startup/shutdown lifespan manager, including the daily scheduler
"""

import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from src.main import GhostRegime

logger = logging.getLogger(__name__)

# ─── Singleton state ──────────────────────────────────────────────

_system: Optional[GhostRegime] = None
_startup_time: Optional[float] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize GhostRegime on startup and release it on shutdown."""
    global _system, _startup_time

    logger.info("Starting GhostRegime initialization…")
    _startup_time = time.time()

    _system = GhostRegime(config_path=os.getenv("GHOSTREGIME_CONFIG"))
    _system.initialize()
    if not _system.is_seeded:
        logger.warning("GhostRegime is not seeded; data routes will return 503")

    if _system.scheduler is not None:
        await _system.scheduler.start()

    yield  # ── app is running ──

    logger.info("Shutting down GhostRegime…")
    if _system.scheduler is not None:
        await _system.scheduler.stop()
    _system.shutdown()
    _system = None
    _startup_time = None


# ─── Dependency getters ──────────────────────────────────────────


def get_system() -> GhostRegime:
    """Return the singleton GhostRegime instance.

    Raises:
        RuntimeError: If the system has not been initialized yet.
    """
    if _system is None:
        raise RuntimeError("GhostRegime system is not initialized")
    return _system


def get_startup_time() -> float:
    """Return the epoch timestamp when the server started."""
    return _startup_time or time.time()
