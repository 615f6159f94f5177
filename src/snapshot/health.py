"""
Health snapshot for GhostRegime.

Derived at read time from the latest row, never stored.
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from src.snapshot.models import GhostRegimeRow

SERVICE_NAME = "ghostregime"
DEFAULT_MAX_AGE_DAYS = 4

STATUS_OK = "OK"
STATUS_WARN = "WARN"
STATUS_NOT_READY = "NOT_READY"


def freshness(
    latest: GhostRegimeRow,
    today: date,
    max_age_days: int = DEFAULT_MAX_AGE_DAYS,
) -> Dict[str, Any]:
    age_days = (today - latest.as_date).days
    return {
        "latest_date": latest.date,
        "age_days": age_days,
        "max_age_days": max_age_days,
        "is_fresh": age_days <= max_age_days,
    }


def health_snapshot(
    latest: Optional[GhostRegimeRow],
    engine_version: str,
    now: Optional[datetime] = None,
    max_age_days: int = DEFAULT_MAX_AGE_DAYS,
) -> Dict[str, Any]:
    """Build the health payload.

    Args:
        latest: Latest committed (or stale) row, None before the first run
        engine_version: Engine version string
        now: Check time, UTC now by default
        max_age_days: Oldest row age still considered fresh

    Returns:
        Payload with ``status`` OK, WARN or NOT_READY
    """
    now = now or datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        "ok": latest is not None,
        "service": SERVICE_NAME,
        "checked_at_utc": now.isoformat(),
        "engine_version": engine_version,
    }

    if latest is None:
        payload.update({
            "status": STATUS_NOT_READY,
            "error": "GHOSTREGIME_NOT_READY",
            "message": "No persisted latest row available yet",
        })
        return payload

    fresh = freshness(latest, now.date(), max_age_days)
    payload.update({
        "status": STATUS_OK if fresh["is_fresh"] else STATUS_WARN,
        "latest": latest.to_dict(),
        "freshness": fresh,
    })
    return payload
