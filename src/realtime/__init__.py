"""
Scheduling package.

Modules:
    scheduler: Once-per-business-day snapshot runner
"""

from src.realtime.scheduler import DailySnapshotScheduler

__all__ = [
    "DailySnapshotScheduler",
]
