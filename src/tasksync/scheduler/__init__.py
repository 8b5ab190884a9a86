"""Scheduler package for periodic sync passes."""

from .sync_scheduler import SyncScheduler, SchedulerError

__all__ = [
    "SyncScheduler",
    "SchedulerError"
]
