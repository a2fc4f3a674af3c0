"""Periodic lease sweeps."""

from .scheduler import Scheduler
from .tasks import AutoReturnTask, ReminderTask, ScheduledTask

__all__ = ["AutoReturnTask", "ReminderTask", "ScheduledTask", "Scheduler"]
