"""Client package for the Timesheet application.

Local store, remote authority clients and the local-first sync engine.
"""
from .app import TimesheetApp
from .sync_engine import SyncEngine
from .timer import ActiveTimerStore

__all__ = ["TimesheetApp", "SyncEngine", "ActiveTimerStore"]
