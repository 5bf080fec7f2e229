"""
Core services for the application.

This package contains the main service implementations for the application,
including the entry store, remote mirroring, aggregation and the tracker that
wires them together.
"""

from .aggregation import MonthlyDashboard, format_month, group_by_month, status_breakdown, tally
from .base import Result, configure_logging
from .entry_store import EntryStore
from .local_storage import JsonFileStorage, KeyValueStorage, MemoryStorage, StorageError
from .recorder import (
    EntryValidationError,
    EvaluationForm,
    EvaluationRecorder,
    Notification,
    NotificationCenter,
)
from .remote_mirror import RemoteMirror, RemoteMirrorError, SimulatedRemoteMirror
from .tracker import SkinCareTracker

__all__ = [
    "EntryStore",
    "Result",
    "configure_logging",
    "KeyValueStorage",
    "JsonFileStorage",
    "MemoryStorage",
    "StorageError",
    "RemoteMirror",
    "RemoteMirrorError",
    "SimulatedRemoteMirror",
    "EvaluationForm",
    "EvaluationRecorder",
    "EntryValidationError",
    "Notification",
    "NotificationCenter",
    "MonthlyDashboard",
    "group_by_month",
    "tally",
    "status_breakdown",
    "format_month",
    "SkinCareTracker",
]
