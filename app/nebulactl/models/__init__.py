"""Data models for nebulactl.

This package contains all data structures used throughout the application.
"""

from nebulactl.models.history import HistoryEntry, create_history_entry
from nebulactl.models.operation import (
    CACHE_TARGET,
    BatchOutcome,
    OperationKind,
    OperationRecord,
    OperationState,
    OutcomeClass,
    PackageState,
    PackageStatus,
    SnapshotDecision,
    SnapshotStatus,
    TargetResult,
)
from nebulactl.models.package import PackageRef, PlannedUpdate

__all__ = [
    "CACHE_TARGET",
    "BatchOutcome",
    "HistoryEntry",
    "OperationKind",
    "OperationRecord",
    "OperationState",
    "OutcomeClass",
    "PackageRef",
    "PackageState",
    "PackageStatus",
    "PlannedUpdate",
    "SnapshotDecision",
    "SnapshotStatus",
    "TargetResult",
    "create_history_entry",
]
