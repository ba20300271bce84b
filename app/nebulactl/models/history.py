"""History entry model for completed operations.

This module defines the immutable record appended to the operation
history once an operation reaches a terminal state.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from nebulactl.models.operation import (
    BatchOutcome,
    OperationKind,
    OperationRecord,
    OutcomeClass,
    TargetResult,
)
from nebulactl.models.package import PackageRef


def _ref_to_dict(ref: PackageRef) -> dict[str, Any]:
    result: dict[str, Any] = {"name": ref.name}
    if ref.version is not None:
        result["version"] = ref.version
    return result


def _ref_from_dict(data: dict[str, Any]) -> PackageRef:
    return PackageRef(name=data["name"], version=data.get("version"))


def outcome_to_dict(outcome: BatchOutcome) -> dict[str, Any]:
    """Serialize a BatchOutcome to a dictionary for JSON storage.

    Args:
        outcome: The outcome to serialize.

    Returns:
        Dictionary representation of the outcome.
    """
    data: dict[str, Any] = {
        "classification": outcome.classification.value,
        "results": [
            {
                "package": _ref_to_dict(r.package),
                "success": r.success,
                "reason": r.reason,
                "message": r.message,
            }
            for r in outcome.results
        ],
    }
    if outcome.message is not None:
        data["message"] = outcome.message
    return data


def outcome_from_dict(data: dict[str, Any]) -> BatchOutcome:
    """Deserialize a BatchOutcome from a dictionary.

    Raises:
        KeyError: If required fields are missing.
        ValueError: If the classification is invalid.
    """
    results = tuple(
        TargetResult(
            package=_ref_from_dict(item["package"]),
            success=bool(item["success"]),
            reason=item.get("reason"),
            message=item.get("message"),
        )
        for item in data.get("results", [])
    )
    return BatchOutcome(
        classification=OutcomeClass(data["classification"]),
        results=results,
        message=data.get("message"),
    )


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """Record of a completed operation.

    Attributes:
        id: Identifier of the operation that produced this entry.
        kind: Kind of operation.
        targets: Packages the operation acted upon.
        outcome: Reconciled batch outcome.
        created_at: When the operation was admitted (ISO 8601).
        completed_at: When the operation reached its terminal state (ISO 8601).
    """

    id: str
    kind: OperationKind
    targets: tuple[PackageRef, ...]
    outcome: BatchOutcome
    created_at: str
    completed_at: str

    def __post_init__(self) -> None:
        """Validate entry data after initialization."""
        if not self.id:
            msg = "History entry ID cannot be empty"
            raise ValueError(msg)
        if not self.targets:
            msg = "History entry must have at least one target"
            raise ValueError(msg)

    @property
    def success(self) -> bool:
        """Check if every target succeeded."""
        return self.outcome.classification == OutcomeClass.ALL_SUCCEEDED

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON storage."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "targets": [_ref_to_dict(t) for t in self.targets],
            "outcome": outcome_to_dict(self.outcome),
            "created_at": self.created_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoryEntry:
        """Deserialize from dictionary.

        Raises:
            KeyError: If required fields are missing.
            ValueError: If kind or outcome data is invalid.
        """
        return cls(
            id=data["id"],
            kind=OperationKind(data["kind"]),
            targets=tuple(_ref_from_dict(t) for t in data["targets"]),
            outcome=outcome_from_dict(data["outcome"]),
            created_at=data["created_at"],
            completed_at=data["completed_at"],
        )

    def to_json_line(self) -> str:
        """Serialize to a single JSON line (no trailing newline)."""
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_json_line(cls, line: str) -> HistoryEntry:
        """Deserialize from a JSON line.

        Raises:
            json.JSONDecodeError: If line is not valid JSON.
            KeyError: If required fields are missing.
            ValueError: If data is invalid.
        """
        return cls.from_dict(json.loads(line.strip()))


def create_history_entry(record: OperationRecord) -> HistoryEntry:
    """Build a HistoryEntry from a terminal OperationRecord.

    Args:
        record: Operation record in a terminal state with an outcome.

    Returns:
        New HistoryEntry mirroring the record.

    Raises:
        ValueError: If the record is not terminal or has no outcome.
    """
    if not record.is_terminal or record.outcome is None:
        msg = f"Operation {record.id} has not completed"
        raise ValueError(msg)

    completed_at = record.completed_at or datetime.now(UTC)
    return HistoryEntry(
        id=record.id,
        kind=record.kind,
        targets=record.targets,
        outcome=record.outcome,
        created_at=record.created_at.isoformat(),
        completed_at=completed_at.isoformat(),
    )
