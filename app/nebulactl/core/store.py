"""Operation state store.

The store is the single piece of shared mutable state in nebulactl. It
maps packages to the operation that currently owns them and guards every
mutation with one lock. Callers interact through three operations:
``try_begin`` (admission), ``advance`` (forward transition) and
``snapshot`` (read-only copy).
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from types import MappingProxyType

from nebulactl.models.operation import (
    ALLOWED_TRANSITIONS,
    IDLE_STATUS,
    BatchOutcome,
    OperationKind,
    OperationRecord,
    OperationState,
    PackageStatus,
    SnapshotDecision,
    new_operation_id,
)
from nebulactl.models.package import PackageRef

logger = logging.getLogger(__name__)


class PackageBusyError(Exception):
    """Raised when a request targets packages owned by an in-flight operation.

    Attributes:
        conflicting: Requested packages that are already busy.
    """

    def __init__(self, conflicting: Iterable[PackageRef]) -> None:
        self.conflicting: tuple[PackageRef, ...] = tuple(
            sorted(set(conflicting), key=lambda ref: ref.name)
        )
        names = ", ".join(ref.name for ref in self.conflicting)
        super().__init__(f"An operation is already running for: {names}")


class InvalidTransitionError(Exception):
    """Raised when a state change would move a record backwards."""


class UnknownOperationError(KeyError):
    """Raised when an operation ID is not known to the store."""


class OperationStateStore:
    """Mutation-guarded registry of operation records.

    Invariant: a package is in the in-flight index exactly when the record
    it points to is not terminal. Both are updated under the same lock.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, OperationRecord] = {}
        # package -> id of the in-flight record owning it
        self._in_flight: dict[PackageRef, str] = {}
        # package -> id of the most recent record that targeted it
        self._latest: dict[PackageRef, str] = {}

    def try_begin(
        self,
        kind: OperationKind,
        targets: Iterable[PackageRef],
    ) -> OperationRecord:
        """Admit a new operation if none of its targets is busy.

        Admission is all-or-nothing: when any target is in flight nothing
        is registered.

        Args:
            kind: Kind of operation.
            targets: Packages to act upon. Duplicates are collapsed.

        Returns:
            The new record in state CREATED.

        Raises:
            PackageBusyError: If any target is already in flight.
            ValueError: If no targets are given.
        """
        unique: dict[PackageRef, None] = dict.fromkeys(targets)
        if not unique:
            msg = "Operation must have at least one target"
            raise ValueError(msg)

        with self._lock:
            conflicting = [ref for ref in unique if ref in self._in_flight]
            if conflicting:
                raise PackageBusyError(conflicting)

            record = OperationRecord(
                id=new_operation_id(),
                kind=kind,
                targets=tuple(unique),
            )
            self._records[record.id] = record
            for ref in record.targets:
                self._in_flight[ref] = record.id
                self._latest[ref] = record.id

        logger.debug(
            "Admitted %s operation %s for %d target(s)",
            kind.value,
            record.id,
            len(record.targets),
        )
        return record

    def advance(
        self,
        op_id: str,
        new_state: OperationState,
        *,
        snapshot: SnapshotDecision | None = None,
        outcome: BatchOutcome | None = None,
    ) -> OperationRecord:
        """Move a record forward to a new state.

        Entering a terminal state stamps the completion time and releases
        the targets from the in-flight index in the same critical section.

        Args:
            op_id: Operation identifier.
            new_state: State to move to.
            snapshot: Optional snapshot decision to attach.
            outcome: Optional outcome to attach (terminal states).

        Returns:
            The updated record.

        Raises:
            UnknownOperationError: If the operation is unknown.
            InvalidTransitionError: If the move is not a forward transition.
        """
        with self._lock:
            record = self._get_locked(op_id)
            if new_state not in ALLOWED_TRANSITIONS[record.state]:
                msg = (
                    f"Operation {op_id} cannot move from "
                    f"{record.state.value} to {new_state.value}"
                )
                raise InvalidTransitionError(msg)

            changes: dict[str, object] = {"state": new_state}
            if snapshot is not None:
                changes["snapshot"] = snapshot
            if outcome is not None:
                changes["outcome"] = outcome
            if new_state.is_terminal:
                changes["completed_at"] = datetime.now(UTC)

            updated = record.replace(**changes)
            self._records[op_id] = updated

            if new_state.is_terminal:
                for ref in updated.targets:
                    if self._in_flight.get(ref) == op_id:
                        del self._in_flight[ref]

        logger.debug(
            "Operation %s: %s -> %s", op_id, record.state.value, new_state.value
        )
        return updated

    def attach_snapshot(self, op_id: str, snapshot: SnapshotDecision) -> OperationRecord:
        """Attach a snapshot decision without changing state.

        Raises:
            UnknownOperationError: If the operation is unknown.
            InvalidTransitionError: If the record is not waiting on a snapshot.
        """
        with self._lock:
            record = self._get_locked(op_id)
            if record.state != OperationState.SNAPSHOT_PENDING:
                msg = f"Operation {op_id} is not waiting for a snapshot"
                raise InvalidTransitionError(msg)
            updated = record.replace(snapshot=snapshot)
            self._records[op_id] = updated
        return updated

    def get(self, op_id: str) -> OperationRecord:
        """Return the current record for an operation.

        Raises:
            UnknownOperationError: If the operation is unknown.
        """
        with self._lock:
            return self._get_locked(op_id)

    def find(self, op_id: str) -> OperationRecord | None:
        """Return the current record, or None if unknown."""
        with self._lock:
            return self._records.get(op_id)

    def snapshot(self) -> Mapping[str, OperationRecord]:
        """Return a read-only copy of all live records keyed by ID.

        Records are immutable, so the copy stays consistent while
        concurrent transitions replace entries in the store.
        """
        with self._lock:
            return MappingProxyType(dict(self._records))

    def in_flight(self) -> list[OperationRecord]:
        """Return all records that are admitted but not terminal."""
        with self._lock:
            return [r for r in self._records.values() if r.in_flight]

    def is_busy(self, package: PackageRef) -> bool:
        """Check if a package belongs to an in-flight operation."""
        with self._lock:
            return package in self._in_flight

    def package_state(self, package: PackageRef) -> PackageStatus:
        """Project the state of the latest operation onto one package."""
        with self._lock:
            op_id = self._latest.get(package)
            record = self._records.get(op_id) if op_id else None
        if record is None:
            return IDLE_STATUS
        return record.package_status(package)

    def mark_archived(self, op_id: str) -> OperationRecord:
        """Flag a terminal record as written to history.

        Raises:
            UnknownOperationError: If the operation is unknown.
            InvalidTransitionError: If the record is still in flight.
        """
        with self._lock:
            record = self._get_locked(op_id)
            if not record.is_terminal:
                msg = f"Operation {op_id} is still in flight"
                raise InvalidTransitionError(msg)
            updated = record.replace(archived=True)
            self._records[op_id] = updated
        return updated

    def evict_archived(self) -> int:
        """Drop archived records from the live store.

        Returns:
            Number of records evicted.
        """
        with self._lock:
            evicted = [op_id for op_id, r in self._records.items() if r.archived]
            for op_id in evicted:
                del self._records[op_id]
            for ref, op_id in list(self._latest.items()):
                if op_id not in self._records:
                    del self._latest[ref]
        if evicted:
            logger.debug("Evicted %d archived operation(s)", len(evicted))
        return len(evicted)

    def _get_locked(self, op_id: str) -> OperationRecord:
        try:
            return self._records[op_id]
        except KeyError:
            raise UnknownOperationError(op_id) from None
