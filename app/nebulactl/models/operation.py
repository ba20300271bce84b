"""Operation models for the package operation controller.

This module defines the data structures describing a user-initiated
package operation: its kind, lifecycle state, snapshot decision, and the
per-target results reconciled into a batch outcome.
"""

from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from nebulactl.models.package import PackageRef

# Reserved target for operations on the package cache rather than a package.
# '@' never appears in xbps package names, so it cannot clash with one.
CACHE_TARGET = PackageRef(name="@package-cache")


class OperationKind(str, Enum):
    """Kind of package operation.

    Attributes:
        INSTALL: Install packages from the repositories.
        REMOVE: Remove installed packages.
        UPDATE: Upgrade packages as one aggregate transaction.
        HOLD: Mark packages as held so updates skip them.
        UNHOLD: Clear the held mark.
        CACHE_CLEANUP: Prune old versions from the package cache.
    """

    INSTALL = "install"
    REMOVE = "remove"
    UPDATE = "update"
    HOLD = "hold"
    UNHOLD = "unhold"
    CACHE_CLEANUP = "cache_cleanup"

    @property
    def is_per_target(self) -> bool:
        """Check if the kind issues one external invocation per target."""
        return self in (
            OperationKind.INSTALL,
            OperationKind.REMOVE,
            OperationKind.HOLD,
            OperationKind.UNHOLD,
        )

    @property
    def label(self) -> str:
        """Human-readable verb for prompts and tables."""
        return self.value.replace("_", " ")


class OperationState(str, Enum):
    """Lifecycle state of an OperationRecord.

    States only ever move forward; see ALLOWED_TRANSITIONS.
    """

    CREATED = "created"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    SNAPSHOT_PENDING = "snapshot_pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Check if no further transitions are possible."""
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {
        OperationState.SUCCEEDED,
        OperationState.PARTIAL_FAILURE,
        OperationState.FAILED,
        OperationState.CANCELLED,
    }
)

ALLOWED_TRANSITIONS: dict[OperationState, frozenset[OperationState]] = {
    OperationState.CREATED: frozenset(
        {
            OperationState.AWAITING_CONFIRMATION,
            OperationState.SNAPSHOT_PENDING,
            OperationState.RUNNING,
            OperationState.CANCELLED,
        }
    ),
    OperationState.AWAITING_CONFIRMATION: frozenset(
        {
            OperationState.SNAPSHOT_PENDING,
            OperationState.RUNNING,
            OperationState.CANCELLED,
        }
    ),
    OperationState.SNAPSHOT_PENDING: frozenset(
        {OperationState.RUNNING, OperationState.CANCELLED}
    ),
    # Running processes cannot be interrupted, so no RUNNING -> CANCELLED edge
    OperationState.RUNNING: frozenset(
        {
            OperationState.SUCCEEDED,
            OperationState.PARTIAL_FAILURE,
            OperationState.FAILED,
        }
    ),
    OperationState.SUCCEEDED: frozenset(),
    OperationState.PARTIAL_FAILURE: frozenset(),
    OperationState.FAILED: frozenset(),
    OperationState.CANCELLED: frozenset(),
}


class PackageState(str, Enum):
    """Per-package projection of the owning operation's state."""

    IDLE = "idle"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    SNAPSHOT_PENDING = "snapshot_pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class PackageStatus:
    """What a single package is currently doing.

    Attributes:
        state: Projected state of the package.
        kind: Kind of the owning operation, None when idle.
        reason: Failure reason when state is FAILED.
    """

    state: PackageState
    kind: OperationKind | None = None
    reason: str | None = None

    @property
    def busy(self) -> bool:
        """Check if the package belongs to an in-flight operation."""
        return self.state in (
            PackageState.AWAITING_CONFIRMATION,
            PackageState.SNAPSHOT_PENDING,
            PackageState.RUNNING,
        )


IDLE_STATUS = PackageStatus(state=PackageState.IDLE)


class SnapshotStatus(str, Enum):
    """Outcome of a pre-upgrade snapshot request."""

    CREATED = "created"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class SnapshotDecision:
    """Tagged result of the snapshot gate.

    Attributes:
        status: What happened to the snapshot request.
        snapshot_name: Name of the created snapshot, if any.
        reason: Failure detail for FAILED and TIMED_OUT.
    """

    status: SnapshotStatus
    snapshot_name: str | None = None
    reason: str | None = None

    @property
    def allows_update(self) -> bool:
        """Check if the update may proceed without asking the user."""
        return self.status in (SnapshotStatus.CREATED, SnapshotStatus.SKIPPED)


@dataclass(frozen=True, slots=True)
class TargetResult:
    """Result of the external invocation for one target.

    Attributes:
        package: Target the result belongs to.
        success: Whether the external tool reported success.
        reason: Failure reason taken from the tool output.
        message: Optional informational message on success.
    """

    package: PackageRef
    success: bool
    reason: str | None = None
    message: str | None = None

    @property
    def failed(self) -> bool:
        """Check if the invocation failed."""
        return not self.success


class OutcomeClass(str, Enum):
    """Aggregate classification of a batch outcome."""

    ALL_SUCCEEDED = "all_succeeded"
    PARTIAL_FAILURE = "partial_failure"
    ALL_FAILED = "all_failed"
    CANCELLED = "cancelled"

    @property
    def terminal_state(self) -> OperationState:
        """Record state reached for this classification."""
        return {
            OutcomeClass.ALL_SUCCEEDED: OperationState.SUCCEEDED,
            OutcomeClass.PARTIAL_FAILURE: OperationState.PARTIAL_FAILURE,
            OutcomeClass.ALL_FAILED: OperationState.FAILED,
            OutcomeClass.CANCELLED: OperationState.CANCELLED,
        }[self]


@dataclass(frozen=True, slots=True)
class BatchOutcome:
    """Reconciled result of an operation.

    Attributes:
        classification: Aggregate classification.
        results: Per-target results, sorted by package name.
        message: Optional summary (e.g., cache cleanup totals, cancel cause).
    """

    classification: OutcomeClass
    results: tuple[TargetResult, ...] = ()
    message: str | None = None

    @property
    def succeeded(self) -> tuple[TargetResult, ...]:
        """Results whose invocation succeeded."""
        return tuple(r for r in self.results if r.success)

    @property
    def failed(self) -> tuple[TargetResult, ...]:
        """Results whose invocation failed."""
        return tuple(r for r in self.results if r.failed)

    @property
    def failures(self) -> dict[str, str]:
        """Map of failed package name to failure reason."""
        return {r.package.name: r.reason or "Unknown error" for r in self.failed}

    def result_for(self, package: PackageRef) -> TargetResult | None:
        """Look up the result of a single target."""
        for result in self.results:
            if result.package == package:
                return result
        return None


@dataclass(frozen=True, slots=True)
class OperationRecord:
    """One user-initiated operation.

    Records are immutable; the state store replaces them on every
    transition, so any copy handed out is a consistent snapshot.

    Attributes:
        id: Unique identifier (12-character hex string from UUID).
        kind: Kind of the operation.
        targets: Packages the operation acts upon (at least one).
        state: Current lifecycle state.
        created_at: When the request was admitted.
        completed_at: When a terminal state was reached.
        snapshot: Decision of the snapshot gate, for updates.
        outcome: Reconciled outcome once terminal.
        archived: Whether the record has been written to history.
    """

    id: str
    kind: OperationKind
    targets: tuple[PackageRef, ...]
    state: OperationState = OperationState.CREATED
    created_at: datetime = dataclasses.field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    snapshot: SnapshotDecision | None = None
    outcome: BatchOutcome | None = None
    archived: bool = False

    def __post_init__(self) -> None:
        """Validate record data after initialization."""
        if not self.id:
            msg = "Operation ID cannot be empty"
            raise ValueError(msg)
        if not self.targets:
            msg = "Operation must have at least one target"
            raise ValueError(msg)

    @property
    def is_terminal(self) -> bool:
        """Check if the record reached a terminal state."""
        return self.state.is_terminal

    @property
    def in_flight(self) -> bool:
        """Check if the record is admitted but not yet terminal."""
        return not self.state.is_terminal

    def replace(self, **changes: object) -> OperationRecord:
        """Return a copy with the given fields changed."""
        return dataclasses.replace(self, **changes)  # type: ignore[arg-type]

    def package_status(self, package: PackageRef) -> PackageStatus:
        """Project this record's state onto one of its targets.

        Args:
            package: Target to project onto.

        Returns:
            PackageStatus for the target; IDLE if it is not a target.
        """
        if package not in self.targets:
            return IDLE_STATUS

        projection = {
            OperationState.CREATED: PackageState.AWAITING_CONFIRMATION,
            OperationState.AWAITING_CONFIRMATION: PackageState.AWAITING_CONFIRMATION,
            OperationState.SNAPSHOT_PENDING: PackageState.SNAPSHOT_PENDING,
            OperationState.RUNNING: PackageState.RUNNING,
            OperationState.SUCCEEDED: PackageState.SUCCEEDED,
            OperationState.FAILED: PackageState.FAILED,
            OperationState.CANCELLED: PackageState.CANCELLED,
        }

        if self.state == OperationState.PARTIAL_FAILURE or (
            self.state == OperationState.FAILED and self.outcome is not None
        ):
            result = self.outcome.result_for(package) if self.outcome else None
            if result is not None and result.success:
                return PackageStatus(PackageState.SUCCEEDED, self.kind)
            reason = result.reason if result is not None else None
            return PackageStatus(PackageState.FAILED, self.kind, reason)

        return PackageStatus(projection[self.state], self.kind)


def new_operation_id() -> str:
    """Generate a unique operation identifier."""
    return uuid.uuid4().hex[:12]
