"""Unit tests for the operation state store."""

import threading

import pytest
from nebulactl.core.reconcile import cancelled_outcome, reconcile
from nebulactl.core.store import (
    InvalidTransitionError,
    OperationStateStore,
    PackageBusyError,
    UnknownOperationError,
)
from nebulactl.models.operation import (
    OperationKind,
    OperationState,
    PackageState,
    SnapshotDecision,
    SnapshotStatus,
    TargetResult,
)
from nebulactl.models.package import PackageRef

A, B, C, X = (PackageRef(n) for n in ("pkgA", "pkgB", "pkgC", "pkgX"))


@pytest.fixture
def store() -> OperationStateStore:
    """Empty state store."""
    return OperationStateStore()


class TestTryBegin:
    """Tests for admission."""

    def test_admits_free_targets(self, store: OperationStateStore) -> None:
        """A request on idle packages is admitted in CREATED."""
        record = store.try_begin(OperationKind.REMOVE, [A, B])

        assert record.state == OperationState.CREATED
        assert record.targets == (A, B)
        assert store.is_busy(A) and store.is_busy(B)

    def test_collapses_duplicates(self, store: OperationStateStore) -> None:
        """Duplicate targets are registered once."""
        record = store.try_begin(OperationKind.INSTALL, [A, A, PackageRef("pkgA", "1.0_1")])
        assert record.targets == (A,)

    def test_rejects_empty(self, store: OperationStateStore) -> None:
        """An empty target set is invalid."""
        with pytest.raises(ValueError):
            store.try_begin(OperationKind.INSTALL, [])

    def test_busy_reports_conflicting_subset(self, store: OperationStateStore) -> None:
        """A second request overlapping an in-flight one fails with the overlap."""
        store.try_begin(OperationKind.REMOVE, [A, B])

        with pytest.raises(PackageBusyError) as exc_info:
            store.try_begin(OperationKind.HOLD, [C, B, A])

        assert exc_info.value.conflicting == (A, B)
        assert "pkgA, pkgB" in str(exc_info.value)

    def test_busy_registers_nothing(self, store: OperationStateStore) -> None:
        """Rejected requests leave no partial registration."""
        store.try_begin(OperationKind.REMOVE, [X])
        before = dict(store.snapshot())

        with pytest.raises(PackageBusyError):
            store.try_begin(OperationKind.HOLD, [C, X])

        assert dict(store.snapshot()) == before
        assert store.is_busy(C) is False

    def test_hold_rejected_while_remove_running(self, store: OperationStateStore) -> None:
        """Hold on a package being removed is never admitted."""
        remove = store.try_begin(OperationKind.REMOVE, [X])
        store.advance(remove.id, OperationState.RUNNING)

        with pytest.raises(PackageBusyError) as exc_info:
            store.try_begin(OperationKind.HOLD, [X])

        assert exc_info.value.conflicting == (X,)
        assert len(store.snapshot()) == 1

    def test_targets_free_after_terminal(self, store: OperationStateStore) -> None:
        """Terminal records release their targets."""
        record = store.try_begin(OperationKind.REMOVE, [A])
        store.advance(record.id, OperationState.CANCELLED, outcome=cancelled_outcome("no"))

        assert store.is_busy(A) is False
        again = store.try_begin(OperationKind.INSTALL, [A])
        assert again.id != record.id

    def test_concurrent_admission_is_exclusive(self, store: OperationStateStore) -> None:
        """Of many racing requests for one package exactly one is admitted."""
        admitted: list[str] = []
        rejected: list[PackageBusyError] = []
        start = threading.Barrier(8)

        def attempt() -> None:
            start.wait()
            try:
                admitted.append(store.try_begin(OperationKind.INSTALL, [A]).id)
            except PackageBusyError as e:
                rejected.append(e)

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(admitted) == 1
        assert len(rejected) == 7


class TestAdvance:
    """Tests for state transitions."""

    def test_forward_path(self, store: OperationStateStore) -> None:
        """A record walks forward to a terminal state."""
        record = store.try_begin(OperationKind.REMOVE, [A])
        store.advance(record.id, OperationState.AWAITING_CONFIRMATION)
        store.advance(record.id, OperationState.RUNNING)
        outcome = reconcile([A], [TargetResult(package=A, success=True)])
        done = store.advance(record.id, OperationState.SUCCEEDED, outcome=outcome)

        assert done.state == OperationState.SUCCEEDED
        assert done.completed_at is not None
        assert done.outcome is outcome

    def test_terminal_is_final(self, store: OperationStateStore) -> None:
        """No record visits SUCCEEDED and later RUNNING."""
        record = store.try_begin(OperationKind.REMOVE, [A])
        store.advance(record.id, OperationState.RUNNING)
        store.advance(record.id, OperationState.SUCCEEDED)

        for state in OperationState:
            with pytest.raises(InvalidTransitionError):
                store.advance(record.id, state)

    def test_running_cannot_be_cancelled(self, store: OperationStateStore) -> None:
        """RUNNING -> CANCELLED is refused."""
        record = store.try_begin(OperationKind.REMOVE, [A])
        store.advance(record.id, OperationState.RUNNING)

        with pytest.raises(InvalidTransitionError):
            store.advance(record.id, OperationState.CANCELLED)
        assert store.get(record.id).state == OperationState.RUNNING
        assert store.is_busy(A) is True

    def test_unknown_operation(self, store: OperationStateStore) -> None:
        """Unknown IDs raise UnknownOperationError."""
        with pytest.raises(UnknownOperationError):
            store.advance("nope", OperationState.RUNNING)
        assert store.find("nope") is None

    def test_busy_index_matches_state(self, store: OperationStateStore) -> None:
        """A package is busy exactly while its record is not terminal."""
        record = store.try_begin(OperationKind.REMOVE, [A, B])
        for state in (OperationState.RUNNING, OperationState.PARTIAL_FAILURE):
            updated = store.advance(record.id, state)
            assert store.is_busy(A) is updated.in_flight
            assert store.is_busy(B) is updated.in_flight


class TestReadViews:
    """Tests for snapshot, projections and eviction."""

    def test_snapshot_is_read_only_copy(self, store: OperationStateStore) -> None:
        """The snapshot is immutable and does not follow later changes."""
        record = store.try_begin(OperationKind.REMOVE, [A])
        view = store.snapshot()
        store.advance(record.id, OperationState.RUNNING)

        assert view[record.id].state == OperationState.CREATED
        with pytest.raises(TypeError):
            view["other"] = record  # type: ignore[index]

    def test_package_state(self, store: OperationStateStore) -> None:
        """package_state projects the latest record onto a package."""
        assert store.package_state(A).state == PackageState.IDLE
        record = store.try_begin(OperationKind.REMOVE, [A])
        store.advance(record.id, OperationState.RUNNING)
        assert store.package_state(A).state == PackageState.RUNNING

    def test_in_flight(self, store: OperationStateStore) -> None:
        """in_flight lists only non-terminal records."""
        first = store.try_begin(OperationKind.REMOVE, [A])
        second = store.try_begin(OperationKind.REMOVE, [B])
        store.advance(first.id, OperationState.CANCELLED)
        assert [r.id for r in store.in_flight()] == [second.id]

    def test_mark_archived_requires_terminal(self, store: OperationStateStore) -> None:
        """Only terminal records can be archived."""
        record = store.try_begin(OperationKind.REMOVE, [A])
        with pytest.raises(InvalidTransitionError):
            store.mark_archived(record.id)

    def test_evict_archived(self, store: OperationStateStore) -> None:
        """Archived records are dropped; live ones stay."""
        done = store.try_begin(OperationKind.REMOVE, [A])
        live = store.try_begin(OperationKind.REMOVE, [B])
        store.advance(done.id, OperationState.CANCELLED)
        store.mark_archived(done.id)

        assert store.evict_archived() == 1
        assert set(store.snapshot()) == {live.id}
        assert store.package_state(A).state == PackageState.IDLE

    def test_attach_snapshot_requires_pending(self, store: OperationStateStore) -> None:
        """Snapshot decisions attach only while SNAPSHOT_PENDING."""
        record = store.try_begin(OperationKind.UPDATE, [A])
        decision = SnapshotDecision(status=SnapshotStatus.FAILED, reason="x")
        with pytest.raises(InvalidTransitionError):
            store.attach_snapshot(record.id, decision)

        store.advance(record.id, OperationState.SNAPSHOT_PENDING)
        updated = store.attach_snapshot(record.id, decision)
        assert updated.snapshot == decision
        assert updated.state == OperationState.SNAPSHOT_PENDING
