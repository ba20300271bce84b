"""Operation controller.

Drives every OperationRecord through its lifecycle:

    CREATED -> AWAITING_CONFIRMATION? -> SNAPSHOT_PENDING? -> RUNNING -> terminal

External invocations run on a thread pool. Workers never touch the state
store directly; they post messages to the controller inbox, and the
presentation thread applies them in ``process_pending``. The UI learns
about every change through the EventChannel.
"""

import logging
import queue
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from nebulactl.core.events import EventChannel, EventType, OperationEvent
from nebulactl.core.history import OperationHistory
from nebulactl.core.holds import HoldCache
from nebulactl.core.policy import (
    confirmation_prompt,
    history_clear_prompt,
    requires_confirmation,
    requires_history_clear_confirmation,
)
from nebulactl.core.preferences import UserPreferences
from nebulactl.core.reconcile import cancelled_outcome, reconcile
from nebulactl.core.snapshot import SnapshotContext, SnapshotGate
from nebulactl.core.store import InvalidTransitionError, OperationStateStore
from nebulactl.models.history import create_history_entry
from nebulactl.models.operation import (
    CACHE_TARGET,
    BatchOutcome,
    OperationKind,
    OperationRecord,
    OperationState,
    SnapshotDecision,
    SnapshotStatus,
    TargetResult,
)
from nebulactl.models.package import PackageRef, PlannedUpdate, package_names
from nebulactl.operators.base import Operator

logger = logging.getLogger(__name__)

_CANCELLABLE_STATES = frozenset(
    {
        OperationState.CREATED,
        OperationState.AWAITING_CONFIRMATION,
        OperationState.SNAPSHOT_PENDING,
    }
)


# Inbox messages posted by worker threads


@dataclass(frozen=True, slots=True)
class _TargetDone:
    op_id: str
    result: TargetResult


@dataclass(frozen=True, slots=True)
class _BatchDone:
    op_id: str
    results: tuple[TargetResult, ...]
    message: str | None = None


@dataclass(frozen=True, slots=True)
class _SnapshotDone:
    op_id: str
    decision: SnapshotDecision


@dataclass(frozen=True, slots=True)
class _OutputLine:
    op_id: str
    line: str


@dataclass(frozen=True, slots=True)
class _PlanDone:
    plan: tuple[PlannedUpdate, ...] = ()
    error: str | None = None


_Message = _TargetDone | _BatchDone | _SnapshotDone | _OutputLine | _PlanDone


class OperationController:
    """Owns the lifecycle of package operations.

    All public methods are meant to be called from the presentation
    thread. They return quickly; external processes only ever run on the
    worker pool.

    Example:
        >>> controller = OperationController(XbpsOperator(), preferences)
        >>> record = controller.submit(OperationKind.REMOVE, refs)
        >>> controller.confirm(record.id)
        >>> controller.run_until_idle()
        >>> for event in controller.events.drain():
        ...     render(event)
    """

    def __init__(
        self,
        operator: Operator,
        preferences: UserPreferences,
        *,
        store: OperationStateStore | None = None,
        history: OperationHistory | None = None,
        events: EventChannel | None = None,
        gate: SnapshotGate | None = None,
        holds: HoldCache | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the controller.

        Args:
            operator: Package manager operator used by workers.
            preferences: Preferences read for every decision.
            store: State store; a fresh one is created if None.
            history: History log; an in-memory one is created if None.
            events: Event channel; a fresh one is created if None.
            gate: Snapshot gate; built from preferences if None.
            holds: Hold cache; built from the operator if None.
            clock: Monotonic clock used for snapshot prompt deadlines.
        """
        self._operator = operator
        self._preferences = preferences
        self._store = store or OperationStateStore()
        self._history = history if history is not None else OperationHistory()
        self._events = events or EventChannel()
        self._gate = gate or SnapshotGate(preferences)
        self._holds = holds or HoldCache(operator)
        self._clock = clock

        self._executor = ThreadPoolExecutor(
            max_workers=preferences.max_concurrency,
            thread_name_prefix="nebulactl-worker",
        )
        self._inbox: queue.SimpleQueue[_Message] = queue.SimpleQueue()
        # Jobs submitted to the pool whose completion message is not yet applied
        self._outstanding = 0
        self._results: dict[str, list[TargetResult]] = {}
        self._snapshot_deadlines: dict[str, float] = {}
        # Update operations run as a system-wide upgrade
        self._full_upgrades: set[str] = set()
        self._history_clear_pending = False
        self._closed = False

    @property
    def store(self) -> OperationStateStore:
        """State store holding the live records."""
        return self._store

    @property
    def history(self) -> OperationHistory:
        """History log of completed operations."""
        return self._history

    @property
    def events(self) -> EventChannel:
        """Channel the UI drains for updates."""
        return self._events

    @property
    def holds(self) -> HoldCache:
        """Cached view of held packages."""
        return self._holds

    @property
    def preferences(self) -> UserPreferences:
        """Preferences in effect."""
        return self._preferences

    @property
    def is_idle(self) -> bool:
        """Check if no worker job is outstanding."""
        return self._outstanding == 0

    @property
    def history_clear_pending(self) -> bool:
        """Check if a history clear awaits confirmation."""
        return self._history_clear_pending

    # Requests

    def submit(
        self,
        kind: OperationKind,
        targets: Iterable[PackageRef],
        *,
        full_upgrade: bool = False,
    ) -> OperationRecord:
        """Request a new operation.

        The request is admitted atomically, then either parked for
        confirmation or started right away.

        Args:
            kind: Kind of operation.
            targets: Packages to act upon.
            full_upgrade: For UPDATE, upgrade the whole system; targets are
                the packages the plan reported as upgradable.

        Returns:
            The record after admission (AWAITING_CONFIRMATION, SNAPSHOT_PENDING
            or RUNNING).

        Raises:
            PackageBusyError: If any target belongs to an in-flight operation.
            ValueError: If there are no targets or they do not fit the kind.
            RuntimeError: If the controller has been shut down.
        """
        self._require_open()
        refs = list(dict.fromkeys(targets))
        self._validate_targets(kind, refs)
        if full_upgrade and kind != OperationKind.UPDATE:
            msg = "Only updates can be full upgrades"
            raise ValueError(msg)

        record = self._store.try_begin(kind, refs)
        if full_upgrade:
            self._full_upgrades.add(record.id)
        self._publish(EventType.STATE_CHANGED, record)

        if requires_confirmation(kind, len(record.targets), self._preferences):
            record = self._advance(record.id, OperationState.AWAITING_CONFIRMATION)
            prompt = confirmation_prompt(
                kind,
                package_names(record.targets),
                self._preferences.cache_versions_to_keep,
            )
            self._publish(EventType.CONFIRMATION_REQUESTED, record, message=prompt)
            return record

        return self._proceed(record)

    def clean_cache(self) -> OperationRecord:
        """Request a cache cleanup with the configured retention.

        Raises:
            PackageBusyError: If a cache cleanup is already in flight.
        """
        return self.submit(OperationKind.CACHE_CLEANUP, [CACHE_TARGET])

    def confirm(self, op_id: str) -> OperationRecord:
        """Grant confirmation for an operation waiting on the user.

        Raises:
            UnknownOperationError: If the operation is unknown.
            InvalidTransitionError: If the operation is not awaiting confirmation.
        """
        self._require_open()
        record = self._store.get(op_id)
        if record.state != OperationState.AWAITING_CONFIRMATION:
            msg = f"Operation {op_id} is not awaiting confirmation"
            raise InvalidTransitionError(msg)
        return self._proceed(record)

    def cancel(self, op_id: str, reason: str = "Cancelled by user") -> bool:
        """Cancel an operation that has not started running.

        Cancelling a running or finished operation is a no-op.

        Args:
            op_id: Operation to cancel.
            reason: Message stored on the cancelled outcome.

        Returns:
            True if the operation was cancelled, False if it was a no-op.

        Raises:
            UnknownOperationError: If the operation is unknown.
        """
        record = self._store.get(op_id)
        if record.state not in _CANCELLABLE_STATES:
            logger.info("Ignoring cancel for operation %s in state %s", op_id, record.state.value)
            return False

        self._snapshot_deadlines.pop(op_id, None)
        self._finish(op_id, OperationState.CANCELLED, cancelled_outcome(reason))
        return True

    def resolve_snapshot(self, op_id: str, proceed: bool) -> OperationRecord:
        """Answer the "Update Anyway" question after a snapshot failure.

        Args:
            op_id: Update operation waiting on the answer.
            proceed: True to update without a snapshot, False to cancel.

        Returns:
            The updated record (RUNNING or CANCELLED).

        Raises:
            InvalidTransitionError: If no answer is expected for the operation.
        """
        if op_id not in self._snapshot_deadlines:
            msg = f"Operation {op_id} is not waiting for a snapshot decision"
            raise InvalidTransitionError(msg)
        del self._snapshot_deadlines[op_id]

        if not proceed:
            return self._finish(
                op_id,
                OperationState.CANCELLED,
                cancelled_outcome("Update cancelled: snapshot was not created"),
            )

        logger.info("Updating without a snapshot for operation %s", op_id)
        record = self._advance(op_id, OperationState.RUNNING)
        self._start(record)
        return record

    def plan_update(self) -> None:
        """Compute the update changeset in the background.

        The result arrives as a PLAN_READY event carrying the plan, or an
        error message when the dry run failed.
        """
        self._require_open()
        self._spawn(self._plan_worker)

    # History

    def request_history_clear(self) -> bool:
        """Ask to clear the history log.

        When confirmation is required, a HISTORY_CLEAR_REQUESTED event is
        published and nothing changes until ``confirm_history_clear``.

        Returns:
            True if the history was cleared immediately, False if the
            clear awaits confirmation.
        """
        if requires_history_clear_confirmation(self._preferences):
            self._history_clear_pending = True
            self._publish(
                EventType.HISTORY_CLEAR_REQUESTED,
                message=history_clear_prompt(len(self._history)),
            )
            return False

        self._clear_history()
        return True

    def confirm_history_clear(self) -> int:
        """Clear the history after the user confirmed.

        Returns:
            Number of entries removed.

        Raises:
            InvalidTransitionError: If no clear was requested.
        """
        if not self._history_clear_pending:
            msg = "No history clear is awaiting confirmation"
            raise InvalidTransitionError(msg)
        self._history_clear_pending = False
        return self._clear_history()

    def cancel_history_clear(self) -> bool:
        """Drop a pending history clear request.

        Returns:
            True if a request was pending.
        """
        pending = self._history_clear_pending
        self._history_clear_pending = False
        return pending

    # Pumping

    def process_pending(self) -> int:
        """Apply worker messages and expire stale snapshot prompts.

        Must be called from the presentation thread. Never blocks.

        Returns:
            Number of messages and expirations handled.
        """
        handled = 0
        while True:
            try:
                message = self._inbox.get_nowait()
            except queue.Empty:
                break
            self._apply(message)
            handled += 1
        return handled + self._expire_snapshot_prompts()

    def run_until_idle(self, timeout: float | None = None, poll: float = 0.05) -> None:
        """Block until every outstanding worker job has been applied.

        Operations waiting on the user do not count as outstanding.

        Args:
            timeout: Maximum seconds to wait, None to wait indefinitely.
            poll: Seconds between checks for expired snapshot prompts.

        Raises:
            TimeoutError: If the timeout elapses first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        self.process_pending()
        while self._outstanding:
            if deadline is not None and time.monotonic() >= deadline:
                msg = f"{self._outstanding} operation job(s) still running"
                raise TimeoutError(msg)
            try:
                message = self._inbox.get(timeout=poll)
            except queue.Empty:
                pass
            else:
                self._apply(message)
            self.process_pending()

    def prune(self) -> int:
        """Evict archived records from the live store.

        Returns:
            Number of records evicted.
        """
        return self._store.evict_archived()

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work and release the worker pool.

        Running external processes are never interrupted; with ``wait``
        the call blocks until they finish.
        """
        self._closed = True
        self._executor.shutdown(wait=wait, cancel_futures=False)
        if wait:
            self.process_pending()

    # Lifecycle internals

    def _proceed(self, record: OperationRecord) -> OperationRecord:
        """Move past confirmation into the snapshot gate or execution."""
        if record.kind == OperationKind.UPDATE and self._gate.enabled:
            record = self._advance(record.id, OperationState.SNAPSHOT_PENDING)
            context = SnapshotContext(package_count=len(record.targets))
            self._spawn(self._snapshot_worker, record.id, context)
            return record

        record = self._advance(record.id, OperationState.RUNNING)
        self._start(record)
        return record

    def _start(self, record: OperationRecord) -> None:
        """Hand a RUNNING record to the worker pool."""
        if record.kind.is_per_target:
            self._results[record.id] = []
            for target in record.targets:
                self._spawn(self._target_worker, record.id, record.kind, target)
        elif record.kind == OperationKind.UPDATE:
            self._spawn(
                self._update_worker,
                record.id,
                list(record.targets),
                record.id in self._full_upgrades,
            )
        else:
            self._spawn(
                self._cache_worker, record.id, self._preferences.cache_versions_to_keep
            )

    def _apply(self, message: _Message) -> None:
        match message:
            case _OutputLine(op_id=op_id, line=line):
                record = self._store.find(op_id)
                self._publish(EventType.OUTPUT, record, message=line)
                return
            case _PlanDone(plan=plan, error=error):
                self._outstanding -= 1
                self._publish(EventType.PLAN_READY, message=error, plan=None if error else plan)
            case _SnapshotDone(op_id=op_id, decision=decision):
                self._outstanding -= 1
                self._on_snapshot(op_id, decision)
            case _TargetDone(op_id=op_id, result=result):
                self._outstanding -= 1
                self._on_target_done(op_id, result)
            case _BatchDone(op_id=op_id, results=results, message=summary):
                self._outstanding -= 1
                record = self._store.find(op_id)
                if record is None:
                    logger.debug("Dropping update result for evicted operation %s", op_id)
                    return
                self._complete(record, reconcile(record.targets, results, summary))

    def _on_snapshot(self, op_id: str, decision: SnapshotDecision) -> None:
        record = self._store.find(op_id)
        if record is None or record.state != OperationState.SNAPSHOT_PENDING:
            # Cancelled (and possibly pruned) while the snapshot tool was running
            logger.debug("Dropping snapshot result for operation %s", op_id)
            return

        if decision.allows_update:
            record = self._advance(op_id, OperationState.RUNNING, snapshot=decision)
            self._start(record)
            return

        record = self._store.attach_snapshot(op_id, decision)
        self._snapshot_deadlines[op_id] = self._clock() + self._preferences.snapshot_prompt_timeout
        self._publish(
            EventType.SNAPSHOT_DECISION_REQUESTED,
            record,
            message=decision.reason or "Snapshot could not be created",
        )

    def _on_target_done(self, op_id: str, result: TargetResult) -> None:
        collected = self._results.get(op_id)
        if collected is None:
            logger.warning("Result for unknown operation %s ignored", op_id)
            return
        collected.append(result)

        record = self._store.get(op_id)
        if len(collected) < len(record.targets):
            return

        del self._results[op_id]
        self._complete(record, reconcile(record.targets, collected))

    def _complete(self, record: OperationRecord, outcome: BatchOutcome) -> None:
        self._finish(record.id, outcome.classification.terminal_state, outcome)
        if record.kind in (OperationKind.HOLD, OperationKind.UNHOLD) and outcome.succeeded:
            self._holds.invalidate()
            self._publish(EventType.HOLDS_CHANGED, self._store.get(record.id))

    def _finish(
        self, op_id: str, state: OperationState, outcome: BatchOutcome
    ) -> OperationRecord:
        """Advance to a terminal state, write history and announce completion."""
        record = self._advance(op_id, state, outcome=outcome)
        self._full_upgrades.discard(op_id)

        # Operations cancelled before running mutated nothing and are not logged
        if outcome.results:
            try:
                self._history.record(create_history_entry(record))
            except (OSError, RuntimeError) as e:
                logger.error("Failed to write history for operation %s: %s", op_id, e)
            else:
                record = self._store.mark_archived(op_id)
        else:
            record = self._store.mark_archived(op_id)

        self._publish(EventType.COMPLETED, record, message=outcome.message)
        return record

    def _expire_snapshot_prompts(self) -> int:
        now = self._clock()
        expired = [op_id for op_id, due in self._snapshot_deadlines.items() if now >= due]
        for op_id in expired:
            del self._snapshot_deadlines[op_id]
            logger.info("No answer to snapshot prompt for operation %s, cancelling", op_id)
            self._finish(
                op_id,
                OperationState.CANCELLED,
                cancelled_outcome("Update cancelled: no answer after snapshot failure"),
            )
        return len(expired)

    def _clear_history(self) -> int:
        removed = self._history.clear()
        self._publish(EventType.HISTORY_CLEARED, message=f"Removed {removed} entries")
        return removed

    def _advance(
        self, op_id: str, state: OperationState, **changes: object
    ) -> OperationRecord:
        record = self._store.advance(op_id, state, **changes)  # type: ignore[arg-type]
        self._publish(EventType.STATE_CHANGED, record)
        return record

    def _publish(
        self,
        event_type: EventType,
        record: OperationRecord | None = None,
        *,
        message: str | None = None,
        plan: tuple[PlannedUpdate, ...] | None = None,
    ) -> None:
        self._events.publish(
            OperationEvent(type=event_type, record=record, message=message, plan=plan)
        )

    def _spawn(self, fn: Callable[..., None], *args: object) -> None:
        self._outstanding += 1
        self._executor.submit(fn, *args)

    def _require_open(self) -> None:
        if self._closed:
            msg = "Operation controller has been shut down"
            raise RuntimeError(msg)

    @staticmethod
    def _validate_targets(kind: OperationKind, refs: list[PackageRef]) -> None:
        if not refs:
            msg = "Operation must have at least one target"
            raise ValueError(msg)
        if kind == OperationKind.CACHE_CLEANUP:
            if refs != [CACHE_TARGET]:
                msg = "Cache cleanup does not take package targets"
                raise ValueError(msg)
        elif CACHE_TARGET in refs:
            msg = f"{CACHE_TARGET.name} is not a package"
            raise ValueError(msg)

    # Workers (run on the pool; they only post to the inbox)

    def _target_worker(self, op_id: str, kind: OperationKind, target: PackageRef) -> None:
        try:
            results = self._operator.execute(kind, [target])
            result = results[0] if results else TargetResult(
                package=target, success=False, reason="No result reported"
            )
        except Exception as e:
            logger.exception("%s of %s failed", kind.label, target.name)
            result = TargetResult(package=target, success=False, reason=str(e))
        self._inbox.put(_TargetDone(op_id=op_id, result=result))

    def _update_worker(
        self, op_id: str, targets: list[PackageRef], full_upgrade: bool
    ) -> None:
        def on_line(line: str) -> None:
            self._inbox.put(_OutputLine(op_id=op_id, line=line))

        try:
            results = tuple(
                self._operator.update(targets, on_line=on_line, full_upgrade=full_upgrade)
            )
        except Exception as e:
            logger.exception("Update failed")
            results = tuple(TargetResult(package=t, success=False, reason=str(e)) for t in targets)
        self._inbox.put(_BatchDone(op_id=op_id, results=results))

    def _cache_worker(self, op_id: str, keep_versions: int) -> None:
        try:
            report = self._operator.clean_cache(keep_versions)
        except Exception as e:
            logger.exception("Cache cleanup failed")
            result = TargetResult(package=CACHE_TARGET, success=False, reason=str(e))
            summary = None
        else:
            summary = report.summary if report.success else None
            result = TargetResult(
                package=CACHE_TARGET,
                success=report.success,
                reason=report.reason,
                message=summary,
            )
        self._inbox.put(_BatchDone(op_id=op_id, results=(result,), message=summary))

    def _snapshot_worker(self, op_id: str, context: SnapshotContext) -> None:
        try:
            decision = self._gate.request_snapshot(context)
        except Exception as e:
            logger.exception("Snapshot gate failed")
            decision = SnapshotDecision(status=SnapshotStatus.FAILED, reason=str(e))
        self._inbox.put(_SnapshotDone(op_id=op_id, decision=decision))

    def _plan_worker(self) -> None:
        try:
            plan = tuple(self._operator.plan_update())
        except Exception as e:
            logger.warning("Failed to compute update plan: %s", e)
            self._inbox.put(_PlanDone(error=str(e)))
        else:
            self._inbox.put(_PlanDone(plan=plan))
