"""Typed event channel between the operation controller and the UI.

The controller publishes events; the UI drains them on its own thread.
Neither side touches the other's state directly.
"""

import queue
from dataclasses import dataclass
from enum import Enum

from nebulactl.models.operation import OperationRecord
from nebulactl.models.package import PlannedUpdate


class EventType(str, Enum):
    """Kind of event published by the controller.

    Attributes:
        STATE_CHANGED: An operation moved to a new state.
        CONFIRMATION_REQUESTED: The user must confirm an operation.
        SNAPSHOT_DECISION_REQUESTED: The snapshot failed or timed out and
            the user must choose between updating anyway and cancelling.
        OUTPUT: A line of output from a running update.
        PLAN_READY: An update changeset was computed (or failed).
        COMPLETED: An operation reached a terminal state.
        HISTORY_CLEAR_REQUESTED: Clearing the history awaits confirmation.
        HISTORY_CLEARED: The history was cleared.
        HOLDS_CHANGED: The hold set changed and the cache was invalidated.
    """

    STATE_CHANGED = "state_changed"
    CONFIRMATION_REQUESTED = "confirmation_requested"
    SNAPSHOT_DECISION_REQUESTED = "snapshot_decision_requested"
    OUTPUT = "output"
    PLAN_READY = "plan_ready"
    COMPLETED = "completed"
    HISTORY_CLEAR_REQUESTED = "history_clear_requested"
    HISTORY_CLEARED = "history_cleared"
    HOLDS_CHANGED = "holds_changed"


@dataclass(frozen=True, slots=True)
class OperationEvent:
    """One event published by the controller.

    Attributes:
        type: Kind of event.
        record: Immutable copy of the affected operation, if any.
        message: Prompt text, output line or error message.
        plan: Update changeset for PLAN_READY.
    """

    type: EventType
    record: OperationRecord | None = None
    message: str | None = None
    plan: tuple[PlannedUpdate, ...] | None = None


class EventChannel:
    """Thread-safe FIFO of controller events."""

    def __init__(self) -> None:
        self._queue: queue.SimpleQueue[OperationEvent] = queue.SimpleQueue()

    def publish(self, event: OperationEvent) -> None:
        """Enqueue an event."""
        self._queue.put(event)

    def drain(self) -> list[OperationEvent]:
        """Return and remove every pending event without blocking."""
        events: list[OperationEvent] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def empty(self) -> bool:
        """Check if no events are pending."""
        return self._queue.empty()
