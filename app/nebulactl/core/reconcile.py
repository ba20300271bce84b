"""Batch outcome reconciliation.

Turns the per-target results of an operation into a BatchOutcome. The
computation sorts by package name so the outcome does not depend on the
order in which results arrived.
"""

from collections.abc import Iterable, Sequence

from nebulactl.models.operation import BatchOutcome, OutcomeClass, TargetResult
from nebulactl.models.package import PackageRef


def reconcile(
    targets: Sequence[PackageRef],
    results: Iterable[TargetResult],
    message: str | None = None,
) -> BatchOutcome:
    """Compute the outcome once every target has a result.

    Args:
        targets: Targets of the operation.
        results: One result per target, in any order.
        message: Optional summary stored on the outcome.

    Returns:
        BatchOutcome with results sorted by package name.

    Raises:
        ValueError: If a target has no result, a result has no matching
            target, or a target has more than one result.
    """
    by_target: dict[PackageRef, TargetResult] = {}
    for result in results:
        if result.package not in targets:
            msg = f"Result for unexpected target: {result.package.name}"
            raise ValueError(msg)
        if result.package in by_target:
            msg = f"Duplicate result for target: {result.package.name}"
            raise ValueError(msg)
        by_target[result.package] = result

    missing = [ref.name for ref in targets if ref not in by_target]
    if missing:
        msg = f"Missing results for: {', '.join(missing)}"
        raise ValueError(msg)

    ordered = tuple(sorted(by_target.values(), key=lambda r: r.package.name))
    return BatchOutcome(
        classification=classify(ordered),
        results=ordered,
        message=message,
    )


def classify(results: Sequence[TargetResult]) -> OutcomeClass:
    """Classify a complete set of per-target results.

    Raises:
        ValueError: If there are no results.
    """
    if not results:
        msg = "Cannot classify an empty result set"
        raise ValueError(msg)

    failed = sum(1 for r in results if r.failed)
    if failed == 0:
        return OutcomeClass.ALL_SUCCEEDED
    if failed == len(results):
        return OutcomeClass.ALL_FAILED
    return OutcomeClass.PARTIAL_FAILURE


def cancelled_outcome(reason: str) -> BatchOutcome:
    """Outcome for an operation that was cancelled before running."""
    return BatchOutcome(classification=OutcomeClass.CANCELLED, message=reason)
