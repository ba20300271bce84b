"""Confirmation policy for package operations.

Every code path that may ask the user for confirmation goes through the
functions in this module. Batch and single-package requests share the
same decision so a batch can never bypass the gate a single package
would hit.
"""

from nebulactl.core.preferences import DEFAULT_CACHE_VERSIONS_TO_KEEP, UserPreferences
from nebulactl.models.operation import OperationKind


def requires_confirmation(
    kind: OperationKind,
    target_count: int,
    preferences: UserPreferences,
) -> bool:
    """Decide whether an operation needs explicit user confirmation.

    The decision deliberately ignores ``target_count`` for every kind;
    the count is accepted so callers pass the full request shape and it
    is validated to be positive.

    Args:
        kind: Kind of the requested operation.
        target_count: Number of targets in the request (at least 1).
        preferences: Current user preferences.

    Returns:
        True if the user must confirm before anything is executed.

    Raises:
        ValueError: If target_count is less than 1.
    """
    if target_count < 1:
        msg = f"target_count must be at least 1, got {target_count}"
        raise ValueError(msg)

    match kind:
        case OperationKind.INSTALL:
            return preferences.confirm_install
        case OperationKind.REMOVE:
            return preferences.confirm_remove
        case OperationKind.UPDATE:
            # The changeset is always shown and confirmed once per run
            return True
        case OperationKind.CACHE_CLEANUP:
            return (
                preferences.confirm_remove
                and preferences.cache_versions_to_keep != DEFAULT_CACHE_VERSIONS_TO_KEEP
            )
        case OperationKind.HOLD | OperationKind.UNHOLD:
            return False


def requires_history_clear_confirmation(preferences: UserPreferences) -> bool:
    """Decide whether clearing the history needs confirmation.

    Clearing history is destructive and follows the removal preference.
    """
    return preferences.confirm_remove


def confirmation_prompt(
    kind: OperationKind,
    target_names: list[str],
    keep_versions: int = DEFAULT_CACHE_VERSIONS_TO_KEEP,
) -> str:
    """Build the confirmation question shown to the user.

    The prompt always carries the number of affected packages.

    Args:
        kind: Kind of the requested operation.
        target_names: Names of the targets.
        keep_versions: Cache retention, used for cache cleanup prompts.

    Returns:
        Question text, e.g. ``Remove 3 packages (a, b, c)?``.
    """
    count = len(target_names)
    if kind == OperationKind.CACHE_CLEANUP:
        if keep_versions == 0:
            return "Remove every cached package file?"
        noun = "version" if keep_versions == 1 else "versions"
        return f"Clean the package cache, keeping {keep_versions} {noun} per package?"

    noun = "package" if count == 1 else "packages"
    shown = ", ".join(target_names[:5])
    if count > 5:
        shown += f", +{count - 5} more"
    return f"{kind.label.capitalize()} {count} {noun} ({shown})?"


def history_clear_prompt(entry_count: int) -> str:
    """Build the confirmation question for clearing history."""
    noun = "entry" if entry_count == 1 else "entries"
    return f"Clear {entry_count} history {noun}? This cannot be undone."
