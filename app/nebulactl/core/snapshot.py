"""Pre-upgrade snapshot gate.

Requests a filesystem snapshot from an external snapshot tool before an
update runs and turns the result into a SnapshotDecision. The gate never
decides on its own whether a failed snapshot blocks the update; the
controller asks the user.
"""

import logging
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from nebulactl.core.preferences import UserPreferences
from nebulactl.models.operation import SnapshotDecision, SnapshotStatus
from nebulactl.utils.shell import CommandResult, command_exists, run_command

logger = logging.getLogger(__name__)

SNAPSHOT_PREFIX = "nebula-pre-upgrade"

_PROC_MOUNTS = Path("/proc/mounts")


@dataclass(frozen=True, slots=True)
class SnapshotContext:
    """What the snapshot is being taken for.

    Attributes:
        package_count: Number of packages in the pending update.
    """

    package_count: int

    @property
    def description(self) -> str:
        """Description stored with the snapshot."""
        noun = "package" if self.package_count == 1 else "packages"
        return f"Automatic snapshot by Nebula before upgrading {self.package_count} {noun}"


def is_btrfs_root(mounts_path: Path = _PROC_MOUNTS) -> bool:
    """Check if the root filesystem is btrfs.

    Args:
        mounts_path: Mount table to inspect.

    Returns:
        True if ``/`` is mounted as btrfs, False otherwise or if unreadable.
    """
    try:
        content = mounts_path.read_text(encoding="utf-8")
    except OSError:
        return False

    for line in content.splitlines():
        parts = line.split()
        if len(parts) >= 3 and parts[1] == "/" and parts[2] == "btrfs":
            return True
    return False


def snapshot_name(now: datetime | None = None) -> str:
    """Build the snapshot name, e.g. ``nebula-pre-upgrade-250301-1430``."""
    moment = now or datetime.now()
    return f"{SNAPSHOT_PREFIX}-{moment.strftime('%y%m%d-%H%M')}"


class SnapshotGate:
    """Optional pre-upgrade hook around the external snapshot tool.

    Example:
        >>> gate = SnapshotGate(preferences)
        >>> decision = gate.request_snapshot(SnapshotContext(package_count=12))
        >>> decision.allows_update
        True
    """

    def __init__(
        self,
        preferences: UserPreferences,
        *,
        runner: Callable[..., CommandResult] = run_command,
        root_check: Callable[[], bool] = is_btrfs_root,
    ) -> None:
        """Initialize the gate.

        Args:
            preferences: Preferences providing the enable flag, timeout and
                command template.
            runner: Process executor used to run the snapshot tool.
            root_check: Returns True when snapshots are supported.
        """
        self._preferences = preferences
        self._runner = runner
        self._root_check = root_check

    @property
    def enabled(self) -> bool:
        """Check if snapshots are requested before updates."""
        return self._preferences.snapshot_enabled

    def build_command(self, name: str, context: SnapshotContext) -> list[str]:
        """Fill the command template placeholders."""
        return [
            part.format(name=name, description=context.description)
            for part in self._preferences.snapshot_command
        ]

    def request_snapshot(self, context: SnapshotContext) -> SnapshotDecision:
        """Request a snapshot and report what happened.

        The tool invocation is raced against ``snapshot_timeout``; when the
        timeout wins the tool is killed and TIMED_OUT is returned.

        Args:
            context: Information about the pending update.

        Returns:
            SnapshotDecision with status CREATED, TIMED_OUT, FAILED or SKIPPED.
        """
        if not self.enabled:
            return SnapshotDecision(status=SnapshotStatus.SKIPPED, reason="Snapshots disabled")

        if not self._root_check():
            logger.info("Root filesystem does not support snapshots, skipping")
            return SnapshotDecision(
                status=SnapshotStatus.SKIPPED,
                reason="Root filesystem is not btrfs",
            )

        name = snapshot_name()
        argv = self.build_command(name, context)
        program = argv[0]
        if not command_exists(program):
            return SnapshotDecision(
                status=SnapshotStatus.FAILED,
                reason="Snapshot tool not available",
            )

        timeout = self._preferences.snapshot_timeout
        logger.info("Creating snapshot %s (timeout %.0fs)", name, timeout)
        try:
            result = self._runner(argv, timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning("Snapshot creation timed out after %.0fs", timeout)
            return SnapshotDecision(
                status=SnapshotStatus.TIMED_OUT,
                reason=f"Snapshot creation timed out after {timeout:.0f}s",
            )
        except OSError as e:
            return SnapshotDecision(
                status=SnapshotStatus.FAILED,
                reason=f"Failed to launch snapshot tool: {e}",
            )

        if not result.success:
            logger.warning("Snapshot creation failed: %s", result.reason)
            return SnapshotDecision(status=SnapshotStatus.FAILED, reason=result.reason)

        return SnapshotDecision(status=SnapshotStatus.CREATED, snapshot_name=name)
