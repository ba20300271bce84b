"""Abstract base class for package operators.

This module defines the Operator interface: the seam between the
operation controller and an external package-manager command-line tool.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from nebulactl.models.operation import OperationKind, TargetResult
from nebulactl.models.package import PackageDetails, PackageInfo, PackageRef, PlannedUpdate


@dataclass(frozen=True, slots=True)
class CacheCleanupReport:
    """Result of a package cache cleanup.

    Attributes:
        success: Whether the cleanup completed.
        files_removed: Number of cached package files removed.
        bytes_freed: Total size of the removed files.
        reason: Failure reason when success is False.
    """

    success: bool
    files_removed: int = 0
    bytes_freed: int = 0
    reason: str | None = None

    @property
    def summary(self) -> str:
        """Human-readable one-line summary."""
        if not self.success:
            return self.reason or "Cache cleanup failed"
        if self.files_removed == 0:
            return "Package cache is already clean"
        noun = "file" if self.files_removed == 1 else "files"
        return f"Removed {self.files_removed} cached {noun}, freed {format_size(self.bytes_freed)}"


def format_size(size_bytes: int) -> str:
    """Return a human-readable size string."""
    size = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


class Operator(ABC):
    """Abstract base class for package operators.

    Operators run the external tool and translate its exit status and
    output into one TargetResult per package. A failed invocation is data,
    not an exception: only an unavailable tool raises.

    Example:
        >>> operator = XbpsOperator()
        >>> if operator.is_available():
        ...     for result in operator.install([PackageRef("htop")]):
        ...         print(f"{result.package.name}: {result.success}")
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the package manager name (e.g., 'xbps')."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this package manager is available on the system."""

    @abstractmethod
    def install(self, packages: list[PackageRef]) -> list[TargetResult]:
        """Install one or more packages.

        Raises:
            RuntimeError: If the package manager is not available.
        """

    @abstractmethod
    def remove(self, packages: list[PackageRef]) -> list[TargetResult]:
        """Remove one or more packages.

        Raises:
            RuntimeError: If the package manager is not available.
        """

    @abstractmethod
    def hold(self, packages: list[PackageRef]) -> list[TargetResult]:
        """Mark packages as held.

        Raises:
            RuntimeError: If the package manager is not available.
        """

    @abstractmethod
    def unhold(self, packages: list[PackageRef]) -> list[TargetResult]:
        """Clear the held mark of packages.

        Raises:
            RuntimeError: If the package manager is not available.
        """

    @abstractmethod
    def update(
        self,
        packages: list[PackageRef],
        on_line: Callable[[str], None] | None = None,
        *,
        full_upgrade: bool = False,
    ) -> list[TargetResult]:
        """Update packages in a single aggregate transaction.

        Args:
            packages: Packages in the changeset.
            on_line: Optional callback receiving progress output lines.
            full_upgrade: Upgrade every upgradable package instead of only
                the named ones; packages still drive the result mapping.

        Returns:
            One TargetResult per package, mapped back from the tool output.

        Raises:
            RuntimeError: If the package manager is not available.
        """

    @abstractmethod
    def plan_update(self) -> list[PlannedUpdate]:
        """Compute the update changeset without applying it.

        Raises:
            RuntimeError: If the package manager is not available or the
                dry run fails.
        """

    @abstractmethod
    def list_held(self) -> list[PackageRef]:
        """Query the package manager for currently held packages.

        Raises:
            RuntimeError: If the package manager is not available or the
                query fails.
        """

    @abstractmethod
    def search(self, query: str) -> list[PackageInfo]:
        """Search the repositories by name and description.

        Args:
            query: Regular expression matched against package names and
                descriptions.

        Raises:
            RuntimeError: If the package manager is not available or the
                query fails.
        """

    @abstractmethod
    def list_installed(self) -> list[PackageInfo]:
        """List locally installed packages.

        Raises:
            RuntimeError: If the package manager is not available or the
                query fails.
        """

    @abstractmethod
    def package_details(self, name: str) -> PackageDetails:
        """Look up metadata, dependencies and reverse dependencies.

        Raises:
            RuntimeError: If the package manager is not available, the
                package is unknown or a query fails.
        """

    @abstractmethod
    def clean_cache(self, keep_versions: int) -> CacheCleanupReport:
        """Prune cached package files, keeping the newest versions.

        Args:
            keep_versions: Cached versions kept per package (0 keeps none).
        """

    def execute(self, kind: OperationKind, packages: list[PackageRef]) -> list[TargetResult]:
        """Dispatch a per-package operation kind to the matching method.

        Args:
            kind: One of INSTALL, REMOVE, HOLD, UNHOLD.
            packages: Packages to act upon.

        Returns:
            List of TargetResult for each package.

        Raises:
            RuntimeError: If the package manager is not available.
            ValueError: If the kind is not a per-package operation.
        """
        if not self.is_available():
            msg = f"{self.name} package manager is not available"
            raise RuntimeError(msg)

        match kind:
            case OperationKind.INSTALL:
                return self.install(packages)
            case OperationKind.REMOVE:
                return self.remove(packages)
            case OperationKind.HOLD:
                return self.hold(packages)
            case OperationKind.UNHOLD:
                return self.unhold(packages)
            case _:
                msg = f"{kind.value} is not a per-package operation"
                raise ValueError(msg)
