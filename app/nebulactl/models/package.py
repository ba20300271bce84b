"""Package models for operation targets.

This module defines the identifier used to address packages throughout
the operation controller, plus helpers to parse xbps package identifiers.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")


@dataclass(frozen=True, slots=True)
class PackageRef:
    """Identifier of a package acted upon by an operation.

    Immutable value usable as a mapping key. Equality and hashing consider
    only the name, so ``PackageRef("vim", "9.0_1") == PackageRef("vim")``.

    Attributes:
        name: Package name (e.g., 'firefox', 'gtk4-devel').
        version: Optional version string (e.g., '128.0_1').
    """

    name: str
    version: str | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        """Validate package data after initialization."""
        if not self.name or not self.name.strip():
            msg = "Package name cannot be empty"
            raise ValueError(msg)

    @classmethod
    def parse(cls, identifier: str) -> PackageRef:
        """Create a reference from a ``name`` or ``name-version`` string.

        Only identifiers whose trailing segment looks like a version
        (contains a digit and an xbps revision ``_N``) are split, so a name
        such as ``gtk4-devel`` stays intact.

        Args:
            identifier: Package name or xbps pkgver.

        Returns:
            PackageRef with version populated when one was present.
        """
        identifier = identifier.strip()
        name, version = split_package_identifier(identifier)
        if version and looks_like_version(version):
            return cls(name=name, version=version)
        return cls(name=identifier)

    def __str__(self) -> str:
        if self.version:
            return f"{self.name}-{self.version}"
        return self.name


def split_package_identifier(identifier: str) -> tuple[str, str]:
    """Split an xbps pkgver into name and version on the last hyphen.

    Args:
        identifier: String such as ``NetworkManager-1.50.0_1``.

    Returns:
        Tuple of (name, version). Version is empty when no hyphen exists.
    """
    name, sep, version = identifier.rpartition("-")
    if not sep:
        return identifier, ""
    return name, version


def looks_like_version(text: str) -> bool:
    """Check whether a string looks like an xbps version with revision."""
    return any(c.isdigit() for c in text) and "_" in text


def strip_ansi_codes(text: str) -> str:
    """Remove ANSI escape sequences and carriage returns from tool output."""
    return _ANSI_ESCAPE.sub("", text).replace("\r", "")


def package_names(refs: list[PackageRef] | tuple[PackageRef, ...]) -> list[str]:
    """Return the names of the given references, preserving order."""
    return [ref.name for ref in refs]


@dataclass(frozen=True, slots=True)
class PlannedUpdate:
    """One entry of an update changeset reported by a dry run.

    Attributes:
        name: Package name.
        new_version: Version the transaction would install.
        action: Transaction action reported by the tool (update, install, ...).
        previous_version: Currently installed version, if reported.
    """

    name: str
    new_version: str
    action: str = "update"
    previous_version: str | None = None

    @property
    def ref(self) -> PackageRef:
        """Reference to the package at its new version."""
        return PackageRef(name=self.name, version=self.new_version or None)

    @property
    def is_update(self) -> bool:
        """Check if the entry upgrades an installed package.

        Other actions (install, remove, hold, ...) are side effects of the
        transaction and never targets of it.
        """
        return self.action == "update"


def update_targets(plan: list[PlannedUpdate] | tuple[PlannedUpdate, ...]) -> list[PackageRef]:
    """References of the plan entries that upgrade installed packages."""
    return [entry.ref for entry in plan if entry.is_update]


@dataclass(frozen=True, slots=True)
class PackageInfo:
    """A package as listed by a repository search or the installed list.

    Attributes:
        name: Package name.
        version: Version string with revision.
        description: One-line description.
        installed: Whether the package is installed locally.
    """

    name: str
    version: str
    description: str = ""
    installed: bool = False

    @property
    def ref(self) -> PackageRef:
        return PackageRef(name=self.name, version=self.version or None)


@dataclass(frozen=True, slots=True)
class PackageDetails:
    """Repository metadata and reverse dependencies of one package.

    Attributes:
        name: Package name.
        version: Version offered by the repositories.
        description: One-line description.
        homepage: Upstream homepage.
        license: License identifier(s).
        maintainer: Void package maintainer.
        dependencies: Names of run-time dependencies, sorted.
        required_by: Installed packages that depend on this one, sorted.
            Removing the package breaks them.
    """

    name: str
    version: str | None = None
    description: str | None = None
    homepage: str | None = None
    license: str | None = None
    maintainer: str | None = None
    dependencies: tuple[str, ...] = ()
    required_by: tuple[str, ...] = ()
