"""xbps package operator implementation.

Executes package operations with the xbps tool suite. Mutating commands
run through the privilege helper; queries run unprivileged.
"""

import logging
import re
import subprocess
from collections.abc import Callable

from nebulactl.models.operation import TargetResult
from nebulactl.models.package import (
    PackageDetails,
    PackageInfo,
    PackageRef,
    PlannedUpdate,
    split_package_identifier,
    strip_ansi_codes,
)
from nebulactl.operators.base import CacheCleanupReport, Operator
from nebulactl.operators.cache import clean_cache_keep_n
from nebulactl.utils.shell import CommandResult, command_exists, run_command, run_privileged

logger = logging.getLogger(__name__)

# "<pkgver>: updated successfully" and friends, printed once per package
_SUCCESS_LINE = re.compile(
    r"^(?P<pkgver>\S+): (?:updated|installed|configured|removed) successfully",
)

_PLAN_ACTIONS = frozenset({"update", "install", "remove", "configure", "download", "hold"})

# Stops a run_depends entry at its version constraint ("glib>=2.80_1")
_CONSTRAINT = re.compile(r"[<>= ]")


class XbpsOperator(Operator):
    """Operator for xbps packages (Void Linux).

    Attributes:
        remove_recursive: If True, removal also drops dependencies that
            are no longer needed (``xbps-remove -R``).
    """

    # Timeout for single-package operations (5 minutes)
    _XBPS_TIMEOUT: float = 300.0
    # Timeout for aggregate updates (1 hour)
    _UPDATE_TIMEOUT: float = 3600.0
    # Timeout for read-only queries
    _QUERY_TIMEOUT: float = 120.0

    def __init__(self, remove_recursive: bool = False) -> None:
        self._remove_recursive = remove_recursive

    @property
    def name(self) -> str:
        """Return xbps as the package manager name."""
        return "xbps"

    def is_available(self) -> bool:
        """Check if xbps-install is available."""
        return command_exists("xbps-install")

    def install(self, packages: list[PackageRef]) -> list[TargetResult]:
        """Install packages using xbps-install -y, one package per call."""
        self._require_available()
        return [self._run_single("xbps-install", ["-y"], package) for package in packages]

    def remove(self, packages: list[PackageRef]) -> list[TargetResult]:
        """Remove packages using xbps-remove -y, one package per call."""
        self._require_available()
        flags = ["-y", "-R"] if self._remove_recursive else ["-y"]
        return [self._run_single("xbps-remove", flags, package) for package in packages]

    def hold(self, packages: list[PackageRef]) -> list[TargetResult]:
        """Hold packages using xbps-pkgdb -m hold."""
        self._require_available()
        return [self._run_single("xbps-pkgdb", ["-m", "hold"], package) for package in packages]

    def unhold(self, packages: list[PackageRef]) -> list[TargetResult]:
        """Unhold packages using xbps-pkgdb -m unhold."""
        self._require_available()
        return [
            self._run_single("xbps-pkgdb", ["-m", "unhold"], package) for package in packages
        ]

    def update(
        self,
        packages: list[PackageRef],
        on_line: Callable[[str], None] | None = None,
        *,
        full_upgrade: bool = False,
    ) -> list[TargetResult]:
        """Update packages in one xbps-install transaction.

        A full upgrade runs ``xbps-install -y -Su``, letting xbps pull in new
        dependencies and skip held packages; otherwise only the named
        packages are passed to ``xbps-install -y -u``.

        Args:
            packages: Packages in the changeset.
            on_line: Optional callback receiving ANSI-stripped output lines.
            full_upgrade: Upgrade the whole system instead of naming packages.

        Returns:
            One TargetResult per package.
        """
        self._require_available()
        if not packages:
            return []

        if full_upgrade:
            args = ["-y", "-Su"]
            logger.info("Upgrading the system (%d package(s))", len(packages))
        else:
            args = ["-y", "-u", *(p.name for p in packages)]
            logger.info("Updating %d package(s): %s", len(packages), ", ".join(args[2:]))

        forward: Callable[[str], None] | None = None
        if on_line is not None:
            sink = on_line

            def _forward(line: str) -> None:
                sink(strip_ansi_codes(line))

            forward = _forward

        try:
            result = run_privileged(
                "xbps-install", args, timeout=self._UPDATE_TIMEOUT, on_line=forward
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            reason = f"Failed to run xbps-install: {e}"
            return [TargetResult(package=p, success=False, reason=reason) for p in packages]

        return map_update_results(packages, result)

    def plan_update(self) -> list[PlannedUpdate]:
        """Compute the update changeset with ``xbps-install -Sun``.

        Raises:
            RuntimeError: If xbps is unavailable or the dry run fails.
        """
        stdout = self._query(["xbps-install", "-Sun"], "check for updates")
        return parse_update_plan(stdout)

    def list_held(self) -> list[PackageRef]:
        """List held packages with ``xbps-query -H``.

        Raises:
            RuntimeError: If xbps is unavailable or the query fails.
        """
        return parse_held_output(self._query(["xbps-query", "-H"], "query held packages"))

    def search(self, query: str) -> list[PackageInfo]:
        """Search the repositories with ``xbps-query -R --regex -s``."""
        if not query.strip():
            msg = "Search query cannot be empty"
            raise ValueError(msg)
        stdout = self._query(["xbps-query", "-R", "--regex", "-s", query], "search packages")
        return parse_search_output(stdout)

    def list_installed(self) -> list[PackageInfo]:
        """List installed packages with ``xbps-query -l``."""
        return parse_installed_output(self._query(["xbps-query", "-l"], "list packages"))

    def package_details(self, name: str) -> PackageDetails:
        """Combine ``xbps-query -R --show`` with the reverse dependencies from ``-X``.

        Raises:
            RuntimeError: If xbps is unavailable, the package is not found
                in any repository, or a query fails.
        """
        show = self._query(["xbps-query", "-R", "--show", name], f"look up {name}")
        fields, dependencies = parse_show_output(show)
        if not fields:
            msg = f"Package not found: {name}"
            raise RuntimeError(msg)

        revdeps = self._query(["xbps-query", "-X", name], f"find packages requiring {name}")
        _, version = split_package_identifier(fields.get("pkgver", ""))
        return PackageDetails(
            name=name,
            version=version or None,
            description=fields.get("short_desc"),
            homepage=fields.get("homepage"),
            license=fields.get("license"),
            maintainer=fields.get("maintainer"),
            dependencies=tuple(dependencies),
            required_by=tuple(parse_required_by_output(revdeps)),
        )

    def clean_cache(self, keep_versions: int) -> CacheCleanupReport:
        """Prune the xbps cache keeping the newest versions per package."""
        return clean_cache_keep_n(keep_versions)

    def _require_available(self) -> None:
        if not self.is_available():
            msg = "xbps package manager is not available on this system"
            raise RuntimeError(msg)

    def _query(self, args: list[str], action: str) -> str:
        """Run an unprivileged query and return its standard output.

        Raises:
            RuntimeError: If xbps is unavailable or the command fails.
        """
        self._require_available()
        logger.debug("Running %s", " ".join(args))
        try:
            result = run_command(args, timeout=self._QUERY_TIMEOUT)
        except (OSError, subprocess.TimeoutExpired) as e:
            msg = f"Failed to {action}: {e}"
            raise RuntimeError(msg) from e

        if not result.success:
            msg = f"Failed to {action}: {strip_ansi_codes(result.reason)}"
            raise RuntimeError(msg)
        return result.stdout

    def _run_single(self, program: str, flags: list[str], package: PackageRef) -> TargetResult:
        """Run one privileged xbps command for a single package.

        Launch errors and timeouts become failed results.
        """
        logger.info("Executing %s %s %s", program, " ".join(flags), package.name)
        try:
            result = run_privileged(program, [*flags, package.name], timeout=self._XBPS_TIMEOUT)
        except (OSError, subprocess.TimeoutExpired) as e:
            reason = f"Failed to run {program}: {e}"
            return TargetResult(package=package, success=False, reason=reason)

        if result.success:
            return TargetResult(package=package, success=True, message="Operation completed")

        logger.warning("%s failed for %s: %s", program, package.name, result.reason)
        return TargetResult(package=package, success=False, reason=strip_ansi_codes(result.reason))


def map_update_results(packages: list[PackageRef], result: CommandResult) -> list[TargetResult]:
    """Map an aggregate xbps-install run back to per-package results.

    Exit status 0 means every package succeeded. Otherwise packages that
    the output reports as updated succeed, and the rest fail with the
    captured error output.

    Args:
        packages: Packages in the changeset.
        result: Result of the aggregate invocation.

    Returns:
        One TargetResult per package, in input order.
    """
    if result.success:
        return [
            TargetResult(package=p, success=True, message="Updated successfully")
            for p in packages
        ]

    confirmed: set[str] = set()
    for raw_line in strip_ansi_codes(result.stdout).splitlines():
        match = _SUCCESS_LINE.match(raw_line.strip())
        if match:
            name, _ = split_package_identifier(match.group("pkgver"))
            confirmed.add(name)

    reason = strip_ansi_codes(result.reason)
    results: list[TargetResult] = []
    for package in packages:
        if package.name in confirmed:
            results.append(
                TargetResult(package=package, success=True, message="Updated successfully")
            )
        else:
            results.append(TargetResult(package=package, success=False, reason=reason))
    return results


def parse_update_plan(text: str) -> list[PlannedUpdate]:
    """Parse ``xbps-install -Sun`` output into planned updates.

    Understands the dry-run table format
    (``<pkgver> <action> <arch> <repo> ...``) and the arrow format
    (``<name>-<old> -> <name>-<new>``). Unrecognised lines are ignored.

    Returns:
        Planned updates sorted by name, one per package.
    """
    updates: dict[str, PlannedUpdate] = {}

    for raw_line in strip_ansi_codes(text).splitlines():
        line = raw_line.strip()
        if line.startswith("xbps-install:"):
            line = line.removeprefix("xbps-install:").strip()
        line = line.lstrip("*->").strip()
        while line.startswith("[") and "]" in line:
            line = line[line.index("]") + 1 :].strip()
        if not line:
            continue

        if "->" in line:
            left, _, right = line.partition("->")
            name, previous = split_package_identifier(left.strip())
            token = next((t for t in right.split() if any(c.isdigit() for c in t)), "")
            _, new_version = split_package_identifier(token) if "-" in token else ("", token)
            if name and name not in updates:
                updates[name] = PlannedUpdate(
                    name=name,
                    new_version=new_version,
                    previous_version=previous or None,
                )
            continue

        tokens = line.split()
        if len(tokens) >= 2 and tokens[1] in _PLAN_ACTIONS:
            name, version = split_package_identifier(tokens[0])
            if name and version and name not in updates:
                updates[name] = PlannedUpdate(name=name, new_version=version, action=tokens[1])

    return sorted(updates.values(), key=lambda u: u.name)


def parse_held_output(text: str) -> list[PackageRef]:
    """Parse ``xbps-query -H`` output (one pkgver per line)."""
    held: dict[str, PackageRef] = {}
    for raw_line in strip_ansi_codes(text).splitlines():
        line = raw_line.strip()
        if not line:
            continue
        ref = PackageRef.parse(line)
        held.setdefault(ref.name, ref)
    return sorted(held.values(), key=lambda r: r.name)


def parse_search_output(text: str) -> list[PackageInfo]:
    """Parse ``xbps-query -Rs`` output.

    Lines look like ``[*] firefox-128.0_1   Mozilla Firefox web browser``;
    the bracketed marker is ``*`` for installed packages and ``-``
    otherwise.
    """
    packages: list[PackageInfo] = []
    for raw_line in strip_ansi_codes(text).splitlines():
        tokens = raw_line.split()
        if not tokens:
            continue

        installed = False
        if tokens[0].startswith("[") and tokens[0].endswith("]"):
            installed = "*" in tokens[0]
            tokens = tokens[1:]
        if not tokens:
            continue

        name, version = split_package_identifier(tokens[0])
        packages.append(
            PackageInfo(
                name=name,
                version=version,
                description=" ".join(tokens[1:]),
                installed=installed,
            )
        )
    return packages


def parse_installed_output(text: str) -> list[PackageInfo]:
    """Parse ``xbps-query -l`` output (``ii <pkgver> <description>``)."""
    packages: list[PackageInfo] = []
    for raw_line in strip_ansi_codes(text).splitlines():
        tokens = raw_line.split(maxsplit=2)
        if len(tokens) < 2:
            continue
        name, version = split_package_identifier(tokens[1])
        description = tokens[2].strip() if len(tokens) == 3 else ""
        packages.append(
            PackageInfo(name=name, version=version, description=description, installed=True)
        )
    return sorted(packages, key=lambda p: p.name)


def parse_show_output(text: str) -> tuple[dict[str, str], list[str]]:
    """Parse ``xbps-query --show`` output.

    Top-level ``key: value`` lines become fields. ``run_depends`` is a
    list continued on indented lines; only dependency names are kept.

    Returns:
        Tuple of (fields, sorted unique dependency names).
    """
    fields: dict[str, str] = {}
    dependencies: set[str] = set()
    in_depends = False

    for raw_line in strip_ansi_codes(text).splitlines():
        line = raw_line.strip()
        if not line:
            in_depends = False
            continue

        if raw_line[0].isspace():
            if in_depends and ":" not in line:
                _add_dependency(dependencies, line)
            continue

        in_depends = False
        key, sep, value = line.partition(":")
        if not sep:
            continue
        value = value.strip().strip("'\"")
        if key == "run_depends":
            in_depends = True
            _add_dependency(dependencies, value)
        elif value:
            fields[key] = value

    return fields, sorted(dependencies)


def _add_dependency(dependencies: set[str], spec: str) -> None:
    name = _CONSTRAINT.split(spec.strip("'\""), maxsplit=1)[0].strip().rstrip("?")
    if name:
        dependencies.add(name)


def parse_required_by_output(text: str) -> list[str]:
    """Parse ``xbps-query -X`` output (one pkgver per line) into names."""
    names: set[str] = set()
    for raw_line in strip_ansi_codes(text).splitlines():
        line = raw_line.strip()
        if line:
            names.add(PackageRef.parse(line).name)
    return sorted(names)
