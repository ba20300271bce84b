"""xbps package cache cleanup.

Prunes old package files from the xbps cache directory while keeping the
newest N versions of every package.
"""

import logging
from dataclasses import dataclass
from pathlib import Path

from nebulactl.operators.base import CacheCleanupReport
from nebulactl.utils.shell import PRIVILEGE_HELPER, command_exists, run_command

logger = logging.getLogger(__name__)

XBPS_CACHE_DIR = Path("/var/cache/xbps")

# Keeps each rm invocation well under the argument length limit
MAX_FILES_PER_CALL = 100

_XBPS_PROCESSES = ("xbps-install", "xbps-remove", "xbps-pkgdb")


@dataclass(frozen=True, slots=True)
class CachedPackageFile:
    """A package archive found in the cache directory.

    Attributes:
        path: Full path of the archive.
        package_name: Package the archive belongs to.
        mtime: Modification time used to order versions.
        size: File size in bytes.
    """

    path: Path
    package_name: str
    mtime: float
    size: int


def is_cache_locked() -> bool:
    """Check whether another xbps process may be using the cache."""
    if not command_exists("pgrep"):
        return False
    try:
        result = run_command(["pgrep", "-x", "|".join(_XBPS_PROCESSES)], timeout=10.0)
    except OSError:
        return False
    return result.success and bool(result.stdout.strip())


def extract_package_name(filename: str) -> str | None:
    """Extract the package name from a cached archive filename.

    Format: ``name-version_revision.arch.xbps``; the name ends at the last
    hyphen that is followed by a digit.

    Examples:
        gtk4-devel-1.2.3_1.x86_64.xbps -> gtk4-devel
        NetworkManager-1.50.0_1.x86_64.xbps -> NetworkManager

    Returns:
        Package name, or None if the filename does not match the format.
    """
    if not filename.endswith(".xbps"):
        return None
    stem = filename.removesuffix(".xbps")
    # Strip the architecture suffix (x86_64, noarch, ...)
    if "." in stem:
        stem = stem[: stem.rfind(".")]

    for i in range(len(stem) - 1, 0, -1):
        if stem[i].isdigit() and stem[i - 1] == "-":
            return stem[: i - 1] or None
    return None


def list_cached_files(cache_dir: Path = XBPS_CACHE_DIR) -> list[CachedPackageFile]:
    """List all package archives in the cache directory.

    Files that cannot be parsed or stat'ed are skipped.

    Raises:
        OSError: If the directory exists but cannot be read.
    """
    if not cache_dir.exists():
        return []

    files: list[CachedPackageFile] = []
    for path in cache_dir.iterdir():
        if path.suffix != ".xbps":
            continue
        package_name = extract_package_name(path.name)
        if package_name is None:
            continue
        try:
            stat = path.stat()
        except OSError:
            continue
        files.append(
            CachedPackageFile(
                path=path,
                package_name=package_name,
                mtime=stat.st_mtime,
                size=stat.st_size,
            )
        )
    return files


def select_files_to_remove(
    files: list[CachedPackageFile], keep_versions: int
) -> list[CachedPackageFile]:
    """Select the archives to remove, keeping the newest per package.

    Args:
        files: All cached archives.
        keep_versions: Versions kept per package, newest by mtime first.

    Returns:
        Archives to delete, sorted by path.
    """
    grouped: dict[str, list[CachedPackageFile]] = {}
    for file in files:
        grouped.setdefault(file.package_name, []).append(file)

    to_remove: list[CachedPackageFile] = []
    for versions in grouped.values():
        if len(versions) <= keep_versions:
            continue
        versions.sort(key=lambda f: f.mtime, reverse=True)
        to_remove.extend(versions[keep_versions:])

    return sorted(to_remove, key=lambda f: str(f.path))


def remove_files(files: list[CachedPackageFile]) -> str | None:
    """Delete archives through the privilege helper in chunks.

    Returns:
        None on success, otherwise the failure reason.
    """
    paths = [str(f.path) for f in files]
    for start in range(0, len(paths), MAX_FILES_PER_CALL):
        chunk = paths[start : start + MAX_FILES_PER_CALL]
        try:
            result = run_command([PRIVILEGE_HELPER, "rm", "-f", *chunk], timeout=120.0)
        except OSError as e:
            return f"Failed to execute {PRIVILEGE_HELPER} rm: {e}"
        if not result.success:
            return f"Failed to remove cache files: {result.reason}"
    return None


def clean_cache_keep_n(
    keep_versions: int, cache_dir: Path = XBPS_CACHE_DIR
) -> CacheCleanupReport:
    """Clean the package cache, keeping N latest versions of each package.

    With ``keep_versions=1`` this matches ``xbps-remove -O``.

    Args:
        keep_versions: Versions kept per package (0 removes everything).
        cache_dir: Cache directory to clean.

    Returns:
        CacheCleanupReport with removed file count and bytes freed.
    """
    if keep_versions < 0:
        msg = f"keep_versions must not be negative, got {keep_versions}"
        raise ValueError(msg)

    if is_cache_locked():
        return CacheCleanupReport(
            success=False,
            reason=(
                "Package cache is currently in use by another xbps process. "
                "Please wait and try again."
            ),
        )

    try:
        files = list_cached_files(cache_dir)
    except OSError as e:
        return CacheCleanupReport(success=False, reason=f"Failed to read cache directory: {e}")

    to_remove = select_files_to_remove(files, keep_versions)
    if not to_remove:
        return CacheCleanupReport(success=True)

    logger.info(
        "Removing %d cached package file(s) (keeping %d per package)",
        len(to_remove),
        keep_versions,
    )
    error = remove_files(to_remove)
    if error is not None:
        return CacheCleanupReport(success=False, reason=error)

    return CacheCleanupReport(
        success=True,
        files_removed=len(to_remove),
        bytes_freed=sum(f.size for f in to_remove),
    )
