"""Operation history log.

This module provides the OperationHistory class: an append-only record
of completed operations, optionally persisted to a JSONL file.
"""

import json
import logging
import os
import threading
from pathlib import Path
from tempfile import NamedTemporaryFile

from nebulactl.core.paths import ensure_dir
from nebulactl.models.history import HistoryEntry

logger = logging.getLogger(__name__)


class OperationHistory:
    """Append-only history of completed operations.

    Insertion order is chronological order. ``record`` and ``clear`` are
    the only mutators. Whoever calls ``clear`` is responsible for having
    obtained the user's confirmation first; the operation controller does
    this through the confirmation policy.

    When a path is given, every entry is also appended to a JSON Lines
    file and existing entries are loaded on construction.

    Attributes:
        path: Optional JSONL file backing the log.
    """

    HISTORY_FILENAME = "history.jsonl"

    def __init__(self, path: Path | None = None) -> None:
        """Initialize the log.

        Args:
            path: Optional JSONL file. If None, history lives in memory only.
        """
        self._path = path
        self._lock = threading.Lock()
        self._entries: tuple[HistoryEntry, ...] = ()
        if path is not None:
            self._entries = tuple(self._load(path))

    @property
    def path(self) -> Path | None:
        """Path to the backing JSONL file, if any."""
        return self._path

    def __len__(self) -> int:
        return len(self._entries)

    def record(self, entry: HistoryEntry) -> None:
        """Append an entry.

        Args:
            entry: The entry to append.

        Raises:
            RuntimeError: If the state directory cannot be created.
            OSError: If the file cannot be written.
        """
        with self._lock:
            if self._path is not None:
                ensure_dir(self._path.parent, "state")
                with self._path.open(mode="a", encoding="utf-8") as f:
                    f.write(entry.to_json_line() + "\n")
                    f.flush()
            self._entries = (*self._entries, entry)

        logger.debug("Recorded %s operation %s to history", entry.kind.value, entry.id)

    def entries(self, limit: int | None = None) -> list[HistoryEntry]:
        """Return entries, newest first.

        Args:
            limit: Maximum number of entries to return. If None, returns all.
        """
        current = self._entries
        newest_first = list(reversed(current))
        if limit is not None:
            return newest_first[:limit]
        return newest_first

    def clear(self) -> int:
        """Replace the history with an empty sequence.

        The backing file is truncated atomically before the in-memory
        sequence is swapped, so readers see either the full log or an
        empty one.

        Returns:
            Number of entries removed.

        Raises:
            OSError: If the backing file cannot be rewritten.
        """
        with self._lock:
            removed = len(self._entries)
            if self._path is not None and self._path.exists():
                self._truncate(self._path)
            self._entries = ()

        logger.info("Cleared %d history entries", removed)
        return removed

    @staticmethod
    def _truncate(path: Path) -> None:
        tmp_path: Path | None = None
        try:
            with NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                dir=path.parent,
                delete=False,
                suffix=".tmp",
            ) as f:
                tmp_path = Path(f.name)
            os.replace(str(tmp_path), str(path))
        except OSError:
            if tmp_path is not None and tmp_path.exists():
                tmp_path.unlink()
            raise

    @staticmethod
    def _load(path: Path) -> list[HistoryEntry]:
        """Read entries from a JSONL file, skipping corrupt lines."""
        if not path.exists():
            return []

        entries: list[HistoryEntry] = []
        with path.open(encoding="utf-8") as f:
            for line_num, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(HistoryEntry.from_json_line(line))
                except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
                    logger.warning("Skipping corrupt history line %d: %s", line_num, str(e))
        return entries
