"""Local cache of held packages.

The package manager owns the held marks; this cache only keeps the last
queried answer so the UI does not block on a query for every render.
"""

import logging
import threading

from nebulactl.models.package import PackageRef
from nebulactl.operators.base import Operator

logger = logging.getLogger(__name__)


class HoldCache:
    """Cached view of the package manager's hold set.

    The cache is invalidated after every successful Hold or Unhold and on
    a full refresh; the next read queries the package manager again.
    """

    def __init__(self, operator: Operator) -> None:
        self._operator = operator
        self._lock = threading.Lock()
        self._held: frozenset[PackageRef] | None = None

    @property
    def is_valid(self) -> bool:
        """Check if a cached answer is available."""
        return self._held is not None

    def held(self) -> frozenset[PackageRef]:
        """Return the held packages, querying the package manager if needed.

        Raises:
            RuntimeError: If the package manager query fails.
        """
        with self._lock:
            if self._held is None:
                self._held = frozenset(self._operator.list_held())
                logger.debug("Loaded %d held package(s)", len(self._held))
            return self._held

    def is_held(self, package: PackageRef) -> bool:
        """Check if a package is held."""
        return package in self.held()

    def invalidate(self) -> None:
        """Drop the cached answer."""
        with self._lock:
            self._held = None

    def refresh(self) -> frozenset[PackageRef]:
        """Invalidate and reload the hold set.

        Raises:
            RuntimeError: If the package manager query fails.
        """
        self.invalidate()
        return self.held()
