"""Package operators for nebulactl.

Operators wrap the external package-manager tools and translate their
exit status and output into per-package results.
"""

from nebulactl.operators.base import CacheCleanupReport, Operator
from nebulactl.operators.xbps import XbpsOperator

__all__ = ["CacheCleanupReport", "Operator", "XbpsOperator"]
