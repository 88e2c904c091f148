"""
Bulk loader implementations.
"""

from ..pipeline.types import BulkLoader
from .local import LocalDirectoryLoader
from .kusto import KustoBulkLoader

__all__ = ["BulkLoader", "LocalDirectoryLoader", "KustoBulkLoader"]
