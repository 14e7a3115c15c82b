"""Best-effort persistence of computed allocations.

Every store implements :class:`AllocationStore`. The allocator works with the
no-op :class:`NullAllocationStore` when nothing is configured.
"""

from .base import AllocationStore, NullAllocationStore, StoredAllocation, open_store
from .registry import ParquetAllocationRegistry
from .sqlite_store import SQLiteAllocationStore

__all__ = [
    "AllocationStore",
    "NullAllocationStore",
    "ParquetAllocationRegistry",
    "SQLiteAllocationStore",
    "StoredAllocation",
    "open_store",
]
