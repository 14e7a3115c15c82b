"""Pack allocation process package.

``engine.allocate`` is the pure optimizer; ``adapter.CachedAllocator`` wraps
it with a best-effort allocation store and backs the CLI and the HTTP API.
"""

from .catalog import Catalog
from .engine import allocate
from .types import (
    Allocation,
    AllocationError,
    AllocationInvariantError,
    ErrorCodes,
    InvalidQuantityError,
    NoPackSizesConfiguredError,
)

__all__ = [
    "Allocation",
    "AllocationError",
    "AllocationInvariantError",
    "Catalog",
    "ErrorCodes",
    "InvalidQuantityError",
    "NoPackSizesConfiguredError",
    "allocate",
]
