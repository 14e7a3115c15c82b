"""Types and models for allocation validation."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class InvalidReason(Enum):
    """Enumerated error codes for allocation validation failures."""

    QUANTITY_MISMATCH = "quantity_mismatch"
    UNDER_FULFILLED = "under_fulfilled"
    UNKNOWN_PACK_SIZE = "unknown_pack_size"
    NON_POSITIVE_COUNT = "non_positive_count"
    TOTAL_MISMATCH = "total_mismatch"
    OVERAGE_BOUND_EXCEEDED = "overage_bound_exceeded"
    CATALOG_MISMATCH = "catalog_mismatch"


@dataclass
class Rules:
    """Configuration for allocation validation rules."""

    # Catalog the allocation must draw from; empty disables the size check
    pack_sizes: tuple[int, ...] = ()

    # An optimal total overshoots by less than the largest pack
    check_overage_bound: bool = True


@dataclass
class ValidationResult:
    """Result of allocation validation with detailed diagnostics."""

    valid: bool
    reasons: list[InvalidReason] = field(default_factory=list)
    total: int | None = None
    pack_count: int | None = None
    overage: int | None = None
