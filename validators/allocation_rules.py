"""Invariant checks for pack allocations."""

from __future__ import annotations

from collections.abc import Mapping

from .types import InvalidReason, Rules, ValidationResult


def validate_allocation(
    quantity: int,
    packs: Mapping[int, int],
    rules: Rules,
    *,
    total: int | None = None,
    allocated_for: int | None = None,
    allocated_with: tuple[int, ...] | None = None,
) -> ValidationResult:
    """Validate an allocation of ``quantity`` against the rules.

    Pure function with no I/O dependencies.

    Args:
        quantity: Order quantity the allocation must satisfy
        packs: Mapping of pack size to count
        rules: Rules configuration object
        total: Total reported alongside ``packs`` (e.g. by a store); checked
            against the sum derived from ``packs`` when given
        allocated_for: Quantity the allocation was produced for, when known
        allocated_with: Catalog the allocation was produced with, when known;
            an allocation is only optimal for the catalog it was computed with

    Returns:
        ValidationResult with validation status and detailed diagnostics
    """
    reasons: list[InvalidReason] = []

    if allocated_for is not None and allocated_for != quantity:
        reasons.append(InvalidReason.QUANTITY_MISMATCH)

    if (
        allocated_with is not None
        and rules.pack_sizes
        and set(allocated_with) != set(rules.pack_sizes)
    ):
        reasons.append(InvalidReason.CATALOG_MISMATCH)

    if any(count <= 0 for count in packs.values()):
        reasons.append(InvalidReason.NON_POSITIVE_COUNT)

    if rules.pack_sizes and any(size not in rules.pack_sizes for size in packs):
        reasons.append(InvalidReason.UNKNOWN_PACK_SIZE)

    derived = sum(size * count for size, count in packs.items())
    if total is not None and total != derived:
        reasons.append(InvalidReason.TOTAL_MISMATCH)

    if derived < quantity:
        reasons.append(InvalidReason.UNDER_FULFILLED)
    elif (
        rules.check_overage_bound
        and rules.pack_sizes
        and derived - quantity >= max(rules.pack_sizes)
    ):
        reasons.append(InvalidReason.OVERAGE_BOUND_EXCEEDED)

    return ValidationResult(
        valid=not reasons,
        reasons=reasons,
        total=derived,
        pack_count=sum(packs.values()),
        overage=derived - quantity,
    )


def validate_allocation_simple(
    quantity: int,
    packs: Mapping[int, int],
    pack_sizes: tuple[int, ...] = (),
) -> bool:
    """Simple boolean validation."""
    rules = Rules(pack_sizes=tuple(pack_sizes))
    return validate_allocation(quantity, packs, rules).valid
