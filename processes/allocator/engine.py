"""Minimal-fill pack allocation.

Policy, in strict order: never ship less than the quantity, ship as few items
as possible, then use as few packs as possible. Ties on both are broken by
preferring larger packs (most packs of the largest size, then of the next
largest, and so on).

Any optimal total lies in ``[quantity, quantity + L)`` where ``L`` is the
largest pack size: one more ``L`` pack on top of a total already covering the
quantity is never needed. Both questions asked about that window depend only
on sums modulo ``L``, so the work is done over the ``L`` residues:

* ``min_sums[r]`` is the smallest sum of non-largest packs congruent to ``r``;
  a total ``T`` is reachable iff ``T >= min_sums[T % L]``.
* ``labels[r]`` is the best multiset of non-largest packs congruent to ``r``
  under the order ``(sum of (L - size), small sum, -n_2, ..., -n_k)``. For a
  fixed total this order is exactly (pack count, -n_L, -n_2, ..., -n_k).

Both tables are shortest-path programs over residues and depend only on the
catalog, so they are memoized per catalog. The cost is ``O(L * k * log L)``
regardless of how large the quantity is.

When the best label needs more small items than the total itself (catalogs
with sizes near ``L``) the count is resolved with an exact minimum-count table
over the non-largest sizes instead. That table is capped at
``(L - 1) * sum(non-largest sizes)``, so its cost is bounded by the catalog too.
"""

from __future__ import annotations

import heapq
import json
import logging
import numbers
from collections.abc import Sequence
from functools import lru_cache
from typing import NamedTuple

import numpy as np

from .catalog import Catalog
from .types import (
    Allocation,
    AllocationInvariantError,
    InvalidQuantityError,
)

logger = logging.getLogger("processes.allocator")

# window extensions tried after the first one; residue 0 always makes the
# first window feasible, so running out of these means a corrupted catalog
MAX_WINDOW_EXTENSIONS = 1

_UNREACHABLE = np.iinfo(np.int32).max // 2

Label = tuple[int, ...]


class ResidueTables(NamedTuple):
    min_sums: tuple[int | None, ...]
    labels: tuple[Label | None, ...]


def allocate(quantity: int, catalog: Catalog | Sequence[int]) -> Allocation:
    """Return the minimal-fill allocation of ``quantity`` over ``catalog``.

    Raises
    ------
    InvalidQuantityError
        ``quantity`` is not a positive integer.
    NoPackSizesConfiguredError
        The catalog is empty.
    AllocationInvariantError
        The catalog holds a non-positive size (it bypassed
        :meth:`Catalog.from_sizes`) or the search found no feasible total.
    """
    qty = validate_quantity(quantity)
    if not isinstance(catalog, Catalog):
        catalog = Catalog.from_sizes(catalog)
    catalog.require_sizes()

    sizes = _search_sizes(catalog)
    tables = residue_tables(sizes)
    total = minimal_total(qty, sizes[0], tables.min_sums)
    vector = best_vector(total, sizes, tables.labels)
    return assemble(qty, sizes, vector, expected_total=total)


def validate_quantity(quantity: object) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, numbers.Integral):
        raise InvalidQuantityError(
            f"quantity must be an integer, got {quantity!r}",
            user_message="quantity must be greater than 0",
            details={"quantity": repr(quantity)},
        )
    qty = int(quantity)
    if qty <= 0:
        raise InvalidQuantityError(
            "quantity must be greater than 0", details={"quantity": qty}
        )
    return qty


def _search_sizes(catalog: Catalog) -> tuple[int, ...]:
    sizes = tuple(sorted(set(catalog.sizes), reverse=True))
    if sizes[-1] <= 0:
        raise AllocationInvariantError(
            f"catalog holds a non-positive pack size: {list(catalog.sizes)}"
        )
    return sizes


@lru_cache(maxsize=16)
def residue_tables(sizes: tuple[int, ...]) -> ResidueTables:
    """Build both residue tables for ``sizes`` (unique, descending, positive)."""
    largest = sizes[0]
    small = sizes[1:]

    min_sums: list[int | None] = [None] * largest
    min_sums[0] = 0
    heap: list[tuple[int, int]] = [(0, 0)]
    while heap:
        dist, residue = heapq.heappop(heap)
        if dist > min_sums[residue]:  # type: ignore[operator]
            continue
        for size in small:
            nxt = (residue + size) % largest
            cand = dist + size
            current = min_sums[nxt]
            if current is None or cand < current:
                min_sums[nxt] = cand
                heapq.heappush(heap, (cand, nxt))

    width = len(small)
    steps: list[tuple[int, Label]] = []
    for idx, size in enumerate(small):
        step = [largest - size, size] + [0] * width
        step[2 + idx] = -1
        steps.append((size, tuple(step)))

    zero: Label = (0, 0) + (0,) * width
    labels: list[Label | None] = [None] * largest
    labels[0] = zero
    label_heap: list[tuple[Label, int]] = [(zero, 0)]
    while label_heap:
        label, residue = heapq.heappop(label_heap)
        if label > labels[residue]:  # type: ignore[operator]
            continue
        for size, step in steps:
            nxt = (residue + size) % largest
            cand = tuple(a + b for a, b in zip(label, step))
            current = labels[nxt]
            if current is None or cand < current:
                labels[nxt] = cand
                heapq.heappush(label_heap, (cand, nxt))

    return ResidueTables(min_sums=tuple(min_sums), labels=tuple(labels))


def minimal_total(
    quantity: int, largest: int, min_sums: Sequence[int | None]
) -> int:
    """Smallest reachable total in ``[quantity, quantity + largest)``.

    The window is extended by one multiple of ``largest`` at a time, up to
    :data:`MAX_WINDOW_EXTENSIONS` times.
    """
    start = quantity
    for _ in range(MAX_WINDOW_EXTENSIONS + 1):
        for total in range(start, start + largest):
            floor = min_sums[total % largest]
            if floor is not None and total >= floor:
                return total
        start += largest
    raise AllocationInvariantError(
        f"no reachable total in [{quantity}, {start}) for largest pack {largest}"
    )


def best_vector(
    total: int, sizes: Sequence[int], labels: Sequence[Label | None]
) -> list[int]:
    """Multiplicities (aligned with ``sizes``) reaching ``total`` exactly."""
    largest = sizes[0]
    label = labels[total % largest]
    if label is None:
        raise AllocationInvariantError(
            f"total {total} was reported reachable but has no pack combination"
        )
    small_sum = label[1]
    if small_sum <= total:
        return [(total - small_sum) // largest] + [-n for n in label[2:]]

    logger.debug(
        json.dumps(
            {
                "event": "allocation_fallback_exact",
                "total": total,
                "small_sum": small_sum,
                "sizes": list(sizes),
            }
        )
    )
    return exact_vector(total, sizes)


def exact_vector(total: int, sizes: Sequence[int]) -> list[int]:
    """Minimum-count multiplicities for exactly ``total``, largest sizes first.

    A minimum-count vector never holds ``L`` or more packs of a smaller size
    (``L`` packs of size ``s`` trade for ``s`` packs of size ``L``), so the
    non-largest packs sum to at most ``(L - 1) * sum(smaller sizes)``. The
    table only spans that range, which depends on the catalog alone.
    """
    largest = sizes[0]
    small = sizes[1:]
    cap = min(total, (largest - 1) * sum(small))
    counts = _small_counts(cap, small)

    # candidate small sums share the residue of ``total``; the rest is L packs
    sums = np.arange(total % largest, cap + 1, largest, dtype=np.int64)
    small_counts = counts[sums].astype(np.int64)
    reachable = small_counts < _UNREACHABLE
    if not reachable.any():
        raise AllocationInvariantError(f"total {total} is not reachable by {list(sizes)}")
    pack_counts = np.where(
        reachable, small_counts + (total - sums) // largest, np.iinfo(np.int64).max
    )
    # argmin takes the first minimum: the smallest small sum, i.e. most L packs
    best = int(sums[int(np.argmin(pack_counts))])

    vector = [(total - best) // largest] + [0] * len(small)
    remaining = best
    while remaining > 0:
        want = counts[remaining] - 1
        for idx, size in enumerate(small):
            if size <= remaining and counts[remaining - size] == want:
                vector[1 + idx] += 1
                remaining -= size
                break
        else:
            raise AllocationInvariantError(
                f"could not rebuild a pack combination for {total}"
            )
    return vector


def _small_counts(cap: int, sizes: Sequence[int]) -> np.ndarray:
    """Fewest packs of ``sizes`` summing to each value in ``[0, cap]``."""
    counts = np.full(cap + 1, _UNREACHABLE, dtype=np.int32)
    counts[0] = 0
    n = cap + 1
    for size in sizes:
        # per residue class: best[j] = j + running min of (counts[p] - p)
        rows = -(-n // size)
        grid = np.full(rows * size, _UNREACHABLE, dtype=np.int32)
        grid[:n] = counts
        grid = grid.reshape(rows, size)
        steps = np.arange(rows, dtype=np.int32)[:, None]
        grid = np.minimum.accumulate(grid - steps, axis=0) + steps
        counts = np.minimum(grid.reshape(-1)[:n], _UNREACHABLE)
    return counts


def assemble(
    quantity: int,
    sizes: Sequence[int],
    vector: Sequence[int],
    *,
    expected_total: int | None = None,
) -> Allocation:
    """Turn a multiplicity vector into an :class:`Allocation`, dropping zeros."""
    packs = {int(size): int(n) for size, n in zip(sizes, vector, strict=True) if n}
    allocation = Allocation(quantity=quantity, packs=packs)
    if allocation.total < quantity or (
        expected_total is not None and allocation.total != expected_total
    ):
        raise AllocationInvariantError(
            f"assembled total {allocation.total} breaks the search result "
            f"(quantity={quantity}, expected={expected_total})"
        )
    return allocation
