from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

import pytest

from pipeline.io.config import AppConfig, StorageConfig
from processes.allocator import Allocation, Catalog, InvalidQuantityError, NoPackSizesConfiguredError
from processes.allocator.adapter import CachedAllocator, build_allocator
from processes.allocator.types import StorageNotConfiguredError
from processes.storage import NullAllocationStore, SQLiteAllocationStore
from processes.storage.base import StoredAllocation

SIZES = [250, 500, 1000, 2000, 5000]


class _MemoryStore:
    def __init__(self) -> None:
        self.rows: list[StoredAllocation] = []
        self.lookups = 0

    def lookup(self, quantity: int, pack_sizes: Sequence[int]) -> StoredAllocation | None:
        self.lookups += 1
        for row in reversed(self.rows):
            if row.order_quantity == quantity and row.pack_sizes == tuple(pack_sizes):
                return row
        return None

    def record(self, quantity: int, allocation: Allocation, pack_sizes: Sequence[int]) -> None:
        self.rows.append(
            StoredAllocation(
                id=len(self.rows) + 1,
                order_quantity=quantity,
                packs=dict(allocation.packs),
                total=allocation.total,
                created_at="2025-01-01T00:00:00.000000Z",
                pack_sizes=tuple(pack_sizes),
            )
        )

    def recent(self, limit: int = 10) -> list[StoredAllocation]:
        return list(reversed(self.rows))[:limit]

    def close(self) -> None:
        return None


class _QuantityOnlyStore(_MemoryStore):
    """Matches on quantity alone, like a store that predates catalog keys."""

    def lookup(self, quantity: int, pack_sizes: Sequence[int]) -> StoredAllocation | None:
        self.lookups += 1
        for row in reversed(self.rows):
            if row.order_quantity == quantity:
                return row
        return None


class _BrokenStore(_MemoryStore):
    def lookup(self, quantity: int, pack_sizes: Sequence[int]) -> StoredAllocation | None:
        raise OSError("disk unavailable")

    def record(self, quantity: int, allocation: Allocation, pack_sizes: Sequence[int]) -> None:
        raise OSError("disk unavailable")


def _allocator(store=None, sizes=SIZES) -> CachedAllocator:
    return CachedAllocator(Catalog.from_sizes(sizes), store)


def test_miss_computes_and_records_then_hits(caplog) -> None:
    store = _MemoryStore()
    alloc = _allocator(store)
    with caplog.at_level(logging.INFO, logger="processes.allocator"):
        first = alloc.calculate(251)
        second = alloc.calculate(251)
    assert dict(first.packs) == {500: 1}
    assert second == first
    assert len(store.rows) == 1
    assert store.rows[0].pack_sizes == (5000, 2000, 1000, 500, 250)
    assert store.lookups == 2
    events = [r.getMessage() for r in caplog.records]
    assert any('"allocation_computed"' in m for m in events)
    assert any('"allocation_cache_hit"' in m for m in events)


def test_stale_hit_is_recomputed(caplog) -> None:
    store = _QuantityOnlyStore()
    # recorded under an older catalog that had no 500 pack
    store.rows.append(
        StoredAllocation(
            id=1, order_quantity=251, packs={300: 1}, total=300, pack_sizes=(300, 250)
        )
    )
    alloc = _allocator(store)
    with caplog.at_level(logging.WARNING, logger="processes.allocator"):
        result = alloc.calculate(251)
    assert dict(result.packs) == {500: 1}
    assert any('"allocation_cache_rejected"' in r.getMessage() for r in caplog.records)
    assert store.rows[-1].packs == {500: 1}


def test_valid_but_suboptimal_hit_from_other_catalog_is_rejected(caplog) -> None:
    store = _QuantityOnlyStore()
    # {500: 1} covers 300 with known sizes but is not optimal once 300 exists
    store.record(300, Allocation(quantity=300, packs={500: 1}), (500, 250))
    alloc = _allocator(store, sizes=[250, 300, 500])
    with caplog.at_level(logging.WARNING, logger="processes.allocator"):
        result = alloc.calculate(300)
    assert dict(result.packs) == {300: 1}
    rejected = [
        r.getMessage() for r in caplog.records if "allocation_cache_rejected" in r.getMessage()
    ]
    assert rejected and "catalog_mismatch" in rejected[0]


def test_legacy_row_without_catalog_is_not_trusted() -> None:
    store = _QuantityOnlyStore()
    store.rows.append(StoredAllocation(id=1, order_quantity=251, packs={500: 1}, total=500))
    alloc = _allocator(store)
    alloc.calculate(251)
    assert len(store.rows) == 2


def test_catalog_change_on_persistent_store(tmp_path: Path) -> None:
    db = tmp_path / "allocations.db"
    old = CachedAllocator(Catalog.from_sizes([250, 500]), SQLiteAllocationStore(db))
    assert dict(old.calculate(300).packs) == {500: 1}

    new = CachedAllocator(Catalog.from_sizes([250, 300, 500]), SQLiteAllocationStore(db))
    assert new.calculate(300) == Allocation(quantity=300, packs={300: 1})
    # both catalogs keep their own row and each is served back unchanged
    assert old.calculate(300) == Allocation(quantity=300, packs={500: 1})
    assert new.calculate(300) == Allocation(quantity=300, packs={300: 1})
    assert [r.pack_sizes for r in new.recent()] == [(500, 300, 250), (500, 250)]


def test_store_failures_do_not_change_result(caplog) -> None:
    alloc = _allocator(_BrokenStore())
    with caplog.at_level(logging.WARNING, logger="processes.allocator"):
        result = alloc.calculate(12001)
    assert dict(result.packs) == {5000: 2, 2000: 1, 250: 1}
    messages = [r.getMessage() for r in caplog.records]
    assert any('"allocation_cache_lookup_failed"' in m for m in messages)
    assert any('"allocation_record_failed"' in m for m in messages)


def test_invalid_quantity_skips_store() -> None:
    store = _MemoryStore()
    alloc = _allocator(store)
    with pytest.raises(InvalidQuantityError):
        alloc.calculate(0)
    assert store.lookups == 0


def test_empty_catalog_raises() -> None:
    alloc = CachedAllocator(Catalog(), _MemoryStore())
    with pytest.raises(NoPackSizesConfiguredError):
        alloc.calculate(10)


def test_recent_requires_storage() -> None:
    alloc = _allocator()
    assert isinstance(alloc.store, NullAllocationStore)
    assert not alloc.storage_configured
    with pytest.raises(StorageNotConfiguredError):
        alloc.recent()


def test_recent_lists_store_rows() -> None:
    alloc = _allocator(_MemoryStore())
    for qty in (1, 251, 501):
        alloc.calculate(qty)
    assert [r.order_quantity for r in alloc.recent(2)] == [501, 251]


def test_build_allocator_from_config(tmp_path: Path) -> None:
    cfg = AppConfig(
        pack_sizes=[23, 31, 53],
        storage=StorageConfig(backend="sqlite", path=str(tmp_path / "a.db")),
    )
    alloc = build_allocator(cfg)
    assert isinstance(alloc.store, SQLiteAllocationStore)
    assert alloc.catalog.sizes == (53, 31, 23)
    alloc.calculate(500)
    assert alloc.recent()[0].packs == {53: 9, 23: 1}
    alloc.close()

    no_store = build_allocator(cfg, use_store=False)
    assert not no_store.storage_configured
