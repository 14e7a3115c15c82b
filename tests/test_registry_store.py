from __future__ import annotations

from pathlib import Path

import pandas as pd
import pytest
from jsonschema import ValidationError

from processes.allocator import Allocation, allocate
from processes.allocator.types import StorageError
from processes.storage import ParquetAllocationRegistry, open_store

SIZES = [23, 31, 53]


def test_registry_appends_rows(tmp_path: Path) -> None:
    path = tmp_path / "registry" / "allocations.parquet"
    reg = ParquetAllocationRegistry(path)
    assert reg.lookup(50, SIZES) is None
    assert reg.recent() == []

    reg.record(50, allocate(50, SIZES), SIZES)
    reg.record(500, allocate(500, SIZES), SIZES)

    df = pd.read_parquet(path)
    assert list(df.columns) == [
        "id",
        "order_quantity",
        "packs",
        "total",
        "created_at",
        "pack_sizes",
    ]
    assert df["id"].tolist() == [1, 2]
    assert df["pack_sizes"].tolist() == ["[53, 31, 23]", "[53, 31, 23]"]

    hit = reg.lookup(500, SIZES)
    assert hit is not None
    assert hit.packs == {53: 9, 23: 1}
    assert hit.total == 500
    assert hit.pack_sizes == (53, 31, 23)
    assert [r.order_quantity for r in reg.recent()] == [500, 50]
    assert [r.order_quantity for r in reg.recent(1)] == [500]


def test_registry_lookup_prefers_latest(tmp_path: Path) -> None:
    reg = ParquetAllocationRegistry(tmp_path / "a.parquet")
    reg.record(10, Allocation(quantity=10, packs={23: 1}), SIZES)
    reg.record(10, Allocation(quantity=10, packs={31: 1}), SIZES)
    hit = reg.lookup(10, SIZES)
    assert hit is not None
    assert hit.packs == {31: 1}
    assert hit.id == 2


def test_registry_lookup_matches_catalog(tmp_path: Path) -> None:
    reg = ParquetAllocationRegistry(tmp_path / "a.parquet")
    reg.record(50, allocate(50, SIZES), SIZES)
    assert reg.lookup(50, [23, 31, 53, 50]) is None
    assert reg.lookup(50, [53, 23, 31]) is not None


def test_registry_file_without_catalog_column(tmp_path: Path) -> None:
    path = tmp_path / "old.parquet"
    pd.DataFrame(
        [
            {
                "id": 1,
                "order_quantity": 50,
                "packs": '{"53": 1}',
                "total": 53,
                "created_at": "2024-01-01T00:00:00.000000Z",
            }
        ]
    ).to_parquet(path, index=False)
    reg = ParquetAllocationRegistry(path)
    assert reg.lookup(50, SIZES) is None
    reg.record(50, allocate(50, SIZES), SIZES)
    hit = reg.lookup(50, SIZES)
    assert hit is not None
    assert hit.id == 2
    assert [r.pack_sizes for r in reg.recent()] == [(53, 31, 23), ()]


def test_registry_rejects_rows_failing_schema(tmp_path: Path) -> None:
    path = tmp_path / "a.parquet"
    reg = ParquetAllocationRegistry(path)
    # order_quantity must be positive
    with pytest.raises(ValidationError):
        reg.record(0, Allocation(quantity=0, packs={}), SIZES)
    assert not path.exists()


def test_registry_rejects_mismatched_allocation(tmp_path: Path) -> None:
    reg = ParquetAllocationRegistry(tmp_path / "a.parquet")
    with pytest.raises(StorageError):
        reg.record(51, allocate(50, SIZES), SIZES)


def test_open_store_builds_registry(tmp_path: Path) -> None:
    assert isinstance(open_store("parquet", tmp_path / "a.parquet"), ParquetAllocationRegistry)
