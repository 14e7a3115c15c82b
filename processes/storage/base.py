from __future__ import annotations

import json
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from processes.allocator.types import Allocation, ConfigError, StorageError


def utc_now_iso() -> str:
    # Microsecond precision so rows written in the same second still order
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.%f") + "Z"


def packs_to_json(packs: Mapping[int, int]) -> str:
    return json.dumps({str(size): int(count) for size, count in packs.items()})


def packs_from_json(text: str) -> dict[int, int]:
    raw = json.loads(text)
    return {int(size): int(count) for size, count in raw.items()}


def catalog_key(pack_sizes: Iterable[int]) -> str:
    """Canonical text of a catalog; rows are only reused under the same key."""
    return json.dumps(sorted({int(s) for s in pack_sizes}, reverse=True))


def catalog_from_key(text: str) -> tuple[int, ...]:
    if not text:
        return ()
    return tuple(int(s) for s in json.loads(text))


def check_record_args(
    quantity: int, allocation: Allocation | None, pack_sizes: Sequence[int]
) -> Allocation:
    if allocation is None:
        raise StorageError("allocation is required")
    if not pack_sizes:
        raise StorageError("pack sizes are required to record an allocation")
    unknown = sorted(set(allocation.packs) - {int(s) for s in pack_sizes})
    if unknown:
        raise StorageError(
            f"allocation uses pack sizes outside its catalog: {unknown}",
            details={"unknown": unknown, "pack_sizes": list(pack_sizes)},
        )
    if quantity != allocation.quantity:
        raise StorageError(
            f"allocation was computed for {allocation.quantity}, not {quantity}",
            details={"quantity": quantity, "allocation_quantity": allocation.quantity},
        )
    return allocation


@dataclass
class StoredAllocation:
    id: int
    order_quantity: int
    packs: dict[int, int] = field(default_factory=dict)
    total: int = 0
    created_at: str = ""
    # catalog the row was computed with, largest first; empty for legacy rows
    pack_sizes: tuple[int, ...] = ()

    def to_allocation(self) -> Allocation:
        return Allocation(quantity=self.order_quantity, packs=self.packs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "order_quantity": self.order_quantity,
            "packs": {str(size): count for size, count in self.packs.items()},
            "total": self.total,
            "created_at": self.created_at,
            "pack_sizes": list(self.pack_sizes),
        }


@runtime_checkable
class AllocationStore(Protocol):
    def lookup(
        self, quantity: int, pack_sizes: Sequence[int]
    ) -> StoredAllocation | None: ...

    def record(
        self, quantity: int, allocation: Allocation, pack_sizes: Sequence[int]
    ) -> None: ...

    def recent(self, limit: int = 10) -> list[StoredAllocation]: ...

    def close(self) -> None: ...


class NullAllocationStore:
    """Store that keeps nothing; used when persistence is not configured."""

    def lookup(self, quantity: int, pack_sizes: Sequence[int]) -> StoredAllocation | None:
        return None

    def record(
        self, quantity: int, allocation: Allocation, pack_sizes: Sequence[int]
    ) -> None:
        return None

    def recent(self, limit: int = 10) -> list[StoredAllocation]:
        return []

    def close(self) -> None:
        return None


def open_store(backend: str, path: str | Path | None = None) -> AllocationStore:
    """Build the store named by ``backend`` (``none``, ``sqlite`` or ``parquet``)."""
    name = (backend or "none").strip().lower()
    if name == "none":
        return NullAllocationStore()
    if path is None:
        raise ConfigError(f"storage backend {name!r} needs a path")
    if name == "sqlite":
        from .sqlite_store import SQLiteAllocationStore

        return SQLiteAllocationStore(Path(path))
    if name == "parquet":
        from .registry import ParquetAllocationRegistry

        return ParquetAllocationRegistry(Path(path))
    raise ConfigError(f"unknown storage backend: {backend!r}")
