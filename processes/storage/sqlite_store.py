from __future__ import annotations

import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import closing, contextmanager
from pathlib import Path

from pipeline.io.files import ensure_dir
from processes.allocator.types import Allocation

from .base import (
    StoredAllocation,
    catalog_from_key,
    catalog_key,
    check_record_args,
    packs_from_json,
    packs_to_json,
    utc_now_iso,
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS allocations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    order_quantity INTEGER NOT NULL,
    packs TEXT NOT NULL,
    total INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    pack_sizes TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_order_quantity ON allocations(order_quantity);
CREATE INDEX IF NOT EXISTS idx_created_at ON allocations(created_at);
"""

_CATALOG_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_quantity_catalog "
    "ON allocations(order_quantity, pack_sizes)"
)

_COLUMNS = "id, order_quantity, packs, total, created_at, pack_sizes"


class SQLiteAllocationStore:
    """Allocation history in a SQLite file.

    A connection is opened per operation, so one store can be shared by the
    request thread pool. Rows carry the catalog they were computed with and
    lookups only match rows of the same catalog; databases written before
    that column existed are migrated in place, their rows never match.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        ensure_dir(self.db_path.parent)
        with self._connect() as conn:
            conn.executescript(_SCHEMA)
            columns = {row["name"] for row in conn.execute("PRAGMA table_info(allocations)")}
            if "pack_sizes" not in columns:
                conn.execute(
                    "ALTER TABLE allocations ADD COLUMN pack_sizes TEXT NOT NULL DEFAULT ''"
                )
            conn.execute(_CATALOG_INDEX)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        with closing(sqlite3.connect(self.db_path)) as conn:
            conn.row_factory = sqlite3.Row
            with conn:
                yield conn

    @staticmethod
    def _from_row(row: sqlite3.Row) -> StoredAllocation:
        return StoredAllocation(
            id=int(row["id"]),
            order_quantity=int(row["order_quantity"]),
            packs=packs_from_json(row["packs"]),
            total=int(row["total"]),
            created_at=str(row["created_at"]),
            pack_sizes=catalog_from_key(row["pack_sizes"]),
        )

    def record(self, quantity: int, allocation: Allocation, pack_sizes: Sequence[int]) -> None:
        allocation = check_record_args(quantity, allocation, pack_sizes)
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO allocations (order_quantity, packs, total, created_at, pack_sizes) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    quantity,
                    packs_to_json(allocation.packs),
                    allocation.total,
                    utc_now_iso(),
                    catalog_key(pack_sizes),
                ),
            )

    def lookup(self, quantity: int, pack_sizes: Sequence[int]) -> StoredAllocation | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM allocations WHERE order_quantity = ? AND pack_sizes = ? "
                "ORDER BY created_at DESC, id DESC LIMIT 1",
                (quantity, catalog_key(pack_sizes)),
            ).fetchone()
        return self._from_row(row) if row else None

    def recent(self, limit: int = 10) -> list[StoredAllocation]:
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM allocations ORDER BY created_at DESC, id DESC LIMIT ?",
                (max(0, int(limit)),),
            ).fetchall()
        return [self._from_row(r) for r in rows]

    def close(self) -> None:
        # Connections are per operation; nothing is held open
        return None
