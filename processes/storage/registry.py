from __future__ import annotations

import threading
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pandas as pd

from pipeline.io.files import write_parquet
from pipeline.io.validate import load_schema, validate_obj
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

REPO_ROOT = Path(__file__).resolve().parents[2]
SCHEMAS_ROOT = REPO_ROOT / "pipeline" / "schemas"

COLUMNS = ["id", "order_quantity", "packs", "total", "created_at", "pack_sizes"]


class ParquetAllocationRegistry:
    """Append-only allocation registry kept in a single parquet file.

    Rows are validated against ``allocation_record.schema.yaml`` before the
    file is rewritten. Lookups only match rows recorded with the same catalog;
    files written before rows carried one read it as empty and never match.
    """

    def __init__(self, path: Path, schemas_root: Path | None = None) -> None:
        self.path = Path(path)
        self.schemas_root = schemas_root or SCHEMAS_ROOT
        self._schema = load_schema(self.schemas_root / "allocation_record.schema.yaml")
        self._lock = threading.Lock()

    def _read(self) -> pd.DataFrame:
        if not self.path.exists():
            return pd.DataFrame(columns=COLUMNS)
        df = pd.read_parquet(self.path)
        if "pack_sizes" not in df.columns:
            df["pack_sizes"] = ""
        return df

    @staticmethod
    def _from_row(row: dict[str, Any]) -> StoredAllocation:
        return StoredAllocation(
            id=int(row["id"]),
            order_quantity=int(row["order_quantity"]),
            packs=packs_from_json(str(row["packs"])),
            total=int(row["total"]),
            created_at=str(row["created_at"]),
            pack_sizes=catalog_from_key(str(row["pack_sizes"] or "")),
        )

    def _latest_first(self, df: pd.DataFrame) -> pd.DataFrame:
        return df.sort_values(["created_at", "id"], ascending=False, kind="mergesort")

    def record(self, quantity: int, allocation: Allocation, pack_sizes: Sequence[int]) -> None:
        allocation = check_record_args(quantity, allocation, pack_sizes)
        with self._lock:
            existing = self._read()
            next_id = int(existing["id"].max()) + 1 if not existing.empty else 1
            row = {
                "id": next_id,
                "order_quantity": int(quantity),
                "packs": packs_to_json(allocation.packs),
                "total": int(allocation.total),
                "created_at": utc_now_iso(),
                "pack_sizes": catalog_key(pack_sizes),
            }
            validate_obj(self._schema, row, schemas_root=self.schemas_root)
            new = pd.DataFrame([row], columns=COLUMNS)
            df = new if existing.empty else pd.concat([existing, new], ignore_index=True)
            write_parquet(df, self.path)

    def lookup(self, quantity: int, pack_sizes: Sequence[int]) -> StoredAllocation | None:
        df = self._read()
        if df.empty:
            return None
        hits = df[
            (df["order_quantity"] == int(quantity))
            & (df["pack_sizes"] == catalog_key(pack_sizes))
        ]
        if hits.empty:
            return None
        row = self._latest_first(hits).iloc[0].to_dict()
        return self._from_row(row)

    def recent(self, limit: int = 10) -> list[StoredAllocation]:
        df = self._read()
        if df.empty:
            return []
        rows = self._latest_first(df).head(max(0, int(limit))).to_dict(orient="records")
        return [self._from_row(r) for r in rows]

    def close(self) -> None:
        return None
