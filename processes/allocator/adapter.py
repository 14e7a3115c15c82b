from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from pipeline.io.config import AppConfig, load_app_config
from processes.storage import AllocationStore, NullAllocationStore, open_store
from processes.storage.base import StoredAllocation
from validators import Rules, validate_allocation

from .catalog import Catalog
from .engine import allocate, validate_quantity
from .types import Allocation, AllocationError, StorageNotConfiguredError

logger = logging.getLogger("processes.allocator")


class CachedAllocator:
    """The optimizer with a best-effort allocation store around it.

    ``calculate`` looks the quantity up first and otherwise computes and
    records. Store failures are logged and never change a computed result.
    Rows are keyed by quantity and catalog, and a stored result is only
    returned if it was computed with the current catalog and still satisfies
    the allocation rules.
    """

    def __init__(self, catalog: Catalog, store: AllocationStore | None = None) -> None:
        self.catalog = catalog
        self.store: AllocationStore = store if store is not None else NullAllocationStore()
        self._rules = Rules(pack_sizes=catalog.sizes)

    @property
    def storage_configured(self) -> bool:
        return not isinstance(self.store, NullAllocationStore)

    def calculate(self, quantity: int) -> Allocation:
        qty = validate_quantity(quantity)
        self.catalog.require_sizes()

        cached = self._lookup(qty)
        if cached is not None:
            return cached

        t0 = time.time()
        result = allocate(qty, self.catalog)
        logger.info(
            json.dumps(
                {
                    "event": "allocation_computed",
                    "quantity": qty,
                    "total": result.total,
                    "pack_count": result.pack_count,
                    "dt_s": round(time.time() - t0, 6),
                }
            )
        )
        self._record(qty, result)
        return result

    def _lookup(self, quantity: int) -> Allocation | None:
        try:
            hit: StoredAllocation | None = self.store.lookup(quantity, self.catalog.sizes)
        except Exception as e:
            logger.warning(
                json.dumps(
                    {"event": "allocation_cache_lookup_failed", "quantity": quantity, "error": str(e)}
                )
            )
            return None
        if hit is None:
            logger.debug(json.dumps({"event": "allocation_cache_miss", "quantity": quantity}))
            return None

        check = validate_allocation(
            quantity,
            hit.packs,
            self._rules,
            total=hit.total,
            allocated_for=hit.order_quantity,
            allocated_with=tuple(hit.pack_sizes),
        )
        if not check.valid:
            logger.warning(
                json.dumps(
                    {
                        "event": "allocation_cache_rejected",
                        "quantity": quantity,
                        "reasons": [r.value for r in check.reasons],
                    }
                )
            )
            return None
        logger.info(json.dumps({"event": "allocation_cache_hit", "quantity": quantity}))
        return hit.to_allocation()

    def _record(self, quantity: int, allocation: Allocation) -> None:
        try:
            self.store.record(quantity, allocation, self.catalog.sizes)
        except Exception as e:
            logger.warning(
                json.dumps(
                    {"event": "allocation_record_failed", "quantity": quantity, "error": str(e)}
                )
            )

    def recent(self, limit: int = 10) -> list[StoredAllocation]:
        if not self.storage_configured:
            raise StorageNotConfiguredError("storage not configured")
        return self.store.recent(limit)

    def close(self) -> None:
        self.store.close()


def build_allocator(cfg: AppConfig, *, use_store: bool = True) -> CachedAllocator:
    store: AllocationStore = (
        open_store(cfg.storage.backend, cfg.storage.path) if use_store else NullAllocationStore()
    )
    return CachedAllocator(cfg.catalog(), store)


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="python -m processes.allocator",
        description="Compute the minimal-fill pack allocation for an order quantity",
    )
    p.add_argument("--quantity", type=int, required=True)
    p.add_argument("--config", type=Path, help="Config YAML/JSON (default: config/config.yaml)")
    p.add_argument("--config-kv", nargs="*", help="Inline overrides key=value")
    p.add_argument(
        "--pack-sizes",
        type=str,
        help="Comma-separated pack sizes; overrides the configured catalog",
    )
    p.add_argument("--no-cache", action="store_true", help="Skip the allocation store")
    p.add_argument("--verbose", action="store_true")
    return p


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    kv = list(args.config_kv or [])
    if args.pack_sizes:
        kv.append(f"pack_sizes={args.pack_sizes}")

    try:
        cfg = load_app_config(args.config, kv)
        allocator = build_allocator(cfg, use_store=not args.no_cache)
        try:
            result = allocator.calculate(args.quantity)
        finally:
            allocator.close()
    except AllocationError as e:
        print(f"[allocator] error ({e.code.value}): {e.user_message}", file=sys.stderr)
        return 2

    out: dict[str, Any] = {
        "packs": {str(size): count for size, count in result.packs.items()},
        "total": result.total,
    }
    print(json.dumps(out))
    if args.verbose:
        print(f"[allocator] pack sizes: {list(cfg.catalog().sizes)}", file=sys.stderr)
        print(
            f"[allocator] overage: {result.overage}, packs used: {result.pack_count}",
            file=sys.stderr,
        )
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
