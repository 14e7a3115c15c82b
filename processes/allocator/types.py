from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any


class ErrorCodes(str, Enum):
    INVALID_QUANTITY = "INVALID_QUANTITY"
    NO_PACK_SIZES = "NO_PACK_SIZES"
    INVALID_PACK_SIZE = "INVALID_PACK_SIZE"
    CONFIG_ERROR = "CONFIG_ERROR"
    STORAGE_NOT_CONFIGURED = "STORAGE_NOT_CONFIGURED"
    STORAGE_ERROR = "STORAGE_ERROR"
    INVARIANT_VIOLATION = "INVARIANT_VIOLATION"


class AllocationError(Exception):
    """Base for every recoverable error raised by the allocator and its gateways."""

    default_code = ErrorCodes.CONFIG_ERROR

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCodes | None = None,
        user_message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code or self.default_code
        self.message = message
        self.user_message = user_message or message
        self.details = details or {}


class InvalidQuantityError(AllocationError):
    default_code = ErrorCodes.INVALID_QUANTITY


class NoPackSizesConfiguredError(AllocationError):
    default_code = ErrorCodes.NO_PACK_SIZES


class InvalidPackSizeError(AllocationError):
    default_code = ErrorCodes.INVALID_PACK_SIZE


class ConfigError(AllocationError):
    default_code = ErrorCodes.CONFIG_ERROR


class StorageNotConfiguredError(AllocationError):
    default_code = ErrorCodes.STORAGE_NOT_CONFIGURED


class StorageError(AllocationError):
    default_code = ErrorCodes.STORAGE_ERROR


class AllocationInvariantError(RuntimeError):
    """Raised when the bounded search cannot find a feasible total.

    This only happens if a catalog bypassed validation; it is a defect, not an
    input error, and callers must not treat it as one.
    """

    code = ErrorCodes.INVARIANT_VIOLATION


@dataclass(frozen=True)
class Allocation:
    """Packs chosen for one order quantity.

    ``packs`` maps pack size to count, ordered by size descending, with zero
    counts dropped. ``total`` and ``pack_count`` are always derived from it.
    """

    quantity: int
    packs: Mapping[int, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        ordered = {
            int(size): int(count)
            for size, count in sorted(self.packs.items(), key=lambda kv: -int(kv[0]))
            if int(count) != 0
        }
        object.__setattr__(self, "packs", MappingProxyType(ordered))

    @property
    def total(self) -> int:
        return sum(size * count for size, count in self.packs.items())

    @property
    def pack_count(self) -> int:
        return sum(self.packs.values())

    @property
    def overage(self) -> int:
        return self.total - self.quantity

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Allocation):
            return NotImplemented
        return self.quantity == other.quantity and dict(self.packs) == dict(
            other.packs
        )

    def __hash__(self) -> int:
        return hash((self.quantity, tuple(self.packs.items())))

    def to_dict(self) -> dict[str, Any]:
        return {
            "quantity": self.quantity,
            "packs": {str(size): count for size, count in self.packs.items()},
            "total": self.total,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> Allocation:
        packs = d.get("packs") or {}
        return cls(
            quantity=int(d["quantity"]),
            packs={int(size): int(count) for size, count in packs.items()},
        )
