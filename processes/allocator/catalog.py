from __future__ import annotations

import numbers
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from .types import InvalidPackSizeError, NoPackSizesConfiguredError


@dataclass(frozen=True)
class Catalog:
    """Immutable set of pack sizes, unique and sorted descending.

    Build it with :meth:`from_sizes`; an empty catalog is a valid value but
    cannot be optimized against.
    """

    sizes: tuple[int, ...] = ()

    @classmethod
    def from_sizes(cls, sizes: Iterable[object]) -> Catalog:
        seen: set[int] = set()
        for idx, raw in enumerate(sizes):
            # bool is an int subclass; reject it along with floats and strings
            if isinstance(raw, bool) or not isinstance(raw, numbers.Integral):
                raise InvalidPackSizeError(
                    f"invalid pack size at index {idx}: {raw!r} (must be a positive integer)",
                    details={"index": idx, "value": raw},
                )
            if raw <= 0:
                raise InvalidPackSizeError(
                    f"invalid pack size at index {idx}: {raw} (must be positive)",
                    details={"index": idx, "value": raw},
                )
            seen.add(int(raw))
        return cls(sizes=tuple(sorted(seen, reverse=True)))

    def __iter__(self) -> Iterator[int]:
        return iter(self.sizes)

    def __len__(self) -> int:
        return len(self.sizes)

    def __contains__(self, size: object) -> bool:
        return size in self.sizes

    @property
    def is_empty(self) -> bool:
        return not self.sizes

    @property
    def largest(self) -> int:
        self.require_sizes()
        return self.sizes[0]

    @property
    def smallest(self) -> int:
        self.require_sizes()
        return self.sizes[-1]

    def require_sizes(self) -> None:
        if not self.sizes:
            raise NoPackSizesConfiguredError("no pack sizes configured")
