"""Tests for catalog construction."""

from __future__ import annotations

import numpy as np
import pytest

from processes.allocator import Catalog, NoPackSizesConfiguredError
from processes.allocator.types import ErrorCodes, InvalidPackSizeError


def test_sizes_are_deduplicated_and_sorted_descending() -> None:
    cat = Catalog.from_sizes([500, 250, 5000, 500, 1000])
    assert cat.sizes == (5000, 1000, 500, 250)
    assert cat.largest == 5000
    assert cat.smallest == 250
    assert len(cat) == 4
    assert 1000 in cat
    assert list(cat) == [5000, 1000, 500, 250]


def test_numpy_integers_are_accepted() -> None:
    cat = Catalog.from_sizes(np.array([23, 31, 53]))
    assert cat.sizes == (53, 31, 23)
    assert all(type(s) is int for s in cat.sizes)


@pytest.mark.parametrize(
    "sizes,index,value",
    [
        ([250, 0, 500], 1, 0),
        ([-5], 0, -5),
        ([10, 2.5], 1, 2.5),
        (["250"], 0, "250"),
        ([True, 5], 0, True),
    ],
)  # type: ignore[misc]
def test_invalid_sizes_report_index_and_value(sizes: list, index: int, value: object) -> None:
    with pytest.raises(InvalidPackSizeError) as ei:
        Catalog.from_sizes(sizes)
    assert ei.value.code is ErrorCodes.INVALID_PACK_SIZE
    assert ei.value.details == {"index": index, "value": value}
    assert f"index {index}" in ei.value.message


def test_empty_catalog_is_constructible_but_not_usable() -> None:
    cat = Catalog.from_sizes([])
    assert cat.is_empty
    assert len(cat) == 0
    with pytest.raises(NoPackSizesConfiguredError) as ei:
        cat.require_sizes()
    assert ei.value.code is ErrorCodes.NO_PACK_SIZES
    with pytest.raises(NoPackSizesConfiguredError):
        _ = cat.largest


def test_catalog_is_immutable() -> None:
    cat = Catalog.from_sizes([1, 2])
    with pytest.raises(AttributeError):
        cat.sizes = (3,)  # type: ignore[misc]
