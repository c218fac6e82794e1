# SPDX-License-Identifier: Apache-2.0
"""
Metadata filter translation.
"""

import pytest
from qdrant_client.http import models

from graphrag_sdk.vector.vector_base import InvalidFilter
from graphrag_sdk.vector.qdrant.filters import build_filter, metadata_key, optional_filter

pytestmark = pytest.mark.asyncio


def _by_key(flt):
    return {c.key: c for c in flt.must}


async def test_filtering_fields_live_under_metadata():
    assert metadata_key("category") == "metadata.category"


async def test_filtering_typed_conditions():
    flt = build_filter({"category": "x", "year": 2020, "ratio": 0.5, "draft": False})
    assert isinstance(flt, models.Filter)
    conds = _by_key(flt)
    assert set(conds) == {"metadata.category", "metadata.year", "metadata.ratio", "metadata.draft"}

    assert conds["metadata.category"].match == models.MatchValue(value="x")
    assert conds["metadata.draft"].match == models.MatchValue(value=False)
    assert conds["metadata.year"].range.gte == 2020
    assert conds["metadata.year"].range.lte == 2020
    assert conds["metadata.ratio"].range.gte == 0.5
    assert conds["metadata.ratio"].match is None


async def test_filtering_unsupported_values_are_skipped():
    flt = build_filter({"category": "x", "tags": ["a"], "nested": {"k": 1}})
    assert list(_by_key(flt)) == ["metadata.category"]


async def test_filtering_rejects_filter_without_conditions():
    with pytest.raises(InvalidFilter) as exc_info:
        build_filter({"tags": ["a", "b"]})
    assert exc_info.value.code == "INVALID_FILTER"
    assert exc_info.value.details["keys"] == ["tags"]


async def test_filtering_empty_filter_means_no_filter():
    assert optional_filter(None) is None
    assert optional_filter({}) is None
    assert optional_filter({"k": "v"}) is not None
