# SPDX-License-Identifier: Apache-2.0
"""
Batch search: slot totality and partial failures.
"""

import pytest
from graphrag_sdk.vector.vector_base import (
    BatchPartialFailure,
    HybridSearchOptions,
    InvalidOptions,
    MMRSearchOptions,
    NilOptionInBatch,
    ScoreThresholdSearchOptions,
    SearchFailed,
    SearchOptions,
    SearchResult,
    SparseVector,
)

pytestmark = pytest.mark.asyncio


async def test_batch_partial_failure_keeps_successful_slots(c1, store):
    batch = [
        SearchOptions(collection_name=c1, query_vector=[1, 0, 0], k=1),
        SearchOptions(collection_name="missing", query_vector=[1, 0, 0], k=1),
        SearchOptions(collection_name=c1, query_vector=[0, 1, 0], k=1),
    ]
    with pytest.raises(BatchPartialFailure) as exc_info:
        await store.batch_search(batch)

    err = exc_info.value
    assert len(err.results) == 3
    assert err.results[1] is None
    assert [d.id for d in err.results[0].documents] == ["a"]
    assert [d.id for d in err.results[2].documents] == ["b"]
    assert list(err.errors) == [1]
    assert isinstance(err.errors[1], SearchFailed)
    assert err.details["failed_indices"] == [1]
    assert "[1]" in str(err)


async def test_batch_all_ok_returns_one_result_per_option(c1, store):
    batch = [SearchOptions(collection_name=c1, query_vector=[1, 0, 0], k=1) for _ in range(12)]
    results = await store.batch_search(batch)
    assert len(results) == 12
    assert all(isinstance(r, SearchResult) for r in results)
    assert all(r.documents[0].id == "a" for r in results)


async def test_batch_dispatches_every_variant(c1, c2, store):
    results = await store.batch_search(
        [
            SearchOptions(collection_name=c1, query_vector=[1, 0, 0], k=1),
            ScoreThresholdSearchOptions(collection_name=c1, query_vector=[1, 0, 0], score_threshold=0.9),
            MMRSearchOptions(collection_name=c1, query_vector=[1, 0, 0], k=2),
            HybridSearchOptions(
                collection_name=c2,
                query_vector=[0.1, 0.2, 0.3, 0.4],
                sparse_query=SparseVector(indices=[0], values=[1.0]),
                k=1,
            ),
        ]
    )
    assert [len(r.documents) for r in results] == [1, 1, 2, 1]


async def test_batch_nil_entry_is_rejected_up_front(c1, store):
    with pytest.raises(NilOptionInBatch) as exc_info:
        await store.batch_search([SearchOptions(collection_name=c1, query_vector=[1, 0, 0]), None])
    assert exc_info.value.index == 1


async def test_batch_empty_and_none(store):
    assert await store.batch_search([]) == []
    with pytest.raises(InvalidOptions):
        await store.batch_search(None)


async def test_batch_unknown_option_type_fails_its_slot(c1, store):
    with pytest.raises(BatchPartialFailure) as exc_info:
        await store.batch_search([SearchOptions(collection_name=c1, query_vector=[1, 0, 0]), {"k": 1}])
    assert isinstance(exc_info.value.errors[1], InvalidOptions)
    assert exc_info.value.results[0] is not None
