# SPDX-License-Identifier: Apache-2.0
"""
Document writes: ids, batches, vector modes and layout rules.
"""

import re

import pytest
from qdrant_client import QdrantClient

from graphrag_sdk.vector.vector_base import (
    DISTANCE_DOT,
    AddDocumentsOptions,
    CreateCollectionOptions,
    Document,
    DocumentBatchError,
    GetDocumentsOptions,
    InvalidOptions,
    ModeRequiresBothVectors,
    NamedVectorsRequired,
    SparseVector,
)
from graphrag_sdk.vector.qdrant import QdrantVectorStore
from graphrag_sdk.vector.qdrant.ids import content_auto_id
from tests.vector.fakes import FlakyUpsertClient

pytestmark = pytest.mark.asyncio


def _docs(n, dim=3):
    return [Document(id=f"d{i}", content=f"doc {i}", dense_vector=[1.0] + [0.0] * (dim - 1)) for i in range(n)]


async def test_upsert_returns_ids_in_input_order(store):
    await store.create_collection(CreateCollectionOptions(name="w", dimension=3))
    ids = await store.add_documents(AddDocumentsOptions(collection_name="w", documents=_docs(5), batch_size=2))
    assert ids == ["d0", "d1", "d2", "d3", "d4"]
    assert await store.count_documents("w") == 5


async def test_upsert_empty_document_list_is_noop(store):
    await store.create_collection(CreateCollectionOptions(name="w", dimension=3))
    assert await store.add_documents(AddDocumentsOptions(collection_name="w", documents=[])) == []


async def test_upsert_overwrites_same_id(store):
    await store.create_collection(CreateCollectionOptions(name="w", dimension=3))
    await store.add_documents(
        AddDocumentsOptions(collection_name="w", documents=[Document(id="a", content="v1", dense_vector=[1, 0, 0])])
    )
    await store.add_documents(
        AddDocumentsOptions(
            collection_name="w",
            documents=[Document(id="a", content="v2", dense_vector=[0, 1, 0])],
            upsert=True,
        )
    )
    docs = await store.get_documents(["a"], GetDocumentsOptions(collection_name="w"))
    assert [d.content for d in docs] == ["v2"]
    assert await store.count_documents("w") == 1


async def test_upsert_positional_auto_ids(store):
    await store.create_collection(CreateCollectionOptions(name="w", dimension=3))
    docs = [Document(content="same", dense_vector=[1, 0, 0]), Document(content="same", dense_vector=[0, 1, 0])]
    ids = await store.add_documents(AddDocumentsOptions(collection_name="w", documents=docs))
    assert re.fullmatch(r"doc_0_\d+", ids[0])
    assert re.fullmatch(r"doc_1_\d+", ids[1])
    fetched = await store.get_documents(ids, GetDocumentsOptions(collection_name="w"))
    assert [d.id for d in fetched] == ids


async def test_upsert_content_auto_ids(store):
    await store.create_collection(CreateCollectionOptions(name="w", dimension=3))
    ids = await store.add_documents(
        AddDocumentsOptions(
            collection_name="w",
            documents=[Document(content="hello", dense_vector=[1, 0, 0])],
            auto_id="content",
        )
    )
    assert ids == [content_auto_id("hello")]


async def test_upsert_validates_options(store):
    await store.create_collection(CreateCollectionOptions(name="w", dimension=3))
    with pytest.raises(InvalidOptions):
        await store.add_documents(None)
    with pytest.raises(InvalidOptions):
        await store.add_documents(AddDocumentsOptions(collection_name="w", documents=_docs(1), vector_mode="all"))
    with pytest.raises(InvalidOptions):
        await store.add_documents(AddDocumentsOptions(collection_name="w", documents=_docs(1), auto_id="uuid"))
    with pytest.raises(InvalidOptions):
        await store.add_documents(AddDocumentsOptions(collection_name="w", documents=[None]))


async def test_upsert_dense_vector_round_trip_within_float32(store):
    await store.create_collection(CreateCollectionOptions(name="dot", dimension=3, distance_metric=DISTANCE_DOT))
    vector = [0.123456789, -2.5, 1e-3]
    await store.add_documents(
        AddDocumentsOptions(collection_name="dot", documents=[Document(id="v", content="v", dense_vector=vector)])
    )
    [doc] = await store.get_documents(["v"], GetDocumentsOptions(collection_name="dot", include_vector=True))
    assert doc.dense_vector == pytest.approx(vector, abs=1e-6)


async def test_upsert_named_hybrid_round_trip(c2, store):
    [doc] = await store.get_documents(["d"], GetDocumentsOptions(collection_name=c2, include_vector=True))
    assert doc.content == "doc"
    assert doc.dense_vector == pytest.approx([0.1, 0.2, 0.3, 0.4], abs=1e-6)
    assert doc.sparse_vector is not None
    assert doc.sparse_vector.indices == [0, 7]
    assert doc.sparse_vector.values == pytest.approx([0.5, 0.6], abs=1e-6)


async def test_upsert_sparse_into_single_layout_is_refused(c1, store):
    doc = Document(id="s", content="s", dense_vector=[1, 0, 0], sparse_vector=SparseVector(indices=[1], values=[1.0]))
    with pytest.raises(NamedVectorsRequired):
        await store.add_documents(AddDocumentsOptions(collection_name=c1, documents=[doc]))
    with pytest.raises(NamedVectorsRequired):
        await store.add_documents(
            AddDocumentsOptions(collection_name=c1, documents=[doc], vector_mode="sparse_only")
        )
    assert await store.count_documents(c1) == 3


async def test_upsert_dense_only_ignores_sparse_on_single_layout(c1, store):
    doc = Document(id="s", content="s", dense_vector=[1, 0, 0], sparse_vector=SparseVector(indices=[1], values=[1.0]))
    await store.add_documents(AddDocumentsOptions(collection_name=c1, documents=[doc], vector_mode="dense_only"))
    assert await store.count_documents(c1) == 4


async def test_upsert_mode_both_requires_both_vectors(c2, store):
    batch = [
        Document(id="ok", content="ok", dense_vector=[1, 0, 0, 0], sparse_vector=SparseVector(indices=[1], values=[1.0])),
        Document(id="half", content="half", dense_vector=[1, 0, 0, 0]),
    ]
    with pytest.raises(ModeRequiresBothVectors):
        await store.add_documents(AddDocumentsOptions(collection_name=c2, documents=batch, vector_mode="both"))
    # validation happens before the first write
    assert await store.count_documents(c2) == 2


async def test_upsert_sparse_only_on_named_layout(c2, store):
    doc = Document(id="sp", content="sp", dense_vector=[1, 0, 0, 0], sparse_vector=SparseVector(indices=[2], values=[0.4]))
    await store.add_documents(AddDocumentsOptions(collection_name=c2, documents=[doc], vector_mode="sparse_only"))
    [got] = await store.get_documents(["sp"], GetDocumentsOptions(collection_name=c2, include_vector=True))
    assert got.dense_vector is None
    assert got.sparse_vector.indices == [2]


async def test_upsert_missing_collection_fails_before_first_batch(store):
    with pytest.raises(DocumentBatchError) as exc_info:
        await store.add_documents(AddDocumentsOptions(collection_name="ghost", documents=_docs(2)))
    assert exc_info.value.batch_index == 0
    assert exc_info.value.added_ids == []


async def test_upsert_batch_failure_reports_written_ids():
    inner = QdrantClient(location=":memory:")
    client = FlakyUpsertClient(inner, fail_on=2)
    store = QdrantVectorStore(client=client)
    await store.connect()
    await store.create_collection(CreateCollectionOptions(name="w", dimension=3))

    with pytest.raises(DocumentBatchError) as exc_info:
        await store.add_documents(AddDocumentsOptions(collection_name="w", documents=_docs(5), batch_size=2))

    err = exc_info.value
    assert err.batch_index == 1
    assert err.added_ids == ["d0", "d1"]
    assert err.code == "DOCUMENT_BATCH_ERROR"
    assert err.__cause__ is not None and err.__cause__.code == "UPSERT_FAILED"
    assert await store.count_documents("w") == 2
    await store.close()
    inner.close()
