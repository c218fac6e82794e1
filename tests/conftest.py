# SPDX-License-Identifier: Apache-2.0
"""
Shared fixtures for the vector store tests.

Engine-backed fixtures run against the embedded Qdrant engine
(`QdrantClient(location=":memory:")`), one fresh engine per test.
"""

from __future__ import annotations

import pytest
import pytest_asyncio

from graphrag_sdk.vector.vector_base import (
    DISTANCE_DOT,
    AddDocumentsOptions,
    CreateCollectionOptions,
    Document,
    SparseVector,
)
from graphrag_sdk.vector.qdrant import QdrantVectorStore
from tests.vector.fakes import RecordingMetrics

MEMORY_CONFIG = {"location": ":memory:"}


@pytest.fixture
def metrics() -> RecordingMetrics:
    return RecordingMetrics()


@pytest_asyncio.fixture
async def store(metrics):
    s = QdrantVectorStore(metrics=metrics)
    await s.connect(MEMORY_CONFIG)
    try:
        yield s
    finally:
        await s.close()


@pytest_asyncio.fixture
async def c1(store):
    """Single-vector cosine collection populated with three axis documents."""
    await store.create_collection(CreateCollectionOptions(name="C1", dimension=3))
    await store.add_documents(
        AddDocumentsOptions(
            collection_name="C1",
            documents=[
                Document(id="a", content="alpha", metadata={"category": "x", "year": 2020}, dense_vector=[1, 0, 0]),
                Document(id="b", content="beta", metadata={"category": "x", "year": 2021}, dense_vector=[0, 1, 0]),
                Document(id="c", content="gamma", metadata={"category": "y", "year": 2020}, dense_vector=[0, 0, 1]),
            ],
        )
    )
    return "C1"


@pytest_asyncio.fixture
async def c2(store):
    """Named-vector dot collection with a sparse sub-vector."""
    await store.create_collection(
        CreateCollectionOptions(
            name="C2",
            dimension=4,
            distance_metric=DISTANCE_DOT,
            enable_sparse_vectors=True,
            dense_vector_name="dense",
            sparse_vector_name="sparse",
        )
    )
    await store.add_documents(
        AddDocumentsOptions(
            collection_name="C2",
            vector_mode="both",
            documents=[
                Document(
                    id="d",
                    content="doc",
                    dense_vector=[0.1, 0.2, 0.3, 0.4],
                    sparse_vector=SparseVector(indices=[0, 7], values=[0.5, 0.6]),
                ),
                Document(
                    id="e",
                    content="other",
                    dense_vector=[0.4, 0.3, 0.2, 0.1],
                    sparse_vector=SparseVector(indices=[3, 9], values=[0.9, 0.1]),
                ),
            ],
        )
    )
    return "C2"


@pytest_asyncio.fixture
async def seven(store):
    """Seven documents for scroll and pagination walks."""
    await store.create_collection(CreateCollectionOptions(name="seven", dimension=2))
    docs = [
        Document(id=f"s{i}", content=f"doc {i}", metadata={"n": i}, dense_vector=[1.0, 0.1 * i])
        for i in range(7)
    ]
    await store.add_documents(AddDocumentsOptions(collection_name="seven", documents=docs))
    return "seven"
