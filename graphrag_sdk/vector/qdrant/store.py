# graphrag_sdk/vector/qdrant/store.py
# SPDX-License-Identifier: Apache-2.0
"""
Qdrant-backed vector store.

Usage
-----
    from graphrag_sdk.vector.vector_base import (
        CreateCollectionOptions, AddDocumentsOptions, Document, SearchOptions,
    )
    from graphrag_sdk.vector.qdrant import QdrantVectorStore

    store = QdrantVectorStore()
    await store.connect({"host": "localhost", "port": 6334})

    await store.create_collection(CreateCollectionOptions(name="docs", dimension=3))
    await store.add_documents(
        AddDocumentsOptions(
            collection_name="docs",
            documents=[Document(id="a", content="alpha", dense_vector=[1, 0, 0])],
        )
    )
    res = await store.search_similar(
        SearchOptions(collection_name="docs", query_vector=[1, 0, 0], k=5)
    )
    await store.close()
"""

from __future__ import annotations

from typing import Optional

from qdrant_client import QdrantClient

from graphrag_sdk.vector.vector_base import MetricsSink, TTLCache
from graphrag_sdk.vector.qdrant.backup import QdrantBackup, SnapshotTransport
from graphrag_sdk.vector.qdrant.stats import QueryTally

DEFAULT_LAYOUT_CACHE_TTL_S = 30.0


class QdrantVectorStore(QdrantBackup):
    """
    Document-and-search API over a Qdrant engine.

    Args:
        client: Pre-built QdrantClient adopted on `connect()` instead of dialing.
            The store never closes a client it did not create.
        metrics: Optional MetricsSink; one observation per public operation.
        snapshot_transport: Overrides the REST transport used by backup/restore.
        layout_cache_ttl_s: How long a fetched collection layout is reused
            (0 disables caching).
    """

    def __init__(
        self,
        *,
        client: Optional[QdrantClient] = None,
        metrics: Optional[MetricsSink] = None,
        snapshot_transport: Optional[SnapshotTransport] = None,
        layout_cache_ttl_s: float = DEFAULT_LAYOUT_CACHE_TTL_S,
    ) -> None:
        super().__init__(client=client, metrics=metrics)
        self._layouts = TTLCache(layout_cache_ttl_s)
        self._query_tally = QueryTally()
        self._snapshot_transport = snapshot_transport
        self._owns_transport = False

    async def disconnect(self, *, ctx=None) -> None:
        await super().disconnect(ctx=ctx)
        self._layouts.clear()
        if self._owns_transport and self._snapshot_transport is not None:
            transport, self._snapshot_transport = self._snapshot_transport, None
            self._owns_transport = False
            await transport.aclose()
