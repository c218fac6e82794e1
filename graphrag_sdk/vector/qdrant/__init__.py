# graphrag_sdk/vector/qdrant/__init__.py
# SPDX-License-Identifier: Apache-2.0

"""Qdrant binding for the GraphRAG vector store."""

from graphrag_sdk.vector.qdrant.backup import SnapshotTransport
from graphrag_sdk.vector.qdrant.connection import QdrantSettings
from graphrag_sdk.vector.qdrant.layout import CollectionLayout, NamedLayout, SingleLayout
from graphrag_sdk.vector.qdrant.store import QdrantVectorStore

__all__ = [
    "QdrantVectorStore",
    "QdrantSettings",
    "SnapshotTransport",
    "CollectionLayout",
    "NamedLayout",
    "SingleLayout",
]
