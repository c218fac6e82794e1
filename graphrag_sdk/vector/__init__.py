# graphrag_sdk/vector/__init__.py
# SPDX-License-Identifier: Apache-2.0

"""
GraphRAG vector store - public API.

Engine-neutral types, options, results and errors are re-exported here;
engine bindings live in subpackages (see `graphrag_sdk.vector.qdrant`).
"""

from graphrag_sdk.vector.vector_base import (
    VECTOR_STORE_API_VERSION,
    # Vocabulary
    DISTANCE_COSINE,
    DISTANCE_EUCLIDEAN,
    DISTANCE_DOT,
    DISTANCE_MANHATTAN,
    VECTOR_MODE_AUTO,
    VECTOR_MODE_DENSE_ONLY,
    VECTOR_MODE_SPARSE_ONLY,
    VECTOR_MODE_BOTH,
    FUSION_RRF,
    FUSION_DBSF,
    LoadState,
    # Data model
    Document,
    SparseVector,
    VectorStoreConfig,
    # Options / results
    CreateCollectionOptions,
    CollectionInfo,
    OptimizeOptions,
    VectorStoreStats,
    SearchEngineStats,
    BackupInfo,
    AddDocumentsOptions,
    GetDocumentsOptions,
    DeleteDocumentsOptions,
    ListDocumentsOptions,
    ListDocumentsResult,
    ScrollOptions,
    ScrollResult,
    SearchOptions,
    ScoreThresholdSearchOptions,
    MMRSearchOptions,
    HybridSearchOptions,
    PaginationInfo,
    SearchResult,
    # Errors
    VectorStoreError,
    NotConnected,
    ConnectError,
    InvalidOptions,
    DeleteSelectorRequired,
    ModeRequiresBothVectors,
    NilOptionInBatch,
    NamedVectorsRequired,
    SingleVectorOnly,
    InvalidFilter,
    DocumentBatchError,
    EngineError,
    CreateFailed,
    DescribeFailed,
    DropFailed,
    GetFailed,
    UpsertFailed,
    DeleteFailed,
    SearchFailed,
    ScrollFailed,
    CountFailed,
    SnapshotFailed,
    Cancelled,
    DeadlineExceeded,
    BatchPartialFailure,
    # Context / metrics
    OperationContext,
    MetricsSink,
    NoopMetrics,
)

__all__ = [name for name in dir() if not name.startswith("_")]
