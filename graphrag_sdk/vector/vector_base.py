# graphrag_sdk/vector/vector_base.py
# SPDX-License-Identifier: Apache-2.0
"""
GraphRAG SDK: vector store core types.

Purpose
-------
Engine-neutral contracts for the document-and-search API that graphrag
retrieval components use: documents with dense and/or sparse vectors,
collection management options, search options and results, a structured
error taxonomy, and the operation context that carries deadlines and
cancellation through every call.

Engine bindings (see `graphrag_sdk.vector.qdrant`) translate these shapes
into their native point/vector/filter models.

Design Philosophy
-----------------
- Async-first: every store operation is awaitable and accepts `ctx`.
- Values across the API boundary are plain dataclasses passed by copy.
- Structured errors: every failure carries a stable UPPER_SNAKE_CASE code.
- No automatic retry. Callers decide what to do with partial results,
  which travel on the raised exception.

Deliberate Non-Goals
--------------------
- No ANN index of its own; the engine does the nearest-neighbour work.
- No transactional multi-collection operations.
- No server-side aggregation or analytics.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    Union,
)

VECTOR_STORE_API_VERSION = "1.0.0"
LOG = logging.getLogger(__name__)

# =============================================================================
# Vocabulary
# =============================================================================

DISTANCE_COSINE = "cosine"
DISTANCE_EUCLIDEAN = "euclidean"
DISTANCE_DOT = "dot"
DISTANCE_MANHATTAN = "manhattan"
DISTANCE_METRICS = (DISTANCE_COSINE, DISTANCE_EUCLIDEAN, DISTANCE_DOT, DISTANCE_MANHATTAN)

INDEX_HNSW = "hnsw"

VECTOR_MODE_AUTO = "auto"
VECTOR_MODE_DENSE_ONLY = "dense_only"
VECTOR_MODE_SPARSE_ONLY = "sparse_only"
VECTOR_MODE_BOTH = "both"
VECTOR_MODES = (
    VECTOR_MODE_AUTO,
    VECTOR_MODE_DENSE_ONLY,
    VECTOR_MODE_SPARSE_ONLY,
    VECTOR_MODE_BOTH,
)

AUTO_ID_POSITIONAL = "positional"
AUTO_ID_CONTENT = "content"

FUSION_RRF = "rrf"
FUSION_DBSF = "dbsf"

DEFAULT_DENSE_VECTOR_NAME = "dense"
DEFAULT_SPARSE_VECTOR_NAME = "sparse"
DEFAULT_SEARCH_K = 10
DEFAULT_MAX_RESULTS = 1000
DEFAULT_BATCH_SIZE = 100
DEFAULT_PAGE_LIMIT = 100


class LoadState(str, Enum):
    """Residency of a collection inside the engine."""

    NOT_EXIST = "not_exist"
    NOT_LOAD = "not_load"
    LOADING = "loading"
    LOADED = "loaded"


def normalize_distance(metric: Optional[str]) -> str:
    """Map loose metric spellings onto the four supported metrics; default cosine."""
    m = (metric or "").strip().lower()
    aliases = {
        "cos": DISTANCE_COSINE,
        "l2": DISTANCE_EUCLIDEAN,
        "euclid": DISTANCE_EUCLIDEAN,
        "ip": DISTANCE_DOT,
        "dotproduct": DISTANCE_DOT,
        "inner_product": DISTANCE_DOT,
        "l1": DISTANCE_MANHATTAN,
        "manhattan": DISTANCE_MANHATTAN,
    }
    m = aliases.get(m, m)
    return m if m in DISTANCE_METRICS else DISTANCE_COSINE


# =============================================================================
# Core Data Model
# =============================================================================

@dataclass(frozen=True)
class SparseVector:
    """
    Sparse vector as parallel index/value sequences.

    Attributes:
        indices: Strictly increasing non-negative positions
        values: Weights, one per index
    """
    indices: List[int]
    values: List[float]

    def __post_init__(self) -> None:
        if len(self.indices) != len(self.values):
            raise InvalidOptions(
                "sparse vector indices and values must have the same length",
                field="sparse_vector",
                reason="length mismatch",
            )
        prev = -1
        for idx in self.indices:
            if idx < 0 or idx <= prev:
                raise InvalidOptions(
                    "sparse vector indices must be non-negative and strictly increasing",
                    field="sparse_vector",
                    reason="unordered indices",
                )
            prev = idx


@dataclass
class Document:
    """
    Addressable payload stored in a collection.

    Attributes:
        id: Opaque caller identifier; empty means "assign on insert"
        content: Primary text body
        metadata: Arbitrary nested metadata (filterable)
        dense_vector: Dense embedding; length must equal the collection dimension
        sparse_vector: Sparse embedding; requires a named-vector collection
        score: Similarity or re-ranker score when returned from a search
    """
    id: str = ""
    content: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    dense_vector: Optional[List[float]] = None
    sparse_vector: Optional[SparseVector] = None
    score: float = 0.0


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class VectorStoreConfig:
    """
    Connection and default-collection configuration.

    Engine-specific keys (host, port, api_key, ...) live in `extra_params`.
    """
    collection_name: str = ""
    dimension: int = 0
    distance_metric: str = DISTANCE_COSINE
    timeout: Optional[float] = None
    extra_params: Dict[str, Any] = field(default_factory=dict)

    def copy(self) -> "VectorStoreConfig":
        return VectorStoreConfig(
            collection_name=self.collection_name,
            dimension=self.dimension,
            distance_metric=self.distance_metric,
            timeout=self.timeout,
            extra_params=dict(self.extra_params),
        )


# =============================================================================
# Collection Options and Results
# =============================================================================

@dataclass
class CreateCollectionOptions:
    """
    Options for creating a collection.

    Attributes:
        name: Collection name
        dimension: Dense vector dimension (required, > 0)
        distance_metric: cosine | euclidean | dot | manhattan
        index_type: Index tag; only "hnsw" carries tuning parameters
        m: HNSW graph degree, emitted only when > 0
        ef_construction: HNSW build beam width, emitted only when > 0
        enable_sparse_vectors: Use a named-vector layout with a sparse sub-vector
        dense_vector_name: Dense sub-vector name in named layout
        sparse_vector_name: Sparse sub-vector name in named layout
    """
    name: str
    dimension: int
    distance_metric: str = DISTANCE_COSINE
    index_type: str = INDEX_HNSW
    m: int = 0
    ef_construction: int = 0
    enable_sparse_vectors: bool = False
    dense_vector_name: Optional[str] = None
    sparse_vector_name: Optional[str] = None


@dataclass(frozen=True)
class CollectionInfo:
    name: str
    total_vectors: int
    dimension: int
    index_type: str
    distance_metric: str


@dataclass
class OptimizeOptions:
    """Optimizer settings applied as a diff; None leaves a setting unchanged."""
    indexing_threshold: Optional[int] = 20000
    default_segment_number: Optional[int] = 2
    max_segment_size: Optional[int] = 200000
    memmap_threshold: Optional[int] = 1000000
    flush_interval_sec: Optional[int] = 5


@dataclass
class VectorStoreStats:
    total_vectors: int
    dimension: int
    index_type: str
    distance_metric: str
    index_size_bytes: int = 0
    memory_usage_bytes: int = 0
    extra_stats: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SearchEngineStats:
    """
    Search statistics for one collection.

    Query counters are tallied by this process; the engine does not report them.
    """
    document_count: int
    index_size_bytes: int
    total_queries: int = 0
    average_query_time_ms: float = 0.0
    error_rate: float = 0.0


@dataclass(frozen=True)
class BackupInfo:
    collection: str
    snapshot_name: str
    size_bytes: int
    compressed: bool
    checksum: Optional[str] = None
    created_at: Optional[str] = None


# =============================================================================
# Document Options and Results
# =============================================================================

@dataclass
class AddDocumentsOptions:
    """
    Options for ingesting documents.

    Attributes:
        collection_name: Target collection
        documents: Documents to write, in order
        batch_size: Documents per engine write (default 100)
        upsert: Overwrite existing points; upserts do not wait for indexing
        vector_mode: auto | dense_only | sparse_only | both
        dense_vector_name: Dense sub-vector name for named collections
        sparse_vector_name: Sparse sub-vector name for named collections
        vector_using: Legacy alias for dense_vector_name
        auto_id: "positional" (batch position + content hash) or "content"
        timeout: Per-call timeout in milliseconds (0 = none)
    """
    collection_name: str
    documents: List[Document]
    batch_size: int = DEFAULT_BATCH_SIZE
    upsert: bool = False
    vector_mode: str = VECTOR_MODE_AUTO
    dense_vector_name: Optional[str] = None
    sparse_vector_name: Optional[str] = None
    vector_using: Optional[str] = None
    auto_id: str = AUTO_ID_POSITIONAL
    timeout: int = 0


@dataclass
class GetDocumentsOptions:
    collection_name: str
    include_payload: bool = True
    include_vector: bool = False


@dataclass
class DeleteDocumentsOptions:
    """Exactly one of `ids` or `filter` selects the documents to delete."""
    collection_name: str
    ids: Optional[List[str]] = None
    filter: Optional[Dict[str, Any]] = None
    dry_run: bool = False


@dataclass
class ListDocumentsOptions:
    collection_name: str
    limit: int = DEFAULT_PAGE_LIMIT
    offset: int = 0
    filter: Optional[Dict[str, Any]] = None
    include_payload: bool = True
    include_vector: bool = False


@dataclass
class ListDocumentsResult:
    documents: List[Document]
    total: int
    has_more: bool
    next_offset: int


@dataclass
class ScrollOptions:
    """
    Cursor-based scan of a collection.

    `order_by` is "field", "field:asc" or "field:desc" on metadata. Points
    without the field are skipped by an ordered scan. The returned
    `scroll_id` carries the ordering, so continuation pages keep it without
    `order_by` being passed again.
    """
    collection_name: str
    limit: int = DEFAULT_PAGE_LIMIT
    filter: Optional[Dict[str, Any]] = None
    order_by: Optional[Union[str, Sequence[str]]] = None
    scroll_id: str = ""
    include_payload: bool = True
    include_vector: bool = False


@dataclass
class ScrollResult:
    documents: List[Document]
    has_more: bool
    scroll_id: str


# =============================================================================
# Search Options and Results
# =============================================================================

@dataclass
class SearchOptions:
    """
    Similarity search.

    Attributes:
        collection_name: Target collection
        query_vector: Dense query vector
        k: Neighbours to return; 0 selects the engine default (10)
        filter: Metadata equality filter
        vector_using: Dense sub-vector to search in named collections
        page: 1-based page number (pagination when page >= 1 and page_size > 0)
        page_size: Results per page
        include_total: Issue an approximate count for `pagination.total`
        max_results: Upper bound on the fetched window
        with_vectors: Return stored vectors on each document
        include_content: Return document content
        include_metadata: Return document metadata
        fields: Metadata keys to return; narrows the metadata to these keys
            and returns them even when `include_metadata` is False
        min_score: Engine-side score cutoff. On euclidean and manhattan
            collections scores are distances and this is a maximum distance
        hnsw_ef: Search beam width override
        exact: Bypass the ANN index
        timeout: Per-call timeout in milliseconds (0 = none)
    """
    collection_name: str
    query_vector: List[float]
    k: int = DEFAULT_SEARCH_K
    filter: Optional[Dict[str, Any]] = None
    vector_using: Optional[str] = None
    page: int = 0
    page_size: int = 0
    include_total: bool = False
    max_results: int = DEFAULT_MAX_RESULTS
    with_vectors: bool = False
    include_content: bool = True
    include_metadata: bool = True
    fields: Optional[List[str]] = None
    min_score: Optional[float] = None
    hnsw_ef: Optional[int] = None
    exact: bool = False
    timeout: int = 0


@dataclass
class ScoreThresholdSearchOptions(SearchOptions):
    """
    Similarity search with a score cutoff.

    On cosine and dot collections hits keep score >= `score_threshold`. On
    euclidean and manhattan collections the score is a distance, so hits keep
    score <= `score_threshold`.
    """
    score_threshold: float = 0.0


@dataclass
class MMRSearchOptions(SearchOptions):
    """MMR re-ranking: fetch `fetch_k` candidates (default 2*k) and pick k."""
    fetch_k: int = 0
    lambda_mult: float = 0.5


@dataclass
class HybridSearchOptions(SearchOptions):
    """
    Dense + sparse search fused engine-side.

    `prefetch_k` candidates (default 2*k) are drawn from each sub-vector and
    fused with reciprocal rank fusion ("rrf") or distribution-based score
    fusion ("dbsf").
    """
    sparse_query: Optional[SparseVector] = None
    sparse_vector_name: Optional[str] = None
    fusion: str = FUSION_RRF
    prefetch_k: int = 0


@dataclass
class PaginationInfo:
    page: int
    page_size: int
    has_next: bool
    has_previous: bool
    previous_page: int
    next_page: int
    total: Optional[int] = None
    total_pages: Optional[int] = None


@dataclass
class SearchResult:
    documents: List[Document]
    max_score: float = 0.0
    min_score: float = 0.0
    query_time_ms: float = 0.0
    pagination: Optional[PaginationInfo] = None


# =============================================================================
# Normalized Errors
# =============================================================================

class VectorStoreError(Exception):
    """
    Base exception for all vector store errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (UPPER_SNAKE_CASE)
        retry_after_ms: Suggested delay before retry (None if not retryable)
        details: Additional context (JSON-serializable)
    """
    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[str] = None,
        retry_after_ms: Optional[int] = None,
        details: Optional[Mapping[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.retry_after_ms = retry_after_ms
        self.details = dict(details or {})

    def asdict(self) -> Dict[str, Any]:
        return {
            "error": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "retry_after_ms": self.retry_after_ms,
            "details": {k: self.details[k] for k in sorted(self.details)},
        }

# Subclasses set default `code` where not explicitly provided.

class NotConnected(VectorStoreError):
    """Operation attempted while the store is disconnected."""
    def __init__(self, message: str = "not connected to vector engine", **kwargs: Any):
        kwargs.setdefault("code", "NOT_CONNECTED")
        super().__init__(message, **kwargs)

class ConnectError(VectorStoreError):
    """Dial or health-check failure. Not retried automatically."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "CONNECT_ERROR")
        super().__init__(message, **kwargs)

class InvalidOptions(VectorStoreError):
    """Caller violated an input contract."""
    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        reason: Optional[str] = None,
        **kwargs: Any,
    ):
        kwargs.setdefault("code", "INVALID_OPTIONS")
        details = dict(kwargs.pop("details", None) or {})
        if field is not None:
            details.setdefault("field", field)
        if reason is not None:
            details.setdefault("reason", reason)
        super().__init__(message, details=details, **kwargs)
        self.field = field
        self.reason = reason

class DeleteSelectorRequired(InvalidOptions):
    def __init__(self, message: str = "exactly one of ids or filter must be provided", **kwargs: Any):
        kwargs.setdefault("code", "DELETE_SELECTOR_REQUIRED")
        kwargs.setdefault("field", "ids|filter")
        super().__init__(message, **kwargs)

class ModeRequiresBothVectors(InvalidOptions):
    def __init__(self, message: str = "vector mode 'both' requires dense and sparse vectors", **kwargs: Any):
        kwargs.setdefault("code", "MODE_REQUIRES_BOTH_VECTORS")
        kwargs.setdefault("field", "vector_mode")
        super().__init__(message, **kwargs)

class NilOptionInBatch(InvalidOptions):
    def __init__(self, index: int, **kwargs: Any):
        kwargs.setdefault("code", "NIL_OPTION_IN_BATCH")
        kwargs.setdefault("field", f"options[{index}]")
        kwargs.setdefault("reason", "nil entry")
        super().__init__(f"batch search option at index {index} is None", **kwargs)
        self.index = index

class NamedVectorsRequired(VectorStoreError):
    """Request needs a named-vector collection but the target is single-vector."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "NAMED_VECTORS_REQUIRED")
        super().__init__(message, **kwargs)

class SingleVectorOnly(VectorStoreError):
    """Request names sub-vectors for a layout that carries a single vector."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "SINGLE_VECTOR_ONLY")
        super().__init__(message, **kwargs)

class InvalidFilter(VectorStoreError):
    """Filter translation produced no conditions."""
    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", "INVALID_FILTER")
        super().__init__(message, **kwargs)

class DocumentBatchError(VectorStoreError):
    """
    Writing one batch failed.

    `added_ids` holds the ids of every document written before the failing
    batch, in input order.
    """
    def __init__(self, message: str, *, batch_index: int, added_ids: Sequence[str] = (), **kwargs: Any):
        kwargs.setdefault("code", "DOCUMENT_BATCH_ERROR")
        details = dict(kwargs.pop("details", None) or {})
        details.setdefault("batch_index", batch_index)
        details.setdefault("added", len(added_ids))
        super().__init__(message, details=details, **kwargs)
        self.batch_index = batch_index
        self.added_ids = list(added_ids)

class EngineError(VectorStoreError):
    """Transport or engine-side failure; the cause is chained."""
    default_code = "ENGINE_ERROR"

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("code", self.default_code)
        super().__init__(message, **kwargs)

class CreateFailed(EngineError):
    default_code = "CREATE_FAILED"

class DescribeFailed(EngineError):
    default_code = "DESCRIBE_FAILED"

class DropFailed(EngineError):
    default_code = "DROP_FAILED"

class GetFailed(EngineError):
    default_code = "GET_FAILED"

class UpsertFailed(EngineError):
    default_code = "UPSERT_FAILED"

class DeleteFailed(EngineError):
    default_code = "DELETE_FAILED"

class SearchFailed(EngineError):
    default_code = "SEARCH_FAILED"

class ScrollFailed(EngineError):
    default_code = "SCROLL_FAILED"

class CountFailed(EngineError):
    default_code = "COUNT_FAILED"

class SnapshotFailed(EngineError):
    default_code = "SNAPSHOT_FAILED"

class Cancelled(VectorStoreError):
    """The caller's cancellation token fired."""
    def __init__(self, message: str = "operation cancelled", **kwargs: Any):
        kwargs.setdefault("code", "CANCELLED")
        super().__init__(message, **kwargs)

class DeadlineExceeded(VectorStoreError):
    """Operation exceeded its deadline."""
    def __init__(self, message: str = "operation timed out", **kwargs: Any):
        kwargs.setdefault("code", "DEADLINE_EXCEEDED")
        super().__init__(message, **kwargs)

class BatchPartialFailure(VectorStoreError):
    """
    At least one sub-search of a batch failed.

    Attributes:
        errors: index -> exception for every failed slot
        results: slot list, same length as the batch; None where failed
    """
    def __init__(
        self,
        errors: Mapping[int, BaseException],
        results: Sequence[Optional[SearchResult]],
        **kwargs: Any,
    ):
        kwargs.setdefault("code", "BATCH_PARTIAL_FAILURE")
        failed = sorted(errors)
        parts = "; ".join(f"[{i}] {errors[i]}" for i in failed)
        super().__init__(
            f"{len(failed)} of {len(results)} searches failed: {parts}",
            details={"failed_indices": failed},
            **kwargs,
        )
        self.errors = dict(errors)
        self.results = list(results)


# =============================================================================
# Context (deadlines and cancellation)
# =============================================================================

@dataclass(frozen=True)
class OperationContext:
    """
    Per-call context threaded through every store operation.

    Attributes:
        request_id: Correlation identifier
        deadline_ms: Absolute epoch milliseconds when the operation should time out
        cancel_event: Cooperative cancellation token; setting it aborts the call
        tenant: Multi-tenant scope (hashed before it reaches metrics)
        attrs: Free-form attributes for middleware
    """
    request_id: Optional[str] = None
    deadline_ms: Optional[int] = None
    cancel_event: Optional[asyncio.Event] = None
    tenant: Optional[str] = None
    attrs: Mapping[str, Any] = None

    def __post_init__(self) -> None:
        if self.attrs is None:
            object.__setattr__(self, "attrs", {})

    @classmethod
    def with_timeout(cls, timeout_ms: int, **kwargs: Any) -> "OperationContext":
        return cls(deadline_ms=int(time.time() * 1000) + int(timeout_ms), **kwargs)

    def remaining_ms(self) -> Optional[int]:
        """
        Return remaining milliseconds until deadline, or None if no deadline set.
        Non-negative (0 if expired).
        """
        if self.deadline_ms is None:
            return None
        now_ms = int(time.time() * 1000)
        return max(0, self.deadline_ms - now_ms)

    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


# =============================================================================
# Metrics Interface
# =============================================================================

class MetricsSink(Protocol):
    """Low-cardinality metrics sink."""
    def observe(
        self,
        *,
        component: str,
        op: str,
        ms: float,
        ok: bool,
        code: str = "OK",
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None: ...

    def counter(
        self,
        *,
        component: str,
        name: str,
        value: int = 1,
        extra: Optional[Mapping[str, Any]] = None,
    ) -> None: ...


class NoopMetrics:
    def observe(self, **_: Any) -> None: ...
    def counter(self, **_: Any) -> None: ...


# =============================================================================
# Small TTL cache (thread-safe)
# =============================================================================

class TTLCache:
    """Very small in-memory TTL cache guarded by a lock."""
    def __init__(self, ttl_s: float) -> None:
        self._ttl_s = max(0.0, float(ttl_s))
        self._store: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        now = time.monotonic()
        with self._lock:
            item = self._store.get(key)
            if not item:
                return None
            expires_at, value = item
            if now >= expires_at:
                self._store.pop(key, None)
                return None
            return value

    def set(self, key: str, value: Any) -> None:
        if self._ttl_s <= 0:
            return
        with self._lock:
            self._store[key] = (time.monotonic() + self._ttl_s, value)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()


# =============================================================================
# Base store (validation + instrumentation)
# =============================================================================

class BaseVectorStore:
    """
    Shared validation and metrics plumbing for engine bindings.

    Engine bindings subclass this and implement the document, collection
    and search operations on top of their native client.
    """

    _component = "vector"

    def __init__(self, *, metrics: Optional[MetricsSink] = None) -> None:
        self._metrics: MetricsSink = metrics or NoopMetrics()

    @staticmethod
    def _require_non_empty(name: str, value: Any) -> None:
        if not isinstance(value, str) or not value.strip():
            raise InvalidOptions(f"{name} must be a non-empty string", field=name, reason="empty")

    @staticmethod
    def _require_options(name: str, options: Any) -> None:
        if options is None:
            raise InvalidOptions(f"{name} must not be None", field=name, reason="nil options")

    @staticmethod
    def _validate_vector(name: str, vector: Any) -> None:
        if not vector or not isinstance(vector, (list, tuple)):
            raise InvalidOptions(f"{name} must be a non-empty list of floats", field=name, reason="empty")
        if not all(isinstance(x, (int, float)) and not isinstance(x, bool) for x in vector):
            raise InvalidOptions(f"{name} must contain only numeric values", field=name, reason="non-numeric")

    @staticmethod
    def _tenant_hash(tenant: Optional[str]) -> Optional[str]:
        if not tenant:
            return None
        return hashlib.sha256(tenant.encode()).hexdigest()[:12]

    def _record(
        self,
        op: str,
        t0: float,
        ok: bool,
        *,
        code: str = "OK",
        ctx: Optional[OperationContext] = None,
        **extra: Any,
    ) -> None:
        try:
            ms = (time.monotonic() - t0) * 1000.0
            x = dict(extra or {})
            if ctx:
                tenant_h = self._tenant_hash(ctx.tenant)
                if tenant_h:
                    x.setdefault("tenant_hash", tenant_h)
            self._metrics.observe(
                component=self._component,
                op=op,
                ms=ms,
                ok=ok,
                code=code,
                extra=x or None,
            )
        except Exception:  # noqa: BLE001
            # Never let metrics recording break the operation
            LOG.debug("metrics sink failed for op=%s", op, exc_info=True)

    @staticmethod
    def _fail_if_done(ctx: Optional[OperationContext]) -> None:
        """Fail fast when the caller already cancelled or the deadline passed."""
        if ctx is None:
            return
        if ctx.cancelled():
            raise Cancelled(details={"preflight": True})
        if ctx.deadline_ms is not None and ctx.remaining_ms() == 0:
            raise DeadlineExceeded("operation timed out (preflight)", details={"preflight": True})

    @staticmethod
    def _error_code(exc: BaseException) -> str:
        return getattr(exc, "code", None) or type(exc).__name__.upper()

    @contextmanager
    def _observe(self, op: str, ctx: Optional[OperationContext] = None, **extra: Any) -> Iterator[None]:
        """Record one metrics observation for the wrapped block."""
        t0 = time.monotonic()
        try:
            yield
        except Exception as exc:
            self._record(op, t0, False, code=self._error_code(exc), ctx=ctx, **extra)
            raise
        self._record(op, t0, True, ctx=ctx, **extra)
