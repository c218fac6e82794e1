# graphrag_sdk/vector/qdrant/stats.py
# SPDX-License-Identifier: Apache-2.0
"""
Collection statistics and optimizer tuning.

Qdrant reports point counts and configuration but no query statistics, so
query counts and latencies are tallied in-process from the search operations
this store served.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Dict, Optional, Tuple

from qdrant_client.http import models

from graphrag_sdk.vector.vector_base import (
    INDEX_HNSW,
    EngineError,
    OperationContext,
    OptimizeOptions,
    SearchEngineStats,
    VectorStoreStats,
)
from graphrag_sdk.vector.qdrant.layout import NamedLayout, layout_from_info
from graphrag_sdk.vector.qdrant.search import QdrantSearch

logger = logging.getLogger(__name__)

BYTES_PER_FLOAT = 4
HNSW_OVERHEAD = 1.5


class QueryTally:
    """Per-collection query counters (count, errors, total milliseconds)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: Dict[str, Tuple[int, int, float]] = {}

    def add(self, collection: str, ms: float, ok: bool) -> None:
        with self._lock:
            count, errors, total_ms = self._data.get(collection, (0, 0, 0.0))
            self._data[collection] = (count + 1, errors + (0 if ok else 1), total_ms + ms)

    def snapshot(self, collection: str) -> Tuple[int, float, float]:
        """(total queries, average ms, error rate)."""
        with self._lock:
            count, errors, total_ms = self._data.get(collection, (0, 0, 0.0))
        if count == 0:
            return 0, 0.0, 0.0
        return count, total_ms / count, errors / count


def _enum_value(value: Any) -> Any:
    return getattr(value, "value", value)


class QdrantStats(QdrantSearch):
    """Stats, search-engine stats and optimize."""

    _query_tally: QueryTally

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
        super()._record(op, t0, ok, code=code, ctx=ctx, **extra)
        collection = extra.get("collection")
        if collection and op.startswith("search"):
            self._query_tally.add(collection, (time.monotonic() - t0) * 1000.0, ok)

    @staticmethod
    def _index_size(points: int, layout: Any) -> int:
        if isinstance(layout, NamedLayout) and layout.dense_names:
            # every dense sub-vector is indexed separately
            dims = layout.dimension * len(layout.dense_names)
        else:
            dims = layout.dimension
        return int(points * dims * BYTES_PER_FLOAT * HNSW_OVERHEAD)

    async def get_stats(self, collection_name: str, *, ctx: Optional[OperationContext] = None) -> VectorStoreStats:
        self._require_non_empty("collection_name", collection_name)
        with self._observe("get_stats", ctx):
            info = await self._collection_info(collection_name, ctx)
            layout = layout_from_info(info)
            points = self._points_count(info)
            params = getattr(getattr(info, "config", None), "params", None)

            extra: Dict[str, Any] = {
                "status": _enum_value(getattr(info, "status", None)),
                "optimizer_status": str(_enum_value(getattr(info, "optimizer_status", None)) or ""),
                "segments_count": getattr(info, "segments_count", None),
                "indexed_vectors_count": getattr(info, "indexed_vectors_count", None),
                "layout": "named" if isinstance(layout, NamedLayout) else "single",
                "replication_factor": getattr(params, "replication_factor", None),
                "write_consistency_factor": getattr(params, "write_consistency_factor", None),
                "shard_number": getattr(params, "shard_number", None),
            }
            return VectorStoreStats(
                total_vectors=points,
                dimension=layout.dimension,
                index_type=INDEX_HNSW,
                distance_metric=layout.distance,
                index_size_bytes=self._index_size(points, layout),
                memory_usage_bytes=points * layout.dimension * BYTES_PER_FLOAT,
                extra_stats={k: v for k, v in extra.items() if v is not None},
            )

    async def get_search_engine_stats(
        self,
        collection_name: str,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> SearchEngineStats:
        self._require_non_empty("collection_name", collection_name)
        with self._observe("get_search_engine_stats", ctx):
            info = await self._collection_info(collection_name, ctx)
            points = self._points_count(info)
            total, avg_ms, error_rate = self._query_tally.snapshot(collection_name)
            return SearchEngineStats(
                document_count=points,
                index_size_bytes=self._index_size(points, layout_from_info(info)),
                total_queries=total,
                average_query_time_ms=avg_ms,
                error_rate=error_rate,
            )

    async def optimize(
        self,
        collection_name: str,
        options: Optional[OptimizeOptions] = None,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> None:
        """Apply optimizer settings to an existing collection."""
        self._require_non_empty("collection_name", collection_name)
        opts = options or OptimizeOptions()
        with self._observe("optimize", ctx):
            client = self._require_client()
            exists = await self._call(client.collection_exists, "optimize", ctx, collection_name=collection_name)
            if not exists:
                raise EngineError(
                    f"collection {collection_name!r} does not exist",
                    details={"op": "optimize", "collection": collection_name},
                )
            diff = models.OptimizersConfigDiff(
                indexing_threshold=opts.indexing_threshold,
                default_segment_number=opts.default_segment_number,
                max_segment_size=opts.max_segment_size,
                memmap_threshold=opts.memmap_threshold,
                flush_interval_sec=opts.flush_interval_sec,
            )
            await self._call(
                client.update_collection,
                "optimize",
                ctx,
                collection_name=collection_name,
                optimizers_config=diff,
            )
            logger.debug("optimizer settings applied to %s", collection_name)
