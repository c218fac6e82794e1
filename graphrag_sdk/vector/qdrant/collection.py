# graphrag_sdk/vector/qdrant/collection.py
# SPDX-License-Identifier: Apache-2.0
"""
Collection management on Qdrant.

`create_collection` picks the physical layout: a single unnamed dense vector,
or (with `enable_sparse_vectors`) a named dense sub-vector plus a named
sparse sub-vector. `layout_of` reads the layout back from the engine and
caches it for a short TTL; create and drop invalidate the cached entry.

Qdrant keeps collections resident, so load/release are accepted no-ops.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from qdrant_client.http import models

from graphrag_sdk.vector.vector_base import (
    DEFAULT_DENSE_VECTOR_NAME,
    DEFAULT_SPARSE_VECTOR_NAME,
    INDEX_HNSW,
    CollectionInfo,
    CreateCollectionOptions,
    CreateFailed,
    DescribeFailed,
    DropFailed,
    EngineError,
    InvalidOptions,
    LoadState,
    OperationContext,
    SingleVectorOnly,
    TTLCache,
    normalize_distance,
)
from graphrag_sdk.vector.qdrant.connection import QdrantConnection
from graphrag_sdk.vector.qdrant.layout import (
    CollectionLayout,
    layout_from_info,
    to_qdrant_distance,
)

logger = logging.getLogger(__name__)


class QdrantCollections(QdrantConnection):
    """Collection lifecycle and layout detection."""

    _layouts: TTLCache

    async def create_collection(
        self,
        options: CreateCollectionOptions,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> None:
        self._require_options("options", options)
        self._require_non_empty("name", options.name)
        if not isinstance(options.dimension, int) or options.dimension <= 0:
            raise InvalidOptions("dimension must be a positive integer", field="dimension", reason="required")

        with self._observe("create_collection", ctx):
            client = self._require_client()
            distance = to_qdrant_distance(normalize_distance(options.distance_metric))
            dense = models.VectorParams(size=options.dimension, distance=distance)

            kwargs: dict = {"collection_name": options.name}
            if options.enable_sparse_vectors:
                dense_name = options.dense_vector_name or DEFAULT_DENSE_VECTOR_NAME
                sparse_name = options.sparse_vector_name or DEFAULT_SPARSE_VECTOR_NAME
                if dense_name == sparse_name:
                    raise InvalidOptions(
                        "dense and sparse vector names must differ",
                        field="sparse_vector_name",
                        reason="duplicate name",
                    )
                kwargs["vectors_config"] = {dense_name: dense}
                kwargs["sparse_vectors_config"] = {sparse_name: models.SparseVectorParams()}
            else:
                if options.sparse_vector_name:
                    raise SingleVectorOnly(
                        "sparse_vector_name requires enable_sparse_vectors",
                        details={"collection": options.name},
                    )
                kwargs["vectors_config"] = dense

            hnsw = self._hnsw_config(options)
            if hnsw is not None:
                kwargs["hnsw_config"] = hnsw

            await self._call(client.create_collection, "create_collection", ctx, error_cls=CreateFailed, **kwargs)
            self._layouts.invalidate(options.name)
            logger.debug("created collection %s (sparse=%s)", options.name, options.enable_sparse_vectors)

    @staticmethod
    def _hnsw_config(options: CreateCollectionOptions) -> Optional[models.HnswConfigDiff]:
        if (options.index_type or "").strip().lower() != INDEX_HNSW:
            return None
        if options.m <= 0 and options.ef_construction <= 0:
            return None
        return models.HnswConfigDiff(
            m=options.m if options.m > 0 else None,
            ef_construct=options.ef_construction if options.ef_construction > 0 else None,
        )

    async def list_collections(self, *, ctx: Optional[OperationContext] = None) -> List[str]:
        with self._observe("list_collections", ctx):
            client = self._require_client()
            response = await self._call(client.get_collections, "list_collections", ctx)
            return [c.name for c in (response.collections or [])]

    async def collection_exists(self, name: str, *, ctx: Optional[OperationContext] = None) -> bool:
        self._require_non_empty("name", name)
        with self._observe("collection_exists", ctx):
            client = self._require_client()
            return bool(await self._call(client.collection_exists, "collection_exists", ctx, collection_name=name))

    async def _collection_info(self, name: str, ctx: Optional[OperationContext]) -> Any:
        client = self._require_client()
        return await self._call(
            client.get_collection,
            "describe_collection",
            ctx,
            error_cls=DescribeFailed,
            collection_name=name,
        )

    async def describe_collection(self, name: str, *, ctx: Optional[OperationContext] = None) -> CollectionInfo:
        """Return (total_vectors, dimension, index_type, distance) for a collection."""
        self._require_non_empty("name", name)
        with self._observe("describe_collection", ctx):
            info = await self._collection_info(name, ctx)
            layout = layout_from_info(info)
            self._layouts.set(name, layout)
            return CollectionInfo(
                name=name,
                total_vectors=self._points_count(info),
                dimension=layout.dimension,
                index_type=INDEX_HNSW,
                distance_metric=layout.distance,
            )

    @staticmethod
    def _points_count(info: Any) -> int:
        count = getattr(info, "points_count", None)
        if count is None:
            count = getattr(info, "vectors_count", None)
        return int(count or 0)

    async def drop_collection(self, name: str, *, ctx: Optional[OperationContext] = None) -> None:
        """Delete a collection. A missing collection is an error."""
        self._require_non_empty("name", name)
        with self._observe("drop_collection", ctx):
            client = self._require_client()
            exists = await self._call(
                client.collection_exists, "drop_collection", ctx, error_cls=DropFailed, collection_name=name
            )
            if not exists:
                raise DropFailed(f"collection {name!r} does not exist", details={"collection": name})
            ok = await self._call(
                client.delete_collection, "drop_collection", ctx, error_cls=DropFailed, collection_name=name
            )
            self._layouts.invalidate(name)
            if ok is False:
                raise DropFailed(f"engine refused to drop {name!r}", details={"collection": name})

    async def load_collection(self, name: str, *, ctx: Optional[OperationContext] = None) -> None:
        self._require_non_empty("name", name)
        self._require_client()

    async def release_collection(self, name: str, *, ctx: Optional[OperationContext] = None) -> None:
        self._require_non_empty("name", name)
        self._require_client()

    async def get_load_state(self, name: str, *, ctx: Optional[OperationContext] = None) -> LoadState:
        exists = await self.collection_exists(name, ctx=ctx)
        return LoadState.LOADED if exists else LoadState.NOT_EXIST

    async def layout_of(self, name: str, *, ctx: Optional[OperationContext] = None) -> CollectionLayout:
        """Single or named layout of `name`, cached for a short TTL."""
        cached = self._layouts.get(name)
        if cached is not None:
            return cached
        try:
            info = await self._collection_info(name, ctx)
        except DescribeFailed as exc:
            raise EngineError(
                f"cannot determine vector layout of {name!r}: {exc.message}",
                details={**exc.details, "collection": name},
            ) from exc
        layout = layout_from_info(info)
        self._layouts.set(name, layout)
        return layout

    def invalidate_layout(self, name: Optional[str] = None) -> None:
        if name is None:
            self._layouts.clear()
        else:
            self._layouts.invalidate(name)
