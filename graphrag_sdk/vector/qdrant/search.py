# graphrag_sdk/vector/qdrant/search.py
# SPDX-License-Identifier: Apache-2.0
"""
Search on Qdrant: similarity, score threshold, MMR, hybrid and batch.

All variants share one preamble: validate options, connect lazily, translate
the metadata filter, resolve which dense sub-vector to query (named-vector
collections only) and bound the engine call by the earlier of the caller's
deadline and `options.timeout`.

Pagination
----------
With ``page >= 1`` and ``page_size > 0`` the engine is asked for
``page * page_size + 1`` hits; the window ``[(page-1)*page_size,
page*page_size)`` is returned and the extra hit only decides `has_next`.
"""

from __future__ import annotations

import asyncio
import math
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

from qdrant_client.http import models

from graphrag_sdk.vector.vector_base import (
    DEFAULT_MAX_RESULTS,
    DEFAULT_SEARCH_K,
    FUSION_DBSF,
    FUSION_RRF,
    BatchPartialFailure,
    Document,
    EngineError,
    HybridSearchOptions,
    InvalidOptions,
    MMRSearchOptions,
    NamedVectorsRequired,
    NilOptionInBatch,
    OperationContext,
    PaginationInfo,
    ScoreThresholdSearchOptions,
    SearchFailed,
    SearchOptions,
    SearchResult,
)
from graphrag_sdk.vector.qdrant.codec import (
    dense_list,
    extract_dense,
    payload_selector,
    point_to_document,
    to_engine_sparse,
)
from graphrag_sdk.vector.qdrant.document import QdrantDocuments
from graphrag_sdk.vector.qdrant.filters import optional_filter
from graphrag_sdk.vector.qdrant.layout import (
    CollectionLayout,
    NamedLayout,
    score_passes,
    strictest_threshold,
)
from graphrag_sdk.vector.qdrant.mmr import mmr_select

MAX_BATCH_CONCURRENCY = 32

_FUSIONS = {
    FUSION_RRF: models.Fusion.RRF,
    FUSION_DBSF: models.Fusion.DBSF,
}


class QdrantSearch(QdrantDocuments):
    """Similarity, threshold, MMR, hybrid and batch search."""

    # ------------------------------ helpers -------------------------------- #

    def _validate_search(self, options: Optional[SearchOptions]) -> None:
        self._require_options("options", options)
        self._require_non_empty("collection_name", options.collection_name)
        self._validate_vector("query_vector", options.query_vector)

    async def _search_layout(self, name: str, ctx: Optional[OperationContext]) -> CollectionLayout:
        try:
            return await self.layout_of(name, ctx=ctx)
        except EngineError as exc:
            raise SearchFailed(
                f"search on {name!r} failed: {exc.message}",
                details={**exc.details, "collection": name},
            ) from exc

    @staticmethod
    def _dense_using(layout: CollectionLayout, requested: Optional[str]) -> Optional[str]:
        if isinstance(layout, NamedLayout):
            return layout.resolve_dense(requested)
        return None

    @staticmethod
    def _window(options: SearchOptions, k: Optional[int] = None) -> Tuple[bool, int]:
        """(paginated, engine limit) for a search request."""
        paginated = options.page >= 1 and options.page_size > 0
        if paginated:
            limit = options.page * options.page_size + 1
        else:
            limit = k if k is not None else options.k
            if limit <= 0:
                limit = DEFAULT_SEARCH_K
        cap = options.max_results if options.max_results > 0 else DEFAULT_MAX_RESULTS
        return paginated, min(limit, cap)

    @staticmethod
    def _projection(options: SearchOptions) -> Dict[str, Any]:
        """point_to_document keywords for the requested payload projection."""
        return {
            "include_vector": options.with_vectors,
            "include_content": options.include_content,
            "include_metadata": options.include_metadata,
            "fields": options.fields,
        }

    @staticmethod
    def _search_params(options: SearchOptions) -> Optional[models.SearchParams]:
        if options.hnsw_ef is None and not options.exact:
            return None
        return models.SearchParams(hnsw_ef=options.hnsw_ef, exact=options.exact)

    async def _query_dense(
        self,
        client: Any,
        options: SearchOptions,
        ctx: Optional[OperationContext],
        *,
        op: str,
        using: Optional[str],
        limit: int,
        flt: Optional[models.Filter],
        with_vectors: Any = False,
        score_threshold: Optional[float] = None,
    ) -> List[Any]:
        response = await self._call(
            client.query_points,
            op,
            ctx,
            error_cls=SearchFailed,
            timeout_ms=options.timeout,
            collection_name=options.collection_name,
            query=dense_list(options.query_vector),
            using=using,
            query_filter=flt,
            limit=limit,
            score_threshold=score_threshold,
            search_params=self._search_params(options),
            with_payload=payload_selector(options.include_content, options.include_metadata, options.fields),
            with_vectors=with_vectors,
        )
        return list(response.points or [])

    async def _finish(
        self,
        client: Any,
        docs: List[Document],
        options: SearchOptions,
        flt: Optional[models.Filter],
        ctx: Optional[OperationContext],
        t0: float,
        paginated: bool,
    ) -> SearchResult:
        pagination = None
        if paginated:
            start = (options.page - 1) * options.page_size
            end = start + options.page_size
            has_next = len(docs) > end
            docs = docs[start:end]
            total = total_pages = None
            if options.include_total:
                total = await self._approximate_count(client, options.collection_name, flt, ctx)
                total_pages = int(math.ceil(total / options.page_size)) if total else 0
            pagination = PaginationInfo(
                page=options.page,
                page_size=options.page_size,
                has_next=has_next,
                has_previous=options.page > 1,
                previous_page=options.page - 1 if options.page > 1 else 0,
                next_page=options.page + 1 if has_next else 0,
                total=total,
                total_pages=total_pages,
            )
        return SearchResult(
            documents=docs,
            max_score=max((d.score for d in docs), default=0.0),
            min_score=min((d.score for d in docs), default=0.0),
            query_time_ms=(time.monotonic() - t0) * 1000.0,
            pagination=pagination,
        )

    # ------------------------------ similarity ----------------------------- #

    async def search_similar(
        self,
        options: SearchOptions,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> SearchResult:
        """k-nearest neighbours of `query_vector`, best first."""
        self._validate_search(options)
        with self._observe("search_similar", ctx, collection=options.collection_name):
            return await self._similarity(options, ctx, op="search_similar")

    async def search_with_score_threshold(
        self,
        options: ScoreThresholdSearchOptions,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> SearchResult:
        """
        Similarity search keeping only hits that clear `score_threshold`.

        Cosine and dot collections keep score >= threshold. Euclidean and
        manhattan collections score by distance and keep score <= threshold.
        """
        self._validate_search(options)
        with self._observe("search_with_score_threshold", ctx, collection=options.collection_name):
            return await self._similarity(
                options, ctx, op="search_with_score_threshold", score_threshold=options.score_threshold
            )

    async def _similarity(
        self,
        options: SearchOptions,
        ctx: Optional[OperationContext],
        *,
        op: str,
        score_threshold: Optional[float] = None,
    ) -> SearchResult:
        t0 = time.monotonic()
        client = await self.try_connect(ctx=ctx)
        flt = optional_filter(options.filter)
        layout = await self._search_layout(options.collection_name, ctx)
        using = self._dense_using(layout, options.vector_using)
        paginated, limit = self._window(options)
        cutoff = strictest_threshold(layout.distance, score_threshold, options.min_score)

        points = await self._query_dense(
            client,
            options,
            ctx,
            op=op,
            using=using,
            limit=limit,
            flt=flt,
            with_vectors=options.with_vectors,
            score_threshold=cutoff,
        )
        docs = [point_to_document(p, dense_name=using, **self._projection(options)) for p in points]
        if cutoff is not None:
            docs = [d for d in docs if score_passes(layout.distance, d.score, cutoff)]
        return await self._finish(client, docs, options, flt, ctx, t0, paginated)

    # ------------------------------ MMR ------------------------------------ #

    async def search_mmr(
        self,
        options: MMRSearchOptions,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> SearchResult:
        """
        Diversity-aware search.

        Fetches `fetch_k` candidates (default 2 * k) and re-ranks them with MMR.
        Each returned document's score is its MMR score. k=0 returns no
        documents.
        """
        self._validate_search(options)
        with self._observe("search_mmr", ctx, collection=options.collection_name):
            t0 = time.monotonic()
            paginated = options.page >= 1 and options.page_size > 0
            if not paginated and options.k <= 0:
                return SearchResult(documents=[], query_time_ms=(time.monotonic() - t0) * 1000.0)

            client = await self.try_connect(ctx=ctx)
            flt = optional_filter(options.filter)
            layout = await self._search_layout(options.collection_name, ctx)
            using = self._dense_using(layout, options.vector_using)

            _, final_k = self._window(options, k=options.k)
            fetch_k = options.fetch_k if options.fetch_k > 0 else 2 * final_k
            cap = options.max_results if options.max_results > 0 else DEFAULT_MAX_RESULTS
            fetch_k = min(fetch_k, cap)

            points = await self._query_dense(
                client,
                options,
                ctx,
                op="search_mmr",
                using=using,
                limit=fetch_k,
                flt=flt,
                with_vectors=[using] if using else True,
                score_threshold=options.min_score,
            )
            vectors = [extract_dense(p.vector, using) for p in points]
            picks = mmr_select(
                options.query_vector,
                vectors,
                final_k,
                options.lambda_mult,
                fallback_scores=[float(p.score) for p in points],
            )

            docs: List[Document] = []
            for idx, score in picks:
                doc = point_to_document(points[idx], dense_name=using, **self._projection(options))
                doc.score = score
                docs.append(doc)
            return await self._finish(client, docs, options, flt, ctx, t0, paginated)

    # ------------------------------ hybrid --------------------------------- #

    async def search_hybrid(
        self,
        options: HybridSearchOptions,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> SearchResult:
        """Dense + sparse prefetch fused engine-side (RRF or DBSF)."""
        self._validate_search(options)
        if options.sparse_query is None:
            raise InvalidOptions("sparse_query is required for hybrid search", field="sparse_query")
        fusion = _FUSIONS.get((options.fusion or FUSION_RRF).lower())
        if fusion is None:
            raise InvalidOptions(f"unknown fusion {options.fusion!r}", field="fusion", reason="unknown")

        with self._observe("search_hybrid", ctx, collection=options.collection_name):
            t0 = time.monotonic()
            client = await self.try_connect(ctx=ctx)
            flt = optional_filter(options.filter)
            layout = await self._search_layout(options.collection_name, ctx)
            if not isinstance(layout, NamedLayout) or layout.resolve_sparse(options.sparse_vector_name) is None:
                raise NamedVectorsRequired(
                    f"hybrid search needs a collection with a sparse vector; {options.collection_name!r} has none",
                    details={"collection": options.collection_name},
                )
            dense_name = layout.resolve_dense(options.vector_using)
            sparse_name = layout.resolve_sparse(options.sparse_vector_name)
            paginated, limit = self._window(options)
            prefetch_k = options.prefetch_k if options.prefetch_k > 0 else 2 * limit

            response = await self._call(
                client.query_points,
                "search_hybrid",
                ctx,
                error_cls=SearchFailed,
                timeout_ms=options.timeout,
                collection_name=options.collection_name,
                prefetch=[
                    models.Prefetch(
                        query=dense_list(options.query_vector),
                        using=dense_name,
                        filter=flt,
                        limit=prefetch_k,
                    ),
                    models.Prefetch(
                        query=to_engine_sparse(options.sparse_query),
                        using=sparse_name,
                        filter=flt,
                        limit=prefetch_k,
                    ),
                ],
                query=models.FusionQuery(fusion=fusion),
                query_filter=flt,
                limit=limit,
                score_threshold=options.min_score,
                with_payload=payload_selector(options.include_content, options.include_metadata, options.fields),
                with_vectors=options.with_vectors,
            )
            docs = [
                point_to_document(
                    p, dense_name=dense_name, sparse_name=sparse_name, **self._projection(options)
                )
                for p in response.points or []
            ]
            return await self._finish(client, docs, options, flt, ctx, t0, paginated)

    # ------------------------------ batch ---------------------------------- #

    async def _dispatch(self, options: Any, ctx: Optional[OperationContext]) -> SearchResult:
        if isinstance(options, MMRSearchOptions):
            return await self.search_mmr(options, ctx=ctx)
        if isinstance(options, HybridSearchOptions):
            return await self.search_hybrid(options, ctx=ctx)
        if isinstance(options, ScoreThresholdSearchOptions):
            return await self.search_with_score_threshold(options, ctx=ctx)
        if isinstance(options, SearchOptions):
            return await self.search_similar(options, ctx=ctx)
        raise InvalidOptions(
            f"unsupported search options type {type(options).__name__}",
            field="options",
            reason="unknown variant",
        )

    async def batch_search(
        self,
        options: Sequence[Any],
        *,
        ctx: Optional[OperationContext] = None,
    ) -> List[SearchResult]:
        """
        Run several searches concurrently (at most 32 in flight).

        Returns one result per option, in order. If any search fails a
        BatchPartialFailure is raised; its `results` list has a SearchResult
        for every successful slot and None for each failed one, and its
        `errors` map index -> exception.
        """
        if options is None:
            raise InvalidOptions("options must not be None", field="options", reason="nil options")
        options = list(options)
        for i, opt in enumerate(options):
            if opt is None:
                raise NilOptionInBatch(i)
        if not options:
            return []

        with self._observe("batch_search", ctx, size=len(options)):
            semaphore = asyncio.Semaphore(min(len(options), MAX_BATCH_CONCURRENCY))
            results: List[Optional[SearchResult]] = [None] * len(options)
            errors: Dict[int, BaseException] = {}

            async def run_one(index: int, opt: Any) -> None:
                async with semaphore:
                    try:
                        results[index] = await self._dispatch(opt, ctx)
                    except Exception as exc:  # noqa: BLE001
                        errors[index] = exc

            await asyncio.gather(*(run_one(i, opt) for i, opt in enumerate(options)))
            if errors:
                raise BatchPartialFailure(errors, results)
            return results
