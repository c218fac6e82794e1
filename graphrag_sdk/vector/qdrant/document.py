# graphrag_sdk/vector/qdrant/document.py
# SPDX-License-Identifier: Apache-2.0
"""
Document operations on Qdrant: add, get, delete, list, scroll, count.

Writes
------
Every document becomes one point keyed by `point_id(doc.id)` with payload
``{"id", "content", "metadata"}``. The vectors attached to the point depend
on the collection layout and `vector_mode`:

- single-vector collection: the dense vector only; any sparse vector (or mode
  "both") is rejected with NamedVectorsRequired.
- named-vector collection: "auto" writes whatever the document carries,
  "dense_only"/"sparse_only" write one side if present, "both" requires both.

All points are built (and validated) before the first batch is written.
Batches are written serially so returned ids keep input order. Inserts wait
for the engine to index (`wait=True`); upserts return as soon as the engine
acknowledges.

Reads
-----
`scroll_documents` asks for limit + 1 points; the extra point is not returned
but becomes the continuation cursor, so `has_more` needs no second round-trip.
Scans ordered by a metadata field use a different cursor holding the last
order value, since the engine cannot resume an ordered scan from a point id.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import warnings
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from qdrant_client.http import models

from graphrag_sdk.vector.vector_base import (
    AUTO_ID_CONTENT,
    AUTO_ID_POSITIONAL,
    DEFAULT_BATCH_SIZE,
    DEFAULT_DENSE_VECTOR_NAME,
    DEFAULT_PAGE_LIMIT,
    DEFAULT_SPARSE_VECTOR_NAME,
    VECTOR_MODE_AUTO,
    VECTOR_MODE_BOTH,
    VECTOR_MODE_DENSE_ONLY,
    VECTOR_MODE_SPARSE_ONLY,
    VECTOR_MODES,
    AddDocumentsOptions,
    CountFailed,
    DeleteDocumentsOptions,
    DeleteFailed,
    DeleteSelectorRequired,
    Document,
    DocumentBatchError,
    EngineError,
    GetDocumentsOptions,
    GetFailed,
    InvalidOptions,
    ListDocumentsOptions,
    ListDocumentsResult,
    ModeRequiresBothVectors,
    NamedVectorsRequired,
    OperationContext,
    ScrollFailed,
    ScrollOptions,
    ScrollResult,
    UpsertFailed,
)
from graphrag_sdk.vector.qdrant.codec import (
    PAYLOAD_CONTENT,
    PAYLOAD_ID,
    build_payload,
    dense_list,
    point_to_document,
    to_engine_sparse,
)
from graphrag_sdk.vector.qdrant.collection import QdrantCollections
from graphrag_sdk.vector.qdrant.filters import metadata_key, optional_filter
from graphrag_sdk.vector.qdrant.ids import (
    OrderedCursor,
    content_auto_id,
    decode_ordered_cursor,
    decode_scroll_id,
    encode_ordered_cursor,
    encode_scroll_id,
    point_id,
    positional_auto_id,
)
from graphrag_sdk.vector.qdrant.layout import CollectionLayout, SingleLayout

logger = logging.getLogger(__name__)


def parse_order_by(order_by: Union[str, Sequence[str], None]) -> Optional[models.OrderBy]:
    """First entry of `order_by` as "field[:asc|:desc]" on metadata.<field>."""
    if not order_by:
        return None
    entry = order_by if isinstance(order_by, str) else order_by[0]
    entry = (entry or "").strip()
    direction = models.Direction.ASC
    field_name, sep, suffix = entry.rpartition(":")
    if sep and suffix.strip().lower() in ("asc", "desc"):
        entry = field_name.strip()
        if suffix.strip().lower() == "desc":
            direction = models.Direction.DESC
    if not entry:
        return None
    return models.OrderBy(key=metadata_key(entry), direction=direction)


class QdrantDocuments(QdrantCollections):
    """Document-level reads and writes."""

    # ------------------------------ add ------------------------------------ #

    async def add_documents(
        self,
        options: AddDocumentsOptions,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> List[str]:
        """
        Write documents and return their ids in input order.

        Raises:
            DocumentBatchError: a batch write failed; `added_ids` holds the ids
                written by earlier batches.
            NamedVectorsRequired / ModeRequiresBothVectors: a document does not
                fit the collection layout or vector mode (nothing is written).
        """
        self._require_options("options", options)
        self._require_non_empty("collection_name", options.collection_name)
        if options.vector_mode not in VECTOR_MODES:
            raise InvalidOptions(
                f"unknown vector mode {options.vector_mode!r}",
                field="vector_mode",
                reason="unknown",
            )
        if options.auto_id not in (AUTO_ID_POSITIONAL, AUTO_ID_CONTENT):
            raise InvalidOptions(f"unknown auto_id strategy {options.auto_id!r}", field="auto_id")

        with self._observe("add_documents", ctx, count=len(options.documents or [])):
            client = await self.try_connect(ctx=ctx)
            documents = list(options.documents or [])
            if not documents:
                return []
            batch_size = options.batch_size if options.batch_size > 0 else DEFAULT_BATCH_SIZE

            try:
                layout = await self.layout_of(options.collection_name, ctx=ctx)
            except EngineError as exc:
                raise DocumentBatchError(
                    f"add_documents failed before the first batch: {exc.message}",
                    batch_index=0,
                    details={"collection": options.collection_name},
                ) from exc

            batches = []
            for start in range(0, len(documents), batch_size):
                ids: List[str] = []
                points: List[models.PointStruct] = []
                for j, doc in enumerate(documents[start:start + batch_size]):
                    if doc is None:
                        raise InvalidOptions(
                            f"document at index {start + j} is None",
                            field=f"documents[{start + j}]",
                        )
                    doc_id = doc.id or self._auto_id(options.auto_id, start + j, doc.content)
                    points.append(
                        models.PointStruct(
                            id=point_id(doc_id),
                            vector=self._point_vectors(doc, layout, options),
                            payload=build_payload(dataclasses.replace(doc, id=doc_id)),
                        )
                    )
                    ids.append(doc_id)
                batches.append((ids, points))

            added: List[str] = []
            for batch_index, (ids, points) in enumerate(batches):
                try:
                    await self._call(
                        client.upsert,
                        "add_documents",
                        ctx,
                        error_cls=UpsertFailed,
                        timeout_ms=options.timeout,
                        collection_name=options.collection_name,
                        points=points,
                        wait=not options.upsert,
                    )
                except EngineError as exc:
                    raise DocumentBatchError(
                        f"batch {batch_index} failed: {exc.message}",
                        batch_index=batch_index,
                        added_ids=added,
                        details={"collection": options.collection_name},
                    ) from exc
                added.extend(ids)
                logger.debug(
                    "wrote batch %d (%d points) to %s", batch_index, len(points), options.collection_name
                )
            return added

    @staticmethod
    def _auto_id(strategy: str, position: int, content: str) -> str:
        if strategy == AUTO_ID_CONTENT:
            return content_auto_id(content)
        return positional_auto_id(position, content)

    @staticmethod
    def _point_vectors(
        doc: Document,
        layout: CollectionLayout,
        options: AddDocumentsOptions,
    ) -> Union[List[float], Dict[str, Any]]:
        dense = doc.dense_vector or None
        sparse = doc.sparse_vector
        mode = options.vector_mode

        if mode == VECTOR_MODE_BOTH and (dense is None or sparse is None):
            raise ModeRequiresBothVectors(details={"id": doc.id})

        if isinstance(layout, SingleLayout):
            if mode == VECTOR_MODE_BOTH or (
                sparse is not None and mode in (VECTOR_MODE_AUTO, VECTOR_MODE_SPARSE_ONLY)
            ):
                raise NamedVectorsRequired(
                    f"collection {options.collection_name!r} has a single unnamed vector; "
                    "sparse vectors need a named-vector collection",
                    details={"collection": options.collection_name, "id": doc.id},
                )
            if mode == VECTOR_MODE_SPARSE_ONLY or dense is None:
                return {}
            return dense_list(dense)

        dense_name = (
            options.dense_vector_name
            or options.vector_using
            or layout.dense_name
            or DEFAULT_DENSE_VECTOR_NAME
        )
        sparse_name = options.sparse_vector_name or layout.sparse_name or DEFAULT_SPARSE_VECTOR_NAME
        vectors: Dict[str, Any] = {}
        if dense is not None and mode in (VECTOR_MODE_AUTO, VECTOR_MODE_DENSE_ONLY, VECTOR_MODE_BOTH):
            vectors[dense_name] = dense_list(dense)
        if sparse is not None and mode in (VECTOR_MODE_AUTO, VECTOR_MODE_SPARSE_ONLY, VECTOR_MODE_BOTH):
            vectors[sparse_name] = to_engine_sparse(sparse)
        return vectors

    # ------------------------------ get ------------------------------------ #

    async def get_documents(
        self,
        ids: Sequence[str],
        options: GetDocumentsOptions,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> List[Document]:
        """Fetch documents by id in one round-trip; missing ids are skipped."""
        self._require_options("options", options)
        self._require_non_empty("collection_name", options.collection_name)
        if not ids:
            return []

        with self._observe("get_documents", ctx, count=len(ids)):
            client = await self.try_connect(ctx=ctx)
            keys: List[int] = []
            seen = set()
            for doc_id in ids:
                key = point_id(doc_id)
                if key not in seen:
                    seen.add(key)
                    keys.append(key)

            records = await self._call(
                client.retrieve,
                "get_documents",
                ctx,
                error_cls=GetFailed,
                collection_name=options.collection_name,
                ids=keys,
                with_payload=True if options.include_payload else [PAYLOAD_ID, PAYLOAD_CONTENT],
                with_vectors=options.include_vector,
            )
            by_key = {self._key_of(r.id): r for r in records or []}
            docs: List[Document] = []
            for key in keys:
                record = by_key.get(key)
                if record is None:
                    continue
                docs.append(point_to_document(record, include_vector=options.include_vector))
            return docs

    @staticmethod
    def _key_of(raw: Any) -> Any:
        if isinstance(raw, int):
            return raw
        text = str(raw)
        return int(text) if text.isdigit() else text

    # ------------------------------ delete --------------------------------- #

    async def delete_documents(
        self,
        options: DeleteDocumentsOptions,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> None:
        """Delete by id list or by metadata filter (exactly one of the two)."""
        self._require_options("options", options)
        self._require_non_empty("collection_name", options.collection_name)
        has_ids = bool(options.ids)
        has_filter = bool(options.filter)
        if has_ids == has_filter:
            reason = "both provided" if has_ids else "neither provided"
            raise DeleteSelectorRequired(reason=reason)

        with self._observe("delete_documents", ctx, dry_run=options.dry_run):
            client = self._require_client()
            if has_ids:
                selector: Any = models.PointIdsList(points=[point_id(i) for i in options.ids])
            else:
                selector = models.FilterSelector(filter=optional_filter(options.filter))
            if options.dry_run:
                logger.debug("dry-run delete on %s skipped", options.collection_name)
                return
            await self._call(
                client.delete,
                "delete_documents",
                ctx,
                error_cls=DeleteFailed,
                collection_name=options.collection_name,
                points_selector=selector,
                wait=True,
            )

    # ------------------------------ count ---------------------------------- #

    async def count_documents(
        self,
        collection_name: str,
        *,
        filter: Optional[Mapping[str, Any]] = None,
        exact: bool = True,
        ctx: Optional[OperationContext] = None,
    ) -> int:
        self._require_non_empty("collection_name", collection_name)
        with self._observe("count_documents", ctx):
            client = await self.try_connect(ctx=ctx)
            result = await self._call(
                client.count,
                "count_documents",
                ctx,
                error_cls=CountFailed,
                collection_name=collection_name,
                count_filter=optional_filter(filter),
                exact=exact,
            )
            return int(result.count)

    async def _approximate_count(
        self,
        client: Any,
        collection_name: str,
        flt: Optional[models.Filter],
        ctx: Optional[OperationContext],
    ) -> int:
        """Approximate count; failures degrade to 0."""
        try:
            result = await self._call(
                client.count,
                "count",
                ctx,
                error_cls=CountFailed,
                collection_name=collection_name,
                count_filter=flt,
                exact=False,
            )
        except CountFailed as exc:
            logger.warning("approximate count on %s failed: %s", collection_name, exc.message)
            return 0
        return int(result.count)

    # ------------------------------ list ----------------------------------- #

    async def list_documents(
        self,
        options: ListDocumentsOptions,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> ListDocumentsResult:
        """
        Offset-based listing. Deprecated in favour of `scroll_documents`.

        `offset` is used as the numeric start point id, not a row count.
        """
        warnings.warn(
            "list_documents is deprecated; use scroll_documents",
            DeprecationWarning,
            stacklevel=2,
        )
        self._require_options("options", options)
        self._require_non_empty("collection_name", options.collection_name)
        if options.offset < 0:
            raise InvalidOptions("offset must be >= 0", field="offset", reason="negative")
        limit = options.limit if options.limit > 0 else DEFAULT_PAGE_LIMIT

        with self._observe("list_documents", ctx):
            client = await self.try_connect(ctx=ctx)
            flt = optional_filter(options.filter)
            scroll = self._call(
                client.scroll,
                "list_documents",
                ctx,
                error_cls=ScrollFailed,
                collection_name=options.collection_name,
                scroll_filter=flt,
                limit=limit,
                offset=options.offset if options.offset > 0 else None,
                with_payload=options.include_payload,
                with_vectors=options.include_vector,
            )
            count = self._approximate_count(client, options.collection_name, flt, ctx)
            (records, _next), total = await asyncio.gather(scroll, count)

            docs = [point_to_document(r, include_vector=options.include_vector) for r in records]
            return ListDocumentsResult(
                documents=docs,
                total=total,
                has_more=len(docs) == limit,
                next_offset=options.offset + len(docs),
            )

    # ------------------------------ scroll --------------------------------- #

    async def scroll_documents(
        self,
        options: ScrollOptions,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> ScrollResult:
        """
        One page of a cursor scan.

        Pass the returned `scroll_id` back to continue. A scan started with
        `order_by` keeps its ordering across pages: the cursor records the last
        order value and the points already returned at that value. An
        unparseable `scroll_id` restarts from the beginning.
        """
        self._require_options("options", options)
        self._require_non_empty("collection_name", options.collection_name)
        limit = options.limit if options.limit > 0 else DEFAULT_PAGE_LIMIT

        with self._observe("scroll_documents", ctx):
            client = await self.try_connect(ctx=ctx)
            kwargs: Dict[str, Any] = {
                "collection_name": options.collection_name,
                "scroll_filter": optional_filter(options.filter),
                "limit": limit + 1,
                "with_payload": options.include_payload,
                "with_vectors": options.include_vector,
            }
            ordered = decode_ordered_cursor(options.scroll_id) if options.scroll_id else None
            if ordered is not None:
                return await self._scroll_ordered(client, options, limit, kwargs, ordered, ctx)
            if options.scroll_id:
                offset = decode_scroll_id(options.scroll_id)
                if offset is None:
                    logger.warning("ignoring unparseable scroll_id %r", options.scroll_id)
                kwargs["offset"] = offset
            else:
                order = parse_order_by(options.order_by)
                if order is not None:
                    start = OrderedCursor(
                        key=order.key,
                        descending=order.direction == models.Direction.DESC,
                        value=0,
                        seen=[],
                    )
                    return await self._scroll_ordered(client, options, limit, kwargs, start, ctx, first=True)

            records, _next = await self._call(
                client.scroll, "scroll_documents", ctx, error_cls=ScrollFailed, **kwargs
            )
            records = list(records or [])
            if len(records) <= limit:
                docs = [point_to_document(r, include_vector=options.include_vector) for r in records]
                return ScrollResult(documents=docs, has_more=False, scroll_id="")

            docs = [point_to_document(r, include_vector=options.include_vector) for r in records[:limit]]
            return ScrollResult(
                documents=docs,
                has_more=True,
                scroll_id=encode_scroll_id(self._key_of(records[limit].id)),
            )

    async def _scroll_ordered(
        self,
        client: Any,
        options: ScrollOptions,
        limit: int,
        kwargs: Dict[str, Any],
        cursor: OrderedCursor,
        ctx: Optional[OperationContext],
        *,
        first: bool = False,
    ) -> ScrollResult:
        """
        One page of a scan ordered by `cursor.key`.

        The engine cannot offset an ordered scan, so a continuation restarts
        at the boundary value (`start_from` is inclusive) and drops the points
        the previous pages already returned at that value.
        """
        direction = models.Direction.DESC if cursor.descending else models.Direction.ASC
        seen = set() if first else {self._key_of(s) for s in cursor.seen}
        kwargs["order_by"] = models.OrderBy(
            key=cursor.key,
            direction=direction,
            start_from=None if first else cursor.value,
        )
        kwargs["limit"] = limit + 1 + len(seen)

        records, _next = await self._call(
            client.scroll, "scroll_documents", ctx, error_cls=ScrollFailed, **kwargs
        )
        fresh = []
        for r in records or []:
            value = self._order_value(r, cursor.key)
            if value is None:
                continue
            if value == cursor.value and self._key_of(r.id) in seen:
                continue
            fresh.append((r, value))

        page = fresh[:limit]
        docs = [point_to_document(r, include_vector=options.include_vector) for r, _ in page]
        if len(fresh) <= limit:
            return ScrollResult(documents=docs, has_more=False, scroll_id="")

        last = page[-1][1]
        at_last = [self._key_of(r.id) for r, value in page if value == last]
        if not first and last == cursor.value:
            at_last = list(seen) + at_last
        return ScrollResult(
            documents=docs,
            has_more=True,
            scroll_id=encode_ordered_cursor(
                OrderedCursor(key=cursor.key, descending=cursor.descending, value=last, seen=at_last)
            ),
        )

    @staticmethod
    def _order_value(record: Any, key: str) -> Any:
        """Order value the engine reported, or the payload value at `key`."""
        value = getattr(record, "order_value", None)
        if value is None:
            node: Any = getattr(record, "payload", None) or {}
            for part in key.split("."):
                node = node.get(part) if isinstance(node, Mapping) else None
            value = node
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return value
