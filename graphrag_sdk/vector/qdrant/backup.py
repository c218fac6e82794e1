# graphrag_sdk/vector/qdrant/backup.py
# SPDX-License-Identifier: Apache-2.0
"""
Snapshot backup and restore.

Stream framing: a backup stream that starts with the gzip magic bytes
``1f 8b`` is gzip-compressed; anything else is the raw Qdrant snapshot.

Backup asks the engine for a collection snapshot and streams its bytes from
the REST endpoint ``GET /collections/{name}/snapshots/{snapshot}`` into the
caller's writer. Restore validates the framing and uploads the blob to
``POST /collections/{name}/snapshots/upload``.

Snapshot bytes only travel over the REST API. The embedded engine
(``location=":memory:"`` or a local path) has no REST endpoint, so backup
and restore raise SnapshotFailed there unless a transport is supplied.
"""

from __future__ import annotations

import asyncio
import gzip
import logging
from typing import Any, AsyncIterator, BinaryIO, Dict, Optional
from urllib.parse import quote

import httpx

from graphrag_sdk.vector.vector_base import (
    BackupInfo,
    DeadlineExceeded,
    InvalidOptions,
    OperationContext,
    SnapshotFailed,
)
from graphrag_sdk.vector.qdrant.stats import QdrantStats

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
DEFAULT_CHUNK_SIZE = 1 << 16


def is_gzip(data: bytes) -> bool:
    return data[:2] == GZIP_MAGIC


def unframe(data: bytes) -> bytes:
    """Strip gzip framing if present; reject empty streams."""
    if not data:
        raise InvalidOptions("backup stream is empty", field="reader", reason="empty")
    if is_gzip(data):
        try:
            data = gzip.decompress(data)
        except (OSError, EOFError) as exc:
            raise InvalidOptions("backup stream is not valid gzip", field="reader", reason="corrupt") from exc
        if not data:
            raise InvalidOptions("backup stream is empty after decompression", field="reader", reason="empty")
    return data


class SnapshotTransport:
    """
    Moves snapshot bytes over the Qdrant REST API.

    The httpx client can be injected (tests use `httpx.MockTransport`).
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        self._headers: Dict[str, str] = {"api-key": api_key} if api_key else {}
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_client = client is None
        self._chunk_size = chunk_size

    @staticmethod
    def _path(collection: str, *parts: str) -> str:
        tail = "/".join(quote(p, safe="") for p in parts)
        return f"/collections/{quote(collection, safe='')}/snapshots/{tail}"

    async def download(self, collection: str, snapshot_name: str) -> AsyncIterator[bytes]:
        path = self._path(collection, snapshot_name)
        async with self._client.stream("GET", path, headers=self._headers) as resp:
            resp.raise_for_status()
            async for chunk in resp.aiter_bytes(self._chunk_size):
                yield chunk

    async def upload(self, collection: str, data: bytes, *, priority: str = "snapshot") -> None:
        resp = await self._client.post(
            self._path(collection, "upload"),
            params={"priority": priority, "wait": "true"},
            files={"snapshot": (f"{collection}.snapshot", data, "application/octet-stream")},
            headers=self._headers,
        )
        resp.raise_for_status()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class QdrantBackup(QdrantStats):
    """Backup/restore on top of engine snapshots."""

    _snapshot_transport: Optional[SnapshotTransport]
    _owns_transport: bool

    def _transport(self) -> SnapshotTransport:
        if self._snapshot_transport is not None:
            return self._snapshot_transport
        settings = self._settings
        base_url = settings.rest_base_url() if settings is not None else None
        if not base_url:
            raise SnapshotFailed(
                "snapshot streaming needs the engine REST endpoint; the embedded engine has none",
                details={"embedded": True},
            )
        self._snapshot_transport = SnapshotTransport(
            base_url, api_key=settings.api_key, timeout=settings.timeout
        )
        self._owns_transport = True
        return self._snapshot_transport

    async def backup(
        self,
        collection_name: str,
        writer: BinaryIO,
        *,
        compress: bool = False,
        ctx: Optional[OperationContext] = None,
    ) -> BackupInfo:
        """Snapshot `collection_name` and stream the snapshot bytes into `writer`."""
        self._require_non_empty("collection_name", collection_name)
        if writer is None:
            raise InvalidOptions("writer must not be None", field="writer")

        with self._observe("backup", ctx, compress=compress):
            client = self._require_client()
            exists = await self._call(
                client.collection_exists, "backup", ctx, error_cls=SnapshotFailed, collection_name=collection_name
            )
            if not exists:
                raise SnapshotFailed(
                    f"collection {collection_name!r} does not exist", details={"collection": collection_name}
                )
            transport = self._transport()
            snapshot = await self._call(
                client.create_snapshot,
                "backup",
                ctx,
                error_cls=SnapshotFailed,
                collection_name=collection_name,
                wait=True,
            )
            if snapshot is None:
                raise SnapshotFailed("engine returned no snapshot", details={"collection": collection_name})

            try:
                size = await asyncio.wait_for(
                    self._stream(transport, collection_name, snapshot.name, writer, compress),
                    timeout=self._effective_timeout_s(ctx),
                )
            except asyncio.TimeoutError as exc:
                raise DeadlineExceeded("backup timed out", details={"op": "backup"}) from exc
            except httpx.HTTPError as exc:
                raise SnapshotFailed(
                    f"downloading snapshot {snapshot.name!r} failed: {exc}",
                    details={"collection": collection_name, "snapshot": snapshot.name},
                ) from exc

            logger.info("backed up %s as %s (%d bytes)", collection_name, snapshot.name, size)
            return BackupInfo(
                collection=collection_name,
                snapshot_name=snapshot.name,
                size_bytes=size,
                compressed=compress,
                checksum=getattr(snapshot, "checksum", None),
                created_at=getattr(snapshot, "creation_time", None),
            )

    @staticmethod
    async def _stream(
        transport: SnapshotTransport,
        collection: str,
        snapshot_name: str,
        writer: BinaryIO,
        compress: bool,
    ) -> int:
        size = 0
        sink: Any = gzip.GzipFile(fileobj=writer, mode="wb") if compress else writer
        try:
            async for chunk in transport.download(collection, snapshot_name):
                sink.write(chunk)
                size += len(chunk)
        finally:
            if compress:
                sink.close()
        return size

    async def restore(
        self,
        collection_name: str,
        reader: BinaryIO,
        *,
        force: bool = False,
        ctx: Optional[OperationContext] = None,
    ) -> int:
        """
        Restore a collection from a backup stream; returns the snapshot size.

        Refuses to overwrite an existing collection unless `force` is set.
        """
        self._require_non_empty("collection_name", collection_name)
        if reader is None:
            raise InvalidOptions("reader must not be None", field="reader")

        with self._observe("restore", ctx, force=force):
            data = unframe(reader.read())
            client = self._require_client()
            exists = await self._call(
                client.collection_exists, "restore", ctx, error_cls=SnapshotFailed, collection_name=collection_name
            )
            if exists and not force:
                raise InvalidOptions(
                    f"collection {collection_name!r} already exists; pass force=True to overwrite",
                    field="force",
                    reason="collection exists",
                )
            transport = self._transport()
            try:
                await asyncio.wait_for(
                    transport.upload(collection_name, data),
                    timeout=self._effective_timeout_s(ctx),
                )
            except asyncio.TimeoutError as exc:
                raise DeadlineExceeded("restore timed out", details={"op": "restore"}) from exc
            except httpx.HTTPError as exc:
                raise SnapshotFailed(
                    f"uploading snapshot for {collection_name!r} failed: {exc}",
                    details={"collection": collection_name},
                ) from exc
            self.invalidate_layout(collection_name)
            logger.info("restored %s from snapshot (%d bytes)", collection_name, len(data))
            return len(data)
