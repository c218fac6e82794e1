# graphrag_sdk/vector/qdrant/connection.py
# SPDX-License-Identifier: Apache-2.0
"""
Qdrant connection lifecycle and engine-call plumbing.

State: Disconnected -> Connected -> Disconnected.

- `connect()` dials the engine (or adopts an injected client), performs a
  health-check round-trip and only then flips to Connected. Any failure
  releases the partial client and raises ConnectError.
- `disconnect()` / `close()` are idempotent.
- The asyncio lock serializes connect/disconnect only. Operations take a
  reference to the current client and never hold the lock across an RPC.

All blocking client calls run on a worker thread via `asyncio.to_thread`,
bounded by the earlier of the caller's deadline and the per-call timeout,
and abandoned if the caller's cancellation token fires.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Type, Union

import grpc
from qdrant_client import QdrantClient
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse

from graphrag_sdk.vector.vector_base import (
    BaseVectorStore,
    Cancelled,
    ConnectError,
    DeadlineExceeded,
    EngineError,
    InvalidOptions,
    MetricsSink,
    NotConnected,
    OperationContext,
    VectorStoreConfig,
    VectorStoreError,
)

logger = logging.getLogger(__name__)

DEFAULT_HOST = "localhost"
DEFAULT_GRPC_PORT = 6334
DEFAULT_HTTP_PORT = 6333
MEMORY_LOCATION = ":memory:"


def _parse_port(value: Any, name: str, default: int) -> int:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise InvalidOptions(f"{name} must be an integer", field=name, reason="bool")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    raise InvalidOptions(f"{name} must be an integer or decimal string", field=name, reason=repr(value))


@dataclass(frozen=True)
class QdrantSettings:
    """Connection keys recognized in VectorStoreConfig.extra_params."""
    host: str = DEFAULT_HOST
    port: int = DEFAULT_GRPC_PORT
    api_key: Optional[str] = None
    timeout: Optional[float] = None
    location: Optional[str] = None
    url: Optional[str] = None
    http_port: int = DEFAULT_HTTP_PORT
    https: bool = False
    prefer_grpc: bool = True

    @classmethod
    def from_config(cls, config: VectorStoreConfig) -> "QdrantSettings":
        p = config.extra_params or {}
        timeout = p.get("timeout", config.timeout)
        return cls(
            host=str(p.get("host") or DEFAULT_HOST),
            port=_parse_port(p.get("port"), "port", DEFAULT_GRPC_PORT),
            api_key=p.get("api_key") or None,
            timeout=float(timeout) if timeout else None,
            location=p.get("location") or None,
            url=p.get("url") or None,
            http_port=_parse_port(p.get("http_port"), "http_port", DEFAULT_HTTP_PORT),
            https=bool(p.get("https", False)),
            prefer_grpc=bool(p.get("prefer_grpc", True)),
        )

    @property
    def embedded(self) -> bool:
        return bool(self.location) and not str(self.location).startswith(("http://", "https://"))

    def rest_base_url(self) -> Optional[str]:
        """Base URL of the engine's REST API, or None for the embedded engine."""
        if self.embedded:
            return None
        if self.url:
            return self.url.rstrip("/")
        if self.location:
            return str(self.location).rstrip("/")
        scheme = "https" if self.https else "http"
        return f"{scheme}://{self.host}:{self.http_port}"

    def dial(self) -> QdrantClient:
        client_timeout = int(math.ceil(self.timeout)) if self.timeout else None
        if self.embedded:
            if self.location == MEMORY_LOCATION:
                return QdrantClient(location=MEMORY_LOCATION)
            return QdrantClient(path=self.location)
        if self.url or self.location:
            return QdrantClient(
                url=self.url or self.location,
                grpc_port=self.port,
                prefer_grpc=self.prefer_grpc,
                api_key=self.api_key,
                timeout=client_timeout,
            )
        return QdrantClient(
            host=self.host,
            port=self.http_port,
            grpc_port=self.port,
            prefer_grpc=self.prefer_grpc,
            https=self.https,
            api_key=self.api_key,
            timeout=client_timeout,
        )


def coerce_config(config: Union[VectorStoreConfig, Mapping[str, Any], None]) -> VectorStoreConfig:
    if config is None:
        return VectorStoreConfig()
    if isinstance(config, VectorStoreConfig):
        return config.copy()
    if isinstance(config, Mapping):
        return VectorStoreConfig(timeout=config.get("timeout"), extra_params=dict(config))
    raise InvalidOptions("config must be a VectorStoreConfig or a mapping", field="config")


class QdrantConnection(BaseVectorStore):
    """Connection state plus the guarded engine-call helper shared by all operations."""

    _component = "vector.qdrant"

    def __init__(
        self,
        *,
        client: Optional[QdrantClient] = None,
        metrics: Optional[MetricsSink] = None,
    ) -> None:
        super().__init__(metrics=metrics)
        self._injected_client = client
        self._client: Optional[QdrantClient] = None
        self._owns_client = False
        self._config: Optional[VectorStoreConfig] = None
        self._settings: Optional[QdrantSettings] = None
        self._connected = False
        self._state_lock = asyncio.Lock()

    # ------------------------------ lifecycle ------------------------------ #

    async def connect(
        self,
        config: Union[VectorStoreConfig, Mapping[str, Any], None] = None,
        *,
        ctx: Optional[OperationContext] = None,
    ) -> None:
        """Dial and health-check the engine. No-op when already connected."""
        async with self._state_lock:
            if self._connected:
                return
            if config is None and self._config is not None:
                cfg = self._config.copy()
            else:
                cfg = coerce_config(config)
            settings = QdrantSettings.from_config(cfg)

            client = self._injected_client
            owned = client is None
            try:
                if client is None:
                    client = await asyncio.to_thread(settings.dial)
                await self._call(client.get_collections, "health", ctx)
            except (Cancelled, DeadlineExceeded):
                await self._release(client, owned)
                raise
            except Exception as exc:  # noqa: BLE001
                await self._release(client, owned)
                target = settings.location or settings.url or f"{settings.host}:{settings.port}"
                raise ConnectError(
                    f"failed to connect to qdrant at {target}: {exc}",
                    details={"target": target},
                ) from exc

            self._client = client
            self._owns_client = owned
            self._config = cfg
            self._settings = settings
            self._connected = True
            logger.info("connected to qdrant (%s)", settings.location or settings.url or settings.host)

    async def disconnect(self, *, ctx: Optional[OperationContext] = None) -> None:
        """Release the client handle. Idempotent."""
        async with self._state_lock:
            if not self._connected:
                return
            client, owned = self._client, self._owns_client
            self._connected = False
            self._client = None
            self._owns_client = False
        await self._release(client, owned)
        logger.info("disconnected from qdrant")

    async def close(self) -> None:
        await self.disconnect()

    def is_connected(self) -> bool:
        return self._connected

    def get_config(self) -> Optional[VectorStoreConfig]:
        return self._config.copy() if self._config is not None else None

    async def try_connect(self, *, ctx: Optional[OperationContext] = None) -> QdrantClient:
        """Return the live client, reconnecting once with the cached configuration."""
        client = self._client
        if self._connected and client is not None:
            return client
        if self._config is None and self._injected_client is None:
            raise NotConnected("not connected and no configuration to reconnect with")
        await self.connect(ctx=ctx)
        return self._require_client()

    def _require_client(self) -> QdrantClient:
        client = self._client
        if not self._connected or client is None:
            raise NotConnected()
        return client

    async def health(self, *, ctx: Optional[OperationContext] = None) -> Dict[str, Any]:
        client = self._require_client()
        response = await self._call(client.get_collections, "health", ctx)
        return {"ok": True, "collections": len(getattr(response, "collections", None) or [])}

    @staticmethod
    async def _release(client: Optional[QdrantClient], owned: bool) -> None:
        if client is None or not owned:
            return
        try:
            await asyncio.to_thread(client.close)
        except Exception as exc:  # noqa: BLE001
            logger.debug("error closing qdrant client: %r", exc)

    # ------------------------------ engine calls --------------------------- #

    @staticmethod
    def _effective_timeout_s(ctx: Optional[OperationContext], timeout_ms: int = 0) -> Optional[float]:
        """Earlier of the caller's deadline and the per-call timeout."""
        candidates = []
        if ctx is not None:
            rem = ctx.remaining_ms()
            if rem is not None:
                candidates.append(rem / 1000.0)
        if timeout_ms and timeout_ms > 0:
            candidates.append(timeout_ms / 1000.0)
        return min(candidates) if candidates else None

    async def _call(
        self,
        func: Callable[..., Any],
        op: str,
        ctx: Optional[OperationContext],
        *args: Any,
        error_cls: Type[VectorStoreError] = EngineError,
        timeout_ms: int = 0,
        **kwargs: Any,
    ) -> Any:
        """
        Invoke a blocking client method on a worker thread.

        - Preflight: cancelled token or expired deadline fails before dialing.
        - Timeout -> DeadlineExceeded; cancel token -> Cancelled.
        - Engine exceptions -> `error_cls` via _translate_error.
        """
        self._fail_if_done(ctx)
        timeout_s = self._effective_timeout_s(ctx, timeout_ms)
        call = asyncio.ensure_future(asyncio.to_thread(func, *args, **kwargs))
        cancel_event = ctx.cancel_event if ctx is not None else None
        try:
            if cancel_event is None:
                return await asyncio.wait_for(call, timeout=timeout_s)
            waiter = asyncio.ensure_future(cancel_event.wait())
            try:
                done, _ = await asyncio.wait(
                    {call, waiter},
                    timeout=timeout_s,
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                waiter.cancel()
            if call not in done:
                call.cancel()
                if waiter in done:
                    raise Cancelled(details={"op": op})
                raise DeadlineExceeded(f"{op} timed out", details={"op": op})
            return call.result()
        except asyncio.TimeoutError as exc:
            raise DeadlineExceeded(f"{op} timed out", details={"op": op}) from exc
        except VectorStoreError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise self._translate_error(exc, op=op, error_cls=error_cls) from exc

    @staticmethod
    def _translate_error(
        err: Exception,
        *,
        op: str,
        error_cls: Type[VectorStoreError] = EngineError,
    ) -> VectorStoreError:
        """Map qdrant-client / gRPC / local-engine exceptions onto `error_cls`."""
        logger.debug("qdrant error in %s: %r", op, err)
        details: Dict[str, Any] = {"op": op}
        retry_after_ms: Optional[int] = None

        if isinstance(err, UnexpectedResponse):
            details["status_code"] = err.status_code
            if err.status_code in (429, 503):
                retry_after_ms = 500
        elif isinstance(err, grpc.RpcError):
            code = err.code() if callable(getattr(err, "code", None)) else None
            if code is not None:
                details["grpc_code"] = getattr(code, "name", str(code))
                if code in (grpc.StatusCode.UNAVAILABLE, grpc.StatusCode.RESOURCE_EXHAUSTED):
                    retry_after_ms = 500
        elif isinstance(err, ResponseHandlingException):
            details["transport"] = True
            retry_after_ms = 500

        msg = str(err) or type(err).__name__
        return error_cls(f"{op} failed: {msg}", retry_after_ms=retry_after_ms, details=details)
