# SPDX-License-Identifier: Apache-2.0
"""
Connection lifecycle, configuration parsing and health.
"""

import pytest
from qdrant_client import QdrantClient

from graphrag_sdk.vector.vector_base import (
    ConnectError,
    CreateCollectionOptions,
    InvalidOptions,
    NotConnected,
    SearchOptions,
    VectorStoreConfig,
)
from graphrag_sdk.vector.qdrant import QdrantSettings, QdrantVectorStore
from tests.vector.fakes import UnreachableClient

pytestmark = pytest.mark.asyncio

MEMORY = {"location": ":memory:"}


async def test_lifecycle_connect_disconnect_close_are_idempotent():
    store = QdrantVectorStore()
    assert not store.is_connected()

    await store.connect(MEMORY)
    first = store._client
    await store.connect(MEMORY)
    assert store.is_connected()
    assert store._client is first

    await store.disconnect()
    await store.disconnect()
    assert not store.is_connected()
    await store.close()
    await store.close()


async def test_lifecycle_operations_before_connect_raise_not_connected():
    store = QdrantVectorStore()
    with pytest.raises(NotConnected) as exc_info:
        await store.create_collection(CreateCollectionOptions(name="c", dimension=3))
    assert exc_info.value.code == "NOT_CONNECTED"

    with pytest.raises(NotConnected):
        await store.search_similar(SearchOptions(collection_name="c", query_vector=[1.0, 0.0, 0.0]))

    with pytest.raises(NotConnected):
        await store.try_connect()


async def test_lifecycle_try_connect_reuses_cached_config():
    store = QdrantVectorStore()
    await store.connect(VectorStoreConfig(extra_params=dict(MEMORY)))
    await store.disconnect()

    client = await store.try_connect()
    assert store.is_connected()
    assert client is store._client
    await store.close()


async def test_lifecycle_get_config_returns_copy():
    store = QdrantVectorStore()
    assert store.get_config() is None
    await store.connect(MEMORY)
    cfg = store.get_config()
    cfg.extra_params["location"] = "elsewhere"
    assert store.get_config().extra_params["location"] == ":memory:"
    await store.close()


async def test_lifecycle_unreachable_engine_raises_connect_error():
    client = UnreachableClient()
    store = QdrantVectorStore(client=client)
    with pytest.raises(ConnectError) as exc_info:
        await store.connect()
    assert exc_info.value.code == "CONNECT_ERROR"
    assert isinstance(exc_info.value.__cause__, Exception)
    assert not store.is_connected()
    # the store never closes a client it was handed
    assert client.closed is False


async def test_lifecycle_injected_client_is_adopted_and_kept_open():
    client = QdrantClient(location=":memory:")
    store = QdrantVectorStore(client=client)
    await store.connect()
    assert store._client is client
    await store.close()
    assert client.get_collections().collections == []
    client.close()


async def test_lifecycle_invalid_port_is_invalid_options():
    store = QdrantVectorStore()
    with pytest.raises(InvalidOptions) as exc_info:
        await store.connect({"host": "localhost", "port": "sixty"})
    assert exc_info.value.field == "port"
    assert not store.is_connected()


async def test_lifecycle_settings_parse_ports_and_rest_url():
    settings = QdrantSettings.from_config(VectorStoreConfig(extra_params={"host": "db", "port": "7000"}))
    assert settings.port == 7000
    assert settings.http_port == 6333
    assert settings.rest_base_url() == "http://db:6333"

    secure = QdrantSettings.from_config(VectorStoreConfig(extra_params={"host": "db", "https": True, "http_port": 443}))
    assert secure.rest_base_url() == "https://db:443"

    url = QdrantSettings.from_config(VectorStoreConfig(extra_params={"url": "http://q:6333/"}))
    assert url.rest_base_url() == "http://q:6333"

    embedded = QdrantSettings.from_config(VectorStoreConfig(extra_params=dict(MEMORY)))
    assert embedded.embedded
    assert embedded.rest_base_url() is None


async def test_lifecycle_settings_defaults():
    settings = QdrantSettings.from_config(VectorStoreConfig())
    assert (settings.host, settings.port, settings.prefer_grpc) == ("localhost", 6334, True)
    assert settings.api_key is None
    assert settings.timeout is None


async def test_lifecycle_health_reports_collection_count(store):
    assert await store.health() == {"ok": True, "collections": 0}
    await store.create_collection(CreateCollectionOptions(name="h", dimension=2))
    assert (await store.health())["collections"] == 1


async def test_lifecycle_metrics_observe_public_operations(store, metrics):
    await store.health()
    await store.list_collections()
    listed = metrics.ops("list_collections")
    assert listed and listed[-1]["ok"] is True
    assert listed[-1]["component"] == "vector.qdrant"
