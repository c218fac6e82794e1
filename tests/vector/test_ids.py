# SPDX-License-Identifier: Apache-2.0
"""
Point ids, auto-generated document ids and scroll cursors.
"""

import base64
import hashlib
import re
import uuid

import pytest
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

pytestmark = pytest.mark.asyncio


async def test_ids_point_id_is_md5_prefix_big_endian():
    expected = int.from_bytes(hashlib.md5(b"doc-1").digest()[:8], "big")
    assert point_id("doc-1") == expected
    assert point_id("doc-1") == point_id("doc-1")
    assert point_id("doc-1") != point_id("doc-2")


async def test_ids_point_id_fits_unsigned_64_bit():
    for value in ("", "a", "ünïcödé", "x" * 1000):
        assert 0 <= point_id(value) < 2 ** 64


async def test_ids_positional_auto_id_depends_on_position():
    first = positional_auto_id(0, "same content")
    later = positional_auto_id(5, "same content")
    assert re.fullmatch(r"doc_0_\d{1,6}", first)
    assert re.fullmatch(r"doc_5_\d{1,6}", later)
    assert first != later
    assert first.split("_")[2] == later.split("_")[2]


async def test_ids_content_auto_id_ignores_position():
    assert content_auto_id("hello") == content_auto_id("hello")
    assert content_auto_id("hello") != content_auto_id("world")
    assert re.fullmatch(r"doc_[0-9a-f]{16}", content_auto_id("hello"))


async def test_ids_scroll_cursor_round_trips_numeric_and_uuid():
    assert decode_scroll_id(encode_scroll_id(0)) == 0
    assert decode_scroll_id(encode_scroll_id(2 ** 64 - 1)) == 2 ** 64 - 1
    key = str(uuid.uuid4())
    assert decode_scroll_id(encode_scroll_id(key)) == key


async def test_ids_scroll_cursor_is_url_safe_without_padding():
    token = encode_scroll_id(123456789)
    assert "=" not in token
    assert re.fullmatch(r"[A-Za-z0-9_-]+", token)


async def test_ids_scroll_cursor_accepts_legacy_forms():
    assert decode_scroll_id("42") == 42
    key = "123e4567-e89b-12d3-a456-426614174000"
    assert decode_scroll_id(key) == key


async def test_ids_scroll_cursor_rejects_garbage_and_overflow():
    assert decode_scroll_id("") is None
    assert decode_scroll_id("!!!") is None
    assert decode_scroll_id(str(2 ** 64)) is None
    overflow = base64.urlsafe_b64encode(f"n:{2 ** 64}".encode()).decode().rstrip("=")
    assert decode_scroll_id(overflow) is None


async def test_ids_ordered_cursor_round_trips():
    cursor = OrderedCursor(key="metadata.year", descending=True, value=2.5, seen=[2 ** 64 - 1, str(uuid.uuid4())])
    token = encode_ordered_cursor(cursor)
    assert re.fullmatch(r"[A-Za-z0-9_-]+", token)
    assert decode_ordered_cursor(token) == cursor


async def test_ids_ordered_cursor_is_distinct_from_point_cursor():
    assert decode_ordered_cursor(encode_scroll_id(42)) is None
    assert decode_scroll_id(encode_ordered_cursor(OrderedCursor("metadata.n", False, 1, []))) is None
    assert decode_ordered_cursor("") is None
    assert decode_ordered_cursor("!!!") is None
    bad = base64.urlsafe_b64encode(b'o:{"k":"metadata.n","v":"x","s":[]}').decode().rstrip("=")
    assert decode_ordered_cursor(bad) is None
