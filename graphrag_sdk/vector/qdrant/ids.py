# graphrag_sdk/vector/qdrant/ids.py
# SPDX-License-Identifier: Apache-2.0
"""
String id -> engine point id mapping.

Qdrant point ids are unsigned 64-bit integers or UUIDs. Callers use opaque
strings, so each string is hashed with MD5 and the first 8 bytes are read as
a big-endian unsigned integer. The mapping is one-way: the original string is
stored in the payload under "id" and read back from there.
"""

from __future__ import annotations

import base64
import hashlib
import json
import uuid
from dataclasses import dataclass
from typing import List, Optional, Union

_POSITIONAL_MOD = 1_000_000
_UINT64_MAX = 2 ** 64 - 1

PointKey = Union[int, str]


def point_id(value: str) -> int:
    """Derive the stable numeric point id for a string id."""
    digest = hashlib.md5(value.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=False)


def positional_auto_id(position: int, content: str) -> str:
    """
    Id for a document submitted without one: "doc_<position>_<hash mod 1e6>".

    `position` is batch start + index within the batch, so the same content
    at a different position gets a different id.
    """
    return f"doc_{position}_{point_id(content) % _POSITIONAL_MOD}"


def content_auto_id(content: str) -> str:
    """Position-independent id derived from content only."""
    return f"doc_{point_id(content):016x}"


# --------------------------------------------------------------------------- #
# Scroll cursors
# --------------------------------------------------------------------------- #

_NUMERIC_TAG = "n:"
_UUID_TAG = "u:"
_ORDERED_TAG = "o:"


def encode_scroll_id(point: PointKey) -> str:
    """Wrap a numeric or UUID point id into an opaque url-safe token."""
    if isinstance(point, int):
        raw = f"{_NUMERIC_TAG}{point}"
    else:
        raw = f"{_UUID_TAG}{uuid.UUID(str(point))}"
    return base64.urlsafe_b64encode(raw.encode("ascii")).decode("ascii").rstrip("=")


def decode_scroll_id(token: str) -> Optional[PointKey]:
    """
    Recover the point id behind a scroll token.

    Plain decimal and UUID strings are accepted as well. Anything unparseable
    returns None, which callers treat as "start from the beginning".
    """
    token = (token or "").strip()
    if not token:
        return None
    try:
        padded = token + "=" * (-len(token) % 4)
        raw = base64.urlsafe_b64decode(padded.encode("ascii")).decode("ascii")
    except (ValueError, UnicodeError):
        raw = ""
    if raw.startswith(_NUMERIC_TAG) and raw[len(_NUMERIC_TAG):].isdigit():
        value = int(raw[len(_NUMERIC_TAG):])
        return value if value <= _UINT64_MAX else None
    if raw.startswith(_UUID_TAG):
        try:
            return str(uuid.UUID(raw[len(_UUID_TAG):]))
        except ValueError:
            return None
    if token.isdigit():
        value = int(token)
        return value if value <= _UINT64_MAX else None
    try:
        return str(uuid.UUID(token))
    except ValueError:
        return None


@dataclass
class OrderedCursor:
    """
    Position inside a scan ordered by a payload value.

    Attributes:
        key: Payload path the scan is ordered by
        descending: Scan direction
        value: Order value of the last point returned
        seen: Ids of returned points whose order value equals `value`
    """
    key: str
    descending: bool
    value: Union[int, float]
    seen: List[PointKey]


def encode_ordered_cursor(cursor: OrderedCursor) -> str:
    body = json.dumps(
        {"k": cursor.key, "d": cursor.descending, "v": cursor.value, "s": cursor.seen},
        separators=(",", ":"),
    )
    raw = f"{_ORDERED_TAG}{body}"
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def decode_ordered_cursor(token: str) -> Optional[OrderedCursor]:
    """Recover an ordered-scan position; None if `token` is not one."""
    token = (token or "").strip()
    if not token:
        return None
    try:
        padded = token + "=" * (-len(token) % 4)
        raw = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (ValueError, UnicodeError):
        return None
    if not raw.startswith(_ORDERED_TAG):
        return None
    try:
        body = json.loads(raw[len(_ORDERED_TAG):])
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    key, value, seen = body.get("k"), body.get("v"), body.get("s")
    if not isinstance(key, str) or not key:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not isinstance(seen, list) or not all(isinstance(s, (int, str)) for s in seen):
        return None
    return OrderedCursor(key=key, descending=bool(body.get("d")), value=value, seen=seen)
