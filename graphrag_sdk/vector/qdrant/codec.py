# graphrag_sdk/vector/qdrant/codec.py
# SPDX-License-Identifier: Apache-2.0
"""
Payload value codec and point <-> Document conversion.

Encoding accepts str, float, int, bool, sequences and nested mappings.
Anything else is stored as its ``str()`` form. A nested mapping that fails
to encode is dropped from its parent instead of failing the write.

Decoding dispatches on the value's type only. Falsy scalars inside lists
("", 0, 0.0, False) round-trip unchanged; nulls inside mappings are skipped.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Mapping, Optional, Sequence

from qdrant_client.http import models

from graphrag_sdk.vector.vector_base import Document, SparseVector

logger = logging.getLogger(__name__)

PAYLOAD_ID = "id"
PAYLOAD_CONTENT = "content"
PAYLOAD_METADATA = "metadata"

_INT64_MIN = -(2 ** 63)
_INT64_MAX = 2 ** 63 - 1


# --------------------------------------------------------------------------- #
# Value codec
# --------------------------------------------------------------------------- #

def to_engine(value: Any) -> Any:
    """Convert a host value into a JSON-safe payload value."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if _INT64_MIN <= value <= _INT64_MAX:
            return value
        return str(value)
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        return encode_mapping(value)
    if isinstance(value, (list, tuple)):
        return [_encode_item(v) for v in value]
    return str(value)


def _encode_item(value: Any) -> Any:
    # Lists nest one level; deeper sequences fall back to their string form.
    if isinstance(value, (list, tuple)):
        return str(list(value))
    return to_engine(value)


def encode_mapping(values: Mapping[Any, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, Mapping):
            try:
                out[str(key)] = encode_mapping(value)
            except Exception as exc:  # noqa: BLE001
                logger.debug("dropping metadata key %r: %s", key, exc)
            continue
        out[str(key)] = to_engine(value)
    return out


def from_engine(value: Any) -> Any:
    """Convert a payload value back into a host value; unknown types become None."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, str)):
        return value
    if isinstance(value, Mapping):
        return decode_mapping(value)
    if isinstance(value, (list, tuple)):
        return [from_engine(v) for v in value]
    return None


def decode_mapping(values: Mapping[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in values.items():
        decoded = from_engine(value)
        if decoded is None:
            continue
        out[key] = decoded
    return out


# --------------------------------------------------------------------------- #
# Documents
# --------------------------------------------------------------------------- #

def build_payload(doc: Document) -> Dict[str, Any]:
    payload: Dict[str, Any] = {PAYLOAD_ID: doc.id, PAYLOAD_CONTENT: doc.content}
    if doc.metadata:
        payload[PAYLOAD_METADATA] = encode_mapping(doc.metadata)
    return payload


def _safe_get(obj: Any, key: str, default: Any = None) -> Any:
    """Support both dict-style and attribute-style access."""
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _as_sparse(value: Any) -> Optional[SparseVector]:
    indices = _safe_get(value, "indices")
    values = _safe_get(value, "values")
    if indices is None or values is None:
        return None
    return SparseVector(indices=[int(i) for i in indices], values=[float(v) for v in values])


def extract_dense(vector: Any, preferred: Optional[str] = None) -> Optional[List[float]]:
    """Pull a dense vector out of an unnamed list or a {name: vector} mapping."""
    if vector is None:
        return None
    if isinstance(vector, (list, tuple)):
        if vector and isinstance(vector[0], (list, tuple)):
            # multivector; not produced by this store
            return None
        return [float(x) for x in vector]
    if isinstance(vector, Mapping):
        if preferred and isinstance(vector.get(preferred), (list, tuple)):
            return [float(x) for x in vector[preferred]]
        for value in vector.values():
            if isinstance(value, (list, tuple)) and (not value or not isinstance(value[0], (list, tuple))):
                return [float(x) for x in value]
    return None


def extract_sparse(vector: Any, preferred: Optional[str] = None) -> Optional[SparseVector]:
    if not isinstance(vector, Mapping):
        return None
    if preferred and preferred in vector:
        sparse = _as_sparse(vector[preferred])
        if sparse is not None:
            return sparse
    for value in vector.values():
        if isinstance(value, (list, tuple)):
            continue
        sparse = _as_sparse(value)
        if sparse is not None:
            return sparse
    return None


def payload_selector(
    include_content: bool = True,
    include_metadata: bool = True,
    fields: Optional[Sequence[str]] = None,
) -> Any:
    """
    Engine `with_payload` value for a search projection.

    The id key is always fetched since it carries the caller's document id.
    Metadata `fields` become nested include paths (``metadata.<field>``).
    """
    if include_content and include_metadata and not fields:
        return True
    keys = [PAYLOAD_ID]
    if include_content:
        keys.append(PAYLOAD_CONTENT)
    if fields:
        keys.extend(f"{PAYLOAD_METADATA}.{f}" for f in fields)
    elif include_metadata:
        keys.append(PAYLOAD_METADATA)
    return models.PayloadSelectorInclude(include=keys)


def point_to_document(
    point: Any,
    *,
    include_vector: bool = False,
    dense_name: Optional[str] = None,
    sparse_name: Optional[str] = None,
    include_content: bool = True,
    include_metadata: bool = True,
    fields: Optional[Sequence[str]] = None,
) -> Document:
    """Rebuild a Document from a Record or ScoredPoint."""
    payload = _safe_get(point, "payload") or {}
    doc_id = payload.get(PAYLOAD_ID)
    content = payload.get(PAYLOAD_CONTENT) if include_content else None
    metadata = payload.get(PAYLOAD_METADATA)
    decoded = decode_mapping(metadata) if isinstance(metadata, Mapping) else {}
    if fields:
        decoded = {k: decoded[k] for k in fields if k in decoded}
    elif not include_metadata:
        decoded = {}
    doc = Document(
        id=doc_id if isinstance(doc_id, str) else "",
        content=content if isinstance(content, str) else "",
        metadata=decoded,
        score=float(_safe_get(point, "score", 0.0) or 0.0),
    )
    if include_vector:
        raw = _safe_get(point, "vector")
        doc.dense_vector = extract_dense(raw, dense_name)
        doc.sparse_vector = extract_sparse(raw, sparse_name)
    return doc


def to_engine_sparse(sparse: SparseVector) -> models.SparseVector:
    return models.SparseVector(indices=list(sparse.indices), values=list(sparse.values))


def dense_list(vector: Sequence[float]) -> List[float]:
    return [float(x) for x in vector]
