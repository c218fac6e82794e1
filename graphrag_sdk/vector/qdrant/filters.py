# graphrag_sdk/vector/qdrant/filters.py
# SPDX-License-Identifier: Apache-2.0
"""
Metadata filter translation.

A flat ``{"field": value}`` mapping becomes a single ``must`` conjunction of
typed conditions on ``metadata.<field>``:

- str  -> exact keyword match
- bool -> exact boolean match
- int / float -> range with gte == lte == value

Sequences, mappings and other values produce no condition. A filter that
yields no condition at all is rejected with InvalidFilter.
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional

from qdrant_client.http import models

from graphrag_sdk.vector.vector_base import InvalidFilter
from graphrag_sdk.vector.qdrant.codec import PAYLOAD_METADATA

logger = logging.getLogger(__name__)


def metadata_key(field: str) -> str:
    return f"{PAYLOAD_METADATA}.{field}"


def _condition(field: str, value: Any) -> Optional[models.FieldCondition]:
    key = metadata_key(field)
    if isinstance(value, bool):
        return models.FieldCondition(key=key, match=models.MatchValue(value=value))
    if isinstance(value, str):
        return models.FieldCondition(key=key, match=models.MatchValue(value=value))
    if isinstance(value, (int, float)):
        number = float(value)
        return models.FieldCondition(key=key, range=models.Range(gte=number, lte=number))
    return None


def build_filter(filters: Mapping[str, Any]) -> models.Filter:
    """Translate a metadata mapping into a Qdrant Filter."""
    must: List[models.Condition] = []
    for field, value in filters.items():
        cond = _condition(str(field), value)
        if cond is None:
            logger.debug("filter key %r has unsupported value type %s", field, type(value).__name__)
            continue
        must.append(cond)
    if not must:
        raise InvalidFilter(
            "filter produced no conditions",
            details={"keys": sorted(str(k) for k in filters)},
        )
    return models.Filter(must=must)


def optional_filter(filters: Optional[Mapping[str, Any]]) -> Optional[models.Filter]:
    """None/empty means "no filter"; anything else must translate."""
    if not filters:
        return None
    return build_filter(filters)
