# graphrag_sdk/vector/qdrant/layout.py
# SPDX-License-Identifier: Apache-2.0
"""
Collection vector layouts.

A Qdrant collection stores either one unnamed dense vector per point
(`SingleLayout`) or a mapping of named dense and sparse vectors
(`NamedLayout`). Only named collections can hold sparse vectors.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple, Union

from qdrant_client.http import models

from graphrag_sdk.vector.vector_base import (
    DEFAULT_DENSE_VECTOR_NAME,
    DEFAULT_SPARSE_VECTOR_NAME,
    DISTANCE_COSINE,
    DISTANCE_DOT,
    DISTANCE_EUCLIDEAN,
    DISTANCE_MANHATTAN,
)

_TO_QDRANT = {
    DISTANCE_COSINE: models.Distance.COSINE,
    DISTANCE_EUCLIDEAN: models.Distance.EUCLID,
    DISTANCE_DOT: models.Distance.DOT,
    DISTANCE_MANHATTAN: models.Distance.MANHATTAN,
}
_FROM_QDRANT = {v: k for k, v in _TO_QDRANT.items()}


def to_qdrant_distance(metric: str) -> models.Distance:
    return _TO_QDRANT.get(metric, models.Distance.COSINE)


def from_qdrant_distance(distance: Any) -> str:
    if distance is None:
        return DISTANCE_COSINE
    if not isinstance(distance, models.Distance):
        try:
            distance = models.Distance(distance)
        except ValueError:
            return DISTANCE_COSINE
    return _FROM_QDRANT.get(distance, DISTANCE_COSINE)


@dataclass(frozen=True)
class SingleLayout:
    dimension: int
    distance: str = DISTANCE_COSINE


@dataclass(frozen=True)
class NamedLayout:
    """
    Named-vector layout.

    `dense_name` is the default dense sub-vector ("dense" when present,
    otherwise the first dense name). `sparse_name` is the default sparse
    sub-vector, or None if the collection has none.
    """
    dense_name: Optional[str]
    dimension: int
    distance: str = DISTANCE_COSINE
    sparse_name: Optional[str] = None
    dense_names: Tuple[str, ...] = ()
    sparse_names: Tuple[str, ...] = ()

    def resolve_dense(self, requested: Optional[str]) -> Optional[str]:
        if requested and requested in self.dense_names:
            return requested
        return self.dense_name

    def resolve_sparse(self, requested: Optional[str]) -> Optional[str]:
        if requested and requested in self.sparse_names:
            return requested
        return self.sparse_name


CollectionLayout = Union[SingleLayout, NamedLayout]


def _pick(names: Tuple[str, ...], preferred: str) -> Optional[str]:
    if preferred in names:
        return preferred
    return names[0] if names else None


def layout_from_info(info: Any) -> CollectionLayout:
    """
    Inspect a CollectionInfo's vectors config.

    A mapping config means named vectors, a VectorParams config means a single
    vector. Anything else is treated as single so hybrid writes are refused.
    """
    params = getattr(getattr(info, "config", None), "params", None)
    vectors = getattr(params, "vectors", None)
    sparse = getattr(params, "sparse_vectors", None) or {}

    if isinstance(vectors, models.VectorParams):
        return SingleLayout(dimension=int(vectors.size), distance=from_qdrant_distance(vectors.distance))

    if isinstance(vectors, Mapping) or sparse:
        dense_map = dict(vectors or {})
        dense_names = tuple(dense_map)
        sparse_names = tuple(sparse)
        dense_name = _pick(dense_names, DEFAULT_DENSE_VECTOR_NAME)
        first = dense_map.get(dense_name) if dense_name else None
        return NamedLayout(
            dense_name=dense_name,
            dimension=int(getattr(first, "size", 0) or 0),
            distance=from_qdrant_distance(getattr(first, "distance", None)),
            sparse_name=_pick(sparse_names, DEFAULT_SPARSE_VECTOR_NAME),
            dense_names=dense_names,
            sparse_names=sparse_names,
        )

    return SingleLayout(dimension=0)


# Scores on these metrics are distances: smaller is closer.
DISTANCE_SCORED = frozenset({DISTANCE_EUCLIDEAN, DISTANCE_MANHATTAN})


def score_passes(distance: str, score: float, threshold: float) -> bool:
    """Whether `score` clears `threshold` under the collection metric."""
    if distance in DISTANCE_SCORED:
        return score <= threshold
    return score >= threshold


def strictest_threshold(distance: str, *thresholds: Optional[float]) -> Optional[float]:
    """Tightest of the given cutoffs, or None when none is set."""
    values = [t for t in thresholds if t is not None]
    if not values:
        return None
    return min(values) if distance in DISTANCE_SCORED else max(values)
