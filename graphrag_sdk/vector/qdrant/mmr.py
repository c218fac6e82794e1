# graphrag_sdk/vector/qdrant/mmr.py
# SPDX-License-Identifier: Apache-2.0
"""
Maximal Marginal Relevance selection.

Given a query vector and a ranked candidate pool, greedily pick up to k
candidates maximizing

    lambda * sim(c, query) - (1 - lambda) * max(sim(c, s) for s in selected)

Similarity is cosine regardless of the collection metric. Ties go to the
candidate ranked earlier by the engine. lambda outside [0, 1] is not clamped.
"""

from __future__ import annotations

import math
from typing import Dict, List, Optional, Sequence, Tuple


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; 0.0 for empty, zero-norm or mismatched vectors."""
    if not a or not b or len(a) != len(b):
        return 0.0
    dot = 0.0
    na = 0.0
    nb = 0.0
    for x, y in zip(a, b):
        dot += x * y
        na += x * x
        nb += y * y
    if na <= 0.0 or nb <= 0.0:
        return 0.0
    return float(dot / (math.sqrt(na) * math.sqrt(nb)))


def mmr_select(
    query: Sequence[float],
    candidates: Sequence[Optional[Sequence[float]]],
    k: int,
    lambda_mult: float,
    *,
    fallback_scores: Optional[Sequence[float]] = None,
) -> List[Tuple[int, float]]:
    """
    Return ``(candidate_index, mmr_score)`` pairs in selection order.

    `candidates` are in engine rank order. A candidate without a vector uses
    its `fallback_scores` entry as query similarity and counts as dissimilar
    to everything else.
    """
    if k <= 0 or not candidates:
        return []

    relevance: List[float] = []
    for i, vec in enumerate(candidates):
        if vec:
            relevance.append(cosine_similarity(query, vec))
        elif fallback_scores is not None and i < len(fallback_scores):
            relevance.append(float(fallback_scores[i]))
        else:
            relevance.append(0.0)

    cache: Dict[Tuple[int, int], float] = {}

    def pair_sim(i: int, j: int) -> float:
        key = (i, j) if i < j else (j, i)
        if key not in cache:
            vi, vj = candidates[i], candidates[j]
            cache[key] = cosine_similarity(vi, vj) if vi and vj else 0.0
        return cache[key]

    # Seed with the most query-similar candidate (earliest rank on ties).
    first = 0
    for i in range(1, len(candidates)):
        if relevance[i] > relevance[first]:
            first = i
    selected: List[Tuple[int, float]] = [(first, lambda_mult * relevance[first])]
    remaining = [i for i in range(len(candidates)) if i != first]

    while remaining and len(selected) < k:
        best_idx = -1
        best_score = -math.inf
        for i in remaining:
            redundancy = max(pair_sim(i, s) for s, _ in selected)
            score = lambda_mult * relevance[i] - (1.0 - lambda_mult) * redundancy
            if score > best_score:
                best_idx, best_score = i, score
        selected.append((best_idx, best_score))
        remaining.remove(best_idx)

    return selected
