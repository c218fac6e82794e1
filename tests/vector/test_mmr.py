# SPDX-License-Identifier: Apache-2.0
"""
MMR selection (pure function).
"""

import math

import pytest
from graphrag_sdk.vector.qdrant.mmr import cosine_similarity, mmr_select

pytestmark = pytest.mark.asyncio


async def test_mmr_cosine_edge_cases():
    assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
    assert cosine_similarity([1, 0], [-1, 0]) == pytest.approx(-1.0)
    assert cosine_similarity([], [1]) == 0.0
    assert cosine_similarity([0, 0], [1, 1]) == 0.0
    assert cosine_similarity([1, 2], [1, 2, 3]) == 0.0


async def test_mmr_empty_inputs():
    assert mmr_select([1, 0], [[1, 0]], 0, 0.5) == []
    assert mmr_select([1, 0], [], 3, 0.5) == []


async def test_mmr_lambda_one_is_pure_relevance():
    query = [1.0, 0.0]
    candidates = [[0.0, 1.0], [1.0, 0.1], [1.0, 0.0]]
    picks = mmr_select(query, candidates, 3, 1.0)
    assert [i for i, _ in picks] == [2, 1, 0]
    assert picks[0][1] == pytest.approx(1.0)


async def test_mmr_diversity_beats_near_duplicate():
    query = [1.0, 0.0, 0.0]
    candidates = [[1.0, -0.05, 0.0], [1.0, -0.05, 0.001], [0.0, 1.0, 0.0]]
    picks = mmr_select(query, candidates, 2, 0.5)
    assert [i for i, _ in picks] == [0, 2]


async def test_mmr_first_pick_score_and_ties_go_to_rank():
    query = [1.0, 0.0]
    picks = mmr_select(query, [[1.0, 0.0], [1.0, 0.0]], 1, 0.3)
    assert picks == [(0, pytest.approx(0.3))]


async def test_mmr_k_larger_than_pool_returns_pool():
    picks = mmr_select([1.0, 0.0], [[1.0, 0.0], [0.0, 1.0]], 10, 0.5)
    assert sorted(i for i, _ in picks) == [0, 1]


async def test_mmr_missing_vectors_use_fallback_scores():
    picks = mmr_select([1.0, 0.0], [None, [0.0, 1.0]], 1, 1.0, fallback_scores=[0.9, 0.1])
    assert picks[0][0] == 0
    assert picks[0][1] == pytest.approx(0.9)


async def test_mmr_lambda_is_not_clamped():
    picks = mmr_select([1.0, 0.0], [[1.0, 0.0]], 1, 2.0)
    assert math.isclose(picks[0][1], 2.0)
