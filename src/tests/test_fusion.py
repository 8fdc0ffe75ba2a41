from __future__ import annotations

"""Reciprocal Rank Fusion tests."""

import pytest

from src.rag.retrieval import RRF_K, fingerprint, reciprocal_rank_fusion
from src.rag.types import Chunk, SearchResult


def _result(content: str, score: float = 0.5) -> SearchResult:
    chunk = Chunk(
        content=content,
        document_id="doc",
        chunk_index=0,
        total_chunks=1,
        content_type="narrative",
        has_previous=False,
        has_next=False,
    )
    return SearchResult(chunk=chunk, score=score)


def _contents(results: list[SearchResult]) -> list[str]:
    return [result.chunk.content for result in results]


VECTOR = [_result("alpha"), _result("bravo"), _result("charlie")]
KEYWORD = [_result("charlie"), _result("delta")]


def test_alpha_one_keeps_vector_order() -> None:
    fused = reciprocal_rank_fusion(VECTOR, KEYWORD, alpha=1.0, limit=10)

    assert _contents(fused)[:3] == ["alpha", "bravo", "charlie"]
    assert fused[-1].chunk.content == "delta"
    assert fused[-1].score == 0.0


def test_alpha_zero_keeps_keyword_order() -> None:
    fused = reciprocal_rank_fusion(VECTOR, KEYWORD, alpha=0.0, limit=10)

    assert _contents(fused)[:2] == ["charlie", "delta"]
    assert {result.score for result in fused[2:]} == {0.0}


def test_shared_chunk_scores_are_summed() -> None:
    fused = reciprocal_rank_fusion(VECTOR, KEYWORD, alpha=0.5, limit=10)

    by_content = {result.chunk.content: result.score for result in fused}
    expected = 0.5 / (RRF_K + 3) + 0.5 / (RRF_K + 1)
    assert by_content["charlie"] == pytest.approx(expected)
    assert _contents(fused)[0] == "charlie"
    assert len(fused) == 4


def test_fused_results_sorted_and_limited() -> None:
    fused = reciprocal_rank_fusion(VECTOR, KEYWORD, alpha=0.5, limit=2)

    assert len(fused) == 2
    scores = [result.score for result in fused]
    assert scores == sorted(scores, reverse=True)


def test_vector_only_chunk_score_grows_with_alpha() -> None:
    previous = -1.0
    for alpha in (0.0, 0.25, 0.5, 0.75, 1.0):
        fused = reciprocal_rank_fusion(VECTOR, KEYWORD, alpha=alpha, limit=10)
        score = next(result.score for result in fused if result.chunk.content == "alpha")
        assert score >= previous
        previous = score


def test_fingerprint_merges_chunks_sharing_a_prefix() -> None:
    prefix = "x" * 100
    first = _result(prefix + " first tail")
    second = _result(prefix + " second tail")

    assert fingerprint(first) == fingerprint(second)
    fused = reciprocal_rank_fusion([first], [second], alpha=0.5, limit=10)

    assert len(fused) == 1
    assert fused[0].chunk.content == first.chunk.content


def test_component_scores_are_kept() -> None:
    vector = [SearchResult(chunk=VECTOR[0].chunk, score=0.9, vector_score=0.9)]
    keyword = [SearchResult(chunk=VECTOR[0].chunk, score=1.0, keyword_score=1.0)]

    fused = reciprocal_rank_fusion(vector, keyword, alpha=0.5, limit=10)

    assert fused[0].vector_score == 0.9
    assert fused[0].keyword_score == 1.0


def test_empty_lists_fuse_to_nothing() -> None:
    assert reciprocal_rank_fusion([], [], alpha=0.5, limit=10) == []
