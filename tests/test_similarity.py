"""Tests for brute-force cosine ranking."""

import pytest

from vector_store.similarity import cosine_similarity, rank


@pytest.mark.unit
def test_cosine_identical_and_opposite():
    assert cosine_similarity([1.0, 2.0, 3.0], [2.0, 4.0, 6.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [-1.0, 0.0]) == pytest.approx(-1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)


@pytest.mark.unit
def test_cosine_zero_vector_scores_zero():
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


@pytest.mark.unit
def test_rank_sorts_descending_with_id_tie_break():
    candidates = [
        ("c", [1.0, 0.0]),
        ("a", [1.0, 0.0]),
        ("far", [0.0, 1.0]),
        ("b", [2.0, 0.0]),
        ("mid", [1.0, 1.0]),
    ]
    ranked = rank([1.0, 0.0], candidates, number=10)
    assert [item_id for item_id, _ in ranked] == ["a", "b", "c", "mid", "far"]
    scores = [score for _, score in ranked]
    assert scores == sorted(scores, reverse=True)


@pytest.mark.unit
def test_rank_limits_and_skips():
    candidates = [("x", [1.0, 0.0]), ("y", [0.9, 0.1]), ("z", [0.0, 1.0])]
    ranked = rank([1.0, 0.0], candidates, number=1, skip_id="x")
    assert [item_id for item_id, _ in ranked] == ["y"]


@pytest.mark.unit
def test_rank_empty_and_non_positive_number():
    assert rank([1.0], [], number=5) == []
    assert rank([1.0], [("a", [1.0])], number=0) == []


@pytest.mark.unit
def test_rank_dimension_mismatch_raises():
    with pytest.raises(ValueError):
        rank([1.0, 0.0, 0.0], [("a", [1.0, 0.0])])
