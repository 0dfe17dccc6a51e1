from __future__ import annotations

import pytest

from memoria_core.learning.similarity import (
    cosine,
    edit_similarity,
    jaccard,
    levenshtein,
    text_similarity,
    tokenize,
)


def test_tokenize_strips_punctuation_and_keeps_cjk() -> None:
    assert tokenize("Hello, world! a b-side") == ["hello", "world", "side"]
    assert tokenize("学習メモ: 復習") == ["学習メモ", "復習"]


def test_jaccard_and_cosine() -> None:
    assert jaccard(["a1", "b1"], ["b1", "c1"]) == pytest.approx(1 / 3)
    assert jaccard([], []) == 0.0
    assert cosine(["x1", "y1", "x1"], ["x1", "y1", "x1"]) == pytest.approx(1.0)
    assert cosine(["x1"], ["y1"]) == 0.0
    assert cosine([], ["y1"]) == 0.0


def test_levenshtein() -> None:
    assert levenshtein("kitten", "sitting") == 3
    assert levenshtein("", "abc") == 3
    assert levenshtein("same", "same") == 0
    assert edit_similarity("", "") == 1.0


def test_identical_text_scores_one() -> None:
    text = "Weekly sync with the data platform team about ingestion"
    assert text_similarity(text, text) == pytest.approx(1.0)


def test_text_without_tokens_scores_zero() -> None:
    assert text_similarity("", "anything here") == 0.0
    assert text_similarity("!!", "a") == 0.0
    assert text_similarity("x y", "plenty of words") == 0.0


def test_tokenless_text_falls_back_to_edit_distance() -> None:
    assert text_similarity("a b c d", "a b c d") == 1.0
    assert text_similarity("", "") == 1.0
    assert text_similarity("a b c d", "a b c e") == pytest.approx(1 - 1 / 7)


def test_budget_pair_blend() -> None:
    score = text_similarity("quarterly budget plan", "quarterly budget plan revision")
    # jaccard 3/4, cosine 3/sqrt(12), edit 1 - 9/30
    expected = 0.75 * 0.4 + (3 / 12**0.5) * 0.4 + (1 - 9 / 30) * 0.2
    assert score == pytest.approx(expected)
    assert 0.6 <= score <= 0.85
