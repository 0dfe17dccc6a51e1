"""Lexical similarity metrics shared by deduplication and clustering."""

from __future__ import annotations

import math
import re
from collections import Counter

# Punctuation becomes whitespace; \w keeps CJK and other word characters.
_PUNCT_RE = re.compile(r"[^\w\s]")

JACCARD_WEIGHT = 0.4
COSINE_WEIGHT = 0.4
EDIT_WEIGHT = 0.2


def tokenize(text: str) -> list[str]:
    return [word for word in _PUNCT_RE.sub(" ", text.lower()).split() if len(word) > 1]


def jaccard(words1: list[str], words2: list[str]) -> float:
    set1 = set(words1)
    set2 = set(words2)
    union = set1 | set2
    if not union:
        return 0.0
    return len(set1 & set2) / len(union)


def cosine(words1: list[str], words2: list[str]) -> float:
    """Cosine of length-normalized term-frequency vectors."""
    if not words1 or not words2:
        return 0.0
    tf1 = Counter(words1)
    tf2 = Counter(words2)
    len1 = len(words1)
    len2 = len(words2)
    dot = sum((tf1[word] / len1) * (tf2[word] / len2) for word in tf1.keys() & tf2.keys())
    mag1 = math.sqrt(sum((count / len1) ** 2 for count in tf1.values()))
    mag2 = math.sqrt(sum((count / len2) ** 2 for count in tf2.values()))
    if not mag1 or not mag2:
        return 0.0
    return dot / (mag1 * mag2)


def levenshtein(text1: str, text2: str) -> int:
    if len(text1) < len(text2):
        text1, text2 = text2, text1
    previous = list(range(len(text2) + 1))
    for i, char1 in enumerate(text1, start=1):
        current = [i]
        for j, char2 in enumerate(text2, start=1):
            if char1 == char2:
                current.append(previous[j - 1])
            else:
                current.append(min(previous[j - 1], previous[j], current[j - 1]) + 1)
        previous = current
    return previous[-1]


def edit_similarity(text1: str, text2: str) -> float:
    longest = max(len(text1), len(text2))
    if longest == 0:
        return 1.0
    return 1 - levenshtein(text1, text2) / longest


def text_similarity(text1: str, text2: str) -> float:
    """Blend of word-set Jaccard, TF cosine and normalized edit distance.

    Identical strings score 1. When neither side has usable tokens only the edit
    distance is compared; when just one side lacks them the score is 0.
    """
    if text1 == text2:
        return 1.0
    words1 = tokenize(text1)
    words2 = tokenize(text2)
    if not words1 and not words2:
        return edit_similarity(text1, text2)
    if not words1 or not words2:
        return 0.0
    return (
        jaccard(words1, words2) * JACCARD_WEIGHT
        + cosine(words1, words2) * COSINE_WEIGHT
        + edit_similarity(text1, text2) * EDIT_WEIGHT
    )
