"""Inverted word/tag index with lexical and TF-IDF ranking."""

from __future__ import annotations

import json
import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from .models import DAY_MS, Memory, now_ms

logger = logging.getLogger(__name__)

# \W is unicode-aware, so CJK and other word characters survive tokenization.
_SPLIT_RE = re.compile(r"\W+")

_SORT_MODES = {"relevance", "date", "access"}
# Inverted bounds; filters_are_valid rejects it.
_EMPTY_RANGE = (1, 0)


def tokenize(text: str) -> list[str]:
    """Lower-case word tokens longer than one character."""
    return [word for word in _SPLIT_RE.split(text.lower()) if len(word) > 1]


def _document_terms(memory: Memory) -> list[str]:
    text = f"{memory.title} {memory.content} {' '.join(memory.tags)}".lower()
    return [word for word in _SPLIT_RE.split(text) if word]


@dataclass(slots=True)
class SearchFilters:
    types: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    date_range: tuple[int, int] | None = None
    min_relevance: float | None = None
    sort_by: str = "relevance"
    use_semantic: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.types and not self.tags and self.date_range is None and self.min_relevance is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": list(self.types),
            "tags": list(self.tags),
            "dateRange": None if self.date_range is None else {"start": self.date_range[0], "end": self.date_range[1]},
            "minRelevance": self.min_relevance,
            "sortBy": self.sort_by,
            "useSemantic": self.use_semantic,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> SearchFilters:
        """Accept the camelCase filter bag of the UI layer (or snake_case keys).

        A payload whose range or relevance bound cannot be read yields a filter that
        matches nothing, so the search comes back empty instead of raising.
        """
        if not raw:
            return cls()
        types = raw.get("type", raw.get("types")) or []
        if isinstance(types, str):
            types = [types]
        tags = raw.get("tags") or []
        if isinstance(tags, str):
            tags = [tags]
        raw_range = raw.get("dateRange", raw.get("date_range"))
        min_relevance = raw.get("minRelevance", raw.get("min_relevance"))
        try:
            date_range: tuple[int, int] | None = None
            if isinstance(raw_range, dict):
                date_range = (int(raw_range.get("start", 0)), int(raw_range.get("end", 0)))
            elif isinstance(raw_range, (list, tuple)) and len(raw_range) == 2:
                date_range = (int(raw_range[0]), int(raw_range[1]))
            relevance_floor = None if min_relevance is None else float(min_relevance)
        except (TypeError, ValueError) as exc:
            logger.warning("index: unreadable search filters, matching nothing: %s", exc)
            return cls(date_range=_EMPTY_RANGE)
        return cls(
            types=[str(item) for item in types],
            tags=[str(item) for item in tags],
            date_range=date_range,
            min_relevance=relevance_floor,
            sort_by=str(raw.get("sortBy", raw.get("sort_by", "relevance")) or "relevance"),
            use_semantic=bool(raw.get("useSemantic", raw.get("use_semantic", False))),
        )


def filters_are_valid(filters: SearchFilters) -> bool:
    if filters.date_range is not None and filters.date_range[0] > filters.date_range[1]:
        return False
    return True


def matches_filters(memory: Memory, filters: SearchFilters) -> bool:
    """AND of all set filters; tag filter is case-insensitive substring any-match."""
    if filters.types and memory.type not in filters.types:
        return False
    if filters.tags:
        wanted = [tag.lower() for tag in filters.tags]
        own = [tag.lower() for tag in memory.tags]
        if not any(needle in tag for needle in wanted for tag in own):
            return False
    if filters.date_range is not None:
        start, end = filters.date_range
        if not start <= memory.created_at <= end:
            return False
    if filters.min_relevance is not None and memory.relevance_score < filters.min_relevance:
        return False
    return True


def lexical_score(memory: Memory, tokens: Iterable[str]) -> int:
    title = memory.title.lower()
    content = memory.content.lower()
    tags = [tag.lower() for tag in memory.tags]
    score = 0
    for token in tokens:
        if token in title:
            score += 3
        if token in content:
            score += 2
        score += sum(1 for tag in tags if token in tag)
    return score


def composite_score(base: float, memory: Memory, now: int) -> float:
    days_since_access = max(0.0, (now - memory.last_accessed) / DAY_MS)
    return base * memory.relevance_score * (1 + memory.access_count * 0.1) * math.exp(-days_since_access / 30)


@dataclass(slots=True)
class _CacheEntry:
    ids: list[str]
    stored_at: int


class SearchIndex:
    """Word and tag inverted maps kept in step with the record store."""

    def __init__(self, cache_ttl_seconds: int = 300, clock: Callable[[], int] | None = None) -> None:
        self._words: dict[str, set[str]] = {}
        self._tags: dict[str, set[str]] = {}
        self._cache: dict[str, _CacheEntry] = {}
        self.cache_ttl_ms = max(0, int(cache_ttl_seconds)) * 1000
        self._clock = clock or now_ms

    # -- maintenance -------------------------------------------------

    def add(self, memory: Memory) -> None:
        for word in tokenize(f"{memory.title} {memory.content}"):
            self._words.setdefault(word, set()).add(memory.id)
        for tag in memory.tags:
            self._tags.setdefault(tag.lower(), set()).add(memory.id)

    def remove(self, memory: Memory) -> None:
        for word in tokenize(f"{memory.title} {memory.content}"):
            ids = self._words.get(word)
            if ids is None:
                continue
            ids.discard(memory.id)
            if not ids:
                del self._words[word]
        for tag in memory.tags:
            normalized = tag.lower()
            ids = self._tags.get(normalized)
            if ids is None:
                continue
            ids.discard(memory.id)
            if not ids:
                del self._tags[normalized]

    def rebuild(self, memories: Iterable[Memory]) -> None:
        self._words.clear()
        self._tags.clear()
        for memory in memories:
            self.add(memory)
        self.invalidate()
        logger.debug("index: rebuilt", extra={"words": len(self._words), "tags": len(self._tags)})

    def invalidate(self) -> None:
        self._cache.clear()

    def words(self) -> dict[str, set[str]]:
        return {word: set(ids) for word, ids in self._words.items()}

    def tags(self) -> dict[str, set[str]]:
        return {tag: set(ids) for tag, ids in self._tags.items()}

    def tag_counts(self) -> list[tuple[str, int]]:
        counts = [(tag, len(ids)) for tag, ids in self._tags.items()]
        counts.sort(key=lambda item: (-item[1], item[0]))
        return counts

    def candidates(self, tokens: Iterable[str]) -> set[str]:
        out: set[str] = set()
        for token in tokens:
            out |= self._words.get(token, set())
            out |= self._tags.get(token, set())
        return out

    # -- cache -------------------------------------------------------

    @staticmethod
    def cache_key(query: str, limit: int, filters: SearchFilters) -> str:
        return json.dumps({"query": query, "limit": limit, "filters": filters.to_dict()}, sort_keys=True)

    def _cache_get(self, key: str) -> list[str] | None:
        now = self._clock()
        expired = [k for k, entry in self._cache.items() if now - entry.stored_at >= self.cache_ttl_ms]
        for k in expired:
            del self._cache[k]
        entry = self._cache.get(key)
        return None if entry is None else list(entry.ids)

    # -- querying ----------------------------------------------------

    def search(self, query: str, limit: int, filters: SearchFilters, memories: dict[str, Memory]) -> list[str]:
        """Return ordered ids of the page for ``query``; the caller owns side effects."""
        if limit <= 0:
            return []
        key = self.cache_key(query, limit, filters)
        if self.cache_ttl_ms > 0:
            cached = self._cache_get(key)
            if cached is not None:
                return [memory_id for memory_id in cached if memory_id in memories]

        if not filters_are_valid(filters):
            ids: list[str] = []
        else:
            ids = self._rank(query, filters, memories)[:limit]
        if self.cache_ttl_ms > 0:
            self._cache[key] = _CacheEntry(ids=list(ids), stored_at=self._clock())
        return ids

    def _rank(self, query: str, filters: SearchFilters, memories: dict[str, Memory]) -> list[str]:
        filtered = [memory for memory in memories.values() if matches_filters(memory, filters)]
        query_text = query.strip().lower()

        base_scores: dict[str, float]
        if not query_text:
            base_scores = {memory.id: 1.0 for memory in filtered}
        elif filters.use_semantic:
            base_scores = self._semantic_scores(query_text, filtered)
        else:
            base_scores = self._lexical_scores(query_text, filtered)

        ranked = [memories[memory_id] for memory_id in base_scores]
        sort_by = filters.sort_by if filters.sort_by in _SORT_MODES else "relevance"
        if sort_by == "date":
            ranked.sort(key=lambda m: (-m.updated_at, m.id))
        elif sort_by == "access":
            ranked.sort(key=lambda m: (-m.access_count, m.id))
        else:
            now = self._clock()
            scored = [(composite_score(base_scores[m.id], m, now), base_scores[m.id], m) for m in ranked]
            scored.sort(key=lambda item: (-item[0], -item[1], item[2].id))
            ranked = [item[2] for item in scored]
        return [memory.id for memory in ranked]

    def _lexical_scores(self, query_text: str, filtered: list[Memory]) -> dict[str, float]:
        tokens = tokenize(query_text)
        if not tokens:
            return {}
        allowed = {memory.id: memory for memory in filtered}
        out: dict[str, float] = {}
        for memory_id in self.candidates(tokens):
            memory = allowed.get(memory_id)
            if memory is None:
                continue
            score = lexical_score(memory, tokens)
            if score > 0:
                out[memory_id] = float(score)
        return out

    @staticmethod
    def _semantic_scores(query_text: str, filtered: list[Memory]) -> dict[str, float]:
        tokens = tokenize(query_text)
        if not tokens or not filtered:
            return {}
        docs = [Counter(_document_terms(memory)) for memory in filtered]
        doc_count = len(docs)
        df: Counter[str] = Counter()
        for doc in docs:
            df.update(doc.keys())
        out: dict[str, float] = {}
        for memory, doc in zip(filtered, docs):
            if not any(doc.get(token) for token in tokens):
                continue
            score = 0.0
            for token in tokens:
                tf = doc.get(token, 0)
                if tf and df[token]:
                    score += tf * math.log(doc_count / df[token])
            out[memory.id] = score
        return out
