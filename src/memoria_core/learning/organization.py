"""Duplicate detection, relatedness clustering, tag hierarchy and safe auto-organization."""

from __future__ import annotations

import hashlib
import logging
import math
from collections import Counter
from datetime import datetime
from typing import Callable

from memoria_core.config import OrganizationSection
from memoria_core.memory.models import (
    DAY_MS,
    AutoOrganizationResult,
    DuplicateMemoryPair,
    Memory,
    MemoryCluster,
    MemoryOrganizationInsights,
    TagNode,
    now_ms,
)
from memoria_core.memory.store import RecordStore

from .similarity import text_similarity, tokenize

logger = logging.getLogger(__name__)

EXACT_DUPLICATE_SIMILARITY = 0.95
DISTINCT_VIEW_SIMILARITY = 0.8
DETAIL_GROWTH_RATIO = 1.5
CLUSTER_MIN_RELATED = 2
TAG_ROOT_MIN_FREQUENCY = 3
TAG_RELATED_MIN_COUNT = 2
TAG_RELATED_LIMIT = 5
TAG_CHILD_LIMIT = 3
CLUSTER_KEYWORD_LIMIT = 8
WEEK_MS = 7 * DAY_MS

SEMANTIC_TAG_PAIRS = (
    ("programming", "javascript"),
    ("programming", "python"),
    ("development", "frontend"),
    ("development", "backend"),
    ("design", "ui"),
    ("design", "database"),
    ("problem-solving", "debugging"),
    ("learning", "study"),
)


def determine_merge_action(memory1: Memory, memory2: Memory, similarity: float) -> str:
    """Pick merge / archive_older / keep_both for a reported duplicate pair.

    Rules are checked in order; the first hit wins.
    """
    if similarity > EXACT_DUPLICATE_SIMILARITY:
        return "merge"
    if memory1.content != memory2.content and (
        memory2.content in memory1.content or memory1.content in memory2.content
    ):
        return "merge"
    newer, older = (memory2, memory1) if memory2.created_at >= memory1.created_at else (memory1, memory2)
    if newer.created_at > older.created_at and len(newer.content) >= len(older.content) * DETAIL_GROWTH_RATIO:
        return "archive_older"
    if similarity > DISTINCT_VIEW_SIMILARITY:
        return "keep_both"
    return "merge"


def _main_and_sub(memory1: Memory, memory2: Memory) -> tuple[Memory, Memory]:
    if len(memory1.content) > len(memory2.content):
        return memory1, memory2
    return memory2, memory1


def generate_merged_content(memory1: Memory, memory2: Memory, now: int) -> str:
    title = memory1.title if len(memory1.title) > len(memory2.title) else memory2.title
    main, sub = _main_and_sub(memory1, memory2)
    lines = [f"# {title}", "", "## Merged information", main.content]
    if sub.content and sub.content not in main.content:
        lines.extend(["", "## Additional information", sub.content])
    merged_at = datetime.fromtimestamp(now / 1000).isoformat(timespec="seconds")
    lines.extend(["", "---", f"Merged at: {merged_at}", f"Sources: {memory1.title}, {memory2.title}"])
    return "\n".join(lines)


def relatedness(memory1: Memory, memory2: Memory) -> float:
    """Tags, content, title and creation-time proximity, capped at 1."""
    other_tags = {tag.lower() for tag in memory2.tags}
    common_tags = sum(1 for tag in memory1.tags if tag.lower() in other_tags)
    score = common_tags * 0.3
    score += text_similarity(memory1.content, memory2.content) * 0.4
    score += text_similarity(memory1.title, memory2.title) * 0.2
    score += math.exp(-abs(memory1.created_at - memory2.created_at) / WEEK_MS) * 0.1
    return min(score, 1.0)


def _cluster_id(member_ids: list[str]) -> str:
    digest = hashlib.sha1("|".join(sorted(member_ids)).encode("utf-8")).hexdigest()
    return f"cluster-{digest[:12]}"


def _unchanged(store: RecordStore, snapshot: Memory) -> bool:
    current = store.get(snapshot.id)
    return current is not None and current.updated_at == snapshot.updated_at


def _comparable_text(memory: Memory) -> str:
    # Title-only notes are compared by title.
    return memory.content if memory.content.strip() else memory.title


def _is_semantic_child(parent: str, child: str) -> bool:
    return any(p in parent and c in child for p, c in SEMANTIC_TAG_PAIRS)


class OrganizationEngine:
    """Read-only analysis over a list of memories plus the bounded auto-organization pass."""

    def __init__(self, settings: OrganizationSection | None = None, clock: Callable[[], int] | None = None) -> None:
        self.settings = settings or OrganizationSection()
        self.clock = clock or now_ms

    # -- duplicates --------------------------------------------------

    def find_duplicates(self, memories: list[Memory]) -> list[DuplicateMemoryPair]:
        now = self.clock()
        pairs: list[DuplicateMemoryPair] = []
        for i, first in enumerate(memories):
            for second in memories[i + 1 :]:
                similarity = text_similarity(_comparable_text(first), _comparable_text(second))
                if similarity <= self.settings.similarity_threshold:
                    continue
                action = determine_merge_action(first, second, similarity)
                pairs.append(
                    DuplicateMemoryPair(
                        memory1=first.id,
                        memory2=second.id,
                        similarity=similarity,
                        suggested_action=action,
                        merged_content=generate_merged_content(first, second, now) if action == "merge" else None,
                    )
                )
        pairs.sort(key=lambda pair: (-pair.similarity, pair.memory1, pair.memory2))
        return pairs

    # -- clusters ----------------------------------------------------

    def related_memories(self, base: Memory, memories: list[Memory]) -> list[Memory]:
        scored = [
            (relatedness(base, memory), memory)
            for memory in memories
            if memory.id != base.id
        ]
        scored = [item for item in scored if item[0] > self.settings.relatedness_threshold]
        scored.sort(key=lambda item: (-item[0], item[1].id))
        return [memory for _, memory in scored[: self.settings.max_related]]

    def cluster_memories(self, memories: list[Memory]) -> list[MemoryCluster]:
        clusters: list[MemoryCluster] = []
        processed: set[str] = set()
        for memory in memories:
            if memory.id in processed:
                continue
            candidates = [item for item in memories if item.id not in processed]
            related = self.related_memories(memory, candidates)
            if len(related) < CLUSTER_MIN_RELATED:
                continue
            members = [memory, *related]
            clusters.append(self._build_cluster(members))
            processed.update(item.id for item in members)
        return clusters

    def _build_cluster(self, members: list[Memory]) -> MemoryCluster:
        keywords = self._common_keywords(members)
        dominant_type = Counter(member.type for member in members).most_common(1)[0][0]
        theme = f"{' / '.join(keywords[:2])} {dominant_type}" if keywords else f"{dominant_type} cluster"
        avg_relevance = sum(member.relevance_score for member in members) / len(members)
        total_access = sum(member.access_count for member in members)
        ts = self.clock()
        member_ids = [member.id for member in members]
        return MemoryCluster(
            id=_cluster_id(member_ids),
            theme=theme,
            memories=member_ids,
            confidence=self._cluster_confidence(members),
            created_at=ts,
            updated_at=ts,
            keywords=keywords,
            summary=(
                f"Cluster of {len(members)} memories. "
                f"Average relevance: {avg_relevance * 100:.1f}%, total accesses: {total_access}."
            ),
        )

    @staticmethod
    def _common_keywords(members: list[Memory]) -> list[str]:
        counts: Counter[str] = Counter()
        for member in members:
            counts.update(word for word in tokenize(f"{member.title} {member.content}") if len(word) > 2)
        floor = max(2, len(members) * 0.5)
        ranked = sorted((item for item in counts.items() if item[1] >= floor), key=lambda item: (-item[1], item[0]))
        return [word for word, _ in ranked[:CLUSTER_KEYWORD_LIMIT]]

    @staticmethod
    def _cluster_confidence(members: list[Memory]) -> float:
        scores = [
            relatedness(first, second)
            for i, first in enumerate(members)
            for second in members[i + 1 :]
        ]
        return sum(scores) / len(scores) if scores else 0.0

    # -- maintenance candidates --------------------------------------

    def archive_candidates(self, memories: list[Memory]) -> list[str]:
        cutoff = self.clock() - self.settings.archive_age_days * DAY_MS
        stale = [
            memory
            for memory in memories
            if memory.created_at < cutoff and (memory.access_count < 2 or memory.relevance_score < 0.3)
        ]
        stale.sort(key=lambda memory: (memory.access_count, memory.id))
        return [memory.id for memory in stale]

    @staticmethod
    def orphaned_memories(memories: list[Memory], clusters: list[MemoryCluster]) -> list[str]:
        clustered = {memory_id for cluster in clusters for memory_id in cluster.memories}
        return [
            memory.id
            for memory in memories
            if memory.id not in clustered and (len(memory.tags) < 2 or not memory.associations)
        ]

    @staticmethod
    def tag_hierarchy(memories: list[Memory]) -> dict[str, TagNode]:
        frequency: Counter[str] = Counter()
        cooccurrence: dict[str, Counter[str]] = {}
        for memory in memories:
            tags = [tag.lower() for tag in memory.tags]
            for tag in tags:
                frequency[tag] += 1
                row = cooccurrence.setdefault(tag, Counter())
                row.update(other for other in tags if other != tag)

        hierarchy: dict[str, TagNode] = {}
        for tag, count in sorted(frequency.items(), key=lambda item: (-item[1], item[0])):
            if count < TAG_ROOT_MIN_FREQUENCY:
                continue
            related = sorted(
                (item for item in cooccurrence.get(tag, Counter()).items() if item[1] >= TAG_RELATED_MIN_COUNT),
                key=lambda item: (-item[1], item[0]),
            )[:TAG_RELATED_LIMIT]
            related_tags = [name for name, _ in related]
            children = [
                name
                for name in related_tags
                if frequency[name] < count and (tag in name or name in tag or _is_semantic_child(tag, name))
            ][:TAG_CHILD_LIMIT]
            hierarchy[tag] = TagNode(children=children, frequency=count, related_concepts=related_tags)
        return hierarchy

    @staticmethod
    def quality_score(
        memories: list[Memory],
        duplicates: list[DuplicateMemoryPair],
        clusters: list[MemoryCluster],
    ) -> float:
        total = len(memories)
        if total == 0:
            return 1.0
        duplicate_score = 1 - min(1.0, len(duplicates) / total * 2)
        cluster_score = sum(len(cluster.memories) for cluster in clusters) / total
        tag_score = sum(1 for memory in memories if memory.tags) / total
        link_score = sum(1 for memory in memories if memory.associations) / total
        return duplicate_score * 0.3 + cluster_score * 0.3 + tag_score * 0.2 + link_score * 0.2

    def organize(self, memories: list[Memory]) -> MemoryOrganizationInsights:
        duplicates = self.find_duplicates(memories)
        clusters = self.cluster_memories(memories)
        return MemoryOrganizationInsights(
            duplicates=duplicates,
            clusters=clusters,
            archive_candidates=self.archive_candidates(memories),
            orphaned_memories=self.orphaned_memories(memories, clusters),
            tag_hierarchy=self.tag_hierarchy(memories),
            quality_score=self.quality_score(memories, duplicates, clusters),
        )

    # -- auto-organization -------------------------------------------

    def auto_organize(self, store: RecordStore) -> AutoOrganizationResult:
        """Apply only the safe subset: strong merges, capped archival, confident clusters.

        The pairwise analysis runs on a snapshot without holding the store lock. Each
        change then takes the lock on its own and is skipped when one of its records
        was deleted or edited after the snapshot was taken.
        """
        result = AutoOrganizationResult()
        memories = store.get_all()
        insights = self.organize(memories)
        by_id = {memory.id: memory for memory in memories}
        consumed: set[str] = set()

        for pair in insights.duplicates:
            if pair.similarity <= self.settings.auto_merge_threshold or pair.suggested_action != "merge":
                continue
            if pair.memory1 in consumed or pair.memory2 in consumed:
                continue
            first, second = by_id[pair.memory1], by_id[pair.memory2]
            with store.lock:
                if not (_unchanged(store, first) and _unchanged(store, second)):
                    logger.info(
                        "organization: pair changed since analysis, skipped",
                        extra={"first": first.id, "second": second.id},
                    )
                    continue
                relinked = self._merge_pair(store, first, second, pair)
                if relinked is None:
                    continue
                consumed.update((first.id, second.id))
                result.merged += 1
                for memory_id in relinked:
                    by_id[memory_id] = store.get(memory_id) or by_id[memory_id]

        for memory_id in insights.archive_candidates[: self.settings.archive_batch_limit]:
            if memory_id in consumed:
                continue
            snapshot = by_id[memory_id]
            with store.lock:
                current = store.get(memory_id)
                # A search since the snapshot makes the record recent again.
                if current is None or current.updated_at != snapshot.updated_at:
                    continue
                if current.last_accessed != snapshot.last_accessed:
                    continue
                if store.archive_memory(memory_id):
                    consumed.add(memory_id)
                    result.archived += 1

        with store.lock:
            result.clustered = self._materialize_clusters(store, insights.clusters)
        result.retagged = sum(len(node.children) for node in insights.tag_hierarchy.values())

        logger.info(
            "organization: auto-organize finished",
            extra={
                "merged": result.merged,
                "archived": result.archived,
                "clustered": result.clustered,
                "retagged": result.retagged,
            },
        )
        return result

    def _merge_pair(
        self, store: RecordStore, memory1: Memory, memory2: Memory, pair: DuplicateMemoryPair
    ) -> list[str] | None:
        """Fold the pair into one record; returns the ids whose associations were relinked."""
        survivor, absorbed = _main_and_sub(memory1, memory2)
        title = memory1.title if len(memory1.title) > len(memory2.title) else memory2.title
        associations = [
            item
            for item in dict.fromkeys([*survivor.associations, *absorbed.associations])
            if item not in (survivor.id, absorbed.id)
        ]
        metadata = dict(absorbed.metadata)
        metadata.update(survivor.metadata)
        merged_from = survivor.metadata.get("mergedFrom")
        metadata["mergedFrom"] = [*(merged_from if isinstance(merged_from, list) else []), absorbed.id]
        updated = store.update_memory(
            survivor.id,
            {
                "title": title,
                "content": pair.merged_content or survivor.content,
                "tags": [*survivor.tags, *absorbed.tags],
                "relevanceScore": max(survivor.relevance_score, absorbed.relevance_score),
                "accessCount": survivor.access_count + absorbed.access_count,
                "associations": associations,
                "metadata": metadata,
            },
        )
        if not updated:
            return None
        store.delete_memory(absorbed.id)
        relinked_ids: list[str] = []
        for memory in store.get_all():
            if absorbed.id not in memory.associations:
                continue
            relinked = [survivor.id if item == absorbed.id else item for item in memory.associations]
            store.update_memory(
                memory.id,
                {"associations": [item for item in dict.fromkeys(relinked) if item != memory.id]},
            )
            relinked_ids.append(memory.id)
        logger.info("organization: merged duplicate", extra={"survivor": survivor.id, "absorbed": absorbed.id})
        return relinked_ids

    def _materialize_clusters(self, store: RecordStore, clusters: list[MemoryCluster]) -> int:
        existing = {cluster.id: cluster for cluster in store.load_clusters()}
        materialized = 0
        for cluster in clusters:
            if cluster.confidence <= self.settings.cluster_materialize_confidence:
                continue
            live = [memory_id for memory_id in cluster.memories if store.get(memory_id) is not None]
            if len(live) < 2:
                continue
            cluster.memories = live
            previous = existing.get(cluster.id)
            if previous is not None:
                cluster.created_at = previous.created_at
            existing[cluster.id] = cluster
            for memory_id in live:
                memory = store.get(memory_id)
                if memory is None:
                    continue
                links = list(dict.fromkeys([*memory.associations, *(other for other in live if other != memory_id)]))
                if links != memory.associations:
                    store.update_memory(memory_id, {"associations": links})
            materialized += 1
        if materialized:
            store.save_clusters(list(existing.values()))
        return materialized
