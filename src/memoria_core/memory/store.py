"""Record store: durable memories and action history over a key-value store."""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from dataclasses import fields
from typing import Any, Callable

from memoria_core.config import (
    MemorySection,
    memory_section_from_dict,
    memory_section_to_dict,
    overlay_memory_settings,
)

from .index import SearchFilters, SearchIndex
from .kv import KeyValueStore
from .models import (
    ACTION_TYPES,
    DAY_MS,
    MEMORY_TYPES,
    ActionEntry,
    AppUsageStats,
    BehaviorPattern,
    Memory,
    MemoryCluster,
    normalize_tags,
    now_ms,
)

logger = logging.getLogger(__name__)

ACTION_HISTORY_KEY = "actionHistory"
LONG_TERM_MEMORY_KEY = "longTermMemory"
BEHAVIOR_PATTERNS_KEY = "behaviorPatterns"
MEMORY_SETTINGS_KEY = "memorySettings"
APP_USAGE_KEY = "appUsageStats"
ARCHIVED_MEMORY_KEY = "archivedMemories"
CLUSTERS_KEY = "memoryClusters"
META_KEY = "memoryMeta"

SNAPSHOT_KEYS = (
    ACTION_HISTORY_KEY,
    LONG_TERM_MEMORY_KEY,
    BEHAVIOR_PATTERNS_KEY,
    MEMORY_SETTINGS_KEY,
    APP_USAGE_KEY,
    ARCHIVED_MEMORY_KEY,
    CLUSTERS_KEY,
)

_PRIVATE_ACTION_FIELDS = ("window_title", "context", "query", "response")
# Gaps longer than this between two actions are not counted as usage time.
_MAX_USAGE_GAP_MS = 30 * 60 * 1000


def _field(raw: dict[str, Any], camel: str, snake: str, default: Any = None) -> Any:
    if camel in raw:
        return raw[camel]
    if snake in raw:
        return raw[snake]
    return default


def _clamp_unit(value: Any, default: float = 0.5) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return max(0.0, min(1.0, number))


def _records(raw: Any, factory: Callable[[dict[str, Any]], Any], label: str) -> list[Any]:
    out: list[Any] = []
    if not isinstance(raw, list):
        return out
    for item in raw:
        if not isinstance(item, dict):
            continue
        try:
            out.append(factory(item))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("store: skipping malformed %s record: %s", label, exc)
    return out


class RecordStore:
    """Owns Memory and ActionEntry persistence and keeps the search index in step."""

    def __init__(
        self,
        kv: KeyValueStore,
        settings: MemorySection | None = None,
        cache_ttl_seconds: int = 300,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.kv = kv
        self.settings = settings or MemorySection()
        self.clock = clock or now_ms
        self.index = SearchIndex(cache_ttl_seconds=cache_ttl_seconds, clock=self.clock)
        self.lock = threading.RLock()
        self._memories: dict[str, Memory] = {}
        self._actions: list[ActionEntry] = []

    # -- lifecycle ---------------------------------------------------

    def load(self) -> None:
        with self.lock:
            stored_settings = self.kv.get(MEMORY_SETTINGS_KEY)
            if isinstance(stored_settings, dict):
                self._adopt_settings(overlay_memory_settings(stored_settings, self.settings))
            self.kv.set(MEMORY_SETTINGS_KEY, memory_section_to_dict(self.settings))
            memories = _records(self.kv.get(LONG_TERM_MEMORY_KEY, []), Memory.from_dict, "memory")
            self._memories = {memory.id: memory for memory in memories}
            self._actions = _records(self.kv.get(ACTION_HISTORY_KEY, []), ActionEntry.from_dict, "action")
            self.index.rebuild(self._memories.values())
            if self._evict_over_capacity():
                self._persist_memories()
            logger.info(
                "store: loaded",
                extra={"memories": len(self._memories), "actions": len(self._actions)},
            )

    def _adopt_settings(self, settings: MemorySection) -> None:
        # Copied in place: the engine config holds the same section object.
        for fld in fields(MemorySection):
            setattr(self.settings, fld.name, getattr(settings, fld.name))

    def _persist_memories(self) -> None:
        self.kv.set(LONG_TERM_MEMORY_KEY, [memory.to_dict() for memory in self._memories.values()])

    def _persist_actions(self) -> None:
        self.kv.set(ACTION_HISTORY_KEY, [entry.to_dict() for entry in self._actions])

    # -- memories ----------------------------------------------------

    def save_memory(self, fields: dict[str, Any]) -> str | None:
        title = str(_field(fields, "title", "title", "") or "").strip()
        content = str(_field(fields, "content", "content", "") or "").strip()
        if not title and not content:
            logger.warning("store: rejected memory without title or content")
            return None
        memory_type = str(_field(fields, "type", "type", "note") or "note")
        if memory_type not in MEMORY_TYPES:
            memory_type = "note"
        metadata = _field(fields, "metadata", "metadata", {})
        with self.lock:
            ts = self.clock()
            memory = Memory(
                id=str(uuid.uuid4()),
                created_at=ts,
                updated_at=ts,
                type=memory_type,
                title=title,
                content=content,
                tags=normalize_tags(_field(fields, "tags", "tags", [])),
                relevance_score=_clamp_unit(_field(fields, "relevanceScore", "relevance_score", 0.5)),
                access_count=0,
                last_accessed=ts,
                associations=[str(item) for item in _field(fields, "associations", "associations", []) or []],
                metadata=dict(metadata) if isinstance(metadata, dict) else {},
            )
            self._memories[memory.id] = memory
            self.index.add(memory)
            evicted = self._evict_over_capacity(newcomer=memory.id)
            self.index.invalidate()
            self._persist_memories()
            if memory.id in evicted:
                logger.warning("store: new memory ranked lowest and was evicted at once", extra={"id": memory.id})
                return None
            return memory.id

    def _evict_over_capacity(self, newcomer: str | None = None) -> list[str]:
        """Drop the lowest `relevanceScore * accessCount` records; on a tie the newcomer goes last."""
        excess = len(self._memories) - self.settings.max_memory_entries
        if excess <= 0:
            return []
        victims = sorted(
            self._memories.values(),
            key=lambda memory: (memory.eviction_key[0], memory.id == newcomer, memory.id),
        )[:excess]
        for memory in victims:
            self.index.remove(memory)
            del self._memories[memory.id]
        evicted = [memory.id for memory in victims]
        logger.info("store: evicted memories over capacity", extra={"evicted": evicted})
        return evicted

    def update_memory(self, memory_id: str, fields: dict[str, Any]) -> bool:
        with self.lock:
            memory = self._memories.get(memory_id)
            if memory is None:
                return False
            self.index.remove(memory)
            if "title" in fields:
                memory.title = str(fields["title"] or "")
            if "content" in fields:
                memory.content = str(fields["content"] or "")
            if "type" in fields and fields["type"] in MEMORY_TYPES:
                memory.type = str(fields["type"])
            if "tags" in fields:
                memory.tags = normalize_tags(fields["tags"])
            relevance = _field(fields, "relevanceScore", "relevance_score")
            if relevance is not None:
                memory.relevance_score = _clamp_unit(relevance, memory.relevance_score)
            associations = _field(fields, "associations", "associations")
            if associations is not None:
                memory.associations = [str(item) for item in associations]
            metadata = _field(fields, "metadata", "metadata")
            if isinstance(metadata, dict):
                memory.metadata = dict(metadata)
            access_count = _field(fields, "accessCount", "access_count")
            if access_count is not None:
                memory.access_count = max(memory.access_count, int(access_count))
            memory.updated_at = max(self.clock(), memory.created_at)
            self.index.add(memory)
            self.index.invalidate()
            self._persist_memories()
            return True

    def delete_memory(self, memory_id: str) -> bool:
        with self.lock:
            memory = self._memories.pop(memory_id, None)
            if memory is None:
                return False
            self.index.remove(memory)
            self.index.invalidate()
            self._persist_memories()
            return True

    def archive_memory(self, memory_id: str) -> bool:
        """Move a memory out of the live table into the archive document."""
        with self.lock:
            memory = self._memories.pop(memory_id, None)
            if memory is None:
                return False
            self.index.remove(memory)
            self.index.invalidate()
            archived = self.kv.get(ARCHIVED_MEMORY_KEY, [])
            if not isinstance(archived, list):
                archived = []
            payload = memory.to_dict()
            payload["archivedAt"] = self.clock()
            archived.append(payload)
            self.kv.set(ARCHIVED_MEMORY_KEY, archived)
            self._persist_memories()
            return True

    def load_archived(self) -> list[Memory]:
        return _records(self.kv.get(ARCHIVED_MEMORY_KEY, []), Memory.from_dict, "archived memory")

    def get(self, memory_id: str) -> Memory | None:
        with self.lock:
            memory = self._memories.get(memory_id)
            return None if memory is None else copy.deepcopy(memory)

    def get_all(self) -> list[Memory]:
        with self.lock:
            return [copy.deepcopy(memory) for memory in self._memories.values()]

    def count(self) -> int:
        return len(self._memories)

    def search(self, query: str, limit: int = 10, filters: SearchFilters | None = None) -> list[Memory]:
        """Ranked page of memories; every returned record counts as accessed."""
        filters = filters or SearchFilters()
        with self.lock:
            ids = self.index.search(query, limit, filters, self._memories)
            if not ids:
                return []
            ts = self.clock()
            page: list[Memory] = []
            for memory_id in ids:
                memory = self._memories[memory_id]
                memory.access_count += 1
                memory.last_accessed = ts
                page.append(copy.deepcopy(memory))
            self._persist_memories()
            return page

    # -- tags --------------------------------------------------------

    def merge_tags(self, old_tag: str, new_tag: str) -> int:
        old_lower = old_tag.strip().lower()
        replacement = new_tag.strip()
        if not old_lower or not replacement:
            return 0
        with self.lock:
            changed = 0
            ts = self.clock()
            for memory in self._memories.values():
                if not any(tag.lower() == old_lower for tag in memory.tags):
                    continue
                memory.tags = normalize_tags([replacement if tag.lower() == old_lower else tag for tag in memory.tags])
                memory.updated_at = max(ts, memory.created_at)
                changed += 1
            if changed:
                self.index.rebuild(self._memories.values())
                self._persist_memories()
            return changed

    def remove_tag(self, tag: str) -> int:
        target = tag.strip().lower()
        if not target:
            return 0
        with self.lock:
            changed = 0
            ts = self.clock()
            for memory in self._memories.values():
                kept = [item for item in memory.tags if item.lower() != target]
                if len(kept) == len(memory.tags):
                    continue
                memory.tags = kept
                memory.updated_at = max(ts, memory.created_at)
                changed += 1
            if changed:
                self.index.rebuild(self._memories.values())
                self._persist_memories()
            return changed

    def tag_counts(self) -> list[tuple[str, int]]:
        with self.lock:
            return self.index.tag_counts()

    def rebuild_index(self) -> None:
        with self.lock:
            self.index.rebuild(self._memories.values())

    def memory_stats(self) -> dict[str, Any]:
        with self.lock:
            memories = list(self._memories.values())
            type_counts: dict[str, int] = {}
            for memory in memories:
                type_counts[memory.type] = type_counts.get(memory.type, 0) + 1
            most_accessed = max(memories, key=lambda memory: memory.access_count, default=None)
            return {
                "totalMemories": len(memories),
                "memoryTypes": type_counts,
                "totalTags": len(self.index.tag_counts()),
                "averageRelevance": (
                    sum(memory.relevance_score for memory in memories) / len(memories) if memories else 0.0
                ),
                "mostAccessedMemory": None if most_accessed is None else most_accessed.to_dict(),
                "totalActions": len(self._actions),
            }

    # -- actions -----------------------------------------------------

    def record_action(self, fields: dict[str, Any]) -> ActionEntry | None:
        action_type = str(_field(fields, "actionType", "action_type", "") or "")
        if action_type not in ACTION_TYPES:
            logger.warning("store: rejected action with unknown type", extra={"action_type": action_type})
            return None
        metadata = _field(fields, "metadata", "metadata", {})

        def _opt(camel: str, snake: str) -> str | None:
            value = _field(fields, camel, snake)
            return None if value is None else str(value)

        with self.lock:
            entry = ActionEntry(
                id=str(uuid.uuid4()),
                timestamp=int(_field(fields, "timestamp", "timestamp", 0) or 0) or self.clock(),
                action_type=action_type,
                application_name=_opt("applicationName", "application_name"),
                window_title=_opt("windowTitle", "window_title"),
                context=_opt("context", "context"),
                query=_opt("query", "query"),
                response=_opt("response", "response"),
                tags=normalize_tags(_field(fields, "tags", "tags", [])),
                metadata=dict(metadata) if isinstance(metadata, dict) else {},
            )
            if self.settings.privacy_mode:
                for name in _PRIVATE_ACTION_FIELDS:
                    setattr(entry, name, None)
            previous = self._actions[-1] if self._actions else None
            self._actions.append(entry)
            overflow = len(self._actions) - self.settings.max_history_entries
            if overflow > 0:
                del self._actions[:overflow]
            self._persist_actions()
            if entry.application_name:
                self._update_app_stats(entry, previous)
            return entry

    def _update_app_stats(self, entry: ActionEntry, previous: ActionEntry | None) -> None:
        raw = self.kv.get(APP_USAGE_KEY, {})
        stats = {
            name: AppUsageStats.from_dict(value)
            for name, value in (raw.items() if isinstance(raw, dict) else [])
            if isinstance(value, dict)
        }
        current = stats.setdefault(entry.application_name or "", AppUsageStats(app_name=entry.application_name or ""))
        current.frequency += 1
        current.last_used = entry.timestamp
        if previous is not None and previous.application_name:
            gap = entry.timestamp - previous.timestamp
            if 0 < gap <= _MAX_USAGE_GAP_MS:
                prior = stats.setdefault(previous.application_name, AppUsageStats(app_name=previous.application_name))
                prior.total_usage_time += gap
        self.kv.set(APP_USAGE_KEY, {name: item.to_dict() for name, item in stats.items()})

    def app_usage(self) -> dict[str, AppUsageStats]:
        raw = self.kv.get(APP_USAGE_KEY, {})
        if not isinstance(raw, dict):
            return {}
        return {name: AppUsageStats.from_dict(value) for name, value in raw.items() if isinstance(value, dict)}

    def recent_actions(self, limit: int) -> list[ActionEntry]:
        with self.lock:
            if limit <= 0:
                return []
            return [copy.deepcopy(entry) for entry in self._actions[-limit:]]

    def action_count(self) -> int:
        return len(self._actions)

    # -- derived documents -------------------------------------------

    def load_patterns(self) -> list[BehaviorPattern]:
        return _records(self.kv.get(BEHAVIOR_PATTERNS_KEY, []), BehaviorPattern.from_dict, "pattern")

    def save_patterns(self, patterns: list[BehaviorPattern]) -> None:
        self.kv.set(BEHAVIOR_PATTERNS_KEY, [pattern.to_dict() for pattern in patterns])

    def load_clusters(self) -> list[MemoryCluster]:
        return _records(self.kv.get(CLUSTERS_KEY, []), MemoryCluster.from_dict, "cluster")

    def save_clusters(self, clusters: list[MemoryCluster]) -> None:
        self.kv.set(CLUSTERS_KEY, [cluster.to_dict() for cluster in clusters])

    def get_meta(self, key: str) -> Any:
        meta = self.kv.get(META_KEY, {})
        return meta.get(key) if isinstance(meta, dict) else None

    def set_meta(self, key: str, value: Any) -> None:
        meta = self.kv.get(META_KEY, {})
        if not isinstance(meta, dict):
            meta = {}
        meta[key] = value
        self.kv.set(META_KEY, meta)

    # -- maintenance -------------------------------------------------

    def purge_expired(self, retention_days: int | None = None) -> dict[str, int]:
        """Drop actions and patterns older than the retention window."""
        days = self.settings.retention_days if retention_days is None else max(1, int(retention_days))
        with self.lock:
            cutoff = self.clock() - days * DAY_MS
            before_actions = len(self._actions)
            self._actions = [entry for entry in self._actions if entry.timestamp > cutoff]
            removed_actions = before_actions - len(self._actions)
            if removed_actions:
                self._persist_actions()
            patterns = self.load_patterns()
            kept = [pattern for pattern in patterns if pattern.last_occurred > cutoff]
            removed_patterns = len(patterns) - len(kept)
            if removed_patterns:
                self.save_patterns(kept)
            return {"actions": removed_actions, "patterns": removed_patterns}

    # -- snapshot ----------------------------------------------------

    def export_snapshot(self) -> dict[str, Any]:
        with self.lock:
            return {
                ACTION_HISTORY_KEY: [entry.to_dict() for entry in self._actions],
                LONG_TERM_MEMORY_KEY: [memory.to_dict() for memory in self._memories.values()],
                BEHAVIOR_PATTERNS_KEY: self.kv.get(BEHAVIOR_PATTERNS_KEY, []),
                MEMORY_SETTINGS_KEY: memory_section_to_dict(self.settings),
                APP_USAGE_KEY: self.kv.get(APP_USAGE_KEY, {}),
                ARCHIVED_MEMORY_KEY: self.kv.get(ARCHIVED_MEMORY_KEY, []),
                CLUSTERS_KEY: self.kv.get(CLUSTERS_KEY, []),
            }

    def import_snapshot(self, data: dict[str, Any]) -> dict[str, int]:
        """Replace each table present in ``data`` wholesale; absent tables are kept."""
        if not isinstance(data, dict):
            return {}
        counts: dict[str, int] = {}
        with self.lock:
            if isinstance(data.get(MEMORY_SETTINGS_KEY), dict):
                self._adopt_settings(memory_section_from_dict(data[MEMORY_SETTINGS_KEY], self.settings))
                self.kv.set(MEMORY_SETTINGS_KEY, memory_section_to_dict(self.settings))
            if LONG_TERM_MEMORY_KEY in data:
                memories = _records(data[LONG_TERM_MEMORY_KEY], Memory.from_dict, "memory")
                self._memories = {memory.id: memory for memory in memories}
                self._persist_memories()
                counts[LONG_TERM_MEMORY_KEY] = len(self._memories)
            if ACTION_HISTORY_KEY in data:
                self._actions = _records(data[ACTION_HISTORY_KEY], ActionEntry.from_dict, "action")
                self._persist_actions()
                counts[ACTION_HISTORY_KEY] = len(self._actions)
            if BEHAVIOR_PATTERNS_KEY in data:
                patterns = _records(data[BEHAVIOR_PATTERNS_KEY], BehaviorPattern.from_dict, "pattern")
                self.save_patterns(patterns)
                counts[BEHAVIOR_PATTERNS_KEY] = len(patterns)
            if ARCHIVED_MEMORY_KEY in data:
                archived = _records(data[ARCHIVED_MEMORY_KEY], Memory.from_dict, "archived memory")
                self.kv.set(ARCHIVED_MEMORY_KEY, [memory.to_dict() for memory in archived])
                counts[ARCHIVED_MEMORY_KEY] = len(archived)
            if CLUSTERS_KEY in data:
                clusters = _records(data[CLUSTERS_KEY], MemoryCluster.from_dict, "cluster")
                self.save_clusters(clusters)
                counts[CLUSTERS_KEY] = len(clusters)
            if isinstance(data.get(APP_USAGE_KEY), dict):
                self.kv.set(APP_USAGE_KEY, data[APP_USAGE_KEY])
            self.index.rebuild(self._memories.values())
            logger.info("store: imported snapshot", extra={"counts": counts})
        return counts
