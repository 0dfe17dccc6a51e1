"""Memory engine: one explicitly constructed object wiring store, index, learning and jobs."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from memoria_core.config import EngineConfig
from memoria_core.heartbeat.jobs import (
    LAST_AUTO_ORGANIZATION_KEY,
    run_auto_organization_job,
    run_cleanup_job,
    run_suggestion_refresh_job,
)
from memoria_core.heartbeat.loop import HeartbeatLoop, HeartbeatStatus
from memoria_core.learning.organization import OrganizationEngine
from memoria_core.learning.patterns import PatternDetector
from memoria_core.learning.suggestions import SuggestionRanker, simple_suggestions
from memoria_core.memory.index import SearchFilters
from memoria_core.memory.kv import JsonFileKeyValueStore, KeyValueStore, clean_stale_locks
from memoria_core.memory.models import (
    ActionEntry,
    AdvancedSuggestion,
    AutoOrganizationResult,
    BehaviorPattern,
    ContextualEnvironment,
    Memory,
    MemoryOrganizationInsights,
    now_ms,
)
from memoria_core.memory.store import RecordStore

logger = logging.getLogger(__name__)

_RECENT_ACTIVITY = 10


class MemoryEngine:
    """Library surface over the memory subsystem.

    Every mutation takes the store lock, so a mutation and its index update are
    never observed half-applied by a concurrent search or background job. The
    pairwise organization analysis runs outside the lock on a copied snapshot.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        kv_store: KeyValueStore | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.clock = clock or now_ms
        self.kv = kv_store if kv_store is not None else JsonFileKeyValueStore(Path(self.config.paths.data_root) / "memory")
        self.store = RecordStore(
            self.kv,
            settings=self.config.memory,
            cache_ttl_seconds=self.config.search.cache_ttl_seconds,
            clock=self.clock,
        )
        self.detector = PatternDetector(self.config.patterns)
        self.organizer = OrganizationEngine(self.config.organization, clock=self.clock)
        self.ranker = SuggestionRanker(clock=self.clock)
        self.latest_suggestions: list[AdvancedSuggestion] = []
        self._loops: list[HeartbeatLoop] = []
        self._opened = False

    @property
    def lock(self):
        return self.store.lock

    @property
    def is_open(self) -> bool:
        return self._opened

    # -- lifecycle ---------------------------------------------------

    def open(self) -> MemoryEngine:
        with self.lock:
            if self._opened:
                return self
            self.store.load()
            self._opened = True
        if self.config.heartbeat.enabled:
            self.start_background_jobs()
        logger.info("engine: opened")
        return self

    def close(self) -> None:
        self.stop_background_jobs()
        with self.lock:
            self._opened = False
        if isinstance(self.kv, JsonFileKeyValueStore):
            scan = clean_stale_locks(str(self.kv.root))
            if scan.removed:
                logger.info("engine: cleaned stale locks", extra={"removed": scan.removed})
        logger.info("engine: closed")

    def __enter__(self) -> MemoryEngine:
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- records -----------------------------------------------------

    def record_action(self, fields: dict[str, Any]) -> ActionEntry | None:
        with self.lock:
            entry = self.store.record_action(fields)
            if entry is not None and self.store.settings.auto_learn_enabled:
                self._learn_patterns()
            return entry

    def _learn_patterns(self) -> None:
        patterns = self.store.load_patterns()
        self.detector.detect(self.store.recent_actions(self.config.patterns.window), patterns, self.clock())
        self.store.save_patterns(patterns)

    def save_memory(self, fields: dict[str, Any]) -> str | None:
        return self.store.save_memory(fields)

    def update_memory(self, memory_id: str, fields: dict[str, Any]) -> bool:
        return self.store.update_memory(memory_id, fields)

    def delete_memory(self, memory_id: str) -> bool:
        return self.store.delete_memory(memory_id)

    def get_memory(self, memory_id: str) -> Memory | None:
        return self.store.get(memory_id)

    def search_memories(
        self,
        query: str = "",
        limit: int | None = None,
        filters: SearchFilters | dict[str, Any] | None = None,
    ) -> list[Memory]:
        if not isinstance(filters, SearchFilters):
            filters = SearchFilters.from_dict(filters)
        page_size = self.config.search.default_limit if limit is None else limit
        return self.store.search(query, page_size, filters)

    def search_memories_immediate(
        self,
        query: str = "",
        limit: int | None = None,
        filters: SearchFilters | dict[str, Any] | None = None,
    ) -> list[Memory]:
        # Debouncing belongs to the caller; the engine always answers synchronously.
        return self.search_memories(query, limit, filters)

    # -- tags and stats ----------------------------------------------

    def get_all_tags(self) -> list[tuple[str, int]]:
        return self.store.tag_counts()

    def merge_tags(self, old_tag: str, new_tag: str) -> int:
        return self.store.merge_tags(old_tag, new_tag)

    def remove_tag(self, tag: str) -> int:
        return self.store.remove_tag(tag)

    def get_memory_stats(self) -> dict[str, Any]:
        return self.store.memory_stats()

    def get_behavior_patterns(self) -> list[BehaviorPattern]:
        with self.lock:
            return self.store.load_patterns()

    def rebuild_index(self) -> None:
        self.store.rebuild_index()
        logger.info("engine: index rebuilt")

    # -- suggestions -------------------------------------------------

    def current_context(self, **overrides: Any) -> ContextualEnvironment:
        """Environment derived from the clock and recent actions; keyword overrides win."""
        moment = datetime.fromtimestamp(self.clock() / 1000)
        recent = self.store.recent_actions(_RECENT_ACTIVITY)
        activity = [entry.window_title or entry.application_name or entry.action_type for entry in recent]
        queries = [entry.query for entry in recent if entry.query]
        values: dict[str, Any] = {
            "time_of_day": moment.hour,
            "day_of_week": moment.weekday(),
            "current_app": recent[-1].application_name if recent else None,
            "recent_activity": activity,
            "recent_query": queries[-1] if queries else None,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return ContextualEnvironment(**values)

    def get_suggestions(self, context: ContextualEnvironment | None = None) -> list[str]:
        context = context or self.current_context()
        with self.lock:
            related = self.store.search(context.recent_query, 3) if context.recent_query else []
            return simple_suggestions(context, self.store.load_patterns(), [memory.title for memory in related])

    def _rank_suggestions(self, context: ContextualEnvironment, limit: int) -> list[AdvancedSuggestion]:
        # Analysis runs on a copied snapshot so searches are not held up by it.
        with self.lock:
            memories = self.store.get_all()
            patterns = self.store.load_patterns()
        insights = self.organizer.organize(memories)
        return self.ranker.suggest(context, memories, patterns, insights, limit)

    def get_advanced_suggestions(
        self, context: ContextualEnvironment | None = None, limit: int = 5
    ) -> list[AdvancedSuggestion]:
        """Ranked suggestions; the ones returned count against future freshness."""
        ranked = self._rank_suggestions(context or self.current_context(), limit)
        self.ranker.add_to_history(ranked)
        return ranked

    def refresh_suggestions(self) -> list[AdvancedSuggestion]:
        self.latest_suggestions = self._rank_suggestions(self.current_context(), 5)
        return list(self.latest_suggestions)

    # -- organization ------------------------------------------------

    def organize(self) -> MemoryOrganizationInsights:
        return self.organizer.organize(self.store.get_all())

    def auto_organize(self) -> AutoOrganizationResult:
        """Analyse a snapshot unlocked, then apply each change under the store lock."""
        result = self.organizer.auto_organize(self.store)
        with self.lock:
            self.store.set_meta(LAST_AUTO_ORGANIZATION_KEY, self.clock())
        return result

    # -- maintenance -------------------------------------------------

    def run_cleanup(self) -> dict[str, int]:
        return self.store.purge_expired()

    def export_data(self) -> dict[str, Any]:
        return self.store.export_snapshot()

    def import_data(self, data: dict[str, Any]) -> dict[str, int]:
        counts = self.store.import_snapshot(data)
        self.config.memory = self.store.settings
        return counts

    # -- background jobs ---------------------------------------------

    def start_background_jobs(self) -> None:
        if not self._loops:
            heartbeat = self.config.heartbeat
            self._loops = [
                HeartbeatLoop("cleanup", heartbeat.cleanup_interval_seconds, lambda: run_cleanup_job(self)),
                HeartbeatLoop(
                    "organization", heartbeat.organization_check_seconds, lambda: run_auto_organization_job(self)
                ),
                HeartbeatLoop(
                    "suggestions", heartbeat.suggestion_refresh_seconds, lambda: run_suggestion_refresh_job(self)
                ),
            ]
        for loop in self._loops:
            loop.start()
        logger.info("engine: background jobs started", extra={"jobs": [loop.name for loop in self._loops]})

    def stop_background_jobs(self) -> None:
        for loop in self._loops:
            loop.stop()

    def background_status(self) -> list[HeartbeatStatus]:
        return [loop.status() for loop in self._loops]
