"""Memory models."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any


MEMORY_TYPES = ("note", "project", "preference", "pattern", "knowledge")
ACTION_TYPES = ("screenshot", "advice_request", "app_switch", "file_access", "query")
SUGGESTED_ACTIONS = ("merge", "keep_both", "archive_older")
SUGGESTION_TYPES = (
    "goal_progress",
    "learning_optimization",
    "productivity_boost",
    "health_reminder",
    "creative_inspiration",
    "pattern_insight",
)
PRIORITIES = ("urgent", "high", "medium", "low")
COGNITIVE_STATES = ("focused", "distracted", "creative", "analytical", "tired")
WORKLOADS = ("light", "medium", "heavy")

DAY_MS = 24 * 60 * 60 * 1000


def now_ms() -> int:
    """Return current epoch time in milliseconds."""
    return int(time.time() * 1000)


def _str_list(raw: Any) -> list[str]:
    if not isinstance(raw, (list, tuple)):
        return []
    return [str(item) for item in raw]


def normalize_tags(tags: list[str] | tuple[str, ...] | str | None) -> list[str]:
    """Deduplicate tags case-insensitively, keeping first-seen casing."""
    if tags is None:
        return []
    if isinstance(tags, str):
        items = [part.strip() for part in tags.split(",")]
    else:
        items = [str(part).strip() for part in tags]
    out: list[str] = []
    seen: set[str] = set()
    for tag in items:
        if not tag:
            continue
        lowered = tag.lower()
        if lowered in seen:
            continue
        seen.add(lowered)
        out.append(tag)
    return out


@dataclass(slots=True)
class Memory:
    id: str
    created_at: int
    updated_at: int
    type: str
    title: str
    content: str
    tags: list[str] = field(default_factory=list)
    relevance_score: float = 0.5
    access_count: int = 0
    last_accessed: int = 0
    associations: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def eviction_key(self) -> tuple[float, str]:
        return (self.relevance_score * self.access_count, self.id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "type": self.type,
            "title": self.title,
            "content": self.content,
            "tags": list(self.tags),
            "relevanceScore": self.relevance_score,
            "accessCount": self.access_count,
            "lastAccessed": self.last_accessed,
            "associations": list(self.associations),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Memory:
        created_at = int(raw.get("createdAt", 0) or 0)
        memory_type = str(raw.get("type", "note"))
        metadata = raw.get("metadata")
        return cls(
            id=str(raw["id"]),
            created_at=created_at,
            updated_at=max(created_at, int(raw.get("updatedAt", created_at) or created_at)),
            type=memory_type if memory_type in MEMORY_TYPES else "note",
            title=str(raw.get("title", "")),
            content=str(raw.get("content", "")),
            tags=normalize_tags(_str_list(raw.get("tags"))),
            relevance_score=float(raw.get("relevanceScore", 0.5) or 0.0),
            access_count=int(raw.get("accessCount", 0) or 0),
            last_accessed=int(raw.get("lastAccessed", created_at) or created_at),
            associations=_str_list(raw.get("associations")),
            metadata=dict(metadata) if isinstance(metadata, dict) else {},
        )


@dataclass(slots=True)
class ActionEntry:
    id: str
    timestamp: int
    action_type: str
    application_name: str | None = None
    window_title: str | None = None
    context: str | None = None
    query: str | None = None
    response: str | None = None
    tags: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "timestamp": self.timestamp,
            "actionType": self.action_type,
            "tags": list(self.tags),
            "metadata": dict(self.metadata),
        }
        for key, value in (
            ("applicationName", self.application_name),
            ("windowTitle", self.window_title),
            ("context", self.context),
            ("query", self.query),
            ("response", self.response),
        ):
            if value is not None:
                out[key] = value
        return out

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ActionEntry:
        metadata = raw.get("metadata")

        def _opt(key: str) -> str | None:
            value = raw.get(key)
            return None if value is None else str(value)

        return cls(
            id=str(raw["id"]),
            timestamp=int(raw.get("timestamp", 0) or 0),
            action_type=str(raw.get("actionType", "query")),
            application_name=_opt("applicationName"),
            window_title=_opt("windowTitle"),
            context=_opt("context"),
            query=_opt("query"),
            response=_opt("response"),
            tags=_str_list(raw.get("tags")),
            metadata=dict(metadata) if isinstance(metadata, dict) else {},
        )


@dataclass(slots=True)
class BehaviorPattern:
    id: str
    pattern: str
    frequency: int
    last_occurred: int
    triggers: list[str] = field(default_factory=list)
    outcomes: list[str] = field(default_factory=list)
    confidence: float = 0.5

    @property
    def hour_of_day(self) -> int | None:
        """Hour encoded in a time-slot pattern id (``time:<hour>:<app>``)."""
        if not self.id.startswith("time:"):
            return None
        parts = self.id.split(":", 2)
        try:
            return int(parts[1])
        except (IndexError, ValueError):
            return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "pattern": self.pattern,
            "frequency": self.frequency,
            "lastOccurred": self.last_occurred,
            "triggers": list(self.triggers),
            "outcomes": list(self.outcomes),
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> BehaviorPattern:
        return cls(
            id=str(raw["id"]),
            pattern=str(raw.get("pattern", "")),
            frequency=int(raw.get("frequency", 0) or 0),
            last_occurred=int(raw.get("lastOccurred", 0) or 0),
            triggers=_str_list(raw.get("triggers")),
            outcomes=_str_list(raw.get("outcomes")),
            confidence=float(raw.get("confidence", 0.5) or 0.0),
        )


@dataclass(slots=True)
class AppUsageStats:
    app_name: str
    total_usage_time: int = 0
    last_used: int = 0
    frequency: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "appName": self.app_name,
            "totalUsageTime": self.total_usage_time,
            "lastUsed": self.last_used,
            "frequency": self.frequency,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> AppUsageStats:
        return cls(
            app_name=str(raw.get("appName", "")),
            total_usage_time=int(raw.get("totalUsageTime", 0) or 0),
            last_used=int(raw.get("lastUsed", 0) or 0),
            frequency=int(raw.get("frequency", 0) or 0),
        )


@dataclass(slots=True)
class MemoryCluster:
    id: str
    theme: str
    memories: list[str]
    confidence: float
    created_at: int
    updated_at: int
    keywords: list[str] = field(default_factory=list)
    summary: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "theme": self.theme,
            "memories": list(self.memories),
            "confidence": self.confidence,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "keywords": list(self.keywords),
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> MemoryCluster:
        return cls(
            id=str(raw["id"]),
            theme=str(raw.get("theme", "")),
            memories=_str_list(raw.get("memories")),
            confidence=float(raw.get("confidence", 0.0) or 0.0),
            created_at=int(raw.get("createdAt", 0) or 0),
            updated_at=int(raw.get("updatedAt", 0) or 0),
            keywords=_str_list(raw.get("keywords")),
            summary=str(raw.get("summary", "")),
        )


@dataclass(slots=True)
class DuplicateMemoryPair:
    memory1: str
    memory2: str
    similarity: float
    suggested_action: str
    merged_content: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "memory1": self.memory1,
            "memory2": self.memory2,
            "similarity": self.similarity,
            "suggestedAction": self.suggested_action,
        }
        if self.merged_content is not None:
            out["mergedContent"] = self.merged_content
        return out


@dataclass(slots=True)
class TagNode:
    children: list[str]
    frequency: int
    related_concepts: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "children": list(self.children),
            "frequency": self.frequency,
            "relatedConcepts": list(self.related_concepts),
        }


@dataclass(slots=True)
class MemoryOrganizationInsights:
    duplicates: list[DuplicateMemoryPair]
    clusters: list[MemoryCluster]
    archive_candidates: list[str]
    orphaned_memories: list[str]
    tag_hierarchy: dict[str, TagNode]
    quality_score: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "duplicates": [item.to_dict() for item in self.duplicates],
            "clusters": [item.to_dict() for item in self.clusters],
            "archiveCandidates": list(self.archive_candidates),
            "orphanedMemories": list(self.orphaned_memories),
            "tagHierarchy": {tag: node.to_dict() for tag, node in self.tag_hierarchy.items()},
            "qualityScore": self.quality_score,
        }


@dataclass(slots=True)
class AutoOrganizationResult:
    merged: int = 0
    archived: int = 0
    clustered: int = 0
    retagged: int = 0


@dataclass(slots=True)
class ContextualEnvironment:
    time_of_day: int
    day_of_week: int
    current_app: str | None = None
    recent_activity: list[str] = field(default_factory=list)
    cognitive_state: str = "focused"
    workload: str = "medium"
    mood: str | None = None
    environmental_factors: list[str] = field(default_factory=list)
    recent_query: str | None = None


@dataclass(slots=True)
class PersonalizedContext:
    user_style: str
    historical_data: str
    predictive_insight: str


@dataclass(slots=True)
class AdvancedSuggestion:
    id: str
    type: str
    priority: str
    title: str
    description: str
    rationale: str
    action_items: list[str]
    estimated_impact: float
    confidence: float
    personalized_context: PersonalizedContext
    created_at: int
    expires_at: int | None = None
    related_goals: list[str] = field(default_factory=list)
    related_patterns: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "priority": self.priority,
            "title": self.title,
            "description": self.description,
            "rationale": self.rationale,
            "actionItems": list(self.action_items),
            "estimatedImpact": self.estimated_impact,
            "confidence": self.confidence,
            "expiresAt": self.expires_at,
            "relatedGoals": list(self.related_goals),
            "relatedPatterns": list(self.related_patterns),
            "personalizedContext": {
                "userStyle": self.personalized_context.user_style,
                "historicalData": self.personalized_context.historical_data,
                "predictiveInsight": self.personalized_context.predictive_insight,
            },
            "createdAt": self.created_at,
        }


@dataclass(slots=True)
class UserGoal:
    id: str
    title: str
    description: str
    category: str
    priority: str
    progress: float
    created_at: int
    updated_at: int
    status: str = "active"
    target_date: int | None = None
    related_memories: list[str] = field(default_factory=list)


@dataclass(slots=True)
class LearningProfile:
    optimal_time_slots: list[int]
    strong_subjects: list[str]
    average_session_minutes: int = 45
    cognitive_load: float = 0.5
    cognitive_capacity: float = 1.0
