from __future__ import annotations

from datetime import datetime

import pytest

from memoria_core.learning.suggestions import (
    HISTORY_LIMIT,
    SuggestionRanker,
    build_learning_profile,
    cognitive_load,
    extract_goals,
    simple_suggestions,
)
from memoria_core.memory.models import (
    DAY_MS,
    BehaviorPattern,
    ContextualEnvironment,
    Memory,
    MemoryOrganizationInsights,
)

BASE_MS = int(datetime(2026, 1, 15, 10, 5).timestamp() * 1000)


class _Clock:
    def __init__(self, now: int = BASE_MS) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


def _context(**overrides) -> ContextualEnvironment:
    values = {"time_of_day": 10, "day_of_week": 3}
    values.update(overrides)
    return ContextualEnvironment(**values)


def _memory(memory_id: str, title: str, content: str, *, tags=(), created: int = BASE_MS, **extra) -> Memory:
    return Memory(
        id=memory_id,
        created_at=created,
        updated_at=extra.pop("updated", created),
        type="note",
        title=title,
        content=content,
        tags=list(tags),
        **extra,
    )


def _pattern(pattern_id: str, confidence: float, outcomes=("Editor",), frequency: int = 3) -> BehaviorPattern:
    return BehaviorPattern(
        id=pattern_id,
        pattern=f"Uses {outcomes[0]}",
        frequency=frequency,
        last_occurred=BASE_MS,
        outcomes=list(outcomes),
        confidence=confidence,
    )


def test_score_blends_impact_confidence_priority_context_and_freshness() -> None:
    ranker = SuggestionRanker(clock=_Clock())
    context = _context(cognitive_state="creative")
    [creative] = ranker.creative_suggestions(context)

    # 0.7*0.4 + 0.6*0.3 + medium 0.1 + creative match 0.4*0.1 + fresh 1*0.1
    assert ranker.score(creative, context) == pytest.approx(0.70)


def test_freshness_decays_with_recent_history_of_same_type() -> None:
    clock = _Clock()
    ranker = SuggestionRanker(clock=clock)
    context = _context(cognitive_state="creative")
    [candidate] = ranker.creative_suggestions(context)
    assert ranker.freshness(candidate) == 1.0

    ranker.add_to_history(ranker.creative_suggestions(context))
    assert ranker.freshness(candidate) == pytest.approx(0.8)

    for _ in range(5):
        ranker.add_to_history(ranker.creative_suggestions(context))
    assert ranker.freshness(candidate) == 0.0

    clock.now += DAY_MS + 1
    assert ranker.freshness(candidate) == 1.0


def test_history_is_capped() -> None:
    ranker = SuggestionRanker(clock=_Clock())
    context = _context(cognitive_state="creative")
    for _ in range(HISTORY_LIMIT + 20):
        ranker.add_to_history(ranker.creative_suggestions(context))
    assert len(ranker.history) == HISTORY_LIMIT


def test_goal_deadline_and_stalled_goal() -> None:
    clock = _Clock()
    ranker = SuggestionRanker(clock=clock)
    memories = [
        _memory("ship", "Ship v2", "release plan for the app", metadata={"targetDate": BASE_MS + 3 * DAY_MS}),
        _memory(
            "run",
            "Marathon",
            "training goal: exercise four times a week",
            created=BASE_MS - 20 * DAY_MS,
            metadata={"progress": 0.2},
        ),
        _memory("done", "Old plan", "finished objective", created=BASE_MS - 20 * DAY_MS, metadata={"status": "done"}),
        _memory("misc", "Groceries", "eggs milk"),
    ]

    goals = extract_goals(memories)
    assert [goal.id for goal in goals] == ["ship", "run", "done"]
    assert goals[1].category == "health"

    suggestions = ranker.goal_suggestions(goals, _context(cognitive_state="focused"))

    deadline = next(item for item in suggestions if item.priority == "high")
    assert deadline.related_goals == ["ship"]
    assert deadline.expires_at == BASE_MS + 3 * DAY_MS
    assert deadline.action_items[0] == "Start the most important task now"
    stalled = next(item for item in suggestions if item.title.startswith("Revisit goal"))
    assert stalled.related_goals == ["run"]
    assert not [item for item in suggestions if "done" in item.related_goals]


def test_learning_profile_and_cognitive_load() -> None:
    ranker = SuggestionRanker(clock=_Clock())
    memories = [
        _memory("s1", "Study session", "python generators", tags=["python"]),
        _memory("s2", "Learning log", "type hints", tags=["python", "typing"]),
        _memory("x", "Groceries", "eggs milk"),
    ]
    calm = _context(cognitive_state="focused", workload="light")
    strained = _context(cognitive_state="tired", workload="heavy")

    assert build_learning_profile(memories[2:], calm) is None
    profile = build_learning_profile(memories, calm)
    assert profile.optimal_time_slots == [10]
    assert profile.strong_subjects == ["python", "typing"]
    assert cognitive_load(calm) == pytest.approx(0.3)
    assert cognitive_load(strained) == 1.0

    titles = [item.title for item in ranker.learning_suggestions(profile, calm)]
    assert titles == ["Prime learning hour"]
    strained_profile = build_learning_profile(memories, strained)
    urgent = ranker.learning_suggestions(strained_profile, strained)
    assert [item.priority for item in urgent] == ["high", "urgent"]


def test_pattern_insights_follow_current_hour() -> None:
    ranker = SuggestionRanker(clock=_Clock())
    patterns = [_pattern("time:10:Editor", 0.8), _pattern("time:10:Browser", 0.6), _pattern("time:11:Mail", 0.9)]

    insights = ranker.pattern_suggestions(patterns, _context())

    assert [item.related_patterns for item in insights] == [["time:10:Editor"]]
    assert insights[0].estimated_impact == pytest.approx(0.8 * (0.3 * 0.3 + 0.8 * 0.2))
    assert ranker.pattern_suggestions(patterns, _context(time_of_day=12)) == []


def test_health_reminder_after_long_work_stretch() -> None:
    ranker = SuggestionRanker(clock=_Clock())
    busy = _context(recent_activity=["Coding", "writing docs", "work email", "programming", "lunch"])
    light = _context(recent_activity=["Coding", "writing docs", "work email", "lunch"])

    assert [item.type for item in ranker.health_suggestions(busy)] == ["health_reminder"]
    assert ranker.health_suggestions(light) == []


def test_organization_debt_becomes_productivity_suggestion() -> None:
    ranker = SuggestionRanker(clock=_Clock())
    messy = MemoryOrganizationInsights(
        duplicates=[],
        clusters=[],
        archive_candidates=["a"],
        orphaned_memories=["a", "b"],
        tag_hierarchy={},
        quality_score=0.2,
    )

    suggestions = ranker.productivity_suggestions([], _context(), messy)

    assert [item.title for item in suggestions] == ["Tidy up your memories"]


def test_suggest_ranks_and_limits() -> None:
    ranker = SuggestionRanker(clock=_Clock())
    context = _context(
        cognitive_state="creative",
        workload="heavy",
        recent_activity=["coding", "coding", "writing", "document review"],
    )
    patterns = [_pattern("time:10:Editor", 0.9, outcomes=("completed draft",), frequency=10)]

    ranked = ranker.suggest(context, [], patterns, limit=3)

    assert len(ranked) == 3
    scores = [ranker.score(item, context) for item in ranked]
    assert scores == sorted(scores, reverse=True)
    assert ranked[0].title == "Use a high-output routine"
    assert ranker.suggest(context, [], patterns, limit=0) == []


def test_simple_suggestions() -> None:
    patterns = [_pattern("time:10:Editor", 0.8), _pattern("time:10:Browser", 0.5), _pattern("time:9:Mail", 0.9)]

    hints = simple_suggestions(_context(), patterns, ["Budget Q1", "Budget Q2"])

    assert hints == ["You usually use Editor at this time", "Related: Budget Q1", "Related: Budget Q2"]
    assert simple_suggestions(_context(), patterns, ["Budget Q1", "Budget Q2"], limit=2) == hints[:2]
