"""Contextual suggestion generation and multi-factor ranking."""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from datetime import datetime
from typing import Callable

from memoria_core.memory.models import (
    DAY_MS,
    AdvancedSuggestion,
    BehaviorPattern,
    ContextualEnvironment,
    LearningProfile,
    Memory,
    MemoryOrganizationInsights,
    PersonalizedContext,
    UserGoal,
    now_ms,
)

from .patterns import predictive_value, success_rate

logger = logging.getLogger(__name__)

PRIORITY_BONUS = {"urgent": 0.3, "high": 0.2, "medium": 0.1, "low": 0.0}
HISTORY_LIMIT = 100

_GOAL_WORDS = ("goal", "plan", "objective")
_LEARNING_WORDS = ("learning", "learn", "study")
_WORK_WORDS = ("work", "programming", "coding", "document", "writing")
_GOAL_CATEGORIES = (
    ("career", ("career", "job", "work")),
    ("learning", ("learning", "study", "course")),
    ("health", ("health", "exercise", "sleep")),
    ("productivity", ("productivity", "efficiency", "focus")),
    ("creative", ("creative", "design", "art")),
)
_STATE_LOAD = {"focused": 0.4, "analytical": 0.5, "creative": 0.4, "distracted": 0.7, "tired": 0.9}
_WORKLOAD_LOAD = {"light": -0.1, "medium": 0.0, "heavy": 0.1}


def _mentions(memory: Memory, words: tuple[str, ...]) -> bool:
    text = f"{memory.title} {memory.content} {' '.join(memory.tags)}".lower()
    return any(word in text for word in words)


def _goal_category(memory: Memory) -> str:
    text = memory.content.lower()
    for category, words in _GOAL_CATEGORIES:
        if any(word in text for word in words):
            return category
    return "personal"


def extract_goals(memories: list[Memory]) -> list[UserGoal]:
    """Goals are memories that talk about a goal, plan or objective.

    ``metadata`` may carry ``targetDate`` (epoch ms), ``progress`` (0-1) and
    ``status``; anything else is defaulted.
    """
    goals: list[UserGoal] = []
    for memory in memories:
        if not _mentions(memory, _GOAL_WORDS):
            continue
        target = memory.metadata.get("targetDate")
        progress = memory.metadata.get("progress", 0.0)
        goals.append(
            UserGoal(
                id=memory.id,
                title=memory.title,
                description=memory.content[:200],
                category=_goal_category(memory),
                priority="medium",
                progress=float(progress) if isinstance(progress, (int, float)) else 0.0,
                created_at=memory.created_at,
                updated_at=memory.updated_at,
                status=str(memory.metadata.get("status", "active")),
                target_date=int(target) if isinstance(target, (int, float)) and not isinstance(target, bool) else None,
                related_memories=[memory.id],
            )
        )
    return goals


def cognitive_load(context: ContextualEnvironment) -> float:
    load = _STATE_LOAD.get(context.cognitive_state, 0.5) + _WORKLOAD_LOAD.get(context.workload, 0.0)
    return max(0.0, min(1.0, load))


def build_learning_profile(memories: list[Memory], context: ContextualEnvironment) -> LearningProfile | None:
    learning = [memory for memory in memories if _mentions(memory, _LEARNING_WORDS)]
    if not learning:
        return None
    hours = Counter(datetime.fromtimestamp(memory.created_at / 1000).hour for memory in learning)
    subjects = Counter(tag for memory in learning for tag in memory.tags)
    return LearningProfile(
        optimal_time_slots=[hour for hour, _ in sorted(hours.items(), key=lambda item: (-item[1], item[0]))[:3]],
        strong_subjects=[tag for tag, _ in sorted(subjects.items(), key=lambda item: (-item[1], item[0]))[:5]],
        cognitive_load=cognitive_load(context),
    )


class SuggestionRanker:
    """Generate candidate suggestions and keep the top ones by score."""

    def __init__(self, clock: Callable[[], int] | None = None) -> None:
        self.clock = clock or now_ms
        self.history: list[AdvancedSuggestion] = []

    def _make(
        self,
        kind: str,
        priority: str,
        title: str,
        description: str,
        rationale: str,
        action_items: list[str],
        impact: float,
        confidence: float,
        context: PersonalizedContext,
        *,
        expires_at: int | None = None,
        related_goals: list[str] | None = None,
        related_patterns: list[str] | None = None,
    ) -> AdvancedSuggestion:
        return AdvancedSuggestion(
            id=str(uuid.uuid4()),
            type=kind,
            priority=priority,
            title=title,
            description=description,
            rationale=rationale,
            action_items=action_items,
            estimated_impact=max(0.0, min(1.0, impact)),
            confidence=max(0.0, min(1.0, confidence)),
            personalized_context=context,
            created_at=self.clock(),
            expires_at=expires_at,
            related_goals=related_goals or [],
            related_patterns=related_patterns or [],
        )

    # -- generators --------------------------------------------------

    def goal_suggestions(self, goals: list[UserGoal], context: ContextualEnvironment) -> list[AdvancedSuggestion]:
        now = self.clock()
        out: list[AdvancedSuggestion] = []
        for goal in goals:
            if goal.status != "active":
                continue
            personal = PersonalizedContext(
                user_style=f"goal-oriented, {goal.category}",
                historical_data=f"progress {round(goal.progress * 100)}%, {len(goal.related_memories)} related memories",
                predictive_insight="Steady follow-up usually moves progress forward within the month.",
            )
            if goal.target_date is not None and goal.target_date - now < 7 * DAY_MS:
                items = [
                    "Review current progress",
                    "Set the next milestone",
                    "Identify blockers",
                    "Prepare the resources you need",
                ]
                if context.cognitive_state == "focused":
                    items.insert(0, "Start the most important task now")
                out.append(
                    self._make(
                        "goal_progress",
                        "high",
                        f"Goal deadline approaching: {goal.title}",
                        f"Less than a week is left for '{goal.title}'.",
                        f"Current progress: {round(goal.progress * 100)}%.",
                        items,
                        0.9,
                        0.8,
                        personal,
                        expires_at=goal.target_date,
                        related_goals=[goal.id],
                    )
                )
            days_idle = (now - goal.updated_at) / DAY_MS
            if days_idle > 7 and goal.progress < 0.8:
                out.append(
                    self._make(
                        "goal_progress",
                        "medium",
                        f"Revisit goal: {goal.title}",
                        f"'{goal.title}' has not moved in a while.",
                        f"No update for {round(days_idle)} days.",
                        [
                            "Name the current obstacle",
                            "Split the goal into smaller steps",
                            "Try a different approach",
                            "Log progress as you go",
                        ],
                        0.7,
                        0.6,
                        personal,
                        related_goals=[goal.id],
                    )
                )
        return out

    def learning_suggestions(
        self, profile: LearningProfile | None, context: ContextualEnvironment
    ) -> list[AdvancedSuggestion]:
        if profile is None:
            return []
        out: list[AdvancedSuggestion] = []
        if context.time_of_day in profile.optimal_time_slots:
            out.append(
                self._make(
                    "learning_optimization",
                    "high",
                    "Prime learning hour",
                    "This hour has been your most productive time for learning.",
                    f"Past learning notes cluster around {context.time_of_day}:00.",
                    ["Tackle a hard concept", "Start a new skill", "Run a review session"],
                    0.8,
                    0.9,
                    PersonalizedContext(
                        user_style=f"strong subjects: {', '.join(profile.strong_subjects) or 'none yet'}",
                        historical_data=f"average session {profile.average_session_minutes} minutes",
                        predictive_insight="Starting now matches your best-performing hours.",
                    ),
                )
            )
        if profile.cognitive_capacity > 0 and profile.cognitive_load / profile.cognitive_capacity > 0.8:
            out.append(
                self._make(
                    "learning_optimization",
                    "urgent",
                    "Reduce cognitive load",
                    "Current load is too high for effective learning; take a break.",
                    f"Estimated load: {round(profile.cognitive_load / profile.cognitive_capacity * 100)}%.",
                    ["Take a 5-10 minute break", "Move a little", "Drink some water"],
                    0.9,
                    0.8,
                    PersonalizedContext(
                        user_style="recovery first",
                        historical_data=f"state: {context.cognitive_state}, workload: {context.workload}",
                        predictive_insight="A short break usually restores focus for the next session.",
                    ),
                )
            )
        return out

    def productivity_suggestions(
        self,
        patterns: list[BehaviorPattern],
        context: ContextualEnvironment,
        insights: MemoryOrganizationInsights | None = None,
    ) -> list[AdvancedSuggestion]:
        out: list[AdvancedSuggestion] = []
        productive = [
            pattern
            for pattern in patterns
            if pattern.hour_of_day == context.time_of_day and success_rate(pattern) > 0
        ]
        if productive:
            best = max(productive, key=lambda pattern: (predictive_value(pattern), pattern.id))
            value = predictive_value(best)
            out.append(
                self._make(
                    "productivity_boost",
                    "high",
                    "Use a high-output routine",
                    f"'{best.pattern}' at this hour has worked well before.",
                    f"Predictive value {round(value * 100)}%, seen {best.frequency} times.",
                    [f"Start: {best.pattern}", "Clear distractions", "Record the outcome"],
                    value,
                    best.confidence,
                    PersonalizedContext(
                        user_style="repeat what works",
                        historical_data=f"{best.frequency} past runs",
                        predictive_insight=f"{round(value * 100)}% chance of a good result.",
                    ),
                    related_patterns=[best.id],
                )
            )
        if context.workload == "heavy":
            out.append(
                self._make(
                    "productivity_boost",
                    "high",
                    "Rebalance the workload",
                    "Workload is heavy; trim and reorder the task list.",
                    "Quality drops and burnout risk rises under sustained heavy load.",
                    ["Sort tasks by priority", "Postpone non-urgent work", "Split work into small chunks"],
                    0.8,
                    0.7,
                    PersonalizedContext(
                        user_style="load balancing",
                        historical_data=f"workload: {context.workload}",
                        predictive_insight="Reordering keeps quality while lowering pressure.",
                    ),
                )
            )
        if insights is not None and (len(insights.duplicates) >= 3 or insights.quality_score < 0.5):
            out.append(
                self._make(
                    "productivity_boost",
                    "medium",
                    "Tidy up your memories",
                    f"{len(insights.duplicates)} duplicate pairs and {len(insights.orphaned_memories)} loose memories found.",
                    f"Organization quality is {round(insights.quality_score * 100)}%.",
                    ["Review duplicate pairs", "Tag loose memories", "Archive stale notes"],
                    0.6,
                    0.7,
                    PersonalizedContext(
                        user_style="organized knowledge",
                        historical_data=f"{len(insights.archive_candidates)} archive candidates",
                        predictive_insight="A cleaner store makes searches return sharper results.",
                    ),
                )
            )
        return out

    def pattern_suggestions(
        self, patterns: list[BehaviorPattern], context: ContextualEnvironment
    ) -> list[AdvancedSuggestion]:
        timely = [
            pattern
            for pattern in patterns
            if pattern.hour_of_day == context.time_of_day and pattern.confidence > 0.7
        ]
        timely.sort(key=lambda pattern: (-pattern.confidence, pattern.id))
        out: list[AdvancedSuggestion] = []
        for pattern in timely[:2]:
            value = predictive_value(pattern)
            out.append(
                self._make(
                    "pattern_insight",
                    "medium",
                    f"Routine opportunity: {pattern.pattern}",
                    f"You usually do '{pattern.pattern}' at this hour.",
                    f"Seen {pattern.frequency} times, leading to {', '.join(pattern.outcomes) or 'no recorded outcome'}.",
                    [f"Start: {pattern.pattern}", "Prepare what you need"],
                    value * 0.8,
                    pattern.confidence,
                    PersonalizedContext(
                        user_style="routine-driven",
                        historical_data=f"predictive value {round(value * 100)}%",
                        predictive_insight="Following the usual routine lowers friction.",
                    ),
                    related_patterns=[pattern.id],
                )
            )
        return out

    def health_suggestions(self, context: ContextualEnvironment) -> list[AdvancedSuggestion]:
        work_items = sum(
            1 for activity in context.recent_activity if any(word in activity.lower() for word in _WORK_WORDS)
        )
        if work_items <= 3:
            return []
        return [
            self._make(
                "health_reminder",
                "medium",
                "Time for a healthy break",
                "You have been working for a long stretch.",
                f"{work_items} consecutive work activities detected.",
                ["Stand up and walk", "Rest your eyes", "Stretch neck and shoulders", "Drink water"],
                0.6,
                0.9,
                PersonalizedContext(
                    user_style="health first",
                    historical_data=f"{work_items} recent work activities",
                    predictive_insight="Regular breaks keep the next session productive.",
                ),
            )
        ]

    def creative_suggestions(self, context: ContextualEnvironment) -> list[AdvancedSuggestion]:
        if context.cognitive_state != "creative":
            return []
        return [
            self._make(
                "creative_inspiration",
                "medium",
                "Use the creative window",
                "You are in a good state for exploring new ideas.",
                "Creative states are short; capture ideas while they flow.",
                ["Brainstorm", "Sketch or mind-map ideas", "Look at the problem from a new angle"],
                0.7,
                0.6,
                PersonalizedContext(
                    user_style="creativity",
                    historical_data=f"state: {context.cognitive_state}",
                    predictive_insight="Idea output is highest in this state.",
                ),
            )
        ]

    # -- ranking -----------------------------------------------------

    def context_relevance(
        self,
        suggestion: AdvancedSuggestion,
        context: ContextualEnvironment,
        profile: LearningProfile | None = None,
    ) -> float:
        relevance = 0.0
        if (
            suggestion.type == "learning_optimization"
            and profile is not None
            and context.time_of_day in profile.optimal_time_slots
        ):
            relevance += 0.3
        if suggestion.type == "creative_inspiration" and context.cognitive_state == "creative":
            relevance += 0.4
        if suggestion.type == "productivity_boost" and context.cognitive_state == "focused":
            relevance += 0.3
        if suggestion.type == "health_reminder" and context.workload == "heavy":
            relevance += 0.2
        return min(relevance, 1.0)

    def freshness(self, suggestion: AdvancedSuggestion) -> float:
        cutoff = self.clock() - DAY_MS
        recent = sum(1 for item in self.history if item.type == suggestion.type and item.created_at > cutoff)
        return max(0.0, 1 - 0.2 * recent)

    def score(
        self,
        suggestion: AdvancedSuggestion,
        context: ContextualEnvironment,
        profile: LearningProfile | None = None,
    ) -> float:
        return (
            suggestion.estimated_impact * 0.4
            + suggestion.confidence * 0.3
            + PRIORITY_BONUS.get(suggestion.priority, 0.0)
            + self.context_relevance(suggestion, context, profile) * 0.1
            + self.freshness(suggestion) * 0.1
        )

    def rank(
        self,
        suggestions: list[AdvancedSuggestion],
        context: ContextualEnvironment,
        limit: int = 5,
        profile: LearningProfile | None = None,
    ) -> list[AdvancedSuggestion]:
        if limit <= 0:
            return []
        scored = [(self.score(item, context, profile), index, item) for index, item in enumerate(suggestions)]
        scored.sort(key=lambda entry: (-entry[0], entry[1]))
        return [item for _, _, item in scored[:limit]]

    def suggest(
        self,
        context: ContextualEnvironment,
        memories: list[Memory],
        patterns: list[BehaviorPattern],
        insights: MemoryOrganizationInsights | None = None,
        limit: int = 5,
    ) -> list[AdvancedSuggestion]:
        profile = build_learning_profile(memories, context)
        candidates = [
            *self.goal_suggestions(extract_goals(memories), context),
            *self.learning_suggestions(profile, context),
            *self.productivity_suggestions(patterns, context, insights),
            *self.pattern_suggestions(patterns, context),
            *self.health_suggestions(context),
            *self.creative_suggestions(context),
        ]
        ranked = self.rank(candidates, context, limit, profile)
        logger.debug("suggestions: ranked", extra={"candidates": len(candidates), "returned": len(ranked)})
        return ranked

    def add_to_history(self, suggestions: list[AdvancedSuggestion]) -> None:
        self.history.extend(suggestions)
        if len(self.history) > HISTORY_LIMIT:
            del self.history[: len(self.history) - HISTORY_LIMIT]


def simple_suggestions(
    context: ContextualEnvironment,
    patterns: list[BehaviorPattern],
    related_titles: list[str],
    limit: int = 5,
) -> list[str]:
    """Plain-text hints: confident routines for this hour, then memories related to the last query."""
    out = [
        f"You usually use {pattern.outcomes[0]} at this time"
        for pattern in sorted(patterns, key=lambda item: (-item.confidence, item.id))
        if pattern.hour_of_day == context.time_of_day and pattern.confidence > 0.7 and pattern.outcomes
    ]
    out.extend(f"Related: {title}" for title in related_titles)
    return out[:limit]
