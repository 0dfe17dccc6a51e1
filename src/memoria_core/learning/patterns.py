"""Behavior pattern mining over the recent action stream."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime

from memoria_core.config import PatternsSection
from memoria_core.memory.models import ActionEntry, BehaviorPattern

logger = logging.getLogger(__name__)


def _hour_of(timestamp_ms: int) -> int:
    return datetime.fromtimestamp(timestamp_ms / 1000).hour


def slot_label(hour: int) -> str:
    return f"{hour:02d}:00-{(hour + 1) % 24:02d}:00"


SUCCESS_WORDS = ("success", "succeeded", "completed", "done", "achieved")


def success_rate(pattern: BehaviorPattern) -> float:
    if not pattern.outcomes:
        return 0.0
    hits = sum(1 for outcome in pattern.outcomes if any(word in outcome.lower() for word in SUCCESS_WORDS))
    return hits / len(pattern.outcomes)


def predictive_value(pattern: BehaviorPattern) -> float:
    """Blend of success rate, frequency and confidence used to rank pattern insights."""
    return success_rate(pattern) * 0.5 + min(pattern.frequency / 10, 1.0) * 0.3 + pattern.confidence * 0.2


class PatternDetector:
    """Maintain the confidence-weighted pattern table from recent actions."""

    def __init__(self, settings: PatternsSection | None = None) -> None:
        self.settings = settings or PatternsSection()

    def detect(
        self,
        actions: list[ActionEntry],
        patterns: list[BehaviorPattern],
        now: int,
    ) -> list[BehaviorPattern]:
        """Mine the last ``window`` actions and upsert into ``patterns`` in place."""
        window = actions[-self.settings.window :] if self.settings.window > 0 else []
        table = {pattern.id: pattern for pattern in patterns}
        touched = 0
        for hour, app in self._dominant_apps(window):
            self._upsert(
                table,
                patterns,
                pattern_id=f"time:{hour}:{app}",
                description=f"Uses {app} during {slot_label(hour)}",
                triggers=[slot_label(hour)],
                outcomes=[app],
                increment=1,
                now=now,
            )
            touched += 1
        for sequence, count in self._repeated_sequences(window):
            self._upsert(
                table,
                patterns,
                pattern_id="seq:" + ">".join(sequence),
                description=" -> ".join(sequence),
                triggers=[sequence[0]],
                outcomes=[sequence[-1]],
                increment=count,
                now=now,
            )
            touched += 1
        if touched:
            logger.debug("patterns: updated", extra={"touched": touched, "total": len(patterns)})
        return patterns

    def _dominant_apps(self, actions: list[ActionEntry]) -> list[tuple[int, str]]:
        slots: dict[int, list[ActionEntry]] = {}
        for action in actions:
            slots.setdefault(_hour_of(action.timestamp), []).append(action)
        out: list[tuple[int, str]] = []
        for hour in sorted(slots):
            slot = slots[hour]
            apps = Counter(action.application_name for action in slot if action.application_name)
            if not apps:
                continue
            app, count = max(apps.items(), key=lambda item: (item[1], item[0]))
            # Share among actions that name an app; screenshots and the like do not dilute it.
            if count > sum(apps.values()) * self.settings.dominance_ratio:
                out.append((hour, app))
        return out

    def _repeated_sequences(self, actions: list[ActionEntry]) -> list[tuple[tuple[str, ...], int]]:
        length = self.settings.sequence_length
        counts: Counter[tuple[str, ...]] = Counter()
        for start in range(len(actions) - length + 1):
            names = [action.application_name or "" for action in actions[start : start + length]]
            if any(not name.strip() for name in names):
                continue
            counts[tuple(names)] += 1
        return sorted(((seq, count) for seq, count in counts.items() if count > 1), key=lambda item: item[0])

    def _upsert(
        self,
        table: dict[str, BehaviorPattern],
        patterns: list[BehaviorPattern],
        *,
        pattern_id: str,
        description: str,
        triggers: list[str],
        outcomes: list[str],
        increment: int,
        now: int,
    ) -> None:
        existing = table.get(pattern_id)
        if existing is None:
            created = BehaviorPattern(
                id=pattern_id,
                pattern=description,
                frequency=increment,
                last_occurred=now,
                triggers=triggers,
                outcomes=outcomes,
                confidence=self.settings.initial_confidence,
            )
            table[pattern_id] = created
            patterns.append(created)
            return
        existing.frequency += increment
        existing.confidence = min(existing.confidence * self.settings.reinforcement, 1.0)
        existing.last_occurred = now
