from __future__ import annotations

from datetime import datetime

import pytest

from memoria_core.config import PatternsSection
from memoria_core.learning.patterns import PatternDetector, predictive_value, slot_label
from memoria_core.memory.models import ActionEntry, BehaviorPattern

BASE_MS = int(datetime(2026, 1, 15, 10, 5).timestamp() * 1000)
MINUTE = 60_000


def _action(i: int, app: str | None, offset_minutes: int) -> ActionEntry:
    return ActionEntry(
        id=f"a{i}",
        timestamp=BASE_MS + offset_minutes * MINUTE,
        action_type="app_switch",
        application_name=app,
    )


def test_repeated_runs_reinforce_time_slot_pattern() -> None:
    detector = PatternDetector()
    actions = [_action(i, "Editor", i * 5) for i in range(3)]
    patterns: list[BehaviorPattern] = []

    seen = []
    for _ in range(3):
        detector.detect(actions, patterns, BASE_MS)
        pattern = next(item for item in patterns if item.id == "time:10:Editor")
        seen.append((pattern.frequency, pattern.confidence))

    assert [frequency for frequency, _ in seen] == [1, 2, 3]
    confidences = [confidence for _, confidence in seen]
    assert confidences == pytest.approx([0.5, 0.55, 0.605])
    assert confidences[0] < confidences[1] < confidences[2]
    assert pattern.triggers == [slot_label(10)] == ["10:00-11:00"]
    assert pattern.hour_of_day == 10


def test_confidence_is_capped_at_one() -> None:
    detector = PatternDetector()
    actions = [_action(0, "Editor", 0)]
    patterns: list[BehaviorPattern] = []
    for _ in range(20):
        detector.detect(actions, patterns, BASE_MS)
    assert patterns[0].confidence == 1.0
    assert patterns[0].frequency == 20


def test_slot_without_majority_app_is_ignored() -> None:
    detector = PatternDetector()
    actions = [
        _action(0, "Editor", 0),
        _action(1, "Browser", 1),
        _action(2, "Terminal", 2),
        _action(3, "Editor", 3),
    ]

    patterns = detector.detect(actions, [], BASE_MS)

    assert not [item for item in patterns if item.id.startswith("time:")]


def test_majority_counts_only_actions_with_an_app() -> None:
    detector = PatternDetector()
    actions = [_action(0, None, 0), _action(1, None, 1), _action(2, None, 2), _action(3, "Editor", 3)]

    patterns = detector.detect(actions, [], BASE_MS)

    assert [item.id for item in patterns if item.id.startswith("time:")] == ["time:10:Editor"]


def test_repeated_sequence_is_recorded() -> None:
    detector = PatternDetector()
    apps = ["Mail", "Editor", "Browser", "Mail", "Editor", "Browser"]
    actions = [_action(i, app, i * 90) for i, app in enumerate(apps)]

    patterns = detector.detect(actions, [], BASE_MS)

    sequence = next(item for item in patterns if item.id == "seq:Mail>Editor>Browser")
    assert sequence.frequency == 2
    assert sequence.confidence == 0.5
    assert sequence.triggers == ["Mail"]
    assert sequence.outcomes == ["Browser"]
    assert sequence.hour_of_day is None
    assert not [item for item in patterns if item.id == "seq:Editor>Browser>Mail"]


def test_sequences_with_blank_app_are_skipped() -> None:
    detector = PatternDetector()
    apps = ["Mail", "", "Browser", "Mail", "", "Browser"]
    actions = [_action(i, app or None, i * 90) for i, app in enumerate(apps)]

    patterns = detector.detect(actions, [], BASE_MS)

    assert not [item for item in patterns if item.id.startswith("seq:")]


def test_window_limits_mined_actions() -> None:
    detector = PatternDetector(PatternsSection(window=2))
    actions = [_action(0, "Old", 0), _action(1, "Old", 1), _action(2, "New", 120), _action(3, "New", 121)]

    patterns = detector.detect(actions, [], BASE_MS)

    assert [item.id for item in patterns] == ["time:12:New"]


def test_predictive_value_blend() -> None:
    pattern = BehaviorPattern(
        id="time:9:Editor",
        pattern="writing",
        frequency=5,
        last_occurred=BASE_MS,
        outcomes=["completed draft", "Editor"],
        confidence=0.8,
    )
    assert predictive_value(pattern) == pytest.approx(0.5 * 0.5 + 0.5 * 0.3 + 0.8 * 0.2)
