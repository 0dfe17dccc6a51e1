from __future__ import annotations

import json
from pathlib import Path

from memoria_core.config import (
    EngineConfig,
    MemorySection,
    ensure_runtime_config,
    memory_section_from_dict,
    memory_section_to_dict,
    overlay_memory_settings,
    read_config_snapshot,
)


def _clear_env(monkeypatch) -> None:
    for name in (
        "MEMORIA_DATA_PATH",
        "MEMORIA_LOG_LEVEL",
        "MEMORIA_MAX_MEMORIES",
        "MEMORIA_MAX_HISTORY",
        "MEMORIA_RETENTION_DAYS",
        "MEMORIA_PRIVACY_MODE",
        "MEMORIA_CACHE_TTL_SECONDS",
        "MEMORIA_HEARTBEAT_ENABLED",
    ):
        monkeypatch.delenv(name, raising=False)


def test_missing_config_file_uses_defaults(tmp_path: Path, monkeypatch) -> None:
    _clear_env(monkeypatch)
    snapshot = read_config_snapshot(tmp_path / "missing.json")

    assert not snapshot.exists
    assert snapshot.valid
    assert any("not found" in warning for warning in snapshot.warnings)
    config = ensure_runtime_config(snapshot)
    assert config.memory.max_memory_entries == 1000
    assert config.memory.max_history_entries == 10000
    assert config.memory.retention_days == 365
    assert config.search.cache_ttl_seconds == 300
    assert config.organization.similarity_threshold == 0.75
    assert config.organization.auto_merge_threshold == 0.9
    assert config.organization.archive_batch_limit == 10
    assert config.patterns.window == 100


def test_invalid_config_snapshot_falls_back(tmp_path: Path, monkeypatch) -> None:
    _clear_env(monkeypatch)
    path = tmp_path / "memoria.json"
    path.write_text(
        json.dumps(
            {
                "memory": {"max_memory_entries": 0},
                "search": {"cache_ttl_seconds": "soon"},
                "organization": {"similarity_threshold": 1.5},
                "surprise": {},
            }
        ),
        encoding="utf-8",
    )

    snapshot = read_config_snapshot(path)

    assert snapshot.exists
    assert not snapshot.valid
    assert snapshot.effective_config is None
    joined = "\n".join(snapshot.issues)
    assert "memory.max_memory_entries must be at least 1" in joined
    assert "search.cache_ttl_seconds must be an integer" in joined
    assert "organization.similarity_threshold must be between 0 and 1" in joined
    assert "Unknown top-level keys: surprise" in joined
    assert ensure_runtime_config(snapshot) == EngineConfig()


def test_unparseable_config_is_reported(tmp_path: Path, monkeypatch) -> None:
    _clear_env(monkeypatch)
    path = tmp_path / "memoria.json"
    path.write_text("{broken", encoding="utf-8")

    snapshot = read_config_snapshot(path)

    assert not snapshot.valid
    assert snapshot.issues[0].startswith("Failed to parse config JSON")


def test_file_then_env_then_cli_precedence(tmp_path: Path, monkeypatch) -> None:
    _clear_env(monkeypatch)
    path = tmp_path / "memoria.json"
    path.write_text(json.dumps({"memory": {"max_memory_entries": 10, "privacy_mode": False}}), encoding="utf-8")
    monkeypatch.setenv("MEMORIA_MAX_MEMORIES", "20")
    monkeypatch.setenv("MEMORIA_PRIVACY_MODE", "true")

    env_only = ensure_runtime_config(read_config_snapshot(path))
    with_cli = ensure_runtime_config(read_config_snapshot(path, {"memory.max_memory_entries": "50"}))

    assert env_only.memory.max_memory_entries == 20
    assert env_only.memory.privacy_mode is True
    assert with_cli.memory.max_memory_entries == 50


def test_unknown_section_keys_only_warn(tmp_path: Path, monkeypatch) -> None:
    _clear_env(monkeypatch)
    path = tmp_path / "memoria.json"
    path.write_text(json.dumps({"search": {"default_limit": 3, "fuzzy": True}}), encoding="utf-8")

    snapshot = read_config_snapshot(path)

    assert snapshot.valid
    assert any("fuzzy" in warning for warning in snapshot.warnings)
    assert ensure_runtime_config(snapshot).search.default_limit == 3


def test_memory_settings_document_round_trip() -> None:
    fallback = MemorySection()
    parsed = memory_section_from_dict(
        {"maxMemoryEntries": 5, "privacyMode": True, "retentionDays": 0, "autoLearnEnabled": "yes"},
        fallback,
    )

    assert parsed.max_memory_entries == 5
    assert parsed.privacy_mode is True
    assert parsed.retention_days == fallback.retention_days
    assert parsed.auto_learn_enabled is True
    assert memory_section_to_dict(parsed)["maxMemoryEntries"] == 5


def test_configured_memory_values_win_over_stored_document() -> None:
    stored = {"maxMemoryEntries": 50, "privacyMode": True, "retentionDays": 30}

    merged = overlay_memory_settings(stored, MemorySection(max_memory_entries=2))
    untouched = overlay_memory_settings(stored, MemorySection())

    assert merged.max_memory_entries == 2
    assert merged.privacy_mode is True
    assert merged.retention_days == 30
    assert untouched.max_memory_entries == 50
