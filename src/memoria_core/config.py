"""Configuration loading and validation."""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any


@dataclass(slots=True)
class PathsSection:
    data_root: str = "./data"
    log_dir: str = "data/logs"


@dataclass(slots=True)
class MemorySection:
    max_history_entries: int = 10000
    max_memory_entries: int = 1000
    auto_learn_enabled: bool = True
    privacy_mode: bool = False
    retention_days: int = 365


@dataclass(slots=True)
class SearchSection:
    cache_ttl_seconds: int = 300
    default_limit: int = 10


@dataclass(slots=True)
class PatternsSection:
    window: int = 100
    sequence_length: int = 3
    dominance_ratio: float = 0.5
    initial_confidence: float = 0.5
    reinforcement: float = 1.1


@dataclass(slots=True)
class OrganizationSection:
    similarity_threshold: float = 0.75
    auto_merge_threshold: float = 0.9
    relatedness_threshold: float = 0.6
    max_related: int = 8
    archive_age_days: int = 90
    archive_batch_limit: int = 10
    cluster_materialize_confidence: float = 0.8
    auto_interval_hours: int = 24


@dataclass(slots=True)
class HeartbeatSection:
    enabled: bool = False
    cleanup_interval_seconds: int = 86400
    organization_check_seconds: int = 3600
    suggestion_refresh_seconds: int = 900


@dataclass(slots=True)
class LoggingSection:
    level: str = "info"


@dataclass(slots=True)
class EngineConfig:
    paths: PathsSection = field(default_factory=PathsSection)
    memory: MemorySection = field(default_factory=MemorySection)
    search: SearchSection = field(default_factory=SearchSection)
    patterns: PatternsSection = field(default_factory=PatternsSection)
    organization: OrganizationSection = field(default_factory=OrganizationSection)
    heartbeat: HeartbeatSection = field(default_factory=HeartbeatSection)
    logging: LoggingSection = field(default_factory=LoggingSection)


@dataclass(slots=True)
class ConfigSnapshot:
    path: str
    exists: bool
    valid: bool
    issues: list[str]
    warnings: list[str]
    effective_config: EngineConfig | None = None
    effective_raw: dict[str, Any] | None = None


_SECTIONS: dict[str, type] = {
    "paths": PathsSection,
    "memory": MemorySection,
    "search": SearchSection,
    "patterns": PatternsSection,
    "organization": OrganizationSection,
    "heartbeat": HeartbeatSection,
    "logging": LoggingSection,
}

_UNIT_FLOATS = {
    "patterns.dominance_ratio",
    "patterns.initial_confidence",
    "organization.similarity_threshold",
    "organization.auto_merge_threshold",
    "organization.relatedness_threshold",
    "organization.cluster_materialize_confidence",
}

_LOG_LEVELS = {"debug", "info", "warning", "error", "critical"}


def default_config_path() -> Path:
    env_path = os.getenv("MEMORIA_CONFIG")
    if env_path:
        return Path(env_path)
    return Path("config") / "memoria.json"


def _merged(base: dict[str, Any], layer: dict[str, Any]) -> dict[str, Any]:
    """Return ``base`` with ``layer`` applied; nested sections merge key by key."""
    result = dict(base)
    for key, value in layer.items():
        nested = result.get(key)
        result[key] = _merged(nested, value) if isinstance(nested, dict) and isinstance(value, dict) else value
    return result


_LITERALS = {"true": True, "false": False, "null": None, "none": None}


def _coerce_scalar(text: str) -> Any:
    """Interpret an env or ``--set`` string as bool, null, int or float when it looks like one."""
    stripped = text.strip()
    if stripped.lower() in _LITERALS:
        return _LITERALS[stripped.lower()]
    for cast in (int, float):
        try:
            return cast(stripped)
        except ValueError:
            continue
    return text


def _dotted_tree(pairs: dict[str, str]) -> dict[str, Any]:
    """Expand ``{"memory.retention_days": "7"}`` into ``{"memory": {"retention_days": 7}}``."""
    tree: dict[str, Any] = {}
    for dotted, text in pairs.items():
        *parents, leaf = [part for part in dotted.split(".") if part] or [""]
        if not leaf:
            continue
        node = tree
        for part in parents:
            if not isinstance(node.get(part), dict):
                node[part] = {}
            node = node[part]
        node[leaf] = _coerce_scalar(text)
    return tree


_ENV_KEYS = {
    "MEMORIA_DATA_PATH": "paths.data_root",
    "MEMORIA_LOG_LEVEL": "logging.level",
    "MEMORIA_MAX_MEMORIES": "memory.max_memory_entries",
    "MEMORIA_MAX_HISTORY": "memory.max_history_entries",
    "MEMORIA_RETENTION_DAYS": "memory.retention_days",
    "MEMORIA_PRIVACY_MODE": "memory.privacy_mode",
    "MEMORIA_CACHE_TTL_SECONDS": "search.cache_ttl_seconds",
    "MEMORIA_HEARTBEAT_ENABLED": "heartbeat.enabled",
}


def _env_overrides() -> dict[str, Any]:
    return _dotted_tree({dotted: os.environ[name] for name, dotted in _ENV_KEYS.items() if name in os.environ})


def default_raw() -> dict[str, Any]:
    return asdict(EngineConfig())


def _validate(raw: dict[str, Any]) -> tuple[list[str], list[str]]:
    issues: list[str] = []
    warnings: list[str] = []
    unknown = set(raw.keys()) - set(_SECTIONS)
    if unknown:
        issues.append(f"Unknown top-level keys: {', '.join(sorted(unknown))}")

    for section_name, section_cls in _SECTIONS.items():
        section = raw.get(section_name, {})
        if not isinstance(section, dict):
            issues.append(f"{section_name} must be an object")
            continue
        known = {f.name: f for f in fields(section_cls)}
        extra = set(section) - set(known)
        if extra:
            warnings.append(f"Ignoring unknown keys in {section_name}: {', '.join(sorted(extra))}")
        for name, fld in known.items():
            if name not in section:
                continue
            value = section[name]
            dotted = f"{section_name}.{name}"
            expected = fld.type if isinstance(fld.type, str) else getattr(fld.type, "__name__", "")
            if expected == "bool":
                if not isinstance(value, bool):
                    issues.append(f"{dotted} must be a boolean")
            elif expected == "int":
                if isinstance(value, bool) or not isinstance(value, int):
                    issues.append(f"{dotted} must be an integer")
                elif value < 0:
                    issues.append(f"{dotted} must be >= 0")
            elif expected == "float":
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    issues.append(f"{dotted} must be a number")
                elif dotted in _UNIT_FLOATS and not 0.0 <= float(value) <= 1.0:
                    issues.append(f"{dotted} must be between 0 and 1")
                elif float(value) < 0:
                    issues.append(f"{dotted} must be >= 0")
            elif expected == "str":
                if not isinstance(value, str):
                    issues.append(f"{dotted} must be a string")

    memory = raw.get("memory", {})
    if isinstance(memory, dict):
        for key in ("max_memory_entries", "max_history_entries", "retention_days"):
            value = memory.get(key)
            if isinstance(value, int) and not isinstance(value, bool) and value < 1:
                issues.append(f"memory.{key} must be at least 1")

    search = raw.get("search", {})
    if isinstance(search, dict):
        limit = search.get("default_limit")
        if isinstance(limit, int) and not isinstance(limit, bool) and limit < 1:
            issues.append("search.default_limit must be at least 1")

    patterns = raw.get("patterns", {})
    if isinstance(patterns, dict):
        seq = patterns.get("sequence_length")
        if isinstance(seq, int) and not isinstance(seq, bool) and seq < 2:
            issues.append("patterns.sequence_length must be at least 2")

    logging_raw = raw.get("logging", {})
    if isinstance(logging_raw, dict):
        level = str(logging_raw.get("level", "info")).lower()
        if level not in _LOG_LEVELS:
            issues.append("logging.level must be debug|info|warning|error|critical")

    org = raw.get("organization", {})
    if isinstance(org, dict):
        merge = org.get("auto_merge_threshold")
        dup = org.get("similarity_threshold")
        if isinstance(merge, (int, float)) and isinstance(dup, (int, float)) and merge < dup:
            warnings.append("organization.auto_merge_threshold is below similarity_threshold; no pair will be held back")

    return issues, warnings


def config_from_raw(raw: dict[str, Any]) -> EngineConfig:
    """Build a typed config from an already validated tree."""
    sections: dict[str, Any] = {}
    for section_name, section_cls in _SECTIONS.items():
        section_raw = raw.get(section_name, {}) if isinstance(raw.get(section_name), dict) else {}
        kwargs: dict[str, Any] = {}
        for fld in fields(section_cls):
            if fld.name not in section_raw:
                continue
            value = section_raw[fld.name]
            expected = fld.type if isinstance(fld.type, str) else getattr(fld.type, "__name__", "")
            if expected == "float":
                value = float(value)
            elif expected == "int":
                value = int(value)
            elif expected == "str":
                value = str(value)
            kwargs[fld.name] = value
        sections[section_name] = section_cls(**kwargs)
    return EngineConfig(**sections)


def memory_section_from_dict(raw: dict[str, Any], fallback: MemorySection) -> MemorySection:
    """Parse a persisted ``memorySettings`` document, keeping fallback values for bad fields."""
    mapping = {
        "maxHistoryEntries": "max_history_entries",
        "maxMemoryEntries": "max_memory_entries",
        "autoLearnEnabled": "auto_learn_enabled",
        "privacyMode": "privacy_mode",
        "retentionDays": "retention_days",
    }
    values = asdict(fallback)
    for camel, snake in mapping.items():
        value = raw.get(camel, raw.get(snake))
        if value is None:
            continue
        if isinstance(values[snake], bool):
            if isinstance(value, bool):
                values[snake] = value
        elif isinstance(value, int) and not isinstance(value, bool) and value >= 1:
            values[snake] = value
    return MemorySection(**values)


def overlay_memory_settings(stored: dict[str, Any], configured: MemorySection) -> MemorySection:
    """Persisted settings over the defaults, then every configured value that differs from its default.

    Env vars, `--set memory.*` and the config file therefore win over an older
    `memorySettings` document, while a document written by `import` survives a
    restart with a default configuration.
    """
    defaults = asdict(MemorySection())
    merged = asdict(memory_section_from_dict(stored, MemorySection()))
    for name, value in asdict(configured).items():
        if value != defaults[name]:
            merged[name] = value
    return MemorySection(**merged)


def memory_section_to_dict(section: MemorySection) -> dict[str, Any]:
    return {
        "maxHistoryEntries": section.max_history_entries,
        "maxMemoryEntries": section.max_memory_entries,
        "autoLearnEnabled": section.auto_learn_enabled,
        "privacyMode": section.privacy_mode,
        "retentionDays": section.retention_days,
    }


def _load_config_file(config_path: Path) -> tuple[dict[str, Any] | None, str | None]:
    try:
        payload = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        return None, f"Failed to parse config JSON: {exc}"
    if not isinstance(payload, dict):
        return None, "Top-level config must be an object"
    return payload, None


def read_config_snapshot(path: str | Path | None = None, cli_overrides: dict[str, str] | None = None) -> ConfigSnapshot:
    """Layer defaults, config file, ``MEMORIA_*`` env vars and CLI overrides, then validate.

    Later layers win. The snapshot is never raised; callers inspect ``valid`` and ``issues``.
    """
    config_path = Path(path) if path is not None else default_config_path()
    exists = config_path.exists()
    notes: list[str] = []
    layers: list[dict[str, Any]] = []
    if exists:
        file_layer, problem = _load_config_file(config_path)
        if file_layer is None:
            return ConfigSnapshot(
                path=str(config_path), exists=True, valid=False, issues=[problem or "unreadable config"], warnings=[]
            )
        layers.append(file_layer)
    else:
        notes.append(f"Config file not found, using defaults: {config_path}")
    layers.append(_env_overrides())
    layers.append(_dotted_tree(cli_overrides or {}))

    merged = default_raw()
    for layer in layers:
        merged = _merged(merged, layer)

    issues, validation_notes = _validate(merged)
    notes.extend(validation_notes)
    valid = not issues
    return ConfigSnapshot(
        path=str(config_path),
        exists=exists,
        valid=valid,
        issues=issues,
        warnings=notes,
        effective_config=config_from_raw(merged) if valid else None,
        effective_raw=merged if valid else None,
    )


def ensure_runtime_config(snapshot: ConfigSnapshot) -> EngineConfig:
    """Return valid runtime config; fallback to defaults when snapshot invalid."""
    if snapshot.effective_config is not None:
        return snapshot.effective_config
    return EngineConfig()
