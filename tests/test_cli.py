from __future__ import annotations

import json
from pathlib import Path

from memoria_core.main import main, parse_args


def _run(tmp_path: Path, capsys, *command: str):
    code = main(["--config", str(tmp_path / "missing.json"), "--data-path", str(tmp_path / "data"), *command])
    return code, json.loads(capsys.readouterr().out)


def test_parse_args_collects_overrides() -> None:
    args = parse_args(["--set", "memory.privacy_mode=true", "--set", "search.default_limit=3", "search", "budget"])

    assert args.overrides == ["memory.privacy_mode=true", "search.default_limit=3"]
    assert args.command == "search"
    assert args.query == "budget"


def test_save_search_and_stats_round_trip(tmp_path: Path, capsys, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)

    code, saved = _run(tmp_path, capsys, "save", "--title", "Budget Q1", "--content", "quarterly budget plan", "--tags", "finance,work")
    assert code == 0
    assert saved["ok"]

    code, results = _run(tmp_path, capsys, "search", "budget", "--tag", "finance")
    assert code == 0
    assert [item["id"] for item in results] == [saved["id"]]
    assert results[0]["tags"] == ["finance", "work"]

    code, stats = _run(tmp_path, capsys, "stats")
    assert stats["totalMemories"] == 1
    assert stats["mostAccessedMemory"]["accessCount"] == 1


def test_save_without_text_fails(tmp_path: Path, capsys, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)

    code, payload = _run(tmp_path, capsys, "save", "--title", " ")

    assert code == 1
    assert payload == {"ok": False, "id": None}


def test_record_action_then_patterns(tmp_path: Path, capsys, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)

    code, recorded = _run(tmp_path, capsys, "record-action", "app_switch", "--app", "Editor")
    assert code == 0
    assert recorded["entry"]["applicationName"] == "Editor"

    code, patterns = _run(tmp_path, capsys, "patterns")
    assert [item["outcomes"] for item in patterns] == [["Editor"]]


def test_export_then_import(tmp_path: Path, capsys, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)
    _run(tmp_path, capsys, "save", "--title", "Trip", "--content", "pack the tent")
    out = tmp_path / "snapshot.json"

    code, exported = _run(tmp_path, capsys, "export", "--output", str(out))
    assert code == 0 and exported["path"] == str(out)

    other = tmp_path / "other"
    code = main(["--config", str(tmp_path / "missing.json"), "--data-path", str(other), "import", str(out)])
    imported = json.loads(capsys.readouterr().out)
    assert code == 0
    assert imported["imported"]["longTermMemory"] == 1


def test_config_command_reports_missing_file(tmp_path: Path, capsys, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)

    code, payload = _run(tmp_path, capsys, "config")

    assert code == 0
    assert payload["exists"] is False
    assert payload["valid"] is True
    assert payload["effective"]["paths"]["data_root"] == str(tmp_path / "data")
