"""Command line interface; every command prints JSON on stdout."""

from __future__ import annotations

import argparse
import json
from dataclasses import asdict
from pathlib import Path
from typing import Any

from memoria_core.config import ConfigSnapshot
from memoria_core.engine import MemoryEngine
from memoria_core.heartbeat.jobs import run_all_jobs
from memoria_core.memory.index import SearchFilters
from memoria_core.memory.models import ACTION_TYPES, COGNITIVE_STATES, MEMORY_TYPES, WORKLOADS


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _memory_fields(args: argparse.Namespace) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    if args.title is not None:
        fields["title"] = args.title
    if args.content is not None:
        fields["content"] = args.content
    if args.type is not None:
        fields["type"] = args.type
    if args.tags is not None:
        fields["tags"] = args.tags
    if args.relevance is not None:
        fields["relevanceScore"] = args.relevance
    return fields


def _add_memory_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--title", default=None)
    parser.add_argument("--content", default=None)
    parser.add_argument("--type", choices=MEMORY_TYPES, default=None)
    parser.add_argument("--tags", default=None, help="comma separated")
    parser.add_argument("--relevance", type=float, default=None)


def add_commands(parser: argparse.ArgumentParser) -> None:
    sub = parser.add_subparsers(dest="command", required=True)

    save = sub.add_parser("save", help="store a new memory")
    _add_memory_options(save)

    search = sub.add_parser("search", help="ranked memory search")
    search.add_argument("query", nargs="?", default="")
    search.add_argument("--limit", type=int, default=None)
    search.add_argument("--type", dest="types", action="append", choices=MEMORY_TYPES, default=[])
    search.add_argument("--tag", dest="tags", action="append", default=[])
    search.add_argument("--min-relevance", type=float, default=None)
    search.add_argument("--sort-by", choices=["relevance", "date", "access"], default="relevance")
    search.add_argument("--semantic", action="store_true")
    search.add_argument("--start", type=int, default=None, help="createdAt lower bound (epoch ms)")
    search.add_argument("--end", type=int, default=None, help="createdAt upper bound (epoch ms)")

    update = sub.add_parser("update", help="change fields of a memory")
    update.add_argument("memory_id")
    _add_memory_options(update)

    delete = sub.add_parser("delete", help="delete a memory")
    delete.add_argument("memory_id")

    tags = sub.add_parser("tags", help="list, merge or remove tags")
    tags.add_argument("--merge", nargs=2, metavar=("OLD", "NEW"), default=None)
    tags.add_argument("--remove", metavar="TAG", default=None)

    sub.add_parser("stats", help="memory statistics")
    sub.add_parser("patterns", help="detected behavior patterns")

    organize = sub.add_parser("organize", help="organization insights")
    organize.add_argument("--apply", action="store_true", help="run the safe auto-organization pass")

    suggest = sub.add_parser("suggest", help="contextual suggestions")
    suggest.add_argument("--advanced", action="store_true")
    suggest.add_argument("--state", choices=COGNITIVE_STATES, default=None)
    suggest.add_argument("--workload", choices=WORKLOADS, default=None)
    suggest.add_argument("--query", default=None)
    suggest.add_argument("--limit", type=int, default=5)

    export = sub.add_parser("export", help="write a full snapshot")
    export.add_argument("--output", default=None)

    load = sub.add_parser("import", help="load a snapshot file")
    load.add_argument("path")

    sub.add_parser("rebuild-index", help="rebuild the search index from the store")
    sub.add_parser("tick", help="run every background job once")
    sub.add_parser("config", help="show configuration validity")

    action = sub.add_parser("record-action", help="append an activity entry")
    action.add_argument("action_type", choices=ACTION_TYPES)
    action.add_argument("--app", default=None)
    action.add_argument("--window-title", default=None)
    action.add_argument("--context", default=None)
    action.add_argument("--query", default=None)
    action.add_argument("--tags", default=None)


def _search_filters(args: argparse.Namespace) -> SearchFilters:
    date_range = None
    if args.start is not None or args.end is not None:
        date_range = (args.start if args.start is not None else 0, args.end if args.end is not None else 2**63 - 1)
    return SearchFilters(
        types=list(args.types),
        tags=list(args.tags),
        date_range=date_range,
        min_relevance=args.min_relevance,
        sort_by=args.sort_by,
        use_semantic=args.semantic,
    )


def execute_command(engine: MemoryEngine, args: argparse.Namespace, snapshot: ConfigSnapshot | None = None) -> int:
    command = args.command
    if command == "save":
        memory_id = engine.save_memory(_memory_fields(args))
        _emit({"ok": memory_id is not None, "id": memory_id})
        return 0 if memory_id else 1

    if command == "search":
        results = engine.search_memories(args.query, args.limit, _search_filters(args))
        _emit([memory.to_dict() for memory in results])
        return 0

    if command == "update":
        ok = engine.update_memory(args.memory_id, _memory_fields(args))
        _emit({"ok": ok})
        return 0 if ok else 1

    if command == "delete":
        ok = engine.delete_memory(args.memory_id)
        _emit({"ok": ok})
        return 0 if ok else 1

    if command == "tags":
        if args.merge:
            _emit({"changed": engine.merge_tags(args.merge[0], args.merge[1])})
        elif args.remove:
            _emit({"changed": engine.remove_tag(args.remove)})
        else:
            _emit([{"tag": tag, "count": count} for tag, count in engine.get_all_tags()])
        return 0

    if command == "stats":
        _emit(engine.get_memory_stats())
        return 0

    if command == "patterns":
        _emit([pattern.to_dict() for pattern in engine.get_behavior_patterns()])
        return 0

    if command == "organize":
        if args.apply:
            _emit(asdict(engine.auto_organize()))
        else:
            _emit(engine.organize().to_dict())
        return 0

    if command == "suggest":
        context = engine.current_context(cognitive_state=args.state, workload=args.workload, recent_query=args.query)
        if args.advanced:
            _emit([item.to_dict() for item in engine.get_advanced_suggestions(context, args.limit)])
        else:
            _emit(engine.get_suggestions(context)[: args.limit])
        return 0

    if command == "export":
        data = engine.export_data()
        if args.output:
            Path(args.output).write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
            _emit({"ok": True, "path": args.output})
        else:
            _emit(data)
        return 0

    if command == "import":
        try:
            data = json.loads(Path(args.path).read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            _emit({"ok": False, "error": str(exc)})
            return 1
        _emit({"ok": True, "imported": engine.import_data(data)})
        return 0

    if command == "rebuild-index":
        engine.rebuild_index()
        _emit({"ok": True})
        return 0

    if command == "tick":
        _emit(run_all_jobs(engine))
        return 0

    if command == "config":
        if snapshot is None:
            _emit({"ok": False, "error": "no config snapshot"})
            return 1
        _emit(
            {
                "path": snapshot.path,
                "exists": snapshot.exists,
                "valid": snapshot.valid,
                "issues": snapshot.issues,
                "warnings": snapshot.warnings,
                "effective": snapshot.effective_raw,
            }
        )
        return 0 if snapshot.valid else 1

    if command == "record-action":
        entry = engine.record_action(
            {
                "actionType": args.action_type,
                "applicationName": args.app,
                "windowTitle": args.window_title,
                "context": args.context,
                "query": args.query,
                "tags": args.tags,
            }
        )
        _emit({"ok": entry is not None, "entry": None if entry is None else entry.to_dict()})
        return 0 if entry else 1

    _emit({"ok": False, "error": f"unknown command: {command}"})
    return 2
