"""Application entrypoint."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from memoria_core.config import ensure_runtime_config, read_config_snapshot
from memoria_core.engine import MemoryEngine
from memoria_core.interfaces.cli import add_commands, execute_command


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="memoria", description="Personal memory index")
    parser.add_argument("--config", default=None, help="path to memoria.json")
    parser.add_argument("--data-path", default=None)
    parser.add_argument("--log-level", default=None)
    parser.add_argument("--set", dest="overrides", action="append", default=[], metavar="KEY=VALUE")
    add_commands(parser)
    return parser.parse_args(argv)


def _load_dotenv(path: Path) -> None:
    """Export `KEY=VALUE` lines from `path`; variables already set in the environment win."""
    if not path.is_file():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        entry = line.strip().removeprefix("export ").strip()
        if entry.startswith("#"):
            continue
        key, sep, value = entry.partition("=")
        key, value = key.strip(), value.strip()
        if not sep or not key:
            continue
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        os.environ.setdefault(key, value)


def _collect_overrides(args: argparse.Namespace) -> dict[str, str]:
    overrides = {
        key.strip(): value
        for key, sep, value in (item.partition("=") for item in args.overrides)
        if sep and key.strip()
    }
    if args.data_path:
        overrides["paths.data_root"] = str(args.data_path)
    if args.log_level:
        overrides["logging.level"] = str(args.log_level)
    return overrides


def main(argv: list[str] | None = None) -> int:
    _load_dotenv(Path(".env"))
    args = parse_args(argv)
    snapshot = read_config_snapshot(args.config, cli_overrides=_collect_overrides(args))
    config = ensure_runtime_config(snapshot)
    logging.basicConfig(
        level=getattr(logging, config.logging.level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    if snapshot.effective_config is None:
        logging.getLogger(__name__).warning("config: invalid, using defaults: %s", "; ".join(snapshot.issues))

    engine = MemoryEngine(config)
    engine.open()
    try:
        return execute_command(engine, args, snapshot)
    finally:
        engine.close()


if __name__ == "__main__":
    sys.exit(main())
