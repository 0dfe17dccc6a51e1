"""Key-value document stores with lock and atomic-write hardening."""

from __future__ import annotations

import copy
import json
import logging
import os
import re
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class KeyValueStore(Protocol):
    """Durable store of JSON-serializable documents addressed by key."""

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


@dataclass(slots=True)
class LockHandle:
    target_path: str
    lock_path: str


@dataclass(slots=True)
class LockScanResult:
    scanned: int
    stale_found: int
    removed: int
    errors: list[str]


class FileLockTimeoutError(TimeoutError):
    """Raised when a document lock stays held past the timeout; ``error`` carries the details."""

    def __init__(self, lock_path: str, timeout_seconds: int, attempts: int) -> None:
        self.error = {
            "code": "lock_timeout",
            "message": f"Timed out waiting for lock: {lock_path}",
            "lock_path": lock_path,
            "timeout_seconds": timeout_seconds,
            "attempts": attempts,
        }
        super().__init__(json.dumps(self.error))


def _owner_running(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except OSError:
        return False
    return True


def _lock_owner(lock_path: Path) -> dict[str, Any] | None:
    try:
        payload = json.loads(lock_path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    return payload if isinstance(payload, dict) else None


def _lock_is_stale(owner: dict[str, Any] | None, stale_after_seconds: int) -> bool:
    """A lock is stale when its owner is unknown, gone, or it outlived ``stale_after_seconds``."""
    if owner is None:
        return True
    pid = owner.get("pid")
    acquired_ms = owner.get("acquired_ms")
    if not isinstance(pid, int) or not isinstance(acquired_ms, int):
        return True
    if not _owner_running(pid):
        return True
    return time.time() * 1000 - acquired_ms > stale_after_seconds * 1000


def acquire_file_lock(
    target_path: str,
    timeout_seconds: int = 10,
    stale_after_seconds: int = 1800,
) -> LockHandle:
    """Create ``<target>.lock`` exclusively, reclaiming stale locks while waiting."""
    lock_path = Path(f"{target_path}.lock")
    deadline = time.monotonic() + timeout_seconds
    attempts = 0
    while True:
        try:
            with lock_path.open("x", encoding="utf-8") as handle:
                json.dump({"pid": os.getpid(), "acquired_ms": int(time.time() * 1000)}, handle)
            return LockHandle(target_path=target_path, lock_path=str(lock_path))
        except FileExistsError:
            pass
        if _lock_is_stale(_lock_owner(lock_path), stale_after_seconds):
            logger.warning("kv: reclaiming stale lock", extra={"lock_path": str(lock_path)})
            lock_path.unlink(missing_ok=True)
            continue
        if time.monotonic() >= deadline:
            raise FileLockTimeoutError(str(lock_path), timeout_seconds=timeout_seconds, attempts=attempts)
        attempts += 1
        time.sleep(min(0.5, 0.02 * attempts))


def release_file_lock(handle: LockHandle) -> None:
    Path(handle.lock_path).unlink(missing_ok=True)


def clean_stale_locks(root: str, stale_after_seconds: int = 1800) -> LockScanResult:
    """Remove stale ``*.lock`` files anywhere under ``root``."""
    result = LockScanResult(scanned=0, stale_found=0, removed=0, errors=[])
    for lock_file in Path(root).rglob("*.lock"):
        result.scanned += 1
        if not _lock_is_stale(_lock_owner(lock_file), stale_after_seconds):
            continue
        result.stale_found += 1
        try:
            lock_file.unlink()
        except FileNotFoundError:
            continue
        except OSError as exc:
            result.errors.append(f"{lock_file}: {exc}")
            continue
        result.removed += 1
    return result


def _atomic_write_json(path: Path, payload: Any) -> None:
    """Write through a sibling temp file and ``os.replace`` so readers never see a partial document."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.stem}-", suffix=".tmp")
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
        os.replace(temp_path, path)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise


class InMemoryKeyValueStore:
    """Process-local store; documents are deep-copied in and out."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial) if initial else {}

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return copy.deepcopy(default)
        return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class JsonFileKeyValueStore:
    """One JSON file per key under ``root``; writes are locked and atomic."""

    def __init__(self, root: str | Path, lock_timeout_seconds: int = 10) -> None:
        self.root = Path(root)
        self.lock_timeout_seconds = lock_timeout_seconds

    def _path(self, key: str) -> Path:
        if not _KEY_RE.match(key):
            raise ValueError(f"invalid store key: {key!r}")
        return self.root / f"{key}.json"

    def get(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        if not path.exists():
            return copy.deepcopy(default)
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            backup_path = path.with_suffix(path.suffix + ".bak")
            try:
                path.replace(backup_path)
            except OSError:
                logger.exception("kv: failed to backup corrupt file", extra={"path": str(path)})
            logger.error("kv: corrupt document recreated", extra={"path": str(path), "error": str(exc)})
            if default is not None:
                _atomic_write_json(path, default)
            return copy.deepcopy(default)

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        self.root.mkdir(parents=True, exist_ok=True)
        lock = acquire_file_lock(str(path), timeout_seconds=self.lock_timeout_seconds)
        try:
            _atomic_write_json(path, value)
        finally:
            release_file_lock(lock)

    def delete(self, key: str) -> None:
        path = self._path(key)
        lock = acquire_file_lock(str(path), timeout_seconds=self.lock_timeout_seconds)
        try:
            path.unlink(missing_ok=True)
        finally:
            release_file_lock(lock)
