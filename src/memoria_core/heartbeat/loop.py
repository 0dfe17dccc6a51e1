"""Periodic background ticks for engine maintenance."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class HeartbeatStatus:
    name: str
    running: bool
    interval_seconds: int
    ticks: int = 0
    failures: int = 0


class HeartbeatLoop:
    """Call ``tick_fn`` every ``interval_seconds`` on a daemon thread until stopped.

    An interval of zero or less disables the thread; ``tick_once`` still works.
    """

    def __init__(self, name: str, interval_seconds: int, tick_fn: Callable[[], None]) -> None:
        self.name = name
        self._interval_seconds = interval_seconds
        self._tick_fn = tick_fn
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()
        self._ticks = 0
        self._failures = 0

    def tick_once(self) -> None:
        self._ticks += 1
        self._tick_fn()

    def _guarded_tick(self) -> None:
        try:
            self.tick_once()
        except Exception as exc:  # noqa: BLE001
            self._failures += 1
            logger.warning("heartbeat: %s tick failed: %s", self.name, exc)

    def start(self) -> None:
        if self._interval_seconds <= 0 or self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=f"memoria-{self.name}", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        # First tick waits one interval; open() already did the startup work.
        while not self._stop.wait(self._interval_seconds):
            self._guarded_tick()

    def stop(self) -> None:
        self._stop.set()
        if self.is_running:
            self._thread.join(timeout=2.0)
        self._thread = None

    @property
    def is_running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def status(self) -> HeartbeatStatus:
        return HeartbeatStatus(
            name=self.name,
            running=self.is_running,
            interval_seconds=self._interval_seconds,
            ticks=self._ticks,
            failures=self._failures,
        )
