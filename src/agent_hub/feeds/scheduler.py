"""Single shared polling loop over every feed target."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor

from agent_hub.feeds.models import FeedCheckResult, FeedTarget
from agent_hub.feeds.monitor import FeedMonitor
from agent_hub.lifecycle import stop_on_signals

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 300.0
DEFAULT_MAX_WORKERS = 4


class FeedScheduler:
    """Submits one check per target on every tick.

    A target whose previous check is still running is skipped for that tick,
    never queued behind itself. Check failures are logged and do not stop the
    loop.
    """

    def __init__(
        self,
        *,
        monitor: FeedMonitor,
        targets: Callable[[], list[FeedTarget]],
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self.monitor = monitor
        self._targets = targets
        self.interval_seconds = interval_seconds
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, max_workers),
            thread_name_prefix="feed-check",
        )
        self._in_flight: set[tuple[str, str]] = set()
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._stop = threading.Event()

    def tick(self) -> list[FeedTarget]:
        """Start checks for every idle target; returns the targets started."""

        try:
            targets = self._targets()
        except Exception:  # noqa: BLE001
            logger.exception("Could not load feed targets")
            return []

        started: list[FeedTarget] = []
        for target in targets:
            with self._lock:
                if target.key in self._in_flight:
                    logger.info("Feed %s is still being checked; skipping this tick", target.name)
                    continue
                self._in_flight.add(target.key)
            future = self._executor.submit(self._check, target)
            future.add_done_callback(lambda done, key=target.key: self._release(key, done))
            started.append(target)
        return started

    def run_loop(self, *, max_ticks: int | None = None) -> int:
        """Tick every ``interval_seconds`` until stopped; returns the number of ticks."""

        ticks = 0
        with stop_on_signals(self.request_stop):
            while not self._stop.is_set():
                self.tick()
                ticks += 1
                if max_ticks is not None and ticks >= max_ticks:
                    break
                self._stop.wait(self.interval_seconds)
        logger.info("Feed scheduler stopped after %d ticks", ticks)
        return ticks

    def request_stop(self, signal_name: str = "manual") -> None:
        logger.info("Feed scheduler stop requested (%s)", signal_name)
        self._stop.set()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no check is in flight."""

        with self._idle:
            return self._idle.wait_for(lambda: not self._in_flight, timeout=timeout)

    def in_flight(self) -> set[tuple[str, str]]:
        with self._lock:
            return set(self._in_flight)

    def shutdown(self, *, wait: bool = True) -> None:
        self._stop.set()
        self._executor.shutdown(wait=wait)

    def _check(self, target: FeedTarget) -> FeedCheckResult:
        return self.monitor.check(target)

    def _release(self, key: tuple[str, str], future: Future[FeedCheckResult]) -> None:
        with self._idle:
            self._in_flight.discard(key)
            self._idle.notify_all()
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error("Feed check for %s crashed: %s", key[0], error, exc_info=error)
