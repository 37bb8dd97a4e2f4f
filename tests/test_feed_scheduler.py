from __future__ import annotations

import threading

import allure

from agent_hub.feeds.models import FeedCheckResult, FeedTarget
from agent_hub.feeds.scheduler import FeedScheduler

pytestmark = [
    allure.epic("Feed Monitor"),
    allure.feature("Polling Scheduler"),
]


class _BlockingMonitor:
    """Checks block until released so overlapping ticks can be observed."""

    def __init__(self) -> None:
        self.release = threading.Event()
        self.started: list[str] = []
        self._lock = threading.Lock()

    def check(self, target: FeedTarget) -> FeedCheckResult:
        with self._lock:
            self.started.append(target.name)
        self.release.wait(timeout=5)
        return FeedCheckResult(name=target.name, feed_url=target.url)


class _ExplodingMonitor:
    def __init__(self) -> None:
        self.calls = 0

    def check(self, target: FeedTarget) -> FeedCheckResult:
        self.calls += 1
        if target.name == "broken":
            raise RuntimeError("parser exploded")
        return FeedCheckResult(name=target.name, feed_url=target.url)


def _target(name: str) -> FeedTarget:
    return FeedTarget(name=name, url=f"https://example.com/{name}.xml")


def test_target_still_in_flight_is_skipped_on_next_tick() -> None:
    monitor = _BlockingMonitor()
    targets = [_target("slow"), _target("other")]
    scheduler = FeedScheduler(monitor=monitor, targets=lambda: targets, max_workers=4)
    try:
        first = scheduler.tick()
        second = scheduler.tick()

        assert [target.name for target in first] == ["slow", "other"]
        assert second == []
        assert scheduler.in_flight() == {target.key for target in targets}

        monitor.release.set()
        assert scheduler.wait_idle(timeout=5)
        assert scheduler.in_flight() == set()

        third = scheduler.tick()
        assert [target.name for target in third] == ["slow", "other"]
        assert scheduler.wait_idle(timeout=5)
    finally:
        monitor.release.set()
        scheduler.shutdown()


def test_same_feed_in_different_scopes_runs_independently() -> None:
    monitor = _BlockingMonitor()
    url = "https://example.com/shared.xml"
    targets = [
        FeedTarget(name="chat-1", url=url, scope="1"),
        FeedTarget(name="chat-2", url=url, scope="2"),
    ]
    scheduler = FeedScheduler(monitor=monitor, targets=lambda: targets)
    try:
        started = scheduler.tick()
        assert len(started) == 2
    finally:
        monitor.release.set()
        scheduler.shutdown()


def test_crashing_check_does_not_stop_the_scheduler() -> None:
    monitor = _ExplodingMonitor()
    scheduler = FeedScheduler(
        monitor=monitor,
        targets=lambda: [_target("broken"), _target("fine")],
        interval_seconds=0.0,
    )
    try:
        ticks = scheduler.run_loop(max_ticks=3)
        assert scheduler.wait_idle(timeout=5)
    finally:
        scheduler.shutdown()

    assert ticks == 3
    assert monitor.calls >= 2
    assert scheduler.in_flight() == set()


def test_target_provider_failure_is_logged_and_tick_is_empty() -> None:
    def _targets() -> list[FeedTarget]:
        raise ValueError("targets file is not valid JSON")

    scheduler = FeedScheduler(monitor=_ExplodingMonitor(), targets=_targets)
    try:
        assert scheduler.tick() == []
    finally:
        scheduler.shutdown()


def test_request_stop_ends_run_loop() -> None:
    scheduler = FeedScheduler(
        monitor=_ExplodingMonitor(),
        targets=lambda: [],
        interval_seconds=60.0,
    )
    timer = threading.Timer(0.1, scheduler.request_stop)
    timer.start()
    try:
        ticks = scheduler.run_loop()
    finally:
        timer.cancel()
        scheduler.shutdown()

    assert ticks == 1
