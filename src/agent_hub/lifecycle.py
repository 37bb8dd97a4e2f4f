"""Process lifecycle helpers shared by the runner and the feed scheduler."""

from __future__ import annotations

import signal
from collections.abc import Callable, Iterator
from contextlib import contextmanager


@contextmanager
def stop_on_signals(on_stop: Callable[[str], None]) -> Iterator[None]:
    """Route SIGINT/SIGTERM to ``on_stop`` while the block runs.

    Outside the main thread handlers cannot be installed and the block runs
    unchanged.
    """

    if not hasattr(signal, "SIGTERM"):
        yield
        return

    def _handler(signum: int, _: object | None) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        on_stop(name)

    try:
        original_sigint = signal.signal(signal.SIGINT, _handler)
        original_sigterm = signal.signal(signal.SIGTERM, _handler)
    except ValueError:
        yield
        return
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)
