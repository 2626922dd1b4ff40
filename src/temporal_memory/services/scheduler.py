"""Recurring background maintenance.

:class:`AutoConsolidationLoop` runs a dream-consolidation callable and
:class:`PruneLoop` runs a prune callable, each on a fixed interval from a
daemon thread, so neither keeps the interpreter alive.  Failures are logged
and swallowed: this is best-effort maintenance, never a user-facing operation.

Lifecycle::

    loop = AutoConsolidationLoop(system.dream_consolidate, interval_sec=6 * 3600)
    loop.start()
    loop.trigger()   # wake immediately for one cycle
    loop.stop()      # returns at once; an in-flight cycle finishes on its own
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional, Tuple, Type

from temporal_memory.errors import ConsolidationInProgressError
from temporal_memory.memory.dreams import DreamMode

log = logging.getLogger(__name__)

DEFAULT_INTERVAL_SEC = 6 * 3600.0
DEFAULT_PRUNE_INTERVAL_SEC = 600.0


class IntervalLoop:
    """Daemon-thread timer that calls :meth:`run_once` every ``interval_sec``."""

    name = "interval-loop"
    # Raised by a cycle that had nothing to do; logged at DEBUG, not counted.
    skip_exceptions: Tuple[Type[BaseException], ...] = ()

    def __init__(self, interval_sec: float) -> None:
        if interval_sec <= 0:
            raise ValueError("interval_sec must be positive")
        self.interval_sec = interval_sec
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._cycle_count = 0
        self._failure_count = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the loop.  Calling ``start()`` while running is a no-op."""
        if self._running:
            log.warning("%s start() called but loop is already running.", self.name)
            return
        self._running = True
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._loop, args=(self._wake, self._stop), name=self.name, daemon=True,
        )
        self._thread.start()
        log.info("%s started (interval=%.0fs).", self.name, self.interval_sec)

    def stop(self) -> None:
        """Stop the loop without waiting for an in-flight cycle."""
        if not self._running:
            return
        self._running = False
        self._stop.set()
        self._wake.set()
        self._thread = None
        log.info("%s stopped after %d cycle(s).", self.name, self._cycle_count)

    def trigger(self) -> None:
        """Wake the loop to run a cycle immediately."""
        self._wake.set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def failure_count(self) -> int:
        return self._failure_count

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def _loop(self, wake: threading.Event, stop: threading.Event) -> None:
        while not stop.is_set():
            wake.wait(timeout=self.interval_sec)
            wake.clear()
            if stop.is_set():
                break
            self.run_once()

    def run_once(self) -> bool:
        """Run one cycle, swallowing any failure.  Returns True on success."""
        try:
            self._cycle()
        except self.skip_exceptions as exc:
            log.debug("Skipping %s cycle: %s", self.name, exc)
            return False
        except Exception:
            self._failure_count += 1
            log.warning("%s cycle failed.", self.name, exc_info=True)
            return False
        self._cycle_count += 1
        return True

    def _cycle(self) -> None:
        raise NotImplementedError


class AutoConsolidationLoop(IntervalLoop):
    """Background consolidation timer owned by one memory system.

    Args:
        consolidate: Callable taking a :class:`DreamMode`.
        interval_sec: Seconds between cycles.  Must be > 0.
        mode: Mode passed to every cycle (default LIGHT).
    """

    name = "auto-consolidation"
    skip_exceptions = (ConsolidationInProgressError,)

    def __init__(
        self,
        consolidate: Callable[[DreamMode], Any],
        interval_sec: float = DEFAULT_INTERVAL_SEC,
        mode: DreamMode | str = DreamMode.LIGHT,
    ) -> None:
        super().__init__(interval_sec)
        self._consolidate = consolidate
        self.mode = DreamMode.parse(mode)

    def _cycle(self) -> None:
        self._consolidate(self.mode)


class PruneLoop(IntervalLoop):
    """Periodic removal of forgotten episodes (default every 10 minutes)."""

    name = "episode-prune"

    def __init__(self, prune: Callable[[], int], interval_sec: float = DEFAULT_PRUNE_INTERVAL_SEC) -> None:
        super().__init__(interval_sec)
        self._prune = prune
        self.last_pruned = 0

    def _cycle(self) -> None:
        self.last_pruned = self._prune()
        if self.last_pruned:
            log.debug("Periodic prune removed %d episode(s).", self.last_pruned)
