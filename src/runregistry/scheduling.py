"""Periodic maintenance of the run registry.

The registry never schedules itself: completion reconciliation and the
expiry sweep are triggered from outside. ``MaintenanceScheduler`` is the
bundled trigger, a daemon thread that wakes on a fixed tick and runs each
pass when its interval has elapsed.

┌──────────────────────────────────────────────────────────────────────────┐
│  MaintenanceScheduler                                                     │
│                                                                           │
│   start()                                                                 │
│      │                                                                    │
│      ▼                                                                    │
│   Daemon Thread (loop)                                                    │
│     while not stop_event.wait(tick):                                      │
│         if reconcile due:  registry.reconcile()                           │
│         if sweep due:      registry.clean_expired()                       │
│                                                                           │
│   stop()  →  stop_event.set(); thread.join(timeout)                       │
└──────────────────────────────────────────────────────────────────────────┘

Both passes already isolate and report their own failures; anything that
still escapes is logged and the loop carries on.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from runregistry.core.logging import get_logger
from runregistry.models import utcnow
from runregistry.registry import ReconcileReport, RunRegistry, SweepReport

logger = get_logger(__name__)


@dataclass
class MaintenanceResult:
    """Reports from one scheduler tick (None where a pass did not run)."""

    reconcile: ReconcileReport | None = None
    sweep: SweepReport | None = None


class MaintenanceScheduler:
    """Runs ``reconcile()`` and ``clean_expired()`` on their own intervals.

    Example:
        >>> scheduler = MaintenanceScheduler(registry, reconcile_interval=30, sweep_interval=300)
        >>> scheduler.start()
        >>> # ... later ...
        >>> scheduler.stop()
    """

    name = "maintenance"

    def __init__(
        self,
        registry: RunRegistry,
        *,
        reconcile_interval: float = 30.0,
        sweep_interval: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if reconcile_interval <= 0 or sweep_interval <= 0:
            raise ValueError("intervals must be positive")
        self._registry = registry
        self._reconcile_interval = reconcile_interval
        self._sweep_interval = sweep_interval
        self._clock = clock
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._tick_count = 0
        self._last_tick: datetime | None = None
        self._next_reconcile = 0.0
        self._next_sweep = 0.0
        self._started = False

    @property
    def tick_interval(self) -> float:
        return min(self._reconcile_interval, self._sweep_interval)

    def run_once(self, *, force: bool = False) -> MaintenanceResult:
        """Run whichever passes are due (all of them if *force*)."""
        result = MaintenanceResult()
        now = self._clock()
        with self._lock:
            self._tick_count += 1
            self._last_tick = utcnow()
            run_reconcile = force or now >= self._next_reconcile
            run_sweep = force or now >= self._next_sweep
            if run_reconcile:
                self._next_reconcile = now + self._reconcile_interval
            if run_sweep:
                self._next_sweep = now + self._sweep_interval

        if run_reconcile:
            result.reconcile = self._registry.reconcile()
        if run_sweep:
            result.sweep = self._registry.clean_expired()
        return result

    def start(self) -> None:
        """Start the maintenance loop in a daemon thread."""
        if self._started:
            logger.warning("maintenance_already_started")
            return

        self._stop_event.clear()
        tick = self.tick_interval

        def _loop() -> None:
            logger.info(
                "maintenance_started",
                reconcile_interval=self._reconcile_interval,
                sweep_interval=self._sweep_interval,
            )
            while not self._stop_event.wait(tick):
                try:
                    self.run_once()
                except Exception:
                    logger.exception("maintenance_tick_failed")
            logger.info("maintenance_stopped")

        self._thread = threading.Thread(target=_loop, daemon=True, name="run-registry-maintenance")
        self._thread.start()
        self._started = True

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the loop, waiting up to *timeout* seconds for the current tick."""
        if not self._started:
            return
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("maintenance_thread_did_not_stop")
        self._started = False

    @property
    def is_running(self) -> bool:
        return self._started and self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    def health(self) -> dict[str, Any]:
        return {
            "healthy": self.is_running,
            "backend": self.name,
            "tick_count": self._tick_count,
            "last_tick": self._last_tick.isoformat() if self._last_tick else None,
            "reconcile_interval_seconds": self._reconcile_interval,
            "sweep_interval_seconds": self._sweep_interval,
        }


__all__ = ["MaintenanceScheduler", "MaintenanceResult"]
