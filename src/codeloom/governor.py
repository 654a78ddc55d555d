"""Load-based admission control for background work.

The governor samples the 1-minute load average and this process's
resident memory on a fixed interval and exposes one decision:
``can_dispatch_task()``. It never cancels running work; callers use it
to defer new work while the host is busy.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

import psutil

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024


class GovernorState(StrEnum):
    NORMAL = "normal"
    UNDER_LOAD = "under_load"


@dataclass(frozen=True)
class ResourceSample:
    load_avg_1m: float
    resident_memory_bytes: int


def sample_system() -> ResourceSample:
    """Read load average and RSS via psutil."""
    load_1m, _, _ = psutil.getloadavg()
    rss = psutil.Process().memory_info().rss
    return ResourceSample(load_avg_1m=load_1m, resident_memory_bytes=rss)


class ResourceGovernor:
    """Two-state (normal / under load) sampler with transition logging.

    Sampling starts at construction unless ``autostart`` is false. One
    synchronous check runs in ``start()``, then a daemon thread
    samples every ``check_interval`` seconds until ``stop()``. After
    ``stop()`` every query returns the frozen last state.
    """

    def __init__(
        self,
        *,
        high_load_ratio: float = 1.0,
        max_memory_mb: int = 1024,
        check_interval: float = 5.0,
        min_workers: int = 1,
        max_workers: int | None = None,
        sampler: Callable[[], ResourceSample] = sample_system,
        cpu_count: int | None = None,
        autostart: bool = True,
    ) -> None:
        self.cpu_count = cpu_count or psutil.cpu_count() or 1
        self.high_load_ratio = high_load_ratio
        self.max_memory_bytes = max_memory_mb * BYTES_PER_MB
        self.check_interval = check_interval
        self.min_workers = max(1, min_workers)
        default_max = max(1, self.cpu_count - 1)
        self.max_workers = max(
            self.min_workers,
            max_workers if max_workers is not None else default_max,
        )
        self._sampler = sampler
        self._state = GovernorState.NORMAL
        self._last_sample: ResourceSample | None = None
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        if autostart:
            self.start()

    @property
    def state(self) -> GovernorState:
        return self._state

    @property
    def last_sample(self) -> ResourceSample | None:
        return self._last_sample

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop_event.clear()
        self.check_now()
        self._thread = threading.Thread(
            target=self._run, name="resource-governor", daemon=True
        )
        self._thread.start()
        logger.info(
            "event=governor_started cores=%d interval=%.1fs"
            " max_workers=%d",
            self.cpu_count,
            self.check_interval,
            self.max_workers,
        )

    def stop(self) -> None:
        """Stop sampling; the last known state stays queryable."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.check_interval + 1)
        self._thread = None

    def _run(self) -> None:
        while not self._stop_event.wait(self.check_interval):
            try:
                self.check_now()
            except Exception:
                logger.warning("event=governor_sample_failed", exc_info=True)

    def check_now(self) -> GovernorState:
        """Take one sample and update the state."""
        sample = self._sampler()
        load_limit = self.cpu_count * self.high_load_ratio
        under_load = (
            sample.load_avg_1m >= load_limit
            or sample.resident_memory_bytes >= self.max_memory_bytes
        )
        new_state = (
            GovernorState.UNDER_LOAD if under_load else GovernorState.NORMAL
        )
        with self._lock:
            previous = self._state
            self._state = new_state
            self._last_sample = sample
        if new_state != previous:
            logger.warning(
                "event=governor_state_changed from=%s to=%s load_1m=%.2f"
                " load_limit=%.2f rss_mb=%.1f max_mb=%d",
                previous,
                new_state,
                sample.load_avg_1m,
                load_limit,
                sample.resident_memory_bytes / BYTES_PER_MB,
                self.max_memory_bytes // BYTES_PER_MB,
            )
        else:
            logger.debug(
                "event=governor_sample state=%s load_1m=%.2f rss_mb=%.1f",
                new_state,
                sample.load_avg_1m,
                sample.resident_memory_bytes / BYTES_PER_MB,
            )
        return new_state

    def can_dispatch_task(self) -> bool:
        return self._state == GovernorState.NORMAL

    def get_baseline_concurrency(self) -> int:
        return max(self.min_workers, self.max_workers)

    def get_min_concurrency(self) -> int:
        return self.min_workers
