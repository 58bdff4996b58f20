"""Memory pressure control for a long-lived image server.

Every generate/edit call moves tens of megabytes of image data through the
process.  CPython frees most of it by reference counting, but response
objects from the Gemini SDK form reference cycles and the cyclic collector
only runs when allocation counters say so.  The controller makes collection
explicit:

* ``check_and_maybe_collect`` runs once before allocation-heavy work and
  triggers a pass when heap usage is above the threshold.
* ``force_aggressive_reclaim`` runs after every call (success or failure) and
  performs several passes, yielding to the event loop between them so
  pending callbacks can drop their references first.

Forced collection is opt-in at launch time through the
``-X nano_banana.forced_gc`` interpreter option, which the launcher in
:mod:`nano_banana.core.launcher` guarantees.
"""

from __future__ import annotations

import asyncio
import gc
import sys
import tracemalloc
from dataclasses import dataclass
from typing import Callable, Optional

import psutil
from loguru import logger

from nano_banana.settings import settings

FORCED_GC_OPTION = "nano_banana.forced_gc"
MAX_HEAP_OPTION = "nano_banana.max_heap_mb"
COMPACT_HEAP_OPTION = "nano_banana.compact_heap"

# Generation thresholds used with COMPACT_HEAP_OPTION (CPython default: 700, 10, 10)
COMPACT_GC_THRESHOLDS = (350, 5, 5)

_MB = 1024 * 1024


def forced_gc_available() -> bool:
    """Return *True* when the interpreter was launched with forced collection enabled."""
    return FORCED_GC_OPTION in sys._xoptions and callable(getattr(gc, "collect", None))


def heap_bound_mb() -> int:
    """Heap bound in MiB: launch option first, then ``settings.MAX_HEAP_MB``."""
    raw = sys._xoptions.get(MAX_HEAP_OPTION)
    if isinstance(raw, str):
        try:
            return int(raw)
        except ValueError:
            logger.warning(f"Ignoring invalid -X {MAX_HEAP_OPTION}={raw!r}")
    return settings.MAX_HEAP_MB


def apply_launch_options() -> None:
    """Apply interpreter tuning requested through ``-X`` launch options."""
    if COMPACT_HEAP_OPTION in sys._xoptions:
        gc.set_threshold(*COMPACT_GC_THRESHOLDS)
        logger.debug(f"Compact heap mode: gc thresholds set to {COMPACT_GC_THRESHOLDS}")


@dataclass(frozen=True)
class MemorySnapshot:
    heap_used_bytes: int
    heap_total_bytes: int
    resident_set_bytes: int

    @property
    def usage(self) -> float:
        if self.heap_total_bytes <= 0:
            return 0.0
        return self.heap_used_bytes / self.heap_total_bytes

    @property
    def heap_used_mb(self) -> int:
        return round(self.heap_used_bytes / _MB)

    @property
    def rss_mb(self) -> int:
        return round(self.resident_set_bytes / _MB)


def take_snapshot(heap_total_bytes: Optional[int] = None) -> MemorySnapshot:
    """Sample the current process.

    ``heap_used_bytes`` is the traced size when :mod:`tracemalloc` is running
    and the resident set size otherwise.
    """
    rss = psutil.Process().memory_info().rss
    if tracemalloc.is_tracing():
        used, _peak = tracemalloc.get_traced_memory()
    else:
        used = rss
    total = heap_total_bytes if heap_total_bytes is not None else heap_bound_mb() * _MB
    return MemorySnapshot(heap_used_bytes=used, heap_total_bytes=total, resident_set_bytes=rss)


class MemoryPressureController:
    """Threshold-based and post-operation garbage collection."""

    def __init__(
        self,
        *,
        threshold: Optional[float] = None,
        passes: Optional[int] = None,
        collect: Callable[[], int] = gc.collect,
        capability: Callable[[], bool] = forced_gc_available,
        sampler: Callable[[], MemorySnapshot] = take_snapshot,
    ) -> None:
        self.threshold = threshold if threshold is not None else settings.MEMORY_PRESSURE_THRESHOLD
        self.passes = passes if passes is not None else settings.GC_PASSES
        self._collect = collect
        self._capability = capability
        self._sampler = sampler

    @property
    def capability_available(self) -> bool:
        return self._capability()

    def snapshot(self) -> MemorySnapshot:
        return self._sampler()

    async def check_and_maybe_collect(self) -> bool:
        """Run one collection if heap usage is above the threshold.

        Returns *True* when a pass was triggered.
        """
        if not self.capability_available:
            await asyncio.sleep(0)
            return False

        snap = self.snapshot()
        if snap.usage > self.threshold:
            logger.warning(f"⚠️  High memory usage detected ({round(snap.usage * 100)}%), triggering GC...")
            self._collect()
            return True
        return False

    async def force_aggressive_reclaim(self) -> Optional[MemorySnapshot]:
        """Run ``self.passes`` collections with an event-loop yield after each."""
        if not self.capability_available:
            await asyncio.sleep(0)
            return None

        for _ in range(self.passes):
            self._collect()
            await asyncio.sleep(0)

        snap = self.snapshot()
        logger.info(f"🧹 Aggressive GC completed - Heap: {snap.heap_used_mb}MB, RSS: {snap.rss_mb}MB")
        return snap


_controller: Optional[MemoryPressureController] = None


def get_memory_controller() -> MemoryPressureController:
    """Return the process-wide controller (created on first use)."""
    global _controller
    if _controller is None:
        _controller = MemoryPressureController()
    return _controller
