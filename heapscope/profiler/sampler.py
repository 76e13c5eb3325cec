"""Point-in-time memory sampling.

A :class:`Sampler` turns raw byte counters from a :class:`MemorySource` into
whole-megabyte :class:`MemorySample` records.  The source is chosen once,
when the sampler is built, by :func:`select_memory_source`:

* :class:`PsutilSource` reads the process RSS / VMS through psutil.
* :class:`TracemallocSource` reads the Python allocator counters traced by
  :mod:`tracemalloc`.
* :class:`NullSource` is used when the host exposes no memory introspection
  and always reports zeros.

An all-zero sample means "unmeasurable", not "no growth"; downstream checks
use :attr:`MemorySample.is_unmeasurable` to tell the two apart.
"""

from __future__ import annotations

import logging
import math
import time
import tracemalloc
from dataclasses import dataclass, asdict
from typing import Dict, Optional

import psutil

try:
    import resource
except ImportError:  # pragma: no cover - Windows has no resource module
    resource = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

_BYTES_PER_MB: int = 1024 * 1024


def bytes_to_mb(value: float) -> int:
    """Convert a byte count to whole megabytes, rounding halves up."""
    return int(math.floor(value / _BYTES_PER_MB + 0.5))


# ============================================================================
# Data classes
# ============================================================================


@dataclass(frozen=True)
class RawMemory:
    """Byte counters as reported by a memory source."""

    heap_used: int
    heap_total: int
    heap_limit: int = 0


@dataclass(frozen=True)
class MemorySample:
    """A single point-in-time memory reading, in whole megabytes."""

    timestamp: float
    heap_used_mb: int
    heap_total_mb: int
    heap_limit_mb: int = 0

    @property
    def is_unmeasurable(self) -> bool:
        """True when the reading carries no information (zeroed sample)."""
        return self.heap_used_mb == 0 and self.heap_total_mb == 0

    # -- serialisation helpers ------------------------------------------------

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> MemorySample:
        return cls(
            timestamp=float(data.get("timestamp", 0.0)),  # type: ignore[arg-type]
            heap_used_mb=int(data.get("heap_used_mb", 0)),  # type: ignore[arg-type]
            heap_total_mb=int(data.get("heap_total_mb", 0)),  # type: ignore[arg-type]
            heap_limit_mb=int(data.get("heap_limit_mb", 0)),  # type: ignore[arg-type]
        )


# ============================================================================
# Memory sources
# ============================================================================


class MemorySource:
    """Base class for host memory sources.

    Subclasses return a :class:`RawMemory` in bytes from :meth:`read`.
    """

    name: str = "base"

    def read(self) -> RawMemory:
        raise NotImplementedError


class PsutilSource(MemorySource):
    """Process-level counters: RSS as used, VMS as total.

    The ceiling is the address-space rlimit when one is set, otherwise the
    total physical memory of the machine.
    """

    name = "psutil"

    def __init__(self, pid: Optional[int] = None) -> None:
        self._process = psutil.Process(pid)
        self._limit = self._query_limit()

    def read(self) -> RawMemory:
        info = self._process.memory_info()
        return RawMemory(heap_used=info.rss, heap_total=info.vms, heap_limit=self._limit)

    @staticmethod
    def _query_limit() -> int:
        if resource is not None:
            try:
                soft, _hard = resource.getrlimit(resource.RLIMIT_AS)
                if soft not in (resource.RLIM_INFINITY, -1) and soft > 0:
                    return int(soft)
            except (ValueError, OSError):
                logger.debug("RLIMIT_AS is not available.", exc_info=True)
        return int(psutil.virtual_memory().total)


class TracemallocSource(MemorySource):
    """Python allocator counters: traced current as used, traced peak as total."""

    name = "tracemalloc"

    def read(self) -> RawMemory:
        if not tracemalloc.is_tracing():
            return RawMemory(heap_used=0, heap_total=0)
        current, peak = tracemalloc.get_traced_memory()
        return RawMemory(heap_used=current, heap_total=peak)


class NullSource(MemorySource):
    """Source for hosts without memory introspection."""

    name = "none"

    def read(self) -> RawMemory:
        return RawMemory(heap_used=0, heap_total=0)


def select_memory_source(name: str = "auto") -> MemorySource:
    """Pick the memory source for this process.

    ``"auto"`` probes psutil first, then tracemalloc (only when tracing is
    already enabled), and finally settles on :class:`NullSource`.  Asking
    for ``"tracemalloc"`` explicitly starts tracing if needed.
    """
    if name == "none":
        return NullSource()

    if name == "tracemalloc":
        if not tracemalloc.is_tracing():
            tracemalloc.start()
        return TracemallocSource()

    if name in ("auto", "psutil"):
        try:
            source = PsutilSource()
            source.read()
            return source
        except (psutil.Error, OSError):
            if name == "psutil":
                raise
            logger.debug("psutil cannot read this process.", exc_info=True)

        if tracemalloc.is_tracing():
            return TracemallocSource()

        logger.warning(
            "No memory introspection is available; samples will be zeroed "
            "and treated as unmeasurable."
        )
        return NullSource()

    raise ValueError(f"Unknown memory source {name!r}")


# ============================================================================
# Sampler
# ============================================================================


class Sampler:
    """Read the current memory state as a :class:`MemorySample`.

    Usage::

        sampler = Sampler()
        start = sampler.measure()
        ...
        delta = sampler.measure(baseline=start)
    """

    def __init__(self, source: Optional[MemorySource] = None) -> None:
        self._source: MemorySource = source if source is not None else select_memory_source()

    @property
    def source(self) -> MemorySource:
        return self._source

    def measure(self, baseline: Optional[MemorySample] = None) -> MemorySample:
        """Return the current reading, or its difference from *baseline*.

        With a baseline, ``heap_used_mb`` and ``heap_total_mb`` are the
        current values minus the baseline's; ``heap_limit_mb`` is the current
        ceiling.  A failing source yields a zeroed sample, and so does a
        baseline difference where either side is unmeasurable.
        """
        try:
            raw = self._source.read()
        except Exception:
            logger.debug("Memory source %r failed; returning a zeroed sample.",
                         self._source.name, exc_info=True)
            raw = RawMemory(heap_used=0, heap_total=0)

        used_mb = bytes_to_mb(raw.heap_used)
        total_mb = bytes_to_mb(raw.heap_total)
        limit_mb = bytes_to_mb(raw.heap_limit)

        if baseline is not None:
            if (used_mb == 0 and total_mb == 0) or baseline.is_unmeasurable:
                used_mb = total_mb = 0
            else:
                used_mb -= baseline.heap_used_mb
                total_mb -= baseline.heap_total_mb

        return MemorySample(
            timestamp=time.time(),
            heap_used_mb=used_mb,
            heap_total_mb=total_mb,
            heap_limit_mb=limit_mb,
        )
