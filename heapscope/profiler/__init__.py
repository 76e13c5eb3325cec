"""Sampling engine: memory sources, scope tracking and the monitor loop."""

from heapscope.profiler.sampler import (
    MemorySample,
    MemorySource,
    NullSource,
    PsutilSource,
    RawMemory,
    Sampler,
    TracemallocSource,
    select_memory_source,
)
from heapscope.profiler.scope_tracker import ScopeDelta, ScopeHandle, ScopeReuseError, ScopeTracker
from heapscope.profiler.engine import HeapMonitor, MonitorState

__all__ = [
    "MemorySample",
    "MemorySource",
    "NullSource",
    "PsutilSource",
    "RawMemory",
    "Sampler",
    "TracemallocSource",
    "select_memory_source",
    "ScopeDelta",
    "ScopeHandle",
    "ScopeReuseError",
    "ScopeTracker",
    "HeapMonitor",
    "MonitorState",
]
