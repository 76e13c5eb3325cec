"""heapscope: in-process memory telemetry with per-scope leak detection."""

__version__ = "0.1.0"

from heapscope.config import ConfigError, MonitorConfig
from heapscope.profiler.engine import HeapMonitor, MonitorState
from heapscope.profiler.sampler import MemorySample, Sampler
from heapscope.profiler.scope_tracker import ScopeDelta, ScopeHandle, ScopeReuseError
from heapscope.analysis.aggregator import Report, Trend
from heapscope.analysis.leak_analyzer import Alert, AlertKind
from heapscope.sdk.decorators import profile_scope

__all__ = [
    "__version__",
    "ConfigError",
    "MonitorConfig",
    "HeapMonitor",
    "MonitorState",
    "MemorySample",
    "Sampler",
    "ScopeDelta",
    "ScopeHandle",
    "ScopeReuseError",
    "Report",
    "Trend",
    "Alert",
    "AlertKind",
    "profile_scope",
]
