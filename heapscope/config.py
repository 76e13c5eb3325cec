"""Monitor configuration.

A single frozen dataclass holds every knob the monitor reads.  Values are
validated when the object is built so a malformed configuration fails at
construction time rather than on the first sampling tick.  Operators can
override defaults through ``HEAPSCOPE_*`` environment variables.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from typing import Dict, Optional, Union

# ---------------------------------------------------------------------------
# Environment variable names
# ---------------------------------------------------------------------------
_ENV_INTERVAL_MS = "HEAPSCOPE_INTERVAL_MS"
_ENV_THRESHOLD_MB = "HEAPSCOPE_THRESHOLD_MB"
_ENV_MAX_SAMPLES = "HEAPSCOPE_MAX_SAMPLES"
_ENV_MAX_SCOPE_SAMPLES = "HEAPSCOPE_MAX_SCOPE_SAMPLES"
_ENV_MEMORY_SOURCE = "HEAPSCOPE_MEMORY_SOURCE"

DEFAULT_INTERVAL_MS: int = 5000
DEFAULT_THRESHOLD_MB: float = 100.0

MEMORY_SOURCES = ("auto", "psutil", "tracemalloc", "none")


class ConfigError(ValueError):
    """Raised when a :class:`MonitorConfig` value is out of range."""


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from None


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {value!r}") from None


@dataclass(frozen=True)
class MonitorConfig:
    """Runtime configuration for :class:`~heapscope.profiler.engine.HeapMonitor`.

    Parameters
    ----------
    interval_ms:
        Period of the background sampling loop in milliseconds.
    threshold_mb:
        Memory increase (MB) above which a leak alert is raised.  The
        comparison is strict: an increase equal to the threshold is quiet.
    max_samples:
        Capacity of the global sample ring buffer.  ``None`` keeps every
        sample.
    max_scope_samples:
        Capacity of each scope's delta ring buffer.  ``None`` keeps every
        delta.
    memory_source:
        One of ``"auto"``, ``"psutil"``, ``"tracemalloc"`` or ``"none"``.
    """

    interval_ms: int = DEFAULT_INTERVAL_MS
    threshold_mb: float = DEFAULT_THRESHOLD_MB
    max_samples: Optional[int] = None
    max_scope_samples: Optional[int] = None
    memory_source: str = "auto"

    def __post_init__(self) -> None:
        if isinstance(self.interval_ms, bool) or not isinstance(self.interval_ms, int):
            raise ConfigError(f"interval_ms must be an integer, got {self.interval_ms!r}")
        if self.interval_ms <= 0:
            raise ConfigError(f"interval_ms must be > 0, got {self.interval_ms}")

        if isinstance(self.threshold_mb, bool) or not isinstance(self.threshold_mb, (int, float)):
            raise ConfigError(f"threshold_mb must be a number, got {self.threshold_mb!r}")
        if not self.threshold_mb > 0:
            raise ConfigError(f"threshold_mb must be > 0, got {self.threshold_mb}")

        for name in ("max_samples", "max_scope_samples"):
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise ConfigError(f"{name} must be a positive integer or None, got {value!r}")

        if self.memory_source not in MEMORY_SOURCES:
            raise ConfigError(
                f"Unknown memory source {self.memory_source!r}. "
                f"Expected one of: {', '.join(MEMORY_SOURCES)}."
            )

    # -- serialisation helpers ------------------------------------------------

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)

    @classmethod
    def from_env(cls, **overrides: Union[int, float, str, None]) -> MonitorConfig:
        """Build a config from ``HEAPSCOPE_*`` variables.

        Explicit keyword *overrides* that are not ``None`` win over the
        environment.
        """
        values: Dict[str, object] = {
            "interval_ms": _env_int(_ENV_INTERVAL_MS, DEFAULT_INTERVAL_MS),
            "threshold_mb": _env_float(_ENV_THRESHOLD_MB, DEFAULT_THRESHOLD_MB),
            "max_samples": _env_int(_ENV_MAX_SAMPLES, None),
            "max_scope_samples": _env_int(_ENV_MAX_SCOPE_SAMPLES, None),
            "memory_source": os.environ.get(_ENV_MEMORY_SOURCE, "auto").strip().lower() or "auto",
        }
        for key, value in overrides.items():
            if value is not None:
                values[key] = value
        return cls(**values)  # type: ignore[arg-type]
