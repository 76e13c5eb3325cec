"""Decorator helpers for measuring functions as scopes.

Wraps a function so every call is bracketed by a scope on the given
monitor.  Coroutine functions are supported; the scope then covers the
awaited body.
"""

from __future__ import annotations

import functools
import inspect
import logging
from typing import TYPE_CHECKING, Any, Callable, Optional

if TYPE_CHECKING:
    from heapscope.profiler.engine import HeapMonitor

logger = logging.getLogger(__name__)


def profile_scope(
    monitor: HeapMonitor,
    name: Optional[str] = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator that records each call of the wrapped function as a scope.

    Usage::

        monitor = HeapMonitor()

        @profile_scope(monitor)
        def build_index():
            ...

        @profile_scope(monitor, name="/api/search")
        async def search(request):
            ...

    The scope name defaults to the function's qualified name.  The scope is
    ended even when the function raises.
    """
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        scope_name = name or fn.__qualname__

        if inspect.iscoroutinefunction(fn):
            @functools.wraps(fn)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                with monitor.scope(scope_name):
                    return await fn(*args, **kwargs)
            return async_wrapper

        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            with monitor.scope(scope_name):
                return fn(*args, **kwargs)
        return wrapper

    return decorator
