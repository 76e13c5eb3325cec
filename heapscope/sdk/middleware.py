"""Web framework integration.

Both middlewares open one scope per HTTP request, named after the request
path, and close it when the request has finished:

* :class:`ScopeMiddleware` wraps a WSGI application.  The scope ends when
  the server closes the response iterable, i.e. once the body has been
  sent.
* :class:`AsgiScopeMiddleware` wraps an ASGI application.  The scope ends
  when the application coroutine returns or raises.  Non-HTTP traffic
  (websockets, lifespan) passes through untouched.

Usage::

    monitor = HeapMonitor(threshold_mb=50)
    monitor.start()
    app.wsgi_app = ScopeMiddleware(app.wsgi_app, monitor)      # Flask
    app = AsgiScopeMiddleware(app, monitor)                     # Starlette, FastAPI
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, Iterator, Optional

if TYPE_CHECKING:
    from heapscope.profiler.engine import HeapMonitor
    from heapscope.profiler.scope_tracker import ScopeHandle

logger = logging.getLogger(__name__)

ScopeNamer = Callable[[Dict[str, Any]], str]


def _wsgi_path(environ: Dict[str, Any]) -> str:
    return (environ.get("SCRIPT_NAME", "") + environ.get("PATH_INFO", "")) or "/"


def _asgi_path(scope: Dict[str, Any]) -> str:
    return (scope.get("root_path", "") + scope.get("path", "")) or "/"


# ============================================================================
# WSGI
# ============================================================================


class _ClosingIterable:
    """Response iterable that ends the request scope when closed."""

    def __init__(self, result: Iterable[bytes], handle: ScopeHandle) -> None:
        self._result = result
        self._handle = handle

    def __iter__(self) -> Iterator[bytes]:
        return iter(self._result)

    def close(self) -> None:
        try:
            close = getattr(self._result, "close", None)
            if close is not None:
                close()
        finally:
            if not self._handle.ended:
                self._handle.end()


class ScopeMiddleware:
    """WSGI middleware recording one scope per request.

    Parameters
    ----------
    app:
        The wrapped WSGI application.
    monitor:
        Monitor receiving the scopes.
    scope_name:
        Optional callable mapping the WSGI environ to a scope name.
        Defaults to the request path without the query string.
    """

    def __init__(
        self,
        app: Callable[..., Iterable[bytes]],
        monitor: HeapMonitor,
        scope_name: Optional[ScopeNamer] = None,
    ) -> None:
        self._app = app
        self._monitor = monitor
        self._scope_name = scope_name or _wsgi_path

    def __call__(self, environ: Dict[str, Any], start_response: Callable[..., Any]) -> Iterable[bytes]:
        handle = self._monitor.begin_scope(self._scope_name(environ))
        try:
            result = self._app(environ, start_response)
        except BaseException:
            handle.end()
            raise
        return _ClosingIterable(result, handle)


# ============================================================================
# ASGI
# ============================================================================


class AsgiScopeMiddleware:
    """ASGI middleware recording one scope per HTTP request."""

    def __init__(
        self,
        app: Callable[..., Any],
        monitor: HeapMonitor,
        scope_name: Optional[ScopeNamer] = None,
    ) -> None:
        self._app = app
        self._monitor = monitor
        self._scope_name = scope_name or _asgi_path

    async def __call__(self, scope: Dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self._app(scope, receive, send)
            return

        handle = self._monitor.begin_scope(self._scope_name(scope))
        try:
            await self._app(scope, receive, send)
        finally:
            handle.end()
