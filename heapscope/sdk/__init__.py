"""Python SDK: decorators and web framework middleware."""

from heapscope.sdk.decorators import profile_scope
from heapscope.sdk.middleware import AsgiScopeMiddleware, ScopeMiddleware

__all__ = ["profile_scope", "AsgiScopeMiddleware", "ScopeMiddleware"]
