"""
api/deps.py

FastAPI dependencies — routes reach the AppContext through app.state
instead of module-level globals.
"""

from __future__ import annotations

from fastapi import Request

from ..aggregation import AggregateStore
from ..context import AppContext


def get_context(request: Request) -> AppContext:
    ctx = getattr(request.app.state, "ctx", None)
    if ctx is None:
        raise RuntimeError("AppContext not initialised — pass it to create_app()")
    return ctx


def get_store(request: Request) -> AggregateStore:
    return get_context(request).store
