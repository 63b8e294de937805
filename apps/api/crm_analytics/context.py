from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from collections.abc import Iterator
from dataclasses import dataclass, replace


@dataclass(frozen=True, slots=True)
class RequestContext:
    correlation_id: str | None = None
    user_id: str | None = None


_request_context: ContextVar[RequestContext] = ContextVar("request_context", default=RequestContext())


def current_context() -> RequestContext:
    return _request_context.get()


def get_correlation_id() -> str | None:
    return _request_context.get().correlation_id


@contextmanager
def bind_request_context(**values: str | None) -> Iterator[RequestContext]:
    """Overlay ``values`` on the current request context until the block exits."""
    context = replace(_request_context.get(), **values)
    token = _request_context.set(context)
    try:
        yield context
    finally:
        _request_context.reset(token)
