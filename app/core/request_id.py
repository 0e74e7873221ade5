# app/core/request_id.py
from __future__ import annotations

import contextvars
import uuid
from contextlib import contextmanager
from typing import ContextManager, Iterator, Optional

_request_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("request_id", default=None)
_delivery_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("delivery_id", default=None)


def get_request_id() -> Optional[str]:
    return _request_id_ctx.get()


def get_delivery_id() -> Optional[str]:
    return _delivery_id_ctx.get()


@contextmanager
def _scoped(var: contextvars.ContextVar[Optional[str]], value: Optional[str]) -> Iterator[str]:
    token = var.set(value or uuid.uuid4().hex)
    try:
        yield var.get()
    finally:
        var.reset(token)


def request_id_scope(request_id: Optional[str] = None) -> ContextManager[str]:
    """Bind an inbound request id (generated when absent) for one HTTP request."""
    return _scoped(_request_id_ctx, request_id)


def with_delivery_id(delivery_id: Optional[str] = None) -> ContextManager[str]:
    """
    Eén id per verzonden batch, in de delivery worker:
        with with_delivery_id():
            ... verstuur batch ...
    """
    return _scoped(_delivery_id_ctx, delivery_id)
