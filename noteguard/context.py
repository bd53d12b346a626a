"""
NoteGuard — Request Context
============================

What:  Coroutine-local request and session identifiers.
How:   Callers wrap a unit of work in `request_scope()`; ErrorLogger reads the
       current values when it stamps log metadata, so errors raised deep in a
       retry loop still carry the id of the request that caused them.
Who:   Set by the host application; read by `noteguard.monitoring.error_logger`.
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

# Coroutine-local; concurrent requests may share one thread
request_id_var: ContextVar[str] = ContextVar("request_id", default="")
session_id_var: ContextVar[str] = ContextVar("session_id", default="")


def new_request_id() -> str:
    return str(uuid.uuid4())


@contextmanager
def request_scope(
    request_id: Optional[str] = None,
    session_id: Optional[str] = None,
) -> Iterator[str]:
    """
    Bind a request id (and optionally a session id) for the enclosed block.

    Yields:
        The request id in effect, generated when none was given.
    """
    rid = request_id or new_request_id()
    request_token = request_id_var.set(rid)
    session_token = session_id_var.set(session_id) if session_id is not None else None
    try:
        yield rid
    finally:
        request_id_var.reset(request_token)
        if session_token is not None:
            session_id_var.reset(session_token)
