"""
auth/context.py -- Deadline-bearing, cancellable scope for store queries.

Every store method accepts an optional QueryContext. Route handlers build one
per request with the configured DB timeout; the background sweep builds its
own. A context is "done" once cancel() was called or its deadline has passed.

query_guard() is how stores honour a context. On SQLite it installs a
progress handler on the raw DBAPI connection, so a statement that is already
running is aborted as soon as the context is done. On other backends the
context is checked before the statement starts. Either way the caller gets
QueryCancelled (a StoreError).

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Optional

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import QueryCancelled, StoreError

# SQLite VM instructions between progress-handler callbacks.
_PROGRESS_INTERVAL = 1000


class QueryContext:
    """Cancellation flag plus an optional monotonic deadline.

    Usage:
        ctx = QueryContext(timeout=5.0)
        store.get(token, ctx)
        ctx.cancel()   # from another thread; in-flight queries abort
    """

    def __init__(self, timeout: Optional[float] = None) -> None:
        self._cancelled = threading.Event()
        self.deadline: Optional[float] = time.monotonic() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def done(self) -> bool:
        return self.cancelled or self.expired()

    def check(self) -> None:
        """Raise QueryCancelled if the context is already done."""
        if self.cancelled:
            raise QueryCancelled("query cancelled")
        if self.expired():
            raise QueryCancelled("query deadline exceeded")


@contextmanager
def query_guard(conn: Connection, ctx: Optional[QueryContext]) -> Iterator[None]:
    """Bind ctx to conn for the duration of the block.

    The progress handler returning non-zero makes SQLite abort the running
    statement with "interrupted"; the caller's except clause sees a
    SQLAlchemy OperationalError, re-checks ctx and reports QueryCancelled.
    """
    if ctx is None:
        yield
        return
    ctx.check()
    raw = conn.connection.dbapi_connection
    set_handler = getattr(raw, "set_progress_handler", None)
    if set_handler is None:
        yield
        return
    set_handler(lambda: 1 if ctx.done() else 0, _PROGRESS_INTERVAL)
    try:
        yield
    finally:
        set_handler(None, 0)


@contextmanager
def scoped_connection(
    engine: Engine, ctx: Optional[QueryContext], what: str, begin: bool = False
) -> Iterator[Connection]:
    """Open a connection (or a transaction when begin=True) bound to ctx.

    SQLAlchemy errors are wrapped in StoreError with `what` as context, or in
    QueryCancelled when ctx tripped. IntegrityError is re-raised unchanged so
    callers can map constraint violations to domain errors.
    """
    try:
        with (engine.begin() if begin else engine.connect()) as conn, query_guard(conn, ctx):
            yield conn
    except IntegrityError:
        raise
    except SQLAlchemyError as exc:
        if ctx is not None and ctx.done():
            raise QueryCancelled(f"{what}: query cancelled") from exc
        raise StoreError(f"failed to {what}: {exc.__class__.__name__}") from exc
