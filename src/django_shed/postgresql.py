"""
PostgreSQL support for deadline-bounded queries, built on libpq's
asynchronous API as exposed by psycopg's ``pq`` layer.

Queries run through a ``DeadlineConnection`` while a deadline is set are
sent without blocking, waited on for at most the time left, and cancelled
server-side when the budget runs out, surfacing as ``Timeout``.
"""

from __future__ import annotations

import selectors
import time
from typing import Any

import psycopg
from psycopg import errors, pq
from psycopg.adapt import PyFormat, Transformer

from django_shed.deadline import DeadlineContext, current_deadline
from django_shed.executor import CancellableQueryExecutor, Params, Transform
from django_shed.retry import RetryPolicy, StatementCache

# Raised by the server when a cached plan no longer matches the schema
CACHED_PLAN_SOURCE_FUNCTION = "RevalidateCachedQuery"


def is_cached_plan_failure(exc: BaseException) -> bool:
    return (
        isinstance(exc, errors.FeatureNotSupported)
        and exc.diag.source_function == CACHED_PLAN_SOURCE_FUNCTION
    )


class PGConnection:
    """
    Adapts a ``psycopg.pq.PGconn`` to the non-blocking query API used by
    ``CancellableQueryExecutor``. The psycopg connection owning the PGconn,
    if any, must not be used while a query runs through this adapter.
    """

    cancelled_error = errors.QueryCanceled

    def __init__(
        self,
        pgconn: pq.abc.PGconn,
        adapt_context: psycopg.abc.AdaptContext | None = None,
        encoding: str = "utf-8",
    ) -> None:
        self.pgconn = pgconn
        self.adapt_context = adapt_context
        self.encoding = encoding

    @classmethod
    def from_connection(cls, connection: psycopg.Connection[Any]) -> PGConnection:
        return cls(
            connection.pgconn,
            adapt_context=connection,
            encoding=connection.info.encoding,
        )

    def send(self, query: str, params: Params = None) -> None:
        if params is None:
            self.pgconn.send_query(query.encode(self.encoding))
            return

        tx = Transformer(self.adapt_context)
        values = tx.dump_sequence(params, [PyFormat.AUTO] * len(params))
        self.pgconn.send_query_params(
            query.encode(self.encoding),
            values,
            param_types=tx.types,
            param_formats=tx.formats,
        )

    def send_prepared(self, name: str, params: Params = None) -> None:
        params = params or []
        tx = Transformer(self.adapt_context)
        # Parameter types were inferred by the server at PREPARE time, so
        # only text is safe to send
        values = tx.dump_sequence(params, [PyFormat.TEXT] * len(params))
        self.pgconn.send_query_prepared(
            name.encode(self.encoding), values, param_formats=tx.formats
        )

    def poll(self, timeout: float | None) -> bool:
        """
        Wait until the whole result has arrived or ``timeout`` seconds pass,
        like libpq's ``PQconsumeInput``/``PQisBusy`` loop, waiting on the socket
        with a selector.
        """
        pgconn = self.pgconn
        pgconn.consume_input()
        if not pgconn.is_busy():
            return True

        end = None if timeout is None else time.monotonic() + timeout
        with selectors.DefaultSelector() as selector:
            selector.register(pgconn.socket, selectors.EVENT_READ)
            while True:
                if end is None:
                    wait = None
                else:
                    wait = end - time.monotonic()
                    if wait <= 0:
                        return False

                if selector.select(timeout=wait):
                    pgconn.consume_input()
                    if not pgconn.is_busy():
                        return True

    def fetch_result(self) -> pq.abc.PGresult | None:
        """
        Read every pending result, leaving the connection idle, and return
        the last one. The first error result is raised as a psycopg error.
        """
        last = None
        error = None
        while True:
            result = self.pgconn.get_result()
            if result is None:
                break
            if result.status == pq.ExecStatus.FATAL_ERROR and error is None:
                error = errors.error_from_result(result, encoding=self.encoding)
            last = result

        if error is not None:
            raise error
        return last

    def cancel(self) -> None:
        self.pgconn.get_cancel().cancel()

    def in_transaction(self) -> bool:
        return self.pgconn.transaction_status in (
            pq.TransactionStatus.INTRANS,
            pq.TransactionStatus.INERROR,
        )

    def prepare(self, name: str, query: str) -> None:
        result = self.pgconn.prepare(
            name.encode(self.encoding), query.encode(self.encoding)
        )
        if result.status == pq.ExecStatus.FATAL_ERROR:
            raise errors.error_from_result(result, encoding=self.encoding)

    def deallocate(self, name: str) -> None:
        result = self.pgconn.exec_(b"DEALLOCATE " + name.encode(self.encoding))
        if result.status == pq.ExecStatus.FATAL_ERROR:
            raise errors.error_from_result(result, encoding=self.encoding)

    def rows(self, result: pq.abc.PGresult) -> list[tuple[Any, ...]]:
        tx = Transformer(self.adapt_context)
        tx.set_pgresult(result)
        return tx.load_rows(0, result.ntuples, tuple)


class DeadlineConnection:
    """
    Wraps a connection so its queries respect the current deadline. Without
    a deadline, queries take the ordinary blocking path.

    Attributes not defined here are looked up on the wrapped connection.
    """

    def __init__(
        self,
        connection: PGConnection,
        context: DeadlineContext | None = None,
        statement_cache: StatementCache | None = None,
    ) -> None:
        self.connection = connection
        self.context = current_deadline if context is None else context
        self.executor = CancellableQueryExecutor(connection, self.context)
        if statement_cache is None:
            statement_cache = StatementCache(on_evict=self.deallocate)
        self.statements = statement_cache
        self.retry_policy = RetryPolicy(
            is_recoverable=is_cached_plan_failure,
            in_transaction=connection.in_transaction,
        )

    def __getattr__(self, name: str) -> Any:
        return getattr(self.connection, name)

    def execute(
        self, query: str, params: Params = None, transform: Transform = None
    ) -> Any:
        if not self.context.is_set():
            return self._blocking(
                lambda: self.connection.send(query, params), transform
            )
        return self.executor.execute(query, params, transform)

    def execute_prepared(
        self, name: str, params: Params = None, transform: Transform = None
    ) -> Any:
        if not self.context.is_set():
            return self._blocking(
                lambda: self.connection.send_prepared(name, params), transform
            )
        return self.executor.execute_prepared(name, params, transform)

    def execute_cached(
        self, query: str, params: Params = None, transform: Transform = None
    ) -> Any:
        """
        Execute ``query`` through a prepared statement, preparing it on first
        use. A statement whose cached plan expired is re-prepared and the
        query retried once, unless inside a transaction.
        """

        def operation() -> Any:
            name = self.statements.get(query)
            if name is None:
                name = self.statements.next_name()
                self.prepare(name, query)
                self.statements.add(query, name)
            return self.execute_prepared(name, params, transform)

        return self.retry_policy.run(operation, lambda: self.statements.delete(query))

    def prepare(self, name: str, query: str) -> None:
        if self.context.is_set():
            self.context.ensure_time_left()
        self.connection.prepare(name, query)

    def deallocate(self, name: str) -> None:
        self.connection.deallocate(name)

    def in_transaction(self) -> bool:
        return self.connection.in_transaction()

    def _blocking(self, send: Any, transform: Transform) -> Any:
        send()
        self.connection.poll(None)
        result = self.connection.fetch_result()
        if transform is not None:
            return transform(result)
        return result
