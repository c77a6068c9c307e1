"""
Bounds a blocking database call to the remaining deadline by driving the
connection's asynchronous query API: send the query, wait for the result for
at most the time left, and cancel then drain the connection when that runs
out.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Protocol, Sequence

from django_shed.deadline import DeadlineContext, current_deadline
from django_shed.exceptions import Timeout
from django_shed.utils import StopWatch

logger = logging.getLogger(__name__)

Params = Optional[Sequence[Any]]
Transform = Optional[Callable[[Any], Any]]


class AsyncQueryConnection(Protocol):
    """
    The non-blocking query API a connection must offer for its queries to be
    cancelled once their deadline passes. Only one query may be in flight
    per connection.
    """

    cancelled_error: type[BaseException]

    def send(self, query: str, params: Params = None) -> None:
        ...

    def send_prepared(self, name: str, params: Params = None) -> None:
        ...

    def poll(self, timeout: float | None) -> bool:
        """
        Block for up to ``timeout`` seconds (forever if None) waiting for the
        result. Returns False if it timed out.
        """
        ...

    def fetch_result(self) -> Any:
        ...

    def cancel(self) -> None:
        ...

    def in_transaction(self) -> bool:
        ...


class CancellableQueryExecutor:
    def __init__(
        self,
        connection: AsyncQueryConnection,
        context: DeadlineContext | None = None,
    ) -> None:
        self.connection = connection
        self.context = current_deadline if context is None else context

    def execute(
        self, query: str, params: Params = None, transform: Transform = None
    ) -> Any:
        return self._run(lambda: self.connection.send(query, params), transform)

    def execute_prepared(
        self, name: str, params: Params = None, transform: Transform = None
    ) -> Any:
        return self._run(lambda: self.connection.send_prepared(name, params), transform)

    def _run(self, send: Callable[[], None], transform: Transform) -> Any:
        budget_ms = self.context.time_left_ms()
        # Never send once the budget is spent
        self.context.ensure_time_left()

        if budget_ms is None:
            timeout = None
        else:
            timeout = budget_ms / 1000.0

        with StopWatch() as watch:
            send()
            if self.connection.poll(timeout):
                result = self.connection.fetch_result()
            else:
                result = self._cancel(budget_ms, watch)

        if transform is not None:
            return transform(result)
        return result

    def _cancel(self, budget_ms: int | None, watch: StopWatch) -> Any:
        """
        Ask the server to abort the query, then drain the connection so it
        can be reused. Errors other than the cancellation itself propagate.
        """
        self.connection.cancel()
        try:
            # The query may have finished before the cancel reached the server
            return self.connection.fetch_result()
        except self.connection.cancelled_error as exc:
            logger.debug(
                "Query cancelled after %dms with a budget of %sms",
                watch.elapsed_ms,
                budget_ms,
            )
            raise Timeout(
                f"Query cancelled after exceeding {budget_ms}ms budget"
            ) from exc
