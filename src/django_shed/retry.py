"""
Recovery for prepared statements whose cached plan the server has declared
stale, e.g. after a schema change. Outside a transaction the statement is
evicted and the whole operation retried once; inside one nothing can be done.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections import OrderedDict
from typing import Any, Callable

from django_shed.exceptions import PreparedStatementCacheExpired

logger = logging.getLogger(__name__)


class StatementCache:
    """
    Maps SQL text to the name of the statement it was prepared as, keeping
    at most ``maxsize`` statements. ``on_evict`` is called with the name of
    every statement deleted or pushed out of the cache, so it can be
    deallocated on the server.
    """

    def __init__(
        self,
        prefix: str = "shed_",
        maxsize: int = 1000,
        on_evict: Callable[[str], None] | None = None,
    ) -> None:
        self.prefix = prefix
        self.maxsize = maxsize
        self.on_evict = on_evict
        self._lock = threading.Lock()
        self._counter = itertools.count(1)
        self._statements: OrderedDict[str, str] = OrderedDict()

    def __contains__(self, sql: str) -> bool:
        with self._lock:
            return sql in self._statements

    def __len__(self) -> int:
        with self._lock:
            return len(self._statements)

    def next_name(self) -> str:
        with self._lock:
            return f"{self.prefix}{next(self._counter)}"

    def get(self, sql: str) -> str | None:
        with self._lock:
            name = self._statements.get(sql)
            if name is not None:
                self._statements.move_to_end(sql)
            return name

    def add(self, sql: str, name: str | None = None) -> str:
        if name is None:
            name = self.next_name()
        with self._lock:
            self._statements[sql] = name
            self._statements.move_to_end(sql)
            evicted = []
            while len(self._statements) > self.maxsize:
                _sql, old_name = self._statements.popitem(last=False)
                evicted.append(old_name)
        for old_name in evicted:
            self._evicted(old_name)
        return name

    def delete(self, sql: str) -> str | None:
        with self._lock:
            name = self._statements.pop(sql, None)
        if name is not None:
            self._evicted(name)
        return name

    def clear(self) -> None:
        """
        Forget every statement without deallocating, e.g. after the session
        they were prepared in has ended.
        """
        with self._lock:
            self._statements.clear()

    def _evicted(self, name: str) -> None:
        if self.on_evict is not None:
            self.on_evict(name)


class RetryPolicy:
    def __init__(
        self,
        is_recoverable: Callable[[BaseException], bool],
        in_transaction: Callable[[], bool],
    ) -> None:
        self.is_recoverable = is_recoverable
        self.in_transaction = in_transaction

    def run(self, operation: Callable[[], Any], evict: Callable[[], Any]) -> Any:
        try:
            return operation()
        except Exception as exc:
            if not self.is_recoverable(exc):
                raise

            # Every statement fails after an error inside a transaction, so
            # a retry there would only hide the original problem
            if self.in_transaction():
                raise PreparedStatementCacheExpired(str(exc)) from exc

            logger.info("Prepared statement plan expired, retrying once: %s", exc)
            evict()

        return operation()
