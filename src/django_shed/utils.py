from __future__ import annotations

import time
from types import TracebackType
from typing import Generator

from django.db import DEFAULT_DB_ALIAS, connections
from django.db.backends.base.base import BaseDatabaseWrapper


class StopWatch:
    """
    Context manager for timing a block on the monotonic clock
    """

    def __enter__(self) -> StopWatch:
        self.start_time = time.monotonic()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_traceback: TracebackType | None,
    ) -> None:
        self.end_time = time.monotonic()
        self.total_time = self.end_time - self.start_time

    @property
    def elapsed_ms(self) -> int:
        end_time = getattr(self, "end_time", None)
        if end_time is None:
            end_time = time.monotonic()
        return int((end_time - self.start_time) * 1000)


def all_connections() -> Generator[tuple[str, BaseDatabaseWrapper], None, None]:
    conn_names = [DEFAULT_DB_ALIAS] + sorted(set(connections) - {DEFAULT_DB_ALIAS})
    for alias in conn_names:
        yield alias, connections[alias]
