"""
Holds the deadline of the current unit of work (request, task) and answers
how much of its budget is left. The deadline is stored in a ContextVar so
every thread and asyncio task sees its own value.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from contextvars import ContextVar
from functools import wraps
from types import TracebackType
from typing import Any, Callable, Generator, Optional

from django_shed.exceptions import Timeout


# Swapped out by django_shed.test.utils.override_clock
def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


_deadline: ContextVar[Optional[int]] = ContextVar("django_shed_deadline", default=None)


class DeadlineContext:
    """
    Arithmetic over an absolute deadline on the monotonic clock, in
    milliseconds. A deadline may only be tightened unless ``force`` is
    given.
    """

    def __init__(
        self,
        var: ContextVar[Optional[int]] | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        if var is None:
            var = _deadline
        self.var = var
        self._clock = clock

    def now_ms(self) -> int:
        if self._clock is not None:
            return self._clock()
        return monotonic_ms()

    def deadline_ms(self) -> int | None:
        return self.var.get()

    def is_set(self) -> bool:
        return self.var.get() is not None

    def set(self, duration_ms: int, force: bool = False) -> None:
        if duration_ms < 0:
            raise ValueError(f"duration_ms must be non-negative, got {duration_ms}")

        candidate = self.now_ms() + int(duration_ms)
        current = self.var.get()
        if current is None or force or candidate < current:
            self.var.set(candidate)

    def clear(self) -> None:
        self.var.set(None)

    def time_left_ms(self) -> int | None:
        current = self.var.get()
        if current is None:
            return None
        return max(0, current - self.now_ms())

    def time_left(self) -> bool:
        current = self.var.get()
        if current is None:
            return True
        return self.now_ms() < current

    def ensure_time_left(self) -> None:
        if not self.time_left():
            raise Timeout("Deadline exceeded")

    @contextmanager
    def scope(
        self, duration_ms: int | None = None, force: bool = False
    ) -> Generator[DeadlineContext, None, None]:
        """
        Apply ``duration_ms`` for the length of the block, restoring whatever
        deadline was there before on every way out of it.
        """
        token = self.var.set(self.var.get())
        try:
            if duration_ms is not None:
                self.set(duration_ms, force=force)
            yield self
        finally:
            self.var.reset(token)


current_deadline = DeadlineContext()


def timeout_set() -> bool:
    return current_deadline.is_set()


def with_timeout(duration_ms: int, force: bool = False) -> None:
    current_deadline.set(duration_ms, force=force)


def clear_timeout() -> None:
    current_deadline.clear()


def time_left_ms() -> int | None:
    return current_deadline.time_left_ms()


def time_left() -> bool:
    return current_deadline.time_left()


def ensure_time_left() -> None:
    current_deadline.ensure_time_left()


class deadline:
    """
    Scope a budget of ``duration_ms`` milliseconds around a block of code.
    The budget can only shrink an existing deadline unless ``force`` is
    passed, and the previous deadline is restored afterwards.

    Acts as either a decorator, or a context manager.
    """

    def __init__(
        self,
        duration_ms: int,
        force: bool = False,
        context: DeadlineContext | None = None,
    ) -> None:
        self.duration_ms = duration_ms
        self.force = force
        self.context = current_deadline if context is None else context
        self._scopes: list[Any] = []

    def __enter__(self) -> DeadlineContext:
        scope = self.context.scope(self.duration_ms, force=self.force)
        self._scopes.append(scope)
        return scope.__enter__()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_traceback: TracebackType | None,
    ) -> None:
        scope = self._scopes.pop()
        scope.__exit__(exc_type, exc_value, exc_traceback)

    def __call__(self, func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        def inner(*args: Any, **kwargs: Any) -> Any:
            with self.__class__(self.duration_ms, self.force, self.context):
                return func(*args, **kwargs)

        return inner
