from __future__ import annotations

from functools import wraps
from types import TracebackType
from typing import Any

from django_shed import deadline as deadline_module


class override_clock:
    """
    Pin the monotonic clock deadlines are measured against, so tests can
    control the passing of time. ``now_ms`` is in milliseconds; move it with
    ``advance()`` or by assigning ``now_ms``.

    Acts as either a decorator, or a context manager. If it's a decorator it
    takes a function and returns a wrapped function. If it's a contextmanager
    it's used with the ``with`` statement.
    """

    def __init__(self, now_ms: int = 0) -> None:
        self.now_ms = now_ms

    def __call__(self, test_func: Any) -> Any:
        if isinstance(test_func, type):
            raise TypeError(
                f"{self.__class__.__name__} only decorates functions, "
                + "use it as a context manager in setUp() for classes."
            )

        @wraps(test_func)
        def inner(*args: Any, **kwargs: Any) -> Any:
            with self.__class__(self.now_ms):
                return test_func(*args, **kwargs)

        return inner

    def __enter__(self) -> override_clock:
        self.enable()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_traceback: TracebackType | None,
    ) -> None:
        self.disable()

    def enable(self) -> None:
        self.original = deadline_module.monotonic_ms
        deadline_module.monotonic_ms = self.time_ms

    def disable(self) -> None:
        deadline_module.monotonic_ms = self.original

    def time_ms(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms
