from __future__ import annotations

from typing import Any, Callable


class QueryCancelled(Exception):
    pass


class FakeConnection:
    """
    Scripted stand-in for a non-blocking database connection. Each
    fetch_result() returns, or raises, the next of ``outcomes``.
    """

    cancelled_error = QueryCancelled

    def __init__(
        self,
        outcomes: list[Any] | None = None,
        ready: bool = True,
        cancel_error: BaseException | None = None,
        in_transaction: bool = False,
    ) -> None:
        self.outcomes = ["result"] if outcomes is None else list(outcomes)
        self.ready = ready
        self.cancel_error = cancel_error
        self.transaction = in_transaction
        self.calls: list[tuple[Any, ...]] = []
        self.on_fetch: Callable[[], None] | None = None

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    def names(self) -> list[str]:
        return [call[0] for call in self.calls]

    def send(self, query: str, params: Any = None) -> None:
        self.calls.append(("send", query, params))

    def send_prepared(self, name: str, params: Any = None) -> None:
        self.calls.append(("send_prepared", name, params))

    def poll(self, timeout: float | None) -> bool:
        self.calls.append(("poll", timeout))
        return self.ready

    def fetch_result(self) -> Any:
        self.calls.append(("fetch_result",))
        if self.on_fetch is not None:
            self.on_fetch()
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def cancel(self) -> None:
        self.calls.append(("cancel",))
        if self.cancel_error is not None:
            raise self.cancel_error

    def in_transaction(self) -> bool:
        return self.transaction

    def prepare(self, name: str, query: str) -> None:
        self.calls.append(("prepare", name, query))

    def deallocate(self, name: str) -> None:
        self.calls.append(("deallocate", name))
