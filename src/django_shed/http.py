"""
httpx transports forwarding the current deadline to downstream services: the
remaining budget is sent in the X-Client-Timeout-Ms header and caps the
request's own timeouts.

    client = httpx.Client(transport=DeadlineTransport())
"""

from __future__ import annotations

import httpx

from django_shed.deadline import DeadlineContext, current_deadline
from django_shed.middleware import HTTP_HEADER

TIMEOUT_KEYS = ("connect", "read", "write", "pool")


def request_timeout_ms(request: httpx.Request) -> int | None:
    timeout = request.extensions.get("timeout") or {}
    values = [value for value in timeout.values() if value is not None]
    if not values:
        return None
    return int(max(values) * 1000)


def propagate_deadline(
    request: httpx.Request,
    max_timeout_ms: int | None = None,
    context: DeadlineContext | None = None,
) -> None:
    """
    Set the header and timeouts of ``request`` to the least of its own
    timeout, ``max_timeout_ms`` and the time left, raising Timeout if there
    is no time left.
    """
    if context is None:
        context = current_deadline

    candidates = [request_timeout_ms(request), context.time_left_ms()]
    if max_timeout_ms is not None and max_timeout_ms > 0:
        candidates.append(max_timeout_ms)
    budgets = [value for value in candidates if value is not None]

    context.ensure_time_left()

    if not budgets:
        return

    timeout_ms = min(budgets)
    request.headers[HTTP_HEADER] = str(timeout_ms)

    seconds = timeout_ms / 1000.0
    timeout = request.extensions.get("timeout") or {}
    request.extensions["timeout"] = {
        key: seconds if timeout.get(key) is None else min(timeout[key], seconds)
        for key in TIMEOUT_KEYS
    }


class DeadlineTransport(httpx.BaseTransport):
    def __init__(
        self,
        transport: httpx.BaseTransport | None = None,
        max_timeout_ms: int | None = None,
        context: DeadlineContext | None = None,
    ) -> None:
        self.transport = httpx.HTTPTransport() if transport is None else transport
        self.max_timeout_ms = max_timeout_ms
        self.context = context

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        propagate_deadline(request, self.max_timeout_ms, self.context)
        return self.transport.handle_request(request)

    def close(self) -> None:
        self.transport.close()


class AsyncDeadlineTransport(httpx.AsyncBaseTransport):
    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        max_timeout_ms: int | None = None,
        context: DeadlineContext | None = None,
    ) -> None:
        self.transport = httpx.AsyncHTTPTransport() if transport is None else transport
        self.max_timeout_ms = max_timeout_ms
        self.context = context

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        propagate_deadline(request, self.max_timeout_ms, self.context)
        return await self.transport.handle_async_request(request)

    async def aclose(self) -> None:
        await self.transport.aclose()
