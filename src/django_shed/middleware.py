from __future__ import annotations

import logging
from typing import Any, Callable

from django.conf import settings
from django.http import HttpRequest, HttpResponse
from django.utils.module_loading import import_string

from django_shed.deadline import current_deadline
from django_shed.exceptions import Timeout

logger = logging.getLogger(__name__)

# Remaining client budget in milliseconds, as a non-negative integer
HTTP_HEADER = "X-Client-Timeout-Ms"
META_HEADER = "HTTP_X_CLIENT_TIMEOUT_MS"


def get_setting(name: str) -> Any:
    """
    Read a shed setting that may be given as a dotted import path.
    """
    value = getattr(settings, name, None)
    if isinstance(value, str):
        value = import_string(value)
    return value


def timeout_response(request: HttpRequest) -> HttpResponse:
    view = get_setting("SHED_TIMEOUT_VIEW")
    if view is None:
        return HttpResponse(status=503)
    return view(request)


class DefaultTimeoutMiddleware:
    """
    Give every request an upper bound on its deadline, from the
    SHED_DEFAULT_TIMEOUT_MS setting: milliseconds, or a callable taking the
    request and returning them. Propagated client timeouts can only lower it.
    """

    def __init__(self, get_response: Callable[[HttpRequest], HttpResponse]) -> None:
        self.get_response = get_response

    def __call__(self, request: HttpRequest) -> HttpResponse:
        with current_deadline.scope(self.timeout_ms(request)):
            return self.get_response(request)

    def timeout_ms(self, request: HttpRequest) -> int | None:
        value = get_setting("SHED_DEFAULT_TIMEOUT_MS")
        if callable(value):
            value = value(request)
        if value is None or value <= 0:
            return None
        return int(value)


class PropagateMiddleware:
    """
    Apply the budget a client advertised in the X-Client-Timeout-Ms header to
    the request, less the delta computed by the SHED_DELTA callable. Requests
    with no time left, and those raising Timeout, get the timeout response:
    SHED_TIMEOUT_VIEW, or an empty 503.
    """

    def __init__(self, get_response: Callable[[HttpRequest], HttpResponse]) -> None:
        self.get_response = get_response

    def __call__(self, request: HttpRequest) -> HttpResponse:
        with current_deadline.scope():
            timeout_ms = self.propagated_timeout_ms(request)
            if timeout_ms is not None:
                current_deadline.set(timeout_ms)

            if not current_deadline.time_left():
                return self.shed(request)

            try:
                return self.get_response(request)
            except Timeout:
                return self.shed(request)

    def process_exception(
        self, request: HttpRequest, exception: Exception
    ) -> HttpResponse | None:
        if isinstance(exception, Timeout):
            return self.shed(request)
        return None

    def propagated_timeout_ms(self, request: HttpRequest) -> int | None:
        header = request.META.get(META_HEADER)
        if header is None:
            return None

        try:
            timeout_ms = int(header)
        except ValueError:
            logger.debug("Ignoring invalid %s header %r", HTTP_HEADER, header)
            return None
        if timeout_ms < 0:
            logger.debug("Ignoring negative %s header %r", HTTP_HEADER, header)
            return None

        delta = get_setting("SHED_DELTA")
        if delta is not None:
            timeout_ms -= delta(request)
        return max(0, timeout_ms)

    def shed(self, request: HttpRequest) -> HttpResponse:
        logger.warning(
            "Shedding request %s %s, deadline exceeded", request.method, request.path
        )
        return timeout_response(request)
