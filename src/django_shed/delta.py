"""
Delta functions measure how long a request waited before reaching the
application, e.g. in a router or web server queue. PropagateMiddleware
subtracts the delta from the budget the client advertised.
"""

from __future__ import annotations

import time

from django.http import HttpRequest

# Set by Heroku's router when it receives a request: UNIX time in ms
REQUEST_START_META_KEY = "HTTP_X_REQUEST_START"


def no_delta(request: HttpRequest) -> int:
    return 0


def heroku_delta(request: HttpRequest) -> int:
    """
    Milliseconds between the Heroku router receiving the request and now.
    Returns 0 when the header is missing or invalid, or lies in the future
    because of clock drift between hosts.
    """
    now_ms = int(time.time() * 1000)
    try:
        started_at_ms = int(request.META.get(REQUEST_START_META_KEY, 0))
    except ValueError:
        return 0

    if started_at_ms <= 0 or started_at_ms > now_ms:
        return 0
    return now_ms - started_at_ms
