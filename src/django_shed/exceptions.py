from __future__ import annotations


class Timeout(Exception):
    """
    Indicates the deadline of the current unit of work was exceeded, either
    before starting some work or while a database query was in progress.
    """


class PreparedStatementCacheExpired(Exception):
    """
    Indicates a cached prepared statement's plan went stale inside a
    transaction, where it cannot be re-prepared and retried.
    """
