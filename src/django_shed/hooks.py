"""
Database execute wrappers bounding Django's queries by the current deadline.
Django's database drivers have no cancellable asynchronous API, so these are
the fallback strategies: fail fast before a query when the budget is spent,
and hand the remaining budget to the server as a per-query limit where the
backend has one.
"""

from __future__ import annotations

from typing import Any, Callable

from django.db.backends.base.base import BaseDatabaseWrapper

from django_shed.deadline import ensure_time_left, time_left_ms
from django_shed.rewrite_query import add_max_execution_time, add_max_statement_time

ExecuteWrapper = Callable[..., Any]


def deadline_check_hook(
    execute: Callable[[str, Any, bool, dict[str, Any]], Any],
    sql: str,
    params: Any,
    many: bool,
    context: dict[str, Any],
) -> Any:
    ensure_time_left()
    return execute(sql, params, many, context)


def statement_timeout_hook(
    execute: Callable[[str, Any, bool, dict[str, Any]], Any],
    sql: str,
    params: Any,
    many: bool,
    context: dict[str, Any],
) -> Any:
    """
    Set PostgreSQL's session statement_timeout to the time left before each
    query, and reset it for the first query run without a deadline.
    """
    connection = context["connection"]
    timeout_ms = time_left_ms()
    # The raw cursor, so the SET doesn't pass through the wrappers again
    cursor = context["cursor"].cursor
    if timeout_ms is not None:
        # 0 would disable the timeout
        timeout_ms = max(1, timeout_ms)
        cursor.execute(f"SET statement_timeout = {int(timeout_ms)}")
        connection.shed_statement_timeout = timeout_ms
    elif getattr(connection, "shed_statement_timeout", None) is not None:
        cursor.execute("RESET statement_timeout")
        connection.shed_statement_timeout = None
    return execute(sql, params, many, context)


def max_execution_time_hook(
    execute: Callable[[str, Any, bool, dict[str, Any]], Any],
    sql: str,
    params: Any,
    many: bool,
    context: dict[str, Any],
) -> Any:
    timeout_ms = time_left_ms()
    # A rewritten INSERT no longer matches the driver's multi-row executemany()
    if timeout_ms is not None and not many:
        if context["connection"].mysql_is_mariadb:
            sql = add_max_statement_time(sql, timeout_ms)
        else:
            sql = add_max_execution_time(sql, timeout_ms)
    return execute(sql, params, many, context)


VENDOR_HOOKS: dict[str, ExecuteWrapper] = {
    "postgresql": statement_timeout_hook,
    "mysql": max_execution_time_hook,
}


def hooks_for(connection: BaseDatabaseWrapper) -> list[ExecuteWrapper]:
    hooks = [deadline_check_hook]
    vendor_hook = VENDOR_HOOKS.get(connection.vendor)
    if vendor_hook is not None:
        hooks.append(vendor_hook)
    return hooks


def install_hooks(connection: BaseDatabaseWrapper, **kwargs: Any) -> None:
    """
    Rather than use the documented API of the `execute_wrapper()` context
    manager, directly insert the hooks, outermost first, so they stay in
    place for the connection's lifetime. Installing twice is a no-op.
    """
    # A new database session starts with the server's default timeout
    connection.shed_statement_timeout = None
    for hook in reversed(hooks_for(connection)):
        if hook not in connection.execute_wrappers:
            connection.execute_wrappers.insert(0, hook)
