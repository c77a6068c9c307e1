from __future__ import annotations

from typing import Any, List

from django.conf import settings
from django.core import checks
from django.utils.module_loading import import_string

from django_shed.hooks import VENDOR_HOOKS
from django_shed.utils import all_connections


def register_checks() -> None:
    checks.register(checks.Tags.compatibility)(check_settings)
    checks.register(checks.Tags.database)(check_database_strategies)


def check_settings(**kwargs: Any) -> List[checks.CheckMessage]:
    errors: List[checks.CheckMessage] = []

    default_timeout = getattr(settings, "SHED_DEFAULT_TIMEOUT_MS", None)
    if not _valid_timeout(default_timeout):
        errors.append(default_timeout_error(default_timeout))

    for name in ("SHED_DELTA", "SHED_TIMEOUT_VIEW"):
        value = getattr(settings, name, None)
        if not _valid_callable(value):
            errors.append(callable_setting_error(name, value))

    return errors


def check_database_strategies(**kwargs: Any) -> List[checks.CheckMessage]:
    databases = kwargs.get("databases")
    errors: List[checks.CheckMessage] = []

    if databases is None or not getattr(
        settings, "SHED_DATABASE_INSTRUMENTATION", True
    ):
        return errors
    databases = set(databases)

    for alias, connection in all_connections():
        if alias not in databases:
            continue
        if connection.vendor not in VENDOR_HOOKS:
            errors.append(unbounded_queries_warning(alias, connection.vendor))

    return errors


def _valid_timeout(value: Any) -> bool:
    if value is None or callable(value):
        return True
    if isinstance(value, str):
        return _valid_callable(value)
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _valid_callable(value: Any) -> bool:
    if value is None or callable(value):
        return True
    if not isinstance(value, str):
        return False
    try:
        return callable(import_string(value))
    except ImportError:
        return False


def default_timeout_error(value: Any) -> checks.Error:
    return checks.Error(
        f"SHED_DEFAULT_TIMEOUT_MS is invalid: {value!r}",
        hint=(
            "Set it to a non-negative number of milliseconds, a callable "
            + "taking the request and returning one, or the dotted path of "
            + "such a callable."
        ),
        id="django_shed.E001",
    )


def callable_setting_error(name: str, value: Any) -> checks.Error:
    return checks.Error(
        f"{name} must be a callable or the dotted path of one, got {value!r}",
        id="django_shed.E002",
    )


def unbounded_queries_warning(alias: str, vendor: str) -> checks.Warning:
    return checks.Warning(
        f"Queries on database connection '{alias}' ({vendor}) are only checked "
        + "against the deadline before they start",
        hint=(
            "Only PostgreSQL and MySQL/MariaDB pass the remaining budget to "
            + "the server, so a slow query on this connection can outlive "
            + "its deadline."
        ),
        id="django_shed.W001",
    )
