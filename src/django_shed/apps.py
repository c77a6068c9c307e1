from __future__ import annotations

from django.apps import AppConfig
from django.conf import settings
from django.db.backends.signals import connection_created
from django.utils.translation import gettext_lazy as _

from django_shed.checks import register_checks
from django_shed.hooks import install_hooks
from django_shed.utils import all_connections


class ShedConfig(AppConfig):
    name = "django_shed"
    verbose_name = _("Deadline propagation")

    def ready(self) -> None:
        self.add_database_instrumentation()
        register_checks()

    def add_database_instrumentation(self) -> None:
        if not getattr(settings, "SHED_DATABASE_INSTRUMENTATION", True):
            return
        for _alias, connection in all_connections():
            install_hooks(connection)
        connection_created.connect(install_hooks)
