from __future__ import annotations

from typing import Generator

import django
import pytest

import django_shed
from django_shed.deadline import clear_timeout


def pytest_report_header(config):
    dot_version = ".".join(str(x) for x in django.VERSION)
    return (
        "Django version: " + dot_version + "\ndjango-shed version: "
        + django_shed.__version__
    )


@pytest.fixture(autouse=True)
def no_leftover_deadline() -> Generator[None, None, None]:
    yield
    clear_timeout()
