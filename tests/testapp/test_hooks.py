from __future__ import annotations

from types import SimpleNamespace
from unittest import mock

import pytest
from django.contrib.contenttypes.models import ContentType
from django.db import connection
from django.test import SimpleTestCase, TestCase

from django_shed.deadline import deadline
from django_shed.exceptions import Timeout
from django_shed.hooks import (
    deadline_check_hook,
    hooks_for,
    install_hooks,
    max_execution_time_hook,
    statement_timeout_hook,
)
from django_shed.test.utils import override_clock


class InstalledHooksTests(TestCase):
    def test_installed(self):
        assert connection.execute_wrappers[0] is deadline_check_hook

    def test_no_deadline(self):
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            assert cursor.fetchone() == (1,)

    @override_clock()
    def test_time_left(self):
        with deadline(1000), connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            assert cursor.fetchone() == (1,)

    @override_clock()
    def test_expired(self):
        with deadline(0), connection.cursor() as cursor:
            with pytest.raises(Timeout):
                cursor.execute("SELECT 1")

    @override_clock()
    def test_orm_query(self):
        with deadline(0):
            with pytest.raises(Timeout):
                ContentType.objects.count()
        assert ContentType.objects.count() >= 0


def make_context(vendor="postgresql", mariadb=False):
    return {
        "connection": SimpleNamespace(
            vendor=vendor, mysql_is_mariadb=mariadb, shed_statement_timeout=None
        ),
        "cursor": SimpleNamespace(cursor=mock.Mock()),
    }


class StatementTimeoutHookTests(SimpleTestCase):
    def setUp(self):
        self.execute = mock.Mock(return_value="executed")
        self.context = make_context()
        self.raw_cursor = self.context["cursor"].cursor

    def run_hook(self):
        return statement_timeout_hook(
            self.execute, "SELECT 1", None, False, self.context
        )

    def test_no_deadline(self):
        assert self.run_hook() == "executed"
        self.raw_cursor.execute.assert_not_called()
        self.execute.assert_called_once_with("SELECT 1", None, False, self.context)

    @override_clock()
    def test_deadline(self):
        with deadline(750):
            self.run_hook()
        self.raw_cursor.execute.assert_called_once_with("SET statement_timeout = 750")
        assert self.context["connection"].shed_statement_timeout == 750

    @override_clock()
    def test_expired_deadline_still_bounded(self):
        with deadline(0):
            self.run_hook()
        self.raw_cursor.execute.assert_called_once_with("SET statement_timeout = 1")

    @override_clock()
    def test_reset_once_after_deadline(self):
        with deadline(750):
            self.run_hook()
        self.run_hook()
        self.run_hook()

        assert self.raw_cursor.execute.call_args_list == [
            mock.call("SET statement_timeout = 750"),
            mock.call("RESET statement_timeout"),
        ]
        assert self.context["connection"].shed_statement_timeout is None


class MaxExecutionTimeHookTests(SimpleTestCase):
    def setUp(self):
        self.execute = mock.Mock(return_value="executed")

    def run_hook(self, sql, mariadb=False, many=False):
        context = make_context("mysql", mariadb=mariadb)
        max_execution_time_hook(self.execute, sql, (), many, context)
        return self.execute.call_args[0][0]

    def test_no_deadline(self):
        assert self.run_hook("SELECT 1") == "SELECT 1"

    @override_clock()
    def test_mysql(self):
        with deadline(500):
            sql = self.run_hook("SELECT 1")
        assert sql == "SELECT /*+ MAX_EXECUTION_TIME(500) */ 1"

    @override_clock()
    def test_mariadb(self):
        with deadline(500):
            sql = self.run_hook("SELECT 1", mariadb=True)
        assert sql == "SET STATEMENT max_statement_time=0.500 FOR SELECT 1"

    @override_clock()
    def test_executemany_untouched(self):
        sql = "INSERT INTO t1 (a) VALUES (%s)"
        with deadline(500):
            assert self.run_hook(sql, mariadb=True, many=True) == sql
            assert self.run_hook(sql, many=True) == sql


class DeadlineCheckHookTests(SimpleTestCase):
    @override_clock()
    def test_expired_never_executes(self):
        execute = mock.Mock()
        with deadline(0):
            with pytest.raises(Timeout):
                deadline_check_hook(execute, "SELECT 1", None, False, {})
        execute.assert_not_called()


class InstallHooksTests(SimpleTestCase):
    def make_connection(self, vendor):
        return SimpleNamespace(vendor=vendor, execute_wrappers=[])

    def test_hooks_for(self):
        assert hooks_for(self.make_connection("sqlite")) == [deadline_check_hook]
        assert hooks_for(self.make_connection("postgresql")) == [
            deadline_check_hook,
            statement_timeout_hook,
        ]
        assert hooks_for(self.make_connection("mysql")) == [
            deadline_check_hook,
            max_execution_time_hook,
        ]

    def test_outermost(self):
        existing = mock.Mock()
        conn = self.make_connection("postgresql")
        conn.execute_wrappers.append(existing)

        install_hooks(conn)

        assert conn.execute_wrappers == [
            deadline_check_hook,
            statement_timeout_hook,
            existing,
        ]
        assert conn.shed_statement_timeout is None

    def test_idempotent(self):
        conn = self.make_connection("mysql")

        install_hooks(conn)
        install_hooks(conn)

        assert conn.execute_wrappers == [deadline_check_hook, max_execution_time_hook]
