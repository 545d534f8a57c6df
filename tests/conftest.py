"""Shared test fixtures for the NDB exporter tests."""

import logging
import os
import re
import sys
import threading
from contextlib import contextmanager
from pathlib import Path

import pytest

# Make the root-level modules importable without installing the project
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

# Keep ndb_exporter from reading a real settings.yml (and connecting) at import
os.environ.setdefault("NDB_EXPORTER_SETTINGS", str(Path(__file__).resolve().parent / "no-such-settings.yml"))

from ndb_collector.context import ScrapeContext  # noqa: E402
from ndb_collector.errors import QueryError  # noqa: E402
from ndb_collector.sink import MetricSink  # noqa: E402

_TABLE_RE = re.compile(r"FROM\s+([\w.]+)", re.IGNORECASE)


class FakeDatabase:
    """
    Stand-in for ndb_collector.database.Database. Rows are served per
    table name parsed from the query's FROM clause.
    """

    pool_size = 2

    def __init__(self, tables=None, version="8.4.0-cluster", errors=None):
        self.tables = tables or {}
        self.version = version
        self.errors = errors or {}
        self.queries = []
        self.open_results = 0
        self._lock = threading.Lock()

    @contextmanager
    def query(self, ctx, sql):
        ctx.check()
        table = _TABLE_RE.search(sql).group(1)
        with self._lock:
            self.queries.append(table)
        if table in self.errors:
            raise QueryError(sql, self.errors[table])
        with self._lock:
            self.open_results += 1
        try:
            yield self._rows(ctx, self.tables.get(table, []))
        finally:
            with self._lock:
                self.open_results -= 1

    @staticmethod
    def _rows(ctx, rows):
        for row in rows:
            ctx.check()
            yield row

    def engine_version(self, ctx):
        if isinstance(self.version, Exception):
            raise self.version
        return self.version


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def ctx():
    return ScrapeContext(timeout=5)


@pytest.fixture
def sink():
    return MetricSink()


@pytest.fixture
def logger():
    return logging.getLogger("ndb_collector.test")


def metric_map(metrics):
    """{(fq_name, label_values): value} for quick assertions."""
    return {(m.desc.fq_name, m.label_values): m.value for m in metrics}
