"""
Shared pytest fixtures for query_bench tests.
"""

import threading
from contextlib import contextmanager
from typing import Dict, List

import pytest

from query_bench.engines import ExecutionStats
from query_bench.schema import (
    Column,
    ForeignKey,
    GenerationPlan,
    Prefixed,
    RandomFloat,
    SchemaSpec,
    Sequential,
    TableSpec,
)


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "duckdb: marks tests that run against DuckDB")
    config.addinivalue_line("markers", "slow: marks tests as slow")


class FakeEngine:
    """In-process engine double.

    execute() returns distinct counters per call (call n reports n logical
    reads); bulk_insert() stores rows in the factory's shared tables.
    """

    def __init__(self, factory: "FakeEngineFactory"):
        self.factory = factory
        self.calls = 0
        self.statements: List[str] = []
        self.closed = False

    def execute(self, sql, params=None, timeout=None):
        self.calls += 1
        self.statements.append(sql)
        if self.calls in self.factory.fail_on_call:
            raise RuntimeError(f"engine error on call {self.calls}")
        return ExecutionStats(
            rows=1,
            elapsed=None,
            cpu_time=self.calls / 1000,
            logical_reads=self.calls,
            physical_reads=0,
        )

    def execute_script(self, sql):
        self.statements.append(sql)
        if sql in self.factory.failing_scripts:
            raise RuntimeError(f"script failed: {sql}")

    def bulk_insert(self, table, columns, rows):
        f = self.factory
        with f.lock:
            if f.insert_failures.get(table, 0) > 0:
                f.insert_failures[table] -= 1
                raise RuntimeError(f"transient failure inserting into {table}")
            f.events.append(("insert", table))
            f.tables.setdefault(table, []).extend(rows)
            f.columns[table] = list(columns)
        return len(rows)

    def close(self):
        self.closed = True


class FakeEngineFactory:
    def __init__(self):
        self.lock = threading.Lock()
        self.tables: Dict[str, list] = {}
        self.columns: Dict[str, list] = {}
        self.events: list = []
        self.insert_failures: Dict[str, int] = {}
        self.fail_on_call = set()
        self.failing_scripts = set()
        self.failing_checkouts = set()
        self.checkouts = 0
        self.engines: List[FakeEngine] = []

    @contextmanager
    def checkout(self):
        with self.lock:
            self.checkouts += 1
            if self.checkouts in self.failing_checkouts:
                raise ConnectionError("cannot connect")
            engine = FakeEngine(self)
            self.engines.append(engine)
        try:
            yield engine
        finally:
            engine.close()


@pytest.fixture
def fake_engines():
    return FakeEngineFactory()


@pytest.fixture
def fake_engine(fake_engines):
    return FakeEngine(fake_engines)


@pytest.fixture
def customers_orders_schema():
    return SchemaSpec(tables=(
        TableSpec(
            name="customers",
            columns=(
                Column("customer_id", "INTEGER", Sequential()),
                Column("name", "VARCHAR", Prefixed("customer_")),
            ),
            primary_key="customer_id",
        ),
        TableSpec(
            name="orders",
            columns=(
                Column("order_id", "INTEGER", Sequential()),
                Column("customer_id", "INTEGER"),
                Column("amount", "DOUBLE", RandomFloat(1, 500)),
            ),
            primary_key="order_id",
            foreign_keys=(ForeignKey("customer_id", "customers"),),
        ),
    ))


@pytest.fixture
def customers_orders_plan(customers_orders_schema):
    return GenerationPlan.build(
        customers_orders_schema, {"customers": 1000, "orders": 5000}, seed=42
    )
