"""
Engine Connection Adapters

The harness never talks to a database directly. It goes through the
EngineConnection protocol below, which returns per-call execution counters
alongside each result instead of relying on engine-wide statistics toggles.

Connections are checked out from an EngineFactory as a context manager and
closed on return. DuckDB is the built-in adapter; other engines plug in by
implementing the same two protocols.
"""

import json
import logging
import os
import tempfile
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Protocol, Sequence, Tuple

import duckdb
import pyarrow as pa

from .errors import ExecutionTimeout

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionStats:
    """Counters reported by the engine for one execution."""
    rows: int
    elapsed: Optional[float] = None
    cpu_time: Optional[float] = None
    logical_reads: Optional[int] = None
    physical_reads: Optional[int] = None


class EngineConnection(Protocol):
    """Protocol for a single engine connection."""

    def execute(self, sql: str, params: Any = None,
                timeout: Optional[float] = None) -> ExecutionStats:
        """Execute SQL, consume the result and return its counters."""
        ...

    def execute_script(self, sql: str) -> None:
        """Execute a statement whose result is not measured (DDL, setup)."""
        ...

    def bulk_insert(self, table: str, columns: Sequence[str],
                    rows: Sequence[Tuple]) -> int:
        """Insert rows atomically and return the number inserted."""
        ...

    def close(self) -> None:
        ...


class EngineFactory(Protocol):
    """Hands out scoped connections."""

    def checkout(self):
        """Context manager yielding an EngineConnection."""
        ...


# ============================================
# DUCKDB
# ============================================

def parse_profile(profile: Dict[str, Any]) -> Tuple[Optional[float], Optional[int]]:
    """Extract (cpu_time, rows_scanned) from a DuckDB JSON profile.

    Newer DuckDB releases report cumulative metrics at the top level; older
    ones only per operator, so fall back to summing the operator tree.
    """
    cpu_time = profile.get("cpu_time")
    scanned = profile.get("cumulative_rows_scanned")
    if scanned is None:
        scanned = _sum_operator_metric(profile, "operator_rows_scanned")
    return (
        float(cpu_time) if cpu_time is not None else None,
        int(scanned) if scanned is not None else None,
    )


def _sum_operator_metric(node: Dict[str, Any], key: str) -> Optional[int]:
    total = None
    for child in node.get("children", []):
        value = child.get(key)
        nested = _sum_operator_metric(child, key)
        for part in (value, nested):
            if part is not None:
                total = (total or 0) + int(part)
    return total


class DuckDBEngine:
    """DuckDB connection adapter.

    Args:
        conn: An open DuckDB connection or cursor. The engine owns it and
            closes it on close().
        profiling: If True, enable JSON profiling so CPU time and rows
            scanned (reported as logical reads) come from DuckDB itself.
            Otherwise CPU time is the process CPU time spent in the call.
    """

    def __init__(self, conn: "duckdb.DuckDBPyConnection", profiling: bool = False):
        self._conn = conn
        self.profiling = profiling
        self._profile_path = None
        if profiling:
            fd, self._profile_path = tempfile.mkstemp(prefix="qb_profile_", suffix=".json")
            os.close(fd)
            self._conn.execute("PRAGMA enable_profiling = 'json'")
            self._conn.execute(f"PRAGMA profiling_output = '{self._profile_path}'")

    def execute(self, sql: str, params: Any = None,
                timeout: Optional[float] = None) -> ExecutionStats:
        timed_out = threading.Event()
        timer = None
        if timeout:
            def _interrupt():
                timed_out.set()
                self._conn.interrupt()
            timer = threading.Timer(timeout, _interrupt)
            timer.daemon = True
            timer.start()

        cpu_start = time.process_time()
        start = time.perf_counter()
        try:
            if params is None:
                self._conn.execute(sql)
            else:
                self._conn.execute(sql, params)
            rows = self._conn.fetchall() if self._conn.description else []
        except Exception as exc:
            if timed_out.is_set():
                raise ExecutionTimeout(timeout) from exc
            raise
        finally:
            if timer is not None:
                timer.cancel()
        elapsed = time.perf_counter() - start
        cpu_time = time.process_time() - cpu_start

        logical_reads = None
        if self.profiling:
            profiled_cpu, logical_reads = self._read_profile()
            if profiled_cpu is not None:
                cpu_time = profiled_cpu

        return ExecutionStats(
            rows=len(rows),
            elapsed=elapsed,
            cpu_time=cpu_time,
            logical_reads=logical_reads,
            physical_reads=None,
        )

    def _read_profile(self) -> Tuple[Optional[float], Optional[int]]:
        try:
            with open(self._profile_path) as f:
                return parse_profile(json.load(f))
        except (OSError, ValueError) as e:
            logger.debug(f"DuckDB profile unavailable: {e}")
            return None, None

    def execute_script(self, sql: str) -> None:
        self._conn.execute(sql)

    def bulk_insert(self, table: str, columns: Sequence[str],
                    rows: Sequence[Tuple]) -> int:
        """Insert one batch through a registered Arrow table (single statement)."""
        if not rows:
            return 0
        arrays = [pa.array(list(values)) for values in zip(*rows)]
        batch = pa.Table.from_arrays(arrays, names=list(columns))
        view = f"_qb_batch_{table.replace('.', '_')}"
        col_str = ", ".join(columns)
        self._conn.register(view, batch)
        try:
            self._conn.execute(f"INSERT INTO {table} ({col_str}) SELECT {col_str} FROM {view}")
        finally:
            self._conn.unregister(view)
        return len(rows)

    def count(self, table: str) -> int:
        return self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    def query(self, sql: str, params: Any = None) -> List[Tuple]:
        """Run an unmeasured query and return its rows."""
        if params is None:
            return self._conn.execute(sql).fetchall()
        return self._conn.execute(sql, params).fetchall()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        if self._profile_path and os.path.exists(self._profile_path):
            os.remove(self._profile_path)
            self._profile_path = None


class DuckDBEngineFactory:
    """Scoped DuckDB connections on one database.

    Each checkout is a cursor on a shared root connection, so every checkout
    sees the same database, including ":memory:".

    Usage:
        with DuckDBEngineFactory("bench.duckdb") as engines:
            with engines.checkout() as engine:
                engine.execute("SELECT 42")
    """

    def __init__(self, database: str = ":memory:", profiling: bool = False):
        self.database = database
        self.profiling = profiling
        self._root = None
        self._lock = threading.Lock()

    def open(self) -> None:
        if self._root is None:
            self._root = duckdb.connect(self.database)
            logger.debug(f"Opened DuckDB database {self.database}")

    def close(self) -> None:
        if self._root is not None:
            self._root.close()
            self._root = None

    def __enter__(self) -> "DuckDBEngineFactory":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @contextmanager
    def checkout(self) -> Iterator[DuckDBEngine]:
        with self._lock:
            self.open()
            cursor = self._root.cursor()
        engine = DuckDBEngine(cursor, profiling=self.profiling)
        try:
            yield engine
        finally:
            engine.close()
