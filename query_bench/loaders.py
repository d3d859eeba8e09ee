"""
Dataset Loader

Streams generated rows into the target engine with batched bulk inserts.
Tables are loaded in dependency order by a topological walk over the schema:
a child starts only after every parent is fully committed, even when
independent tables are loaded in parallel on separate connections.

A failed batch is retried with exponential backoff. Once retries run out the
table load aborts with LoadFailure; rows already committed stay in place and
children of that table are skipped.
"""

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass
from itertools import islice
from typing import Any, Callable, Dict, Iterable, List, Optional

from .data_generator import DataGenerator
from .errors import ConfigError, LoadFailure, OrderingViolation
from .schema import SchemaSpec, TableSpec

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10_000
MAX_BACKOFF_SECONDS = 10.0


@dataclass
class TableLoadResult:
    """Outcome of loading one table."""
    table: str
    status: str  # loaded | failed | skipped
    rows: int = 0
    batches: int = 0
    duration_seconds: float = 0.0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "loaded"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class DatasetLoader:
    """Loads a generated dataset table by table.

    Args:
        engines: EngineFactory handing out one connection per table load.
        batch_size: Rows per bulk insert.
        max_retries: Retries per failed batch before LoadFailure.
        retry_backoff: Initial backoff in seconds, doubled on every retry.
        parallel_table_load: Load tables with no pending parents concurrently.
        max_workers: Thread pool size for parallel loads.
    """

    def __init__(self, engines, batch_size: int = DEFAULT_BATCH_SIZE, max_retries: int = 3,
                 retry_backoff: float = 0.5, parallel_table_load: bool = False,
                 max_workers: int = 4, sleep: Callable[[float], None] = time.sleep):
        if batch_size <= 0:
            raise ConfigError(f"batch_size must be positive, got {batch_size}")
        if max_retries < 0:
            raise ConfigError(f"max_load_retries must be >= 0, got {max_retries}")
        self.engines = engines
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.parallel_table_load = parallel_table_load
        self.max_workers = max_workers
        self._sleep = sleep
        self._committed = set()
        self._lock = threading.Lock()

    @property
    def committed(self) -> frozenset:
        with self._lock:
            return frozenset(self._committed)

    def _insert_with_retry(self, engine, table: TableSpec, batch: List[tuple],
                           rows_committed: int) -> None:
        attempts = 0
        while True:
            attempts += 1
            try:
                engine.bulk_insert(table.name, table.column_names, batch)
                return
            except Exception as e:
                if attempts > self.max_retries:
                    raise LoadFailure(table.name, rows_committed, attempts, e) from e
                delay = min(self.retry_backoff * 2 ** (attempts - 1), MAX_BACKOFF_SECONDS)
                logger.warning(
                    f"Batch insert into {table.name} failed (attempt {attempts}/"
                    f"{self.max_retries + 1}), retrying in {delay:.1f}s: {e}"
                )
                self._sleep(delay)

    def load_table(self, table: TableSpec, rows: Iterable[tuple], engine) -> TableLoadResult:
        """Load one table. Raises OrderingViolation if a parent is not committed."""
        with self._lock:
            missing = [p for p in table.parents if p not in self._committed]
        if missing:
            raise OrderingViolation(table.name, missing)

        start = time.perf_counter()
        rows_committed = 0
        batches = 0
        iterator = iter(rows)
        while True:
            batch = list(islice(iterator, self.batch_size))
            if not batch:
                break
            self._insert_with_retry(engine, table, batch, rows_committed)
            rows_committed += len(batch)
            batches += 1
            logger.debug(f"{table.name}: batch {batches} committed ({rows_committed:,} rows)")

        with self._lock:
            self._committed.add(table.name)
        duration = time.perf_counter() - start
        logger.info(f"Loaded {rows_committed:,} rows into {table.name} ({duration:.1f}s)")
        return TableLoadResult(table.name, "loaded", rows_committed, batches, duration)

    def _load_one(self, generator: DataGenerator, name: str) -> TableLoadResult:
        table = generator.schema.table(name)
        start = time.perf_counter()
        try:
            with self.engines.checkout() as engine:
                return self.load_table(table, generator.stream(name), engine)
        except LoadFailure as e:
            logger.error(str(e))
            return TableLoadResult(
                name, "failed", e.rows_committed,
                duration_seconds=time.perf_counter() - start, error=str(e),
            )
        except OrderingViolation:
            raise
        except Exception as e:
            logger.error(f"Load of {name} failed: {e}")
            return TableLoadResult(
                name, "failed",
                duration_seconds=time.perf_counter() - start, error=f"{type(e).__name__}: {e}",
            )

    def load(self, generator: DataGenerator) -> List[TableLoadResult]:
        """Load every table of the generator's schema. One result per table."""
        order = generator.schema.topological_order()
        results: Dict[str, TableLoadResult] = {}

        def blocked_by(name):
            for parent in generator.schema.table(name).parents:
                result = results.get(parent)
                if result is not None and not result.ok:
                    return parent
            return None

        def skip(name, parent):
            logger.warning(f"Skipping {name}: parent {parent} was not loaded")
            results[name] = TableLoadResult(name, "skipped", error=f"parent table '{parent}' not loaded")

        if not self.parallel_table_load:
            for name in order:
                parent = blocked_by(name)
                if parent:
                    skip(name, parent)
                else:
                    results[name] = self._load_one(generator, name)
            return [results[name] for name in order]

        pending = list(order)
        running = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            while pending or running:
                for name in list(pending):
                    parent = blocked_by(name)
                    if parent:
                        skip(name, parent)
                        pending.remove(name)
                    elif all(p in self.committed for p in generator.schema.table(name).parents):
                        running[pool.submit(self._load_one, generator, name)] = name
                        pending.remove(name)
                if not running:
                    continue
                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    results[running.pop(future)] = future.result()
        return [results[name] for name in order]


# ============================================
# DDL
# ============================================

def table_ddl(table: TableSpec, schema: SchemaSpec, constraints: bool = True) -> str:
    parts = [f"{c.name} {c.type}" for c in table.columns]
    if constraints:
        parts.append(f"PRIMARY KEY ({table.primary_key})")
        for fk in table.foreign_keys:
            ref_column = fk.ref_column or schema.table(fk.references).primary_key
            parts.append(f"FOREIGN KEY ({fk.column}) REFERENCES {fk.references} ({ref_column})")
    return f"CREATE TABLE {table.name} (\n    " + ",\n    ".join(parts) + "\n)"


def create_tables(engine, schema: SchemaSpec, replace: bool = True,
                  constraints: bool = True) -> None:
    """Create all tables, parents first. With replace, existing tables are dropped."""
    if replace:
        drop_tables(engine, schema)
    for name in schema.topological_order():
        engine.execute_script(table_ddl(schema.table(name), schema, constraints))
        logger.debug(f"Created table {name}")


def drop_tables(engine, schema: SchemaSpec) -> None:
    """Drop all tables, children first."""
    for name in reversed(schema.topological_order()):
        engine.execute_script(f"DROP TABLE IF EXISTS {name}")
