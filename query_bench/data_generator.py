"""
Synthetic Dataset Generator

Produces rows for every table of a SchemaSpec, in dependency order, as lazy
restartable streams. Nothing is materialized: a TableStream rebuilds its
seeded random generator on every iteration, so the same schema + plan always
yields the identical row sequence, and a child's foreign keys are drawn from
the parent's key space (computed from the parent's planned row count).

Usage:
    generator = DataGenerator(schema, plan)
    for table, stream in generator.generate():
        for batch in stream.batches(10_000):
            ...
"""

import json
import logging
import os
import random
from datetime import datetime
from itertools import islice
from typing import Any, Dict, Iterator, List, Tuple

import pyarrow as pa
import pyarrow.parquet as pq

from .schema import GenerationPlan, KeySpace, SchemaSpec, TablePlan, TableSpec

logger = logging.getLogger(__name__)


class TableStream:
    """Finite, restartable lazy sequence of row tuples for one table."""

    def __init__(self, table: TableSpec, plan: TablePlan, parents: Dict[str, KeySpace],
                 sampling: Dict[str, Any]):
        self.table = table
        self.plan = plan
        self._parents = parents
        self._sampling = sampling

    @property
    def columns(self) -> List[str]:
        return self.table.column_names

    def __len__(self) -> int:
        return self.plan.rows

    def __iter__(self) -> Iterator[Tuple]:
        rng = random.Random(self.plan.seed)
        fk_by_column = {fk.column: fk.references for fk in self.table.foreign_keys}

        producers = []
        for column in self.table.columns:
            if column.name in fk_by_column:
                producers.append(self._fk_producer(
                    self._parents[fk_by_column[column.name]],
                    self._sampling[column.name],
                ))
            else:
                producers.append(column.policy.value)

        for index in range(self.plan.rows):
            yield tuple(produce(index, rng) for produce in producers)

    @staticmethod
    def _fk_producer(parent: KeySpace, sampling):
        parent_rows = len(parent)

        def produce(index, rng):
            return parent.key_at(sampling.pick(index, parent_rows, rng))
        return produce

    def batches(self, size: int) -> Iterator[List[Tuple]]:
        if size <= 0:
            raise ValueError(f"Batch size must be positive, got {size}")
        rows = iter(self)
        while True:
            batch = list(islice(rows, size))
            if not batch:
                return
            yield batch


class DataGenerator:
    """Generates a referentially consistent dataset from a schema and plan."""

    def __init__(self, schema: SchemaSpec, plan: GenerationPlan):
        schema.validate()
        plan.validate(schema)
        self.schema = schema
        self.plan = plan
        self.key_spaces = {
            t.name: KeySpace(t.name, t.key_policy, plan.rows(t.name)) for t in schema
        }

    def stream(self, name: str) -> TableStream:
        table = self.schema.table(name)
        parents = {p: self.key_spaces[p] for p in table.parents}
        sampling = {fk.column: self.plan.sampling_for(name, fk.column) for fk in table.foreign_keys}
        return TableStream(table, self.plan[name], parents, sampling)

    def generate(self) -> Iterator[Tuple[TableSpec, TableStream]]:
        """Yield (table, stream) pairs, parents before children."""
        for name in self.schema.topological_order():
            yield self.schema.table(name), self.stream(name)

    def row_counts(self) -> Dict[str, int]:
        return {t.name: self.plan.rows(t.name) for t in self.schema}


# ============================================
# EXPORT FUNCTIONS
# ============================================

ARROW_TYPES = {
    "INTEGER": pa.int64(),
    "INT": pa.int64(),
    "BIGINT": pa.int64(),
    "SMALLINT": pa.int64(),
    "VARCHAR": pa.string(),
    "TEXT": pa.string(),
    "DOUBLE": pa.float64(),
    "FLOAT": pa.float64(),
    "REAL": pa.float64(),
    "DECIMAL": pa.float64(),
    "BOOLEAN": pa.bool_(),
    "DATE": pa.date32(),
    "TIMESTAMP": pa.timestamp("us"),
}


def arrow_schema(table: TableSpec) -> pa.Schema:
    fields = []
    for column in table.columns:
        base_type = column.type.split("(")[0].strip().upper()
        fields.append((column.name, ARROW_TYPES.get(base_type, pa.string())))
    return pa.schema(fields)


def export_to_parquet(generator: DataGenerator, output_dir: str,
                      batch_size: int = 100_000) -> Dict[str, str]:
    """Stream each table to <table>.parquet and write metadata.json."""
    os.makedirs(output_dir, exist_ok=True)

    files = {}
    for table, stream in generator.generate():
        schema = arrow_schema(table)
        filepath = os.path.join(output_dir, f"{table.name}.parquet")
        with pq.ParquetWriter(filepath, schema) as writer:
            for batch in stream.batches(batch_size):
                arrays = [
                    pa.array(list(values), type=schema.field(i).type)
                    for i, values in enumerate(zip(*batch))
                ]
                writer.write_table(pa.Table.from_arrays(arrays, schema=schema))
        size_mb = os.path.getsize(filepath) / 1e6
        logger.info(f"{table.name}.parquet: {len(stream):,} rows ({size_mb:.1f} MB)")
        files[table.name] = filepath

    metadata = {
        "generated_at": datetime.now().isoformat(),
        "tables": [
            {
                "name": t.name,
                "rows": generator.plan.rows(t.name),
                "seed": generator.plan[t.name].seed,
                "file": files[t.name],
            }
            for t in generator.schema
        ],
    }
    with open(os.path.join(output_dir, "metadata.json"), "w") as f:
        json.dump(metadata, f, indent=2)

    return files
