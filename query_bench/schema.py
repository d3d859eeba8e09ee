"""
Schema and Generation Plan Model

SchemaSpec describes the tables to generate: typed columns, a primary key and
foreign keys. GenerationPlan fixes, per table, the row count, the seed and
the foreign-key sampling policy before any row is produced.

Column values come from policies. Every policy is a pure function of the
row index and a seeded random generator, so generation is restartable.
Primary keys must use a key policy (Sequential or Prefixed): their value
depends only on the row index, which lets a child table sample parent keys
without storing them.
"""

import hashlib
import random
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .errors import SchemaError


# ============================================
# COLUMN POLICIES
# ============================================

@dataclass(frozen=True)
class Sequential:
    """Monotonic counter per table: start, start+step, ..."""
    start: int = 1
    step: int = 1
    is_key = True

    def __post_init__(self):
        if self.step == 0:
            raise SchemaError("Sequential policy needs a non-zero step")

    def value(self, index: int, rng: random.Random) -> int:
        return self.start + self.step * index

    def index_of(self, value: Any) -> Optional[int]:
        if not isinstance(value, int):
            return None
        offset = value - self.start
        if offset % self.step:
            return None
        return offset // self.step


@dataclass(frozen=True)
class Prefixed:
    """Deterministic string: prefix + sequence number."""
    prefix: str
    start: int = 1
    is_key = True

    def value(self, index: int, rng: random.Random) -> str:
        return f"{self.prefix}{self.start + index}"

    def index_of(self, value: Any) -> Optional[int]:
        if not isinstance(value, str) or not value.startswith(self.prefix):
            return None
        suffix = value[len(self.prefix):]
        if not suffix.isdigit():
            return None
        return int(suffix) - self.start


@dataclass(frozen=True)
class RandomInt:
    """Seeded bounded integer, inclusive on both ends."""
    low: int = 0
    high: int = 100
    is_key = False

    def value(self, index: int, rng: random.Random) -> int:
        return rng.randint(self.low, self.high)


@dataclass(frozen=True)
class RandomFloat:
    low: float = 0.0
    high: float = 1.0
    precision: int = 2
    is_key = False

    def value(self, index: int, rng: random.Random) -> float:
        return round(rng.uniform(self.low, self.high), self.precision)


@dataclass(frozen=True)
class Choice:
    values: Tuple[Any, ...]
    is_key = False

    def __post_init__(self):
        if not self.values:
            raise SchemaError("Choice policy needs at least one value")
        object.__setattr__(self, "values", tuple(self.values))

    def value(self, index: int, rng: random.Random) -> Any:
        return rng.choice(self.values)


@dataclass(frozen=True)
class DateRange:
    """Random date in [start, start + span_days)."""
    start: date = date(2020, 1, 1)
    span_days: int = 1825
    is_key = False

    def value(self, index: int, rng: random.Random) -> date:
        return self.start + timedelta(days=rng.randrange(self.span_days))


# ============================================
# FOREIGN KEY SAMPLING
# ============================================

@dataclass(frozen=True)
class Uniform:
    """Uniform over all parent keys."""
    name = "uniform"

    def pick(self, index: int, parent_rows: int, rng: random.Random) -> int:
        return rng.randrange(parent_rows)


@dataclass(frozen=True)
class RoundRobin:
    """Cycle through parent keys in order."""
    name = "sequential"

    def pick(self, index: int, parent_rows: int, rng: random.Random) -> int:
        return index % parent_rows


@dataclass(frozen=True)
class Skewed:
    """hot_weight of the references go to the first hot_fraction of parents."""
    hot_fraction: float = 0.2
    hot_weight: float = 0.8
    name = "skewed"

    def __post_init__(self):
        if not 0 < self.hot_fraction <= 1 or not 0 <= self.hot_weight <= 1:
            raise SchemaError("Skewed sampling needs 0 < hot_fraction <= 1 and 0 <= hot_weight <= 1")

    def pick(self, index: int, parent_rows: int, rng: random.Random) -> int:
        hot = max(1, int(parent_rows * self.hot_fraction))
        if hot >= parent_rows or rng.random() < self.hot_weight:
            return rng.randrange(hot)
        return rng.randrange(hot, parent_rows)


SAMPLING_POLICIES = {
    "uniform": Uniform,
    "sequential": RoundRobin,
    "skewed": Skewed,
}


# ============================================
# SCHEMA
# ============================================

@dataclass(frozen=True)
class Column:
    name: str
    type: str = "INTEGER"
    policy: Any = None


@dataclass(frozen=True)
class ForeignKey:
    """column references another table's primary key."""
    column: str
    references: str
    ref_column: Optional[str] = None


@dataclass(frozen=True)
class TableSpec:
    name: str
    columns: Tuple[Column, ...]
    primary_key: str
    foreign_keys: Tuple[ForeignKey, ...] = ()

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def column(self, name: str) -> Column:
        for c in self.columns:
            if c.name == name:
                return c
        raise SchemaError(f"Table '{self.name}' has no column '{name}'")

    @property
    def key_policy(self):
        return self.column(self.primary_key).policy

    @property
    def parents(self) -> List[str]:
        seen = []
        for fk in self.foreign_keys:
            if fk.references not in seen:
                seen.append(fk.references)
        return seen


@dataclass(frozen=True)
class SchemaSpec:
    """Ordered table definitions. Parents must come before children."""
    tables: Tuple[TableSpec, ...]

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        defined: Dict[str, TableSpec] = {}
        all_names = {t.name for t in self.tables}
        for table in self.tables:
            if table.name in defined:
                raise SchemaError(f"Duplicate table '{table.name}'")
            names = table.column_names
            if not names:
                raise SchemaError(f"Table '{table.name}' has no columns")
            if len(set(names)) != len(names):
                raise SchemaError(f"Table '{table.name}' has duplicate column names")
            if table.primary_key not in names:
                raise SchemaError(
                    f"Primary key '{table.primary_key}' is not a column of '{table.name}'"
                )
            if not getattr(table.key_policy, "is_key", False):
                raise SchemaError(
                    f"Primary key '{table.name}.{table.primary_key}' needs a key policy "
                    f"(sequential or prefixed)"
                )

            fk_columns = set()
            for fk in table.foreign_keys:
                if fk.column not in names:
                    raise SchemaError(
                        f"Foreign key column '{fk.column}' is not a column of '{table.name}'"
                    )
                if fk.column in fk_columns:
                    raise SchemaError(f"Column '{table.name}.{fk.column}' has two foreign keys")
                fk_columns.add(fk.column)
                if fk.references not in defined:
                    if fk.references == table.name or fk.references in all_names:
                        raise SchemaError(
                            f"'{table.name}.{fk.column}' references '{fk.references}', which is "
                            f"not defined earlier (foreign keys must be acyclic)"
                        )
                    raise SchemaError(
                        f"'{table.name}.{fk.column}' references undefined table '{fk.references}'"
                    )
                parent = defined[fk.references]
                ref_column = fk.ref_column or parent.primary_key
                if ref_column not in parent.column_names:
                    raise SchemaError(
                        f"'{table.name}.{fk.column}' references undefined column "
                        f"'{fk.references}.{ref_column}'"
                    )
                if ref_column != parent.primary_key:
                    raise SchemaError(
                        f"'{table.name}.{fk.column}' must reference the primary key of "
                        f"'{fk.references}' ({parent.primary_key}), not '{ref_column}'"
                    )
                if fk.column == table.primary_key:
                    raise SchemaError(f"Primary key '{table.name}.{fk.column}' cannot be a foreign key")

            for column in table.columns:
                if column.name in fk_columns:
                    if column.policy is not None:
                        raise SchemaError(
                            f"Foreign key column '{table.name}.{column.name}' takes its values "
                            f"from the parent and cannot have its own policy"
                        )
                elif column.policy is None:
                    raise SchemaError(f"Column '{table.name}.{column.name}' has no policy")

            defined[table.name] = table

    def __iter__(self) -> Iterator[TableSpec]:
        return iter(self.tables)

    def __len__(self) -> int:
        return len(self.tables)

    def table(self, name: str) -> TableSpec:
        for t in self.tables:
            if t.name == name:
                return t
        raise SchemaError(f"Undefined table '{name}'")

    def children(self, name: str) -> List[str]:
        return [t.name for t in self.tables if name in t.parents]

    def topological_order(self) -> List[str]:
        """Kahn's algorithm, ties broken by declaration order."""
        pending = {t.name: set(t.parents) for t in self.tables}
        order = []
        while pending:
            ready = [t.name for t in self.tables if t.name in pending and not pending[t.name]]
            if not ready:
                raise SchemaError(f"Cyclic foreign keys among {sorted(pending)}")
            for name in ready:
                order.append(name)
                del pending[name]
            for parents in pending.values():
                parents.difference_update(ready)
        return order


# ============================================
# GENERATION PLAN
# ============================================

def derive_seed(base_seed: int, table: str) -> int:
    """Stable per-table seed from a base seed."""
    digest = hashlib.md5(f"{base_seed}:{table}".encode()).hexdigest()
    return int(digest[:8], 16)


@dataclass(frozen=True)
class TablePlan:
    rows: int
    seed: int
    fk_sampling: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GenerationPlan:
    tables: Dict[str, TablePlan]

    @classmethod
    def build(cls, schema: SchemaSpec, rows: Dict[str, int], seed: int = 42,
              sampling: Optional[Dict[str, Dict[str, Any]]] = None) -> "GenerationPlan":
        """Plan every table with derived seeds and uniform FK sampling by default."""
        sampling = sampling or {}
        tables = {}
        for table in schema:
            if table.name not in rows:
                raise SchemaError(f"No row count planned for table '{table.name}'")
            fk_sampling = {fk.column: Uniform() for fk in table.foreign_keys}
            fk_sampling.update(sampling.get(table.name, {}))
            tables[table.name] = TablePlan(
                rows=rows[table.name],
                seed=derive_seed(seed, table.name),
                fk_sampling=fk_sampling,
            )
        return cls(tables=tables)

    def __getitem__(self, table: str) -> TablePlan:
        return self.tables[table]

    def rows(self, table: str) -> int:
        return self.tables[table].rows

    def validate(self, schema: SchemaSpec) -> None:
        for table in schema:
            plan = self.tables.get(table.name)
            if plan is None:
                raise SchemaError(f"No generation plan for table '{table.name}'")
            if plan.rows < 0:
                raise SchemaError(f"Negative row count for table '{table.name}'")
            fk_columns = {fk.column for fk in table.foreign_keys}
            for column in plan.fk_sampling:
                if column not in fk_columns:
                    raise SchemaError(
                        f"Sampling policy given for '{table.name}.{column}', which is not a foreign key"
                    )
            for fk in table.foreign_keys:
                if plan.rows > 0 and self.tables[fk.references].rows == 0:
                    raise SchemaError(
                        f"'{table.name}.{fk.column}' must sample from '{fk.references}', "
                        f"which has zero planned rows"
                    )
        extra = set(self.tables) - {t.name for t in schema}
        if extra:
            raise SchemaError(f"Plan names undefined table(s): {', '.join(sorted(extra))}")

    def sampling_for(self, table: str, column: str):
        return self.tables[table].fk_sampling.get(column) or Uniform()


@dataclass(frozen=True)
class KeySpace:
    """Primary-key values of a table with a fixed row count, computed on demand."""
    table: str
    policy: Any
    rows: int

    def key_at(self, index: int) -> Any:
        if not 0 <= index < self.rows:
            raise IndexError(f"Key index {index} out of range for '{self.table}' ({self.rows} rows)")
        return self.policy.value(index, None)

    def __len__(self) -> int:
        return self.rows

    def __contains__(self, value: Any) -> bool:
        index = self.policy.index_of(value)
        return index is not None and 0 <= index < self.rows

    def __iter__(self) -> Iterator[Any]:
        for i in range(self.rows):
            yield self.key_at(i)


def sampling_policy(name: str, **options) -> Any:
    """Build a foreign key sampling policy by name."""
    try:
        cls = SAMPLING_POLICIES[name]
    except KeyError:
        raise SchemaError(
            f"Unknown sampling policy '{name}' (expected one of {', '.join(SAMPLING_POLICIES)})"
        ) from None
    return cls(**options)
