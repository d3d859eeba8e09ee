"""
Experiment Configuration

Reads an experiment definition from YAML: the schema and generation plan,
the query variants and the run settings. Every setting travels in the
returned HarnessConfig; nothing is kept in module state.

Example:
    database: bench.duckdb
    seed: 42
    measured_iterations: 10
    tables:
      - name: customers
        rows: 1000
        primary_key: customer_id
        columns:
          - {name: customer_id, type: INTEGER, policy: sequential}
    variants:
      - {name: scan, tag: baseline, sql: "SELECT COUNT(*) FROM customers"}
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

import yaml

from .benchmark import BenchmarkConfig
from .errors import ConfigError
from .registry import QueryVariant, VariantRegistry
from .schema import (
    Choice,
    Column,
    DateRange,
    ForeignKey,
    GenerationPlan,
    Prefixed,
    RandomFloat,
    RandomInt,
    SchemaSpec,
    Sequential,
    TablePlan,
    TableSpec,
    sampling_policy,
)


@dataclass(frozen=True)
class HarnessConfig:
    schema_spec: SchemaSpec
    generation_plan: GenerationPlan
    variants: List[QueryVariant] = field(default_factory=list)
    database: str = ":memory:"
    batch_size: int = 10_000
    warmup_iterations: int = 2
    measured_iterations: int = 10
    per_execution_timeout: Optional[float] = None
    low_confidence_threshold: float = 0.25
    min_samples: int = 5
    parallel_table_load: bool = False
    max_load_retries: int = 3
    retry_backoff: float = 0.5
    concurrent_variants: bool = False
    profiling: bool = False
    params: Any = None

    def benchmark_config(self) -> BenchmarkConfig:
        return BenchmarkConfig(
            warmup_iterations=self.warmup_iterations,
            measured_iterations=self.measured_iterations,
            per_execution_timeout=self.per_execution_timeout,
            low_confidence_threshold=self.low_confidence_threshold,
            min_samples=self.min_samples,
            concurrent_variants=self.concurrent_variants,
        )

    def registry(self) -> VariantRegistry:
        return VariantRegistry(self.variants)


# ============================================
# PARSING
# ============================================

def _require(mapping: Dict[str, Any], key: str, where: str) -> Any:
    if not isinstance(mapping, dict):
        raise ConfigError(f"{where} must be a mapping")
    if key not in mapping:
        raise ConfigError(f"{where}: missing '{key}'")
    return mapping[key]


def _as_int(value: Any, key: str, where: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{where}: '{key}' must be an integer, got {value!r}") from e


def parse_policy(options: Dict[str, Any], where: str):
    name = options.get("policy")
    if name is None:
        return None
    try:
        if name == "sequential":
            return Sequential(start=options.get("start", 1), step=options.get("step", 1))
        if name == "prefixed":
            return Prefixed(prefix=_require(options, "prefix", where), start=options.get("start", 1))
        if name == "random_int":
            return RandomInt(low=options.get("low", 0), high=options.get("high", 100))
        if name == "random_float":
            return RandomFloat(low=options.get("low", 0.0), high=options.get("high", 1.0),
                               precision=options.get("precision", 2))
        if name == "choice":
            return Choice(values=tuple(_require(options, "values", where)))
        if name == "date":
            start = options.get("start", date(2020, 1, 1))
            if isinstance(start, str):
                start = date.fromisoformat(start)
            return DateRange(start=start, span_days=options.get("span_days", 1825))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{where}: invalid policy options: {e}") from e
    raise ConfigError(f"{where}: unknown policy '{name}'")


def parse_schema(tables: List[Dict[str, Any]], seed: int = 42):
    """Build (SchemaSpec, GenerationPlan) from the 'tables' section."""
    if not isinstance(tables, list) or not tables:
        raise ConfigError("'tables' must be a non-empty list")

    specs = []
    rows = {}
    sampling = {}
    seeds = {}
    for i, t in enumerate(tables):
        name = _require(t, "name", f"tables[{i}]")
        where = f"table '{name}'"
        columns = tuple(
            Column(
                name=_require(c, "name", f"{where} column"),
                type=c.get("type", "INTEGER"),
                policy=parse_policy(c, f"{where} column '{c.get('name')}'"),
            )
            for c in _require(t, "columns", where)
        )
        foreign_keys = []
        for fk in t.get("foreign_keys", []):
            column = _require(fk, "column", f"{where} foreign key")
            foreign_keys.append(ForeignKey(
                column=column,
                references=_require(fk, "references", f"{where} foreign key"),
                ref_column=fk.get("ref_column"),
            ))
            options = {k: v for k, v in fk.items()
                       if k not in ("column", "references", "ref_column", "sampling")}
            try:
                policy = sampling_policy(fk.get("sampling", "uniform"), **options)
            except TypeError as e:
                raise ConfigError(
                    f"{where} foreign key '{column}': invalid sampling option(s) "
                    f"{', '.join(sorted(options))}: {e}"
                ) from e
            sampling.setdefault(name, {})[column] = policy
        specs.append(TableSpec(
            name=name,
            columns=columns,
            primary_key=_require(t, "primary_key", where),
            foreign_keys=tuple(foreign_keys),
        ))
        rows[name] = _as_int(_require(t, "rows", where), "rows", where)
        if "seed" in t:
            seeds[name] = _as_int(t["seed"], "seed", where)

    schema = SchemaSpec(tables=tuple(specs))
    plan = GenerationPlan.build(schema, rows, seed=seed, sampling=sampling)
    if seeds:
        plan = GenerationPlan(tables={
            name: TablePlan(rows=p.rows, seed=seeds.get(name, p.seed), fk_sampling=p.fk_sampling)
            for name, p in plan.tables.items()
        })
    plan.validate(schema)
    return schema, plan


def parse_variants(variants: List[Dict[str, Any]]) -> List[QueryVariant]:
    parsed = []
    for i, v in enumerate(variants or []):
        where = f"variants[{i}]"
        parsed.append(QueryVariant(
            name=_require(v, "name", where),
            sql=_require(v, "sql", where),
            tag=v.get("tag", "candidate"),
            params=v.get("params"),
            setup=tuple(v.get("setup", [])),
            teardown=tuple(v.get("teardown", [])),
            description=v.get("description", ""),
        ))
    return parsed


def parse_config(config: Dict[str, Any]) -> HarnessConfig:
    if not isinstance(config, dict):
        raise ConfigError("Configuration must be a mapping")
    schema, plan = parse_schema(_require(config, "tables", "config"), seed=config.get("seed", 42))
    timeout = config.get("per_execution_timeout")
    try:
        return HarnessConfig(
            schema_spec=schema,
            generation_plan=plan,
            variants=parse_variants(config.get("variants", [])),
            database=config.get("database", ":memory:"),
            batch_size=int(config.get("batch_size", 10_000)),
            warmup_iterations=int(config.get("warmup_iterations", 2)),
            measured_iterations=int(config.get("measured_iterations", 10)),
            per_execution_timeout=float(timeout) if timeout is not None else None,
            low_confidence_threshold=float(config.get("low_confidence_threshold", 0.25)),
            min_samples=int(config.get("min_samples", 5)),
            parallel_table_load=bool(config.get("parallel_table_load", False)),
            max_load_retries=int(config.get("max_load_retries", 3)),
            retry_backoff=float(config.get("retry_backoff", 0.5)),
            concurrent_variants=bool(config.get("concurrent_variants", False)),
            profiling=bool(config.get("profiling", False)),
            params=config.get("params"),
        )
    except (TypeError, ValueError) as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(f"Invalid setting: {e}") from e


def load_config(path: str) -> HarnessConfig:
    with open(path) as f:
        return parse_config(yaml.safe_load(f))
