# Query Benchmark Harness
"""
Benchmark harness for SQL query variants on synthetic data.

Components:
- schema / data_generator: deterministic, referentially consistent datasets
- loaders: batched, dependency-ordered bulk loading
- registry: named baseline / candidate query variants
- benchmark: warm-up + measured execution runs
- metrics / compare / report: summaries and baseline comparisons
"""

from .benchmark import BenchmarkConfig, ExecutionSample, VariantRun, run_variant, run_variants
from .compare import ComparisonResult, compare
from .data_generator import DataGenerator, TableStream
from .errors import (
    ConfigError,
    ExecutionTimeout,
    HarnessError,
    InsufficientSamples,
    LoadFailure,
    NotFound,
    OrderingViolation,
    RunAborted,
    SchemaError,
)
from .loaders import DatasetLoader, TableLoadResult, create_tables
from .metrics import VariantSummary, summarize
from .registry import QueryVariant, VariantRegistry
from .schema import Column, ForeignKey, GenerationPlan, SchemaSpec, TablePlan, TableSpec

__version__ = "0.1.0"
