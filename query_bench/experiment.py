"""
Experiment Orchestration

One experiment = generate + load the dataset (once), then benchmark the
baseline and every candidate, summarize each run and compare every
candidate against the baseline.

The result is a structured record: per-table load status, per-variant run
status, summaries, comparisons and the errors met along the way. A failing
table or variant never hides the outcome of the others.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .benchmark import BenchmarkConfig, VariantRun, run_variants
from .compare import ComparisonResult, compare
from .config import HarnessConfig
from .data_generator import DataGenerator
from .errors import InsufficientSamples
from .loaders import DatasetLoader, TableLoadResult, create_tables
from .metrics import VariantSummary, summarize
from .registry import VariantRegistry

logger = logging.getLogger(__name__)


@dataclass
class ExperimentResult:
    loads: List[TableLoadResult] = field(default_factory=list)
    runs: List[VariantRun] = field(default_factory=list)
    summaries: Dict[str, VariantSummary] = field(default_factory=dict)
    comparisons: List[ComparisonResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    started_at: str = field(default_factory=lambda: datetime.now().isoformat())
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return (
            not self.errors
            and all(l.ok for l in self.loads)
            and all(r.ok for r in self.runs)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at,
            "duration_seconds": self.duration_seconds,
            "loads": [l.to_dict() for l in self.loads],
            "runs": [r.to_dict() for r in self.runs],
            "summaries": {name: s.to_dict() for name, s in self.summaries.items()},
            "comparisons": [c.to_dict() for c in self.comparisons],
            "errors": list(self.errors),
        }


def prepare_dataset(config: HarnessConfig, engines) -> List[TableLoadResult]:
    """Create the tables and load the generated dataset."""
    generator = DataGenerator(config.schema_spec, config.generation_plan)
    with engines.checkout() as engine:
        create_tables(engine, config.schema_spec)

    loader = DatasetLoader(
        engines,
        batch_size=config.batch_size,
        max_retries=config.max_load_retries,
        retry_backoff=config.retry_backoff,
        parallel_table_load=config.parallel_table_load,
    )
    counts = generator.row_counts()
    logger.info(f"Loading {sum(counts.values()):,} rows into {len(counts)} table(s)")
    return loader.load(generator)


def benchmark_registry(registry: VariantRegistry, engines, config: BenchmarkConfig,
                       params: Any = None, result: Optional[ExperimentResult] = None) -> ExperimentResult:
    """Run baseline + candidates, summarize and compare."""
    result = result if result is not None else ExperimentResult()
    baseline = registry.baseline()
    candidates = registry.candidates()

    result.runs = run_variants([baseline, *candidates], engines, config, params)
    for run in result.runs:
        if not run.ok:
            result.errors.append(f"Variant '{run.variant}' aborted: {run.error}")
            continue
        try:
            result.summaries[run.variant] = summarize(run.samples)
        except InsufficientSamples as e:
            result.errors.append(str(e))

    base = result.summaries.get(baseline.name)
    if base is None:
        result.errors.append(f"No summary for baseline '{baseline.name}'; comparisons skipped")
        return result

    for candidate in candidates:
        summary = result.summaries.get(candidate.name)
        if summary is not None:
            result.comparisons.append(compare(
                base, summary,
                low_confidence_threshold=config.low_confidence_threshold,
                min_samples=config.min_samples,
            ))
    return result


def run_experiment(config: HarnessConfig, engines, load: bool = True) -> ExperimentResult:
    start = time.perf_counter()
    result = ExperimentResult()

    if load:
        result.loads = prepare_dataset(config, engines)
        failed = [l.table for l in result.loads if not l.ok]
        if failed:
            result.errors.append(f"Dataset incomplete ({', '.join(failed)}); benchmarks skipped")
            result.duration_seconds = time.perf_counter() - start
            return result

    benchmark_registry(config.registry(), engines, config.benchmark_config(), config.params, result)
    result.duration_seconds = time.perf_counter() - start
    logger.info(
        f"Experiment finished in {result.duration_seconds:.1f}s: "
        f"{len(result.comparisons)} comparison(s), {len(result.errors)} error(s)"
    )
    return result
