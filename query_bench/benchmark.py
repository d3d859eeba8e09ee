"""
Benchmark Runner

Executes a query variant W + N times sequentially on one connection,
discards the W warm-up samples and returns the N measured ones.

Elapsed time is the engine's own measurement when it reports one, otherwise
a monotonic clock around the engine call. CPU time and read counters come
from the engine's own per-call ExecutionStats. An engine error at any point
aborts the whole run with RunAborted carrying the samples collected so far.
Runs are never retried here: a retry would start from a different cache
state, so the caller restarts the run from scratch.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .errors import ConfigError, RunAborted
from .registry import QueryVariant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BenchmarkConfig:
    """Per-invocation run settings. Nothing is read from process-wide state."""
    warmup_iterations: int = 2
    measured_iterations: int = 10
    per_execution_timeout: Optional[float] = None
    low_confidence_threshold: float = 0.25
    min_samples: int = 5
    concurrent_variants: bool = False
    max_workers: int = 4

    def __post_init__(self):
        if self.warmup_iterations < 0:
            raise ConfigError(f"warmup_iterations must be >= 0, got {self.warmup_iterations}")
        if self.measured_iterations < 1:
            raise ConfigError(f"measured_iterations must be >= 1, got {self.measured_iterations}")
        if self.per_execution_timeout is not None and self.per_execution_timeout <= 0:
            raise ConfigError(f"per_execution_timeout must be positive, got {self.per_execution_timeout}")
        if self.low_confidence_threshold < 0:
            raise ConfigError(
                f"low_confidence_threshold must be >= 0, got {self.low_confidence_threshold}"
            )


@dataclass(frozen=True)
class ExecutionSample:
    """One measured execution of one variant."""
    variant: str
    iteration: int
    elapsed: float
    cpu_time: Optional[float]
    logical_reads: Optional[int]
    physical_reads: Optional[int]
    rows: int
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat()
        return d


@dataclass
class VariantRun:
    """Outcome of benchmarking one variant."""
    variant: str
    status: str  # ok | aborted
    samples: Tuple[ExecutionSample, ...] = ()
    error: Optional[str] = None
    failed_iteration: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variant": self.variant,
            "status": self.status,
            "samples": [s.to_dict() for s in self.samples],
            "error": self.error,
            "failed_iteration": self.failed_iteration,
        }


def _run_statements(engine, variant: QueryVariant, phase: str, statements: Sequence[str],
                    samples: Sequence[ExecutionSample] = ()) -> None:
    for sql in statements:
        try:
            engine.execute_script(sql)
        except Exception as e:
            raise RunAborted(variant.name, None, phase, samples, e) from e


def run_variant(engine, variant: QueryVariant, config: BenchmarkConfig, params: Any = None,
                clock: Callable[[], float] = time.perf_counter) -> Tuple[ExecutionSample, ...]:
    """Benchmark one variant on one connection. Returns the measured samples."""
    bound = params if params is not None else variant.params
    warmup = config.warmup_iterations
    total = warmup + config.measured_iterations

    logger.info(
        f"[{variant.name}] {warmup} warm-up + {config.measured_iterations} measured runs"
    )
    _run_statements(engine, variant, "setup", variant.setup)

    samples: List[ExecutionSample] = []
    try:
        for iteration in range(total):
            phase = "warm-up" if iteration < warmup else "measured"
            timestamp = datetime.now()
            start = clock()
            try:
                stats = engine.execute(variant.sql, bound, timeout=config.per_execution_timeout)
            except Exception as e:
                raise RunAborted(variant.name, iteration, phase, samples, e) from e
            end = clock()
            # engine-measured time when the adapter reports one
            elapsed = stats.elapsed if stats.elapsed is not None else end - start

            logger.debug(f"[{variant.name}] {phase} run {iteration + 1}/{total}: {elapsed * 1000:.1f}ms")
            if iteration < warmup:
                continue
            samples.append(ExecutionSample(
                variant=variant.name,
                iteration=iteration,
                elapsed=elapsed,
                cpu_time=stats.cpu_time,
                logical_reads=stats.logical_reads,
                physical_reads=stats.physical_reads,
                rows=stats.rows,
                timestamp=timestamp,
            ))
    except RunAborted:
        try:
            _run_statements(engine, variant, "teardown", variant.teardown)
        except RunAborted as teardown_error:
            logger.error(str(teardown_error))
        raise

    _run_statements(engine, variant, "teardown", variant.teardown, samples)
    return tuple(samples)


def run_variants(variants: Sequence[QueryVariant], engines, config: BenchmarkConfig,
                 params: Any = None) -> List[VariantRun]:
    """Benchmark each variant on its own connection checked out from engines.

    Sequential unless config.concurrent_variants is set: concurrent load
    changes cache and I/O behaviour, so it is an explicit opt-in.
    """
    def run_one(variant: QueryVariant) -> VariantRun:
        try:
            with engines.checkout() as engine:
                samples = run_variant(engine, variant, config, params)
        except RunAborted as e:
            logger.error(str(e))
            return VariantRun(variant.name, "aborted", e.samples, str(e), e.iteration)
        except Exception as e:
            logger.error(f"[{variant.name}] run failed: {e}")
            return VariantRun(variant.name, "aborted", error=f"{type(e).__name__}: {e}")
        return VariantRun(variant.name, "ok", samples)

    if not config.concurrent_variants:
        return [run_one(v) for v in variants]

    with ThreadPoolExecutor(max_workers=config.max_workers) as pool:
        return list(pool.map(run_one, variants))
