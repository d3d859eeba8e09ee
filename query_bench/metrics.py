"""
Metrics Aggregator

Pure reduction of a variant's execution samples into a VariantSummary.
Summaries are always recomputed from the samples, never updated in place.
"""

import math
import statistics
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from .benchmark import ExecutionSample
from .errors import InsufficientSamples


@dataclass(frozen=True)
class VariantSummary:
    variant: str
    count: int
    mean_elapsed: float
    median_elapsed: float
    stddev_elapsed: float
    min_elapsed: float
    max_elapsed: float
    p95_elapsed: float
    mean_cpu_time: Optional[float] = None
    mean_logical_reads: Optional[float] = None
    stddev_logical_reads: Optional[float] = None
    mean_physical_reads: Optional[float] = None

    @property
    def relative_stddev(self) -> float:
        """Coefficient of variation of elapsed time."""
        if self.mean_elapsed == 0:
            return 0.0 if self.stddev_elapsed == 0 else math.inf
        return self.stddev_elapsed / self.mean_elapsed

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["relative_stddev"] = self.relative_stddev
        return d


def _counter_values(samples: Sequence[ExecutionSample], field: str) -> Optional[List[float]]:
    values = [getattr(s, field) for s in samples]
    if any(v is None for v in values):
        return None
    return values


def summarize(samples: Sequence[ExecutionSample]) -> VariantSummary:
    """Reduce samples of one variant. Raises InsufficientSamples below 2."""
    samples = list(samples)
    variant = samples[0].variant if samples else None
    if len(samples) < 2:
        raise InsufficientSamples(len(samples), variant)
    names = {s.variant for s in samples}
    if len(names) > 1:
        raise ValueError(f"Samples from several variants: {', '.join(sorted(names))}")

    elapsed = [s.elapsed for s in samples]
    ordered = sorted(elapsed)

    cpu = _counter_values(samples, "cpu_time")
    logical = _counter_values(samples, "logical_reads")
    physical = _counter_values(samples, "physical_reads")

    return VariantSummary(
        variant=variant,
        count=len(samples),
        mean_elapsed=statistics.mean(elapsed),
        median_elapsed=statistics.median(ordered),
        stddev_elapsed=statistics.stdev(elapsed),
        min_elapsed=ordered[0],
        max_elapsed=ordered[-1],
        p95_elapsed=float(np.percentile(elapsed, 95)),
        mean_cpu_time=statistics.mean(cpu) if cpu is not None else None,
        mean_logical_reads=statistics.mean(logical) if logical is not None else None,
        stddev_logical_reads=statistics.stdev(logical) if logical is not None else None,
        mean_physical_reads=statistics.mean(physical) if physical is not None else None,
    )
