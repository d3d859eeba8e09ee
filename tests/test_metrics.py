"""
Metrics aggregation tests.
"""

import math
from datetime import datetime

import pytest

from query_bench.benchmark import ExecutionSample
from query_bench.errors import InsufficientSamples
from query_bench.metrics import summarize


def sample(elapsed, variant="q", iteration=0, cpu=0.001, reads=100, physical=None):
    return ExecutionSample(
        variant=variant,
        iteration=iteration,
        elapsed=elapsed,
        cpu_time=cpu,
        logical_reads=reads,
        physical_reads=physical,
        rows=1,
        timestamp=datetime(2024, 1, 1),
    )


def test_summary_values():
    samples = [sample(e, iteration=i, reads=r) for i, (e, r) in enumerate(
        [(1.0, 10), (2.0, 20), (3.0, 30), (4.0, 40)]
    )]
    s = summarize(samples)

    assert s.variant == "q"
    assert s.count == 4
    assert s.mean_elapsed == pytest.approx(2.5)
    assert s.median_elapsed == pytest.approx(2.5)
    assert s.stddev_elapsed == pytest.approx(1.2909944)
    assert (s.min_elapsed, s.max_elapsed) == (1.0, 4.0)
    assert s.p95_elapsed == pytest.approx(3.85)
    assert s.mean_logical_reads == pytest.approx(25.0)
    assert s.mean_physical_reads is None


def test_single_sample_is_insufficient():
    with pytest.raises(InsufficientSamples) as exc:
        summarize([sample(1.0)])
    assert exc.value.count == 1
    assert exc.value.variant == "q"

    with pytest.raises(InsufficientSamples):
        summarize([])


def test_summarize_is_idempotent():
    samples = [sample(e, iteration=i) for i, e in enumerate([0.3, 0.1, 0.2])]
    assert summarize(samples) == summarize(samples)
    assert [s.elapsed for s in samples] == [0.3, 0.1, 0.2], "input must not be reordered"


def test_missing_counter_gives_none():
    samples = [sample(1.0), sample(2.0, reads=None)]
    s = summarize(samples)
    assert s.mean_logical_reads is None
    assert s.stddev_logical_reads is None
    assert s.mean_cpu_time == pytest.approx(0.001)


def test_mixed_variants_rejected():
    with pytest.raises(ValueError, match="several variants"):
        summarize([sample(1.0, variant="a"), sample(2.0, variant="b")])


def test_relative_stddev():
    assert summarize([sample(1.0), sample(3.0)]).relative_stddev == pytest.approx(math.sqrt(2) / 2)
    assert summarize([sample(0.0), sample(0.0)]).relative_stddev == 0.0


def test_p95_interpolates_between_samples():
    assert summarize([sample(1.0), sample(2.0)]).p95_elapsed == pytest.approx(1.95)
    assert summarize([sample(e) for e in (3.0, 1.0, 2.0)]).p95_elapsed == pytest.approx(2.9)
