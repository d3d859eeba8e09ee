"""
Benchmark runner tests against the fake engine.
"""

import itertools
from dataclasses import replace

import pytest

from query_bench.benchmark import BenchmarkConfig, ExecutionSample, run_variant, run_variants
from query_bench.errors import ConfigError, RunAborted
from query_bench.registry import QueryVariant


def ticking_clock(step=0.01):
    counter = itertools.count()
    return lambda: next(counter) * step


class TestRunVariant:

    def test_warmup_runs_are_discarded(self, fake_engine):
        variant = QueryVariant("q", "SELECT 1", tag="baseline")
        samples = run_variant(fake_engine, variant, BenchmarkConfig(warmup_iterations=2, measured_iterations=5))

        assert len(samples) == 5
        assert [s.iteration for s in samples] == [2, 3, 4, 5, 6]
        assert [s.logical_reads for s in samples] == [3, 4, 5, 6, 7], "counters from warm-up calls leak"
        assert fake_engine.calls == 7
        assert all(isinstance(s, ExecutionSample) and s.variant == "q" for s in samples)

    def test_elapsed_uses_supplied_clock(self, fake_engine):
        variant = QueryVariant("q", "SELECT 1")
        samples = run_variant(fake_engine, variant, BenchmarkConfig(warmup_iterations=0, measured_iterations=3),
                              clock=ticking_clock(0.5))
        assert [s.elapsed for s in samples] == [0.5, 0.5, 0.5]

    def test_engine_reported_elapsed_wins_over_clock(self, fake_engine, monkeypatch):
        original = fake_engine.execute

        def timed(sql, params=None, timeout=None):
            return replace(original(sql, params, timeout), elapsed=0.002)

        monkeypatch.setattr(fake_engine, "execute", timed)
        samples = run_variant(fake_engine, QueryVariant("q", "SELECT 1"),
                              BenchmarkConfig(warmup_iterations=0, measured_iterations=2),
                              clock=ticking_clock(1.0))
        assert [s.elapsed for s in samples] == [0.002, 0.002]

    def test_engine_error_aborts_with_partial_samples(self, fake_engines, fake_engine):
        fake_engines.fail_on_call.add(5)
        variant = QueryVariant("q", "SELECT 1")
        with pytest.raises(RunAborted) as exc:
            run_variant(fake_engine, variant, BenchmarkConfig(warmup_iterations=2, measured_iterations=5))

        err = exc.value
        assert err.variant == "q"
        assert err.iteration == 4
        assert err.phase == "measured"
        assert [s.iteration for s in err.samples] == [2, 3]
        assert isinstance(err.cause, RuntimeError)

    def test_failure_during_warmup(self, fake_engines, fake_engine):
        fake_engines.fail_on_call.add(1)
        with pytest.raises(RunAborted) as exc:
            run_variant(fake_engine, QueryVariant("q", "SELECT 1"), BenchmarkConfig())
        assert exc.value.phase == "warm-up"
        assert exc.value.samples == ()

    def test_setup_and_teardown_wrap_executions(self, fake_engine):
        variant = QueryVariant("q", "SELECT 1", setup=("CREATE INDEX i ON t (c)",),
                               teardown=("DROP INDEX i",))
        run_variant(fake_engine, variant, BenchmarkConfig(warmup_iterations=1, measured_iterations=2))
        assert fake_engine.statements == [
            "CREATE INDEX i ON t (c)", "SELECT 1", "SELECT 1", "SELECT 1", "DROP INDEX i",
        ]

    def test_setup_failure_aborts_before_executing(self, fake_engines, fake_engine):
        fake_engines.failing_scripts.add("CREATE INDEX i ON t (c)")
        variant = QueryVariant("q", "SELECT 1", setup=("CREATE INDEX i ON t (c)",))
        with pytest.raises(RunAborted) as exc:
            run_variant(fake_engine, variant, BenchmarkConfig())
        assert exc.value.phase == "setup"
        assert fake_engine.calls == 0

    def test_teardown_runs_after_abort(self, fake_engines, fake_engine):
        fake_engines.fail_on_call.add(2)
        variant = QueryVariant("q", "SELECT 1", teardown=("DROP INDEX i",))
        with pytest.raises(RunAborted):
            run_variant(fake_engine, variant, BenchmarkConfig())
        assert fake_engine.statements[-1] == "DROP INDEX i"

    def test_explicit_params_override_variant_params(self, fake_engine, monkeypatch):
        seen = []
        original = fake_engine.execute

        def record(sql, params=None, timeout=None):
            seen.append(params)
            return original(sql, params, timeout)

        monkeypatch.setattr(fake_engine, "execute", record)
        variant = QueryVariant("q", "SELECT ?", params=[1])
        config = BenchmarkConfig(warmup_iterations=0, measured_iterations=1)
        run_variant(fake_engine, variant, config)
        run_variant(fake_engine, variant, config, params=[2])
        assert seen == [[1], [2]]


class TestRunVariants:

    def test_abort_does_not_stop_other_variants(self, fake_engines):
        # Every variant gets a fresh connection, so call 3 fails on each of them.
        fake_engines.fail_on_call.add(3)
        variants = [QueryVariant("a", "SELECT 1", tag="baseline"), QueryVariant("b", "SELECT 2")]
        runs = run_variants(variants, fake_engines, BenchmarkConfig(warmup_iterations=1, measured_iterations=1))

        assert [r.status for r in runs] == ["ok", "ok"]
        runs = run_variants(variants, fake_engines, BenchmarkConfig(warmup_iterations=1, measured_iterations=3))
        assert [r.status for r in runs] == ["aborted", "aborted"]
        assert runs[0].failed_iteration == 2
        assert len(runs[0].samples) == 1
        assert all(e.closed for e in fake_engines.engines)

    @pytest.mark.parametrize("concurrent", [False, True])
    def test_connection_failure_keeps_other_results(self, fake_engines, concurrent):
        fake_engines.failing_checkouts.add(2)
        variants = [QueryVariant(n, "SELECT 1") for n in "abc"]
        config = BenchmarkConfig(warmup_iterations=1, measured_iterations=2, concurrent_variants=concurrent)
        runs = run_variants(variants, fake_engines, config)

        assert [r.variant for r in runs] == ["a", "b", "c"]
        aborted = [r for r in runs if not r.ok]
        assert len(aborted) == 1
        assert "cannot connect" in aborted[0].error
        assert aborted[0].samples == ()
        assert all(len(r.samples) == 2 for r in runs if r.ok)
        if not concurrent:
            assert aborted[0].variant == "b"

    @pytest.mark.parametrize("concurrent", [False, True])
    def test_one_connection_per_variant(self, fake_engines, concurrent):
        variants = [QueryVariant(f"v{i}", "SELECT 1") for i in range(4)]
        config = BenchmarkConfig(warmup_iterations=1, measured_iterations=2, concurrent_variants=concurrent)
        runs = run_variants(variants, fake_engines, config)

        assert [r.variant for r in runs] == ["v0", "v1", "v2", "v3"]
        assert all(r.ok and len(r.samples) == 2 for r in runs)
        assert len(fake_engines.engines) == 4


@pytest.mark.parametrize("kwargs", [
    {"warmup_iterations": -1},
    {"measured_iterations": 0},
    {"per_execution_timeout": 0},
    {"low_confidence_threshold": -0.1},
])
def test_invalid_benchmark_config(kwargs):
    with pytest.raises(ConfigError):
        BenchmarkConfig(**kwargs)
