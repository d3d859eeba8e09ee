#!/usr/bin/env python3
"""
Query Benchmark CLI

Usage:
    query-bench generate --config=experiment.yaml --output=data/
    query-bench load --config=experiment.yaml --db=bench.duckdb
    query-bench run --config=experiment.yaml --db=bench.duckdb --output=results/
"""

import argparse
import logging
import os
import sys
from datetime import datetime

from .config import load_config
from .data_generator import DataGenerator, export_to_parquet
from .engines import DuckDBEngineFactory
from .errors import HarnessError
from .experiment import prepare_dataset, run_experiment
from .report import format_table, write_csv, write_json


def banner(title: str) -> None:
    print(f"\n{'='*60}")
    print(title)
    print(f"{'='*60}")


def cmd_generate(args, config) -> int:
    generator = DataGenerator(config.schema_spec, config.generation_plan)
    banner("Synthetic Data Generator")
    for name, rows in generator.row_counts().items():
        print(f"  {name}: {rows:,} rows")

    files = export_to_parquet(generator, args.output)

    banner("Generation complete!")
    print(f"  Output: {args.output}")
    print(f"  Files: {len(files) + 1} (per-table + metadata.json)")
    return 0


def cmd_load(args, config) -> int:
    database = args.db or config.database
    banner(f"Loading dataset into {database}")
    with DuckDBEngineFactory(database) as engines:
        results = prepare_dataset(config, engines)

    for r in results:
        mark = "✅" if r.ok else "❌"
        detail = f" ({r.error})" if r.error else ""
        print(f"  {mark} {r.table}: {r.status}, {r.rows:,} rows, {r.duration_seconds:.1f}s{detail}")
    return 0 if all(r.ok for r in results) else 1


def cmd_run(args, config) -> int:
    database = args.db or config.database
    banner(f"Benchmark: {database}")
    print(f"  Variants: {', '.join(v.name for v in config.variants)}")
    print(f"  Iterations: {config.warmup_iterations} warm-up + {config.measured_iterations} measured")

    with DuckDBEngineFactory(database, profiling=config.profiling) as engines:
        result = run_experiment(config, engines, load=not args.skip_load)

    for r in result.loads:
        print(f"  {r.table}: {r.status} ({r.rows:,} rows)")
    for run in result.runs:
        print(f"  {run.variant}: {run.status} ({len(run.samples)} samples)")

    if result.comparisons:
        banner("Comparison")
        print(format_table(result.comparisons))

    if result.errors:
        banner("Errors")
        for error in result.errors:
            print(f"  ❌ {error}")

    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    json_path = write_json(result.to_dict(), os.path.join(args.output, f"experiment_{stamp}.json"))
    print(f"\n  Result saved: {json_path}")
    if result.comparisons:
        csv_path = write_csv(result.comparisons, os.path.join(args.output, f"comparisons_{stamp}.csv"))
        print(f"  Comparisons saved: {csv_path}")
    return 0 if result.ok else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Synthetic-data SQL query benchmark harness")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("generate", help="Export the generated dataset to Parquet")
    p.add_argument("--config", required=True, help="Path to experiment YAML")
    p.add_argument("--output", default="data/", help="Output directory")
    p.set_defaults(func=cmd_generate)

    p = sub.add_parser("load", help="Create tables and load the generated dataset")
    p.add_argument("--config", required=True, help="Path to experiment YAML")
    p.add_argument("--db", help="DuckDB database path (overrides config)")
    p.set_defaults(func=cmd_load)

    p = sub.add_parser("run", help="Load, benchmark and compare query variants")
    p.add_argument("--config", required=True, help="Path to experiment YAML")
    p.add_argument("--db", help="DuckDB database path (overrides config)")
    p.add_argument("--output", default="results/", help="Output directory for results")
    p.add_argument("--skip-load", action="store_true", help="Benchmark the existing dataset")
    p.set_defaults(func=cmd_run)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        config = load_config(args.config)
        return args.func(args, config)
    except HarnessError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
