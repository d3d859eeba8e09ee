"""
Comparison Report Records

Flattens ComparisonResults into fixed report records and writes them as JSON
or CSV. Charts and other renderings are left to whatever consumes the files.
"""

import csv
import json
import os
from typing import Any, Dict, List, Sequence

from .compare import ComparisonResult

REPORT_FIELDS = [
    "baseline",
    "candidate",
    "baseline_samples",
    "candidate_samples",
    "baseline_mean_elapsed",
    "candidate_mean_elapsed",
    "baseline_median_elapsed",
    "candidate_median_elapsed",
    "baseline_stddev_elapsed",
    "candidate_stddev_elapsed",
    "baseline_mean_logical_reads",
    "candidate_mean_logical_reads",
    "elapsed_improvement_pct",
    "logical_reads_improvement_pct",
    "low_confidence",
    "reasons",
]


def _pct(value):
    return None if value is None else round(value * 100, 2)


def comparison_record(result: ComparisonResult) -> Dict[str, Any]:
    b, c = result.baseline, result.candidate
    return {
        "baseline": b.variant,
        "candidate": c.variant,
        "baseline_samples": b.count,
        "candidate_samples": c.count,
        "baseline_mean_elapsed": b.mean_elapsed,
        "candidate_mean_elapsed": c.mean_elapsed,
        "baseline_median_elapsed": b.median_elapsed,
        "candidate_median_elapsed": c.median_elapsed,
        "baseline_stddev_elapsed": b.stddev_elapsed,
        "candidate_stddev_elapsed": c.stddev_elapsed,
        "baseline_mean_logical_reads": b.mean_logical_reads,
        "candidate_mean_logical_reads": c.mean_logical_reads,
        "elapsed_improvement_pct": _pct(result.improvement),
        "logical_reads_improvement_pct": _pct(result.logical_reads_improvement),
        "low_confidence": result.low_confidence,
        "reasons": "; ".join(result.reasons),
    }


def write_json(obj: Any, path: str) -> str:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, default=str)
    return path


def write_csv(results: Sequence[ComparisonResult], path: str) -> str:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", newline="", encoding="utf-8") as fh:
        writer = csv.DictWriter(fh, fieldnames=REPORT_FIELDS)
        writer.writeheader()
        for r in results:
            writer.writerow(comparison_record(r))
    return path


def format_table(results: Sequence[ComparisonResult]) -> str:
    """Plain-text table for console output."""
    header = f"{'Baseline':<20} {'Candidate':<20} {'Base ms':>10} {'Cand ms':>10} {'Improv.':>9} {'Reads':>9}  Conf."
    lines: List[str] = [header, "-" * len(header)]
    for r in results:
        rec = comparison_record(r)
        improv = "n/a" if rec["elapsed_improvement_pct"] is None else f"{rec['elapsed_improvement_pct']:+.1f}%"
        reads = "n/a" if rec["logical_reads_improvement_pct"] is None else f"{rec['logical_reads_improvement_pct']:+.1f}%"
        lines.append(
            f"{rec['baseline']:<20} {rec['candidate']:<20} "
            f"{rec['baseline_mean_elapsed'] * 1000:>10.2f} {rec['candidate_mean_elapsed'] * 1000:>10.2f} "
            f"{improv:>9} {reads:>9}  {'LOW' if r.low_confidence else 'ok'}"
        )
    return "\n".join(lines)
