"""
Baseline vs Candidate Comparison

improvement = (baseline.mean - candidate.mean) / baseline.mean, for elapsed
time and for logical reads. A positive value means the candidate is faster.

The low-confidence flag is a heuristic, not a significance test: it is set
when either side is noisy (relative stddev above the threshold) or has too
few samples.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .metrics import VariantSummary

logger = logging.getLogger(__name__)

DEFAULT_LOW_CONFIDENCE_THRESHOLD = 0.25
DEFAULT_MIN_SAMPLES = 5


@dataclass(frozen=True)
class ComparisonResult:
    baseline: VariantSummary
    candidate: VariantSummary
    improvement: Optional[float]
    logical_reads_improvement: Optional[float]
    speedup: Optional[float]
    low_confidence: bool
    reasons: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "baseline": self.baseline.to_dict(),
            "candidate": self.candidate.to_dict(),
            "improvement": self.improvement,
            "logical_reads_improvement": self.logical_reads_improvement,
            "speedup": self.speedup,
            "low_confidence": self.low_confidence,
            "reasons": list(self.reasons),
        }


def relative_improvement(baseline: Optional[float], candidate: Optional[float]) -> Optional[float]:
    if baseline is None or candidate is None:
        return None
    if baseline == 0:
        return 0.0 if candidate == 0 else None
    return (baseline - candidate) / baseline


def compare(baseline: VariantSummary, candidate: VariantSummary,
            low_confidence_threshold: float = DEFAULT_LOW_CONFIDENCE_THRESHOLD,
            min_samples: int = DEFAULT_MIN_SAMPLES) -> ComparisonResult:
    reasons = []
    for role, summary in (("baseline", baseline), ("candidate", candidate)):
        if summary.relative_stddev > low_confidence_threshold:
            reasons.append(
                f"{role} '{summary.variant}' relative stddev "
                f"{summary.relative_stddev:.2f} > {low_confidence_threshold:.2f}"
            )
        if summary.count < min_samples:
            reasons.append(f"{role} '{summary.variant}' has {summary.count} < {min_samples} samples")

    improvement = relative_improvement(baseline.mean_elapsed, candidate.mean_elapsed)
    if improvement is None:
        reasons.append("baseline mean elapsed time is zero")

    speedup = None
    if candidate.mean_elapsed > 0:
        speedup = baseline.mean_elapsed / candidate.mean_elapsed

    result = ComparisonResult(
        baseline=baseline,
        candidate=candidate,
        improvement=improvement,
        logical_reads_improvement=relative_improvement(
            baseline.mean_logical_reads, candidate.mean_logical_reads
        ),
        speedup=speedup,
        low_confidence=bool(reasons),
        reasons=tuple(reasons),
    )
    if result.low_confidence:
        logger.warning(
            f"Low confidence comparison {baseline.variant} vs {candidate.variant}: "
            f"{'; '.join(reasons)}"
        )
    return result
