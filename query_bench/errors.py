"""
Harness error taxonomy.

Schema and configuration errors are raised before any I/O and are never
retried. Load and run errors carry whatever partial data was collected so
the caller can report it.
"""

from typing import Optional, Sequence


class HarnessError(Exception):
    """Base class for all benchmark harness errors."""


class SchemaError(HarnessError):
    """Malformed, cyclic or unsatisfiable schema / generation plan."""


class ConfigError(HarnessError, ValueError):
    """Invalid experiment configuration."""


class OrderingViolation(HarnessError):
    """A child table was loaded before its parents were fully committed."""

    def __init__(self, table: str, missing_parents: Sequence[str]):
        self.table = table
        self.missing_parents = tuple(missing_parents)
        super().__init__(
            f"Cannot load '{table}' before parent table(s) "
            f"{', '.join(self.missing_parents)} are committed"
        )


class LoadFailure(HarnessError):
    """A bulk-insert batch exhausted its retries."""

    def __init__(self, table: str, rows_committed: int, attempts: int,
                 cause: Optional[BaseException] = None):
        self.table = table
        self.rows_committed = rows_committed
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Load of '{table}' failed after {attempts} attempt(s) "
            f"({rows_committed:,} rows committed): {cause}"
        )


class ExecutionTimeout(HarnessError):
    """A single query execution exceeded the per-execution timeout."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Execution exceeded timeout of {timeout:.1f}s")


class RunAborted(HarnessError):
    """A variant's benchmark run failed part way through."""

    def __init__(self, variant: str, iteration: Optional[int], phase: str,
                 samples: Sequence = (), cause: Optional[BaseException] = None):
        self.variant = variant
        self.iteration = iteration
        self.phase = phase
        self.samples = tuple(samples)
        self.cause = cause
        where = phase if iteration is None else f"{phase} iteration {iteration}"
        super().__init__(
            f"Run of variant '{variant}' aborted during {where} "
            f"({len(self.samples)} measured sample(s) collected): {cause}"
        )


class InsufficientSamples(HarnessError):
    """Aggregation needs at least two samples."""

    def __init__(self, count: int, variant: Optional[str] = None):
        self.count = count
        self.variant = variant
        label = f" for '{variant}'" if variant else ""
        super().__init__(f"Need at least 2 samples{label}, got {count}")


class NotFound(HarnessError, LookupError):
    """Unknown query variant name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"No query variant named '{name}'")
