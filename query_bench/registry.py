"""
Query Variant Registry

Named, parameterized query variants: one baseline and any number of
candidates (rewrites or index states) that should return the same answer.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .errors import ConfigError, NotFound

BASELINE = "baseline"
CANDIDATE = "candidate"
TAGS = (BASELINE, CANDIDATE)


@dataclass(frozen=True)
class QueryVariant:
    """One query variant.

    setup / teardown statements run once around the measured executions and
    are never timed; use them for index states (CREATE INDEX / DROP INDEX).
    """
    name: str
    sql: str
    tag: str = CANDIDATE
    params: Any = None
    setup: Tuple[str, ...] = field(default_factory=tuple)
    teardown: Tuple[str, ...] = field(default_factory=tuple)
    description: str = ""

    def __post_init__(self):
        if not self.name:
            raise ConfigError("Query variant needs a name")
        if not self.sql or not self.sql.strip():
            raise ConfigError(f"Query variant '{self.name}' has no SQL")
        if self.tag not in TAGS:
            raise ConfigError(
                f"Query variant '{self.name}' has tag '{self.tag}' (expected one of {', '.join(TAGS)})"
            )
        object.__setattr__(self, "setup", tuple(self.setup))
        object.__setattr__(self, "teardown", tuple(self.teardown))

    @property
    def is_baseline(self) -> bool:
        return self.tag == BASELINE


class VariantRegistry:
    """Maps variant name to QueryVariant. Re-registering a name replaces it."""

    def __init__(self, variants: Optional[List[QueryVariant]] = None):
        self._variants: Dict[str, QueryVariant] = {}
        for variant in variants or []:
            self.register(variant)

    def register(self, variant: QueryVariant) -> QueryVariant:
        # A replacement counts as a new registration for list() ordering.
        self._variants.pop(variant.name, None)
        self._variants[variant.name] = variant
        return variant

    def get(self, name: str) -> QueryVariant:
        try:
            return self._variants[name]
        except KeyError:
            raise NotFound(name) from None

    def list(self, tag: str) -> Tuple[QueryVariant, ...]:
        return tuple(v for v in self._variants.values() if v.tag == tag)

    def baseline(self) -> QueryVariant:
        baselines = self.list(BASELINE)
        if not baselines:
            raise NotFound(BASELINE)
        if len(baselines) > 1:
            raise ConfigError(
                f"Expected one baseline variant, found {len(baselines)}: "
                f"{', '.join(v.name for v in baselines)}"
            )
        return baselines[0]

    def candidates(self) -> Tuple[QueryVariant, ...]:
        return self.list(CANDIDATE)

    def names(self) -> List[str]:
        return list(self._variants)

    def __contains__(self, name: str) -> bool:
        return name in self._variants

    def __len__(self) -> int:
        return len(self._variants)

    def __iter__(self) -> Iterator[QueryVariant]:
        return iter(tuple(self._variants.values()))
