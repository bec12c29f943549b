"""
Rule-based confidence scoring.

A ConfidenceTable is a fixed list of (name, predicate, weight) rules. The
score of a record is the sum of the weights whose predicate holds, capped
at 1.0. Weights are non-negative, so populating more fields can never
lower the score.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Sequence, TypeVar

R = TypeVar("R")


@dataclass(frozen=True)
class ConfidenceRule(Generic[R]):
    name: str
    predicate: Callable[[R], bool]
    weight: float


class ConfidenceTable(Generic[R]):
    """Ordered, immutable set of scoring rules for one record type."""

    def __init__(self, rules: Sequence[ConfidenceRule[R]]):
        names = set()
        for rule in rules:
            if rule.weight < 0:
                raise ValueError(f"Confidence weight for {rule.name!r} must be non-negative")
            if rule.name in names:
                raise ValueError(f"Duplicate confidence rule {rule.name!r}")
            names.add(rule.name)
        self._rules = tuple(rules)

    @classmethod
    def of(cls, *rules: tuple) -> "ConfidenceTable[Any]":
        """Build from plain (name, predicate, weight) tuples."""
        return cls([ConfidenceRule(name, predicate, weight) for name, predicate, weight in rules])

    @property
    def rules(self) -> Sequence[ConfidenceRule[R]]:
        return self._rules

    @property
    def max_score(self) -> float:
        return min(sum(rule.weight for rule in self._rules), 1.0)

    def matched(self, record: R) -> List[str]:
        """Names of the rules the record satisfies."""
        return [rule.name for rule in self._rules if _holds(rule, record)]

    def breakdown(self, record: R) -> Dict[str, float]:
        return {rule.name: rule.weight for rule in self._rules if _holds(rule, record)}

    def score(self, record: R) -> float:
        total = sum(self.breakdown(record).values())
        return round(min(total, 1.0), 4)


def _holds(rule: ConfidenceRule, record: Any) -> bool:
    # a predicate that trips over missing data simply does not match
    try:
        return bool(rule.predicate(record))
    except (AttributeError, TypeError, KeyError, IndexError):
        return False
