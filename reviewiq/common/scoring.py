"""
Weighted Scoring

A small abstraction for "sum of weighted factors" policies. Both the
difficulty predictor and the review priority scheduler are expressed as
an ordered list of named factors, each a weight and a scoring function.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Generic, Mapping, Sequence, Tuple, TypeVar

T = TypeVar('T')


@dataclass(frozen=True)
class ScoringFactor(Generic[T]):
    """One named term of a weighted score."""
    name: str
    weight: float
    score: Callable[[T], float]


class WeightedScorer(Generic[T]):
    """
    Combine named factors into a single weighted sum.

    Factors are evaluated in declaration order; ``evaluate`` returns both
    the weighted total and the raw (unweighted) value of every factor so
    callers can report a breakdown.
    """

    def __init__(self, factors: Sequence[ScoringFactor[T]]):
        if not factors:
            raise ValueError("WeightedScorer needs at least one factor")
        names = [factor.name for factor in factors]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate factor names: {names}")
        if any(factor.weight < 0 for factor in factors):
            raise ValueError("Factor weights must be non-negative")
        if sum(factor.weight for factor in factors) <= 0:
            raise ValueError("Factor weights must have a positive sum")
        self._factors = tuple(factors)

    @classmethod
    def from_weights(
        cls,
        weights: Mapping[str, float],
        scorers: Mapping[str, Callable[[T], float]]
    ) -> 'WeightedScorer[T]':
        """Pair each weight with the scorer of the same name, keeping ``scorers`` order."""
        missing = set(scorers) - set(weights)
        if missing:
            raise ValueError(f"Missing weights for factors: {sorted(missing)}")
        return cls([ScoringFactor(name, weights[name], fn) for name, fn in scorers.items()])

    @property
    def weights(self) -> Dict[str, float]:
        return {factor.name: factor.weight for factor in self._factors}

    def breakdown(self, subject: T) -> Dict[str, float]:
        return {factor.name: factor.score(subject) for factor in self._factors}

    def evaluate(self, subject: T) -> Tuple[float, Dict[str, float]]:
        values = self.breakdown(subject)
        total = sum(factor.weight * values[factor.name] for factor in self._factors)
        return total, values

    def score(self, subject: T) -> float:
        return self.evaluate(subject)[0]
