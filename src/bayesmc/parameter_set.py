"""
ParameterSet - a parameter vector with its log-likelihood and importance weight.
"""

import math
from dataclasses import dataclass, field
from typing import Optional

import numpy as np


@dataclass(frozen=True, eq=False)
class ParameterSet:
    """
    Immutable parameter vector plus its fitness.

    Attributes:
        values: Parameter values (D,), stored as a read-only float64 array
        fitness: Log-likelihood of values. May be -inf, never NaN.
        weight: Importance weight. Only meaningful for importance sampling;
            defaults to fitness.
    """
    values: np.ndarray
    fitness: float = -math.inf
    weight: Optional[float] = field(default=None)

    def __post_init__(self):
        values = np.array(self.values, dtype=np.float64).reshape(-1)
        values.setflags(write=False)
        fitness = float(self.fitness)
        if math.isnan(fitness):
            raise ValueError("ParameterSet fitness must not be NaN")
        weight = fitness if self.weight is None else float(self.weight)
        object.__setattr__(self, 'values', values)
        object.__setattr__(self, 'fitness', fitness)
        object.__setattr__(self, 'weight', weight)

    def __len__(self):
        return self.values.shape[0]

    def with_weight(self, weight: float) -> 'ParameterSet':
        """Return a copy carrying a different importance weight."""
        return ParameterSet(self.values, self.fitness, weight)

    def __eq__(self, other):
        if not isinstance(other, ParameterSet):
            return NotImplemented
        return (np.array_equal(self.values, other.values)
                and self.fitness == other.fitness
                and self.weight == other.weight)
