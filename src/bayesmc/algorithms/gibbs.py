"""
Gibbs sampling with a caller-supplied conditional sampler.

The proposal function draws the next state directly from the full
conditional distributions, so every draw is accepted.
"""

from dataclasses import dataclass
from typing import Callable

import jax.numpy as jnp

from .common import ChainAlgorithm, safe_log_likelihood


@dataclass(frozen=True)
class Gibbs(ChainAlgorithm):
    """
    Args:
        proposal: proposal(key, values) -> values, JAX-traceable
    """
    proposal: Callable

    def chain_iteration(self, key, index, state, algo_state, ctx, target, run_params):
        values = self.proposal(key, state.values).astype(state.values.dtype)
        fitness = safe_log_likelihood(target, values).astype(state.fitness.dtype)
        return values, fitness, jnp.array(True), algo_state
