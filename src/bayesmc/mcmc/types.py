"""
Sampler Data Structures and Type Definitions.

This module contains the core data structures used by the sampling kernel:
- RunParams: Immutable run parameters, fixed for the lifetime of a run
- TargetDensity: Log-likelihood plus prior support bounds
- ChainState: Current state and counters of one chain (or all chains, batched)
- StepContext: Read-only end-of-previous-step snapshot shared by all chains
- SamplerCarry: Everything the outer-step kernel threads from step to step
- InitialPopulation: Chain seeds and population archive produced at setup
"""

from dataclasses import dataclass
from typing import Any, Callable, NamedTuple

import jax.numpy as jnp


@dataclass(frozen=True)
class RunParams:
    """
    Immutable run parameters.

    This frozen dataclass is hashable so it can key compiled-kernel caches
    and be closed over by traced functions without being traced itself.
    """
    NUM_CHAINS: int
    NUM_PARAMS: int
    ITERATIONS: int
    WARMUP_ITERATIONS: int
    THINNING_INTERVAL: int
    OUTPUT_LENGTH: int
    INITIAL_POPULATION_LENGTH: int
    INITIALIZE_WITH_MAP: bool
    PROGRESS_CHANGED_RATE: float

    @property
    def OUTPUT_ITERATIONS(self) -> int:
        """Outer steps needed to collect OUTPUT_LENGTH draws across all chains."""
        return -(-self.OUTPUT_LENGTH // self.NUM_CHAINS)

    @property
    def TOTAL_ITERATIONS(self) -> int:
        return self.ITERATIONS + self.OUTPUT_ITERATIONS

    @property
    def PROGRESS_INTERVAL(self) -> int:
        return max(1, int(self.TOTAL_ITERATIONS * self.PROGRESS_CHANGED_RATE))


@dataclass(frozen=True)
class TargetDensity:
    """
    The distribution being sampled.

    log_likelihood must be JAX-traceable; lower and upper are the prior
    support bounds, one entry per parameter (may be infinite).
    """
    log_likelihood: Callable
    lower: jnp.ndarray
    upper: jnp.ndarray


class ChainState(NamedTuple):
    """State of a chain. Fields gain a leading chain axis when batched."""
    values: jnp.ndarray        # (D,) current parameter vector
    fitness: jnp.ndarray       # () log-likelihood of values
    sample_count: jnp.ndarray  # () number of chain iterations performed
    accept_count: jnp.ndarray  # () number of accepted proposals


class StepContext(NamedTuple):
    """
    Snapshot taken before an outer step; chains only read from it.

    Chains never observe each other's progress within a step, so results do
    not depend on whether chains run in parallel or one after another.
    """
    chain_values: jnp.ndarray       # (C, D) every chain's state at the end of the previous step
    chain_fitness: jnp.ndarray      # (C,)
    shared: Any                     # algorithm-specific snapshot (pytree)
    population: jnp.ndarray         # (capacity, D) population archive
    population_count: jnp.ndarray   # () number of valid archive rows


class SamplerCarry(NamedTuple):
    """Loop state threaded through the outer-step kernel."""
    states: ChainState              # batched over chains
    algo_state: Any                 # per-chain algorithm state, batched over chains
    keys: jnp.ndarray               # (C, 2) per-chain PRNG keys
    population: jnp.ndarray         # (capacity, D)
    population_fitness: jnp.ndarray # (capacity,)
    population_count: jnp.ndarray   # ()


class InitialPopulation(NamedTuple):
    chain_values: jnp.ndarray       # (C, D)
    chain_fitness: jnp.ndarray      # (C,)
    population_values: jnp.ndarray  # (P, D)
    population_fitness: jnp.ndarray # (P,)
