"""
Adaptive Random-Walk Metropolis-Hastings.

Each chain owns a RunningCovarianceMatrix of its own history. The proposal
covariance for an iteration is one of:

    sigma_identity          - I * 0.1^2 / D, used for the first 100*D samples
                              and thereafter with probability beta
    scale * Cov_own         - the chain's running covariance, scale = 2.38^2 / D
                              (Roberts & Rosenthal optimal scaling)
    Cov_other               - after 100*D samples, with probability
                              crossover_probability, the covariance another
                              chain was using at the end of the previous step

The proposal is always centered on the chain's current state, so it stays
symmetric and needs no Hastings correction.

Adaptation: accepted proposals are always pushed into the running
covariance. Rejected and infeasible iterations push the unchanged current
state, but only after the warmup samples (thinning_interval *
warmup_iterations) have passed.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, NamedTuple, Optional

import jax
import jax.numpy as jnp
import jax.random as random

from ..running_covariance import RunningCovarianceMatrix
from .common import (
    ChainAlgorithm,
    draw_excluding,
    evaluate_if_feasible,
    metropolis_accept,
    sample_gaussian_step,
)


class ARWMHState(NamedTuple):
    sigma: RunningCovarianceMatrix  # running covariance of the chain's history
    fallback: jnp.ndarray           # (D, D) covariance used before adaptation kicks in


@dataclass(frozen=True)
class ARWMH(ChainAlgorithm):
    """
    Adaptive Random-Walk Metropolis-Hastings.

    Args:
        scale: Multiplier on the running covariance (default 2.38^2 / D)
        beta: Probability of using the fallback covariance after adaptation
        crossover_probability: Probability of borrowing another chain's covariance
    """
    scale: Optional[float] = None
    beta: float = 0.05
    crossover_probability: float = 0.1

    def get_scale(self, num_params: int) -> float:
        return self.scale if self.scale is not None else 2.38 ** 2 / num_params

    def validate(self, num_params: int, mcmc_config: Dict[str, Any]) -> List[str]:
        errors = []
        if self.get_scale(num_params) <= 0:
            errors.append(f"scale must be > 0, got {self.scale}")
        if not 0 <= self.beta <= 1:
            errors.append(f"beta must be in [0, 1], got {self.beta}")
        if not 0 <= self.crossover_probability <= 1:
            errors.append(
                f"crossover_probability must be in [0, 1], got {self.crossover_probability}"
            )
        if self.crossover_probability > 0 and mcmc_config.get('num_chains', 1) < 2:
            errors.append("crossover_probability > 0 requires at least 2 chains")
        return errors

    def init_state(self, num_params: int, num_chains: int, map_distribution=None):
        dtype = jnp.result_type(float)
        if map_distribution is not None:
            # Hot start from the Laplace approximation around the MAP
            fallback = jnp.asarray(map_distribution.covariance, dtype=dtype)
        else:
            fallback = jnp.eye(num_params, dtype=dtype) * (0.1 ** 2 / num_params)
        single = ARWMHState(
            sigma=RunningCovarianceMatrix.create(num_params, dtype),
            fallback=fallback,
        )
        return jax.tree_util.tree_map(
            lambda leaf: jnp.broadcast_to(leaf, (num_chains,) + leaf.shape), single
        )

    def _adaptive_covariance(self, sample_count, algo_state, num_params):
        """Scaled running covariance once adapted, otherwise the fallback."""
        sigma = algo_state.sigma
        adapted = (sample_count > 100 * num_params) & (sigma.n >= 2)
        return jnp.where(adapted, self.get_scale(num_params) * sigma.covariance,
                         algo_state.fallback)

    def snapshot(self, states, algo_state, run_params):
        """Covariance each chain would propose with, for crossover between chains."""
        return jax.vmap(self._adaptive_covariance, in_axes=(0, 0, None))(
            states.sample_count, algo_state, run_params.NUM_PARAMS
        )

    def chain_iteration(self, key, index, state, algo_state, ctx, target, run_params):
        beta_key, cross_key, pick_key, proposal_key, accept_key = random.split(key, 5)
        num_params = run_params.NUM_PARAMS
        adapted = state.sample_count > 100 * num_params

        use_fallback = random.uniform(beta_key, dtype=state.values.dtype) <= self.beta
        cov = jnp.where(use_fallback, algo_state.fallback,
                        self._adaptive_covariance(state.sample_count, algo_state, num_params))

        if run_params.NUM_CHAINS > 1 and self.crossover_probability > 0:
            crossover = adapted & (random.uniform(cross_key, dtype=state.values.dtype)
                                   <= self.crossover_probability)
            other = draw_excluding(pick_key, run_params.NUM_CHAINS, [index])
            cov = jnp.where(crossover, ctx.shared[other], cov)

        proposal = sample_gaussian_step(proposal_key, state.values, cov)
        feasible, log_lh_p = evaluate_if_feasible(target, proposal)

        log_ratio = log_lh_p - state.fitness
        accepted = feasible & metropolis_accept(accept_key, log_ratio)

        values = jnp.where(accepted, proposal, state.values)
        fitness = jnp.where(accepted, log_lh_p, state.fitness)

        past_warmup = state.sample_count > run_params.THINNING_INTERVAL * run_params.WARMUP_ITERATIONS
        pushed = algo_state.sigma.push(values)
        sigma = jax.tree_util.tree_map(
            lambda new, old: jnp.where(accepted | past_warmup, new, old),
            pushed, algo_state.sigma,
        )
        return values, fitness, accepted, algo_state._replace(sigma=sigma)
