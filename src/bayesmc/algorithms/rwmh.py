"""
Random-Walk Metropolis-Hastings with a fixed proposal covariance.

Proposal: x' ~ N(x_current, Sigma)
Hastings ratio: 0 (symmetric proposal, q(x'|x) = q(x|x'))

Proposals outside the prior support are rejected without evaluating the
likelihood. Accepted with probability min(1, L(x') / L(x)).
"""

from dataclasses import dataclass
from typing import Any, Dict, List

import jax.numpy as jnp
import jax.random as random
import numpy as np

from .common import (
    ChainAlgorithm,
    evaluate_if_feasible,
    metropolis_accept,
    sample_gaussian_step,
)


def validate_covariance(cov, num_params: int, name: str) -> List[str]:
    """Check that cov is a symmetric positive definite (D, D) matrix."""
    cov = np.asarray(cov, dtype=np.float64)
    if cov.shape != (num_params, num_params):
        return [f"{name} must have shape ({num_params}, {num_params}), got {cov.shape}"]
    if not np.allclose(cov, cov.T):
        return [f"{name} must be symmetric"]
    try:
        np.linalg.cholesky(cov)
    except np.linalg.LinAlgError:
        return [f"{name} must be positive definite"]
    return []


@dataclass(frozen=True)
class RWMH(ChainAlgorithm):
    """
    Random-Walk Metropolis-Hastings.

    Args:
        proposal_covariance: (D, D) covariance of the Gaussian random-walk step
    """
    proposal_covariance: Any

    def validate(self, num_params: int, mcmc_config: Dict[str, Any]) -> List[str]:
        return validate_covariance(self.proposal_covariance, num_params, 'proposal_covariance')

    def chain_iteration(self, key, index, state, algo_state, ctx, target, run_params):
        proposal_key, accept_key = random.split(key)
        cov = jnp.asarray(self.proposal_covariance, dtype=state.values.dtype)

        proposal = sample_gaussian_step(proposal_key, state.values, cov)
        feasible, log_lh_p = evaluate_if_feasible(target, proposal)

        log_ratio = log_lh_p - state.fitness
        accepted = feasible & metropolis_accept(accept_key, log_ratio)

        values = jnp.where(accepted, proposal, state.values)
        fitness = jnp.where(accepted, log_lh_p, state.fitness)
        return values, fitness, accepted, algo_state
