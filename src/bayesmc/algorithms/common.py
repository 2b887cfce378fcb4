"""
Common utilities for chain algorithms.

This module provides the shared pieces every chain-update rule is built
from, plus the base class that defines the algorithm interface.

Constants:
    COV_NUGGET: Small regularization constant for covariance Cholesky factors

Functions:
    safe_log_likelihood: Evaluate the target, mapping NaN to -inf
    is_feasible: True if every coordinate lies within its prior support
    evaluate_if_feasible: Evaluate the target only for feasible proposals
    metropolis_accept: Log-space Metropolis test
    regularize_covariance: Add nugget regularization to a covariance matrix
    sample_gaussian_step: Draw x + L z for a covariance matrix
    draw_excluding: Uniform integer draw that skips a few excluded values

Classes:
    ChainAlgorithm: Base class for chain-update strategies
"""

from typing import Any, Dict, List

import jax
import jax.numpy as jnp
import jax.random as random


# Regularization constant for covariance matrix factorization
# Small enough to not affect well-conditioned matrices,
# large enough to keep adaptive covariances factorizable
COV_NUGGET = 1e-10


def safe_log_likelihood(target, x):
    """Evaluate the log-likelihood, treating NaN as -inf so it always loses."""
    log_lh = target.log_likelihood(x)
    return jnp.where(jnp.isnan(log_lh), -jnp.inf, log_lh)


def is_feasible(x, lower, upper):
    """True if every coordinate of x lies within [lower, upper]."""
    return jnp.all((x >= lower) & (x <= upper))


def evaluate_if_feasible(target, x):
    """
    Evaluate a proposal only if it lies inside the prior support.

    Infeasible proposals get -inf without calling the likelihood. Under vmap
    the cond lowers to a select, so the likelihood is computed and discarded.

    Returns:
        feasible: Boolean scalar
        log_lh: Log-likelihood of x, or -inf if infeasible
    """
    feasible = is_feasible(x, target.lower, target.upper)
    log_lh = jax.lax.cond(
        feasible,
        lambda v: safe_log_likelihood(target, v).astype(v.dtype),
        lambda v: jnp.array(-jnp.inf, dtype=v.dtype),
        x,
    )
    return feasible, log_lh


def metropolis_accept(key, log_ratio):
    """
    Log-space Metropolis test: log(U) <= log_ratio.

    NaN ratios (e.g. -inf minus -inf) are mapped to -inf and always reject.
    """
    dtype = jnp.result_type(float)
    u = random.uniform(key, dtype=dtype, minval=jnp.finfo(dtype).tiny, maxval=1.0)
    log_ratio = jnp.where(jnp.isnan(log_ratio), -jnp.inf, log_ratio)
    return jnp.log(u) <= log_ratio


def regularize_covariance(cov):
    """Symmetrize and add nugget * I to a covariance matrix."""
    cov = 0.5 * (cov + cov.T)
    return cov + COV_NUGGET * jnp.eye(cov.shape[0], dtype=cov.dtype)


def sample_gaussian_step(key, x, cov):
    """Draw x + L z with L the Cholesky factor of the regularized covariance."""
    L = jnp.linalg.cholesky(regularize_covariance(cov))
    z = random.normal(key, x.shape, dtype=x.dtype)
    return x + L @ z


def draw_excluding(key, n: int, excluded):
    """
    Draw uniformly from {0, ..., n-1} minus a set of distinct excluded values.

    Draws from the n - k remaining values and shifts the draw past each
    excluded value in ascending order.

    Args:
        key: JAX random key
        n: Size of the full range
        excluded: Sequence of k distinct integer scalars (may be traced)

    Returns:
        Integer scalar not in excluded
    """
    excluded = jnp.sort(jnp.stack([jnp.asarray(e, dtype=jnp.int32) for e in excluded]))
    r = random.randint(key, (), 0, n - excluded.shape[0], dtype=jnp.int32)
    for i in range(excluded.shape[0]):
        r = r + (r >= excluded[i]).astype(jnp.int32)
    return r


class ChainAlgorithm:
    """
    Base class for chain-update strategies.

    Subclasses are frozen dataclasses holding tuning settings only. Per-chain
    adaptive statistics live in the algorithm state returned by init_state
    and are threaded through the kernel by the sampler, one slice per chain.

    Class attributes:
        min_chains: Fewest chains the algorithm can run with
        population_sampler: If True the sampler keeps the population archive
            growing with every chain state after each outer step
    """
    min_chains = 1
    population_sampler = False

    def validate(self, num_params: int, mcmc_config: Dict[str, Any]) -> List[str]:
        """Return a list of messages for violated algorithm settings."""
        return []

    def init_state(self, num_params: int, num_chains: int, map_distribution=None):
        """Per-chain algorithm state with a leading chain axis. Default: none."""
        return ()

    def snapshot(self, states, algo_state, run_params):
        """Shared read-only view of all chains taken before each outer step."""
        return ()

    def chain_iteration(self, key, index, state, algo_state, ctx, target, run_params):
        """
        Advance one chain by a single iteration.

        Args:
            key: JAX random key for this iteration
            index: Chain index (traced int)
            state: ChainState of this chain, sample_count already incremented
            algo_state: This chain's slice of the algorithm state
            ctx: StepContext snapshot of all chains
            target: TargetDensity
            run_params: RunParams

        Returns:
            values: New parameter vector (D,)
            fitness: Log-likelihood of values
            accepted: Boolean scalar, True if a proposal was accepted
            algo_state: Updated algorithm state for this chain
        """
        raise NotImplementedError
