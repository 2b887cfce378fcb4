"""
Chain Initialization.

Functions for seeding chains before sampling:
- evaluate_candidates: Vectorised log-likelihood over candidate vectors
- naive_initialization: Prior mean plus Latin hypercube draws from the priors
- bfgs_optimizer: Default MAP optimizer (BFGS via jax.scipy.optimize)
- laplace_approximation: Multivariate normal from the Hessian at the MAP
- map_initialization: Optimizer + Laplace approximation seeding

MAP-guided seeding returns None on any failure so the caller can fall back
to naive seeding.
"""

import math
from typing import Callable, NamedTuple, Optional, Sequence, Tuple

import jax
import jax.numpy as jnp
import numpy as np
from jax.scipy.optimize import minimize

from ..distributions import MultivariateNormal, prior_bounds, priors_inverse_cdf
from ..latin_hypercube import latin_hypercube
from ..parameter_set import ParameterSet
from .types import InitialPopulation

import logging
logger = logging.getLogger('bayesmc')

# Covariance inflation applied to the Laplace approximation for wider coverage
LAPLACE_INFLATION = 1.2


class MAPResult(NamedTuple):
    population: InitialPopulation
    map: ParameterSet
    distribution: MultivariateNormal


def evaluate_candidates(log_likelihood: Callable, candidates) -> jnp.ndarray:
    """
    Log-likelihood of each row of candidates, NaN mapped to -inf.

    Args:
        log_likelihood: JAX-traceable function of a (D,) vector
        candidates: (n, D) array

    Returns:
        (n,) array of fitness values
    """
    if candidates.shape[0] == 0:
        return jnp.zeros((0,), dtype=candidates.dtype)
    fitness = jax.jit(jax.vmap(log_likelihood))(candidates)
    return jnp.where(jnp.isnan(fitness), -jnp.inf, fitness)


def naive_initialization(key, priors: Sequence, log_likelihood: Callable,
                         num_chains: int, population_length: int) -> InitialPopulation:
    """
    Seed chains from the prior mean and stratified prior draws.

    The prior mean is the first candidate; the remaining population_length - 1
    candidates map Latin hypercube uniforms through each prior's inverse CDF.
    Candidates are ranked by fitness (descending) and the best num_chains
    become the starting states. Every candidate goes into the population.

    Args:
        key: JAX random key
        priors: Sequence of D priors
        log_likelihood: Target log-likelihood
        num_chains: Number of chains C
        population_length: Number of candidates P >= C

    Returns:
        InitialPopulation
    """
    d = len(priors)
    _, _, prior_mean = prior_bounds(priors)

    candidates = prior_mean[None, :]
    if population_length > 1:
        u = latin_hypercube(key, population_length - 1, d)
        draws = priors_inverse_cdf(priors, u).astype(prior_mean.dtype)
        candidates = jnp.concatenate([candidates, draws], axis=0)

    fitness = evaluate_candidates(log_likelihood, candidates)

    # Stable sort keeps the prior mean first among ties
    order = np.argsort(-np.asarray(fitness), kind='stable')[:num_chains]
    return InitialPopulation(
        chain_values=candidates[order],
        chain_fitness=fitness[order],
        population_values=candidates,
        population_fitness=fitness,
    )


def bfgs_optimizer(log_likelihood: Callable, lower, upper, x0) -> Tuple[jnp.ndarray, bool]:
    """
    Maximize the log-likelihood with BFGS from x0.

    Returns:
        (best_values, success). Success requires convergence to a finite
        optimum inside [lower, upper].
    """
    result = minimize(lambda x: -log_likelihood(x), x0, method='BFGS')
    x = result.x
    success = (
        bool(result.success)
        and bool(jnp.all(jnp.isfinite(x)))
        and bool(jnp.isfinite(result.fun))
        and bool(jnp.all((x >= lower) & (x <= upper)))
    )
    return x, success


def laplace_approximation(log_likelihood: Callable, map_values,
                          inflation: float = LAPLACE_INFLATION) -> Optional[MultivariateNormal]:
    """
    Multivariate normal approximation of the posterior at the MAP.

    The covariance is the inverse of the observed Fisher information -H,
    scaled by inflation.

    Returns:
        MultivariateNormal, or None if -H is singular or not positive definite
    """
    hessian = jax.hessian(log_likelihood)(map_values)
    fisher = -0.5 * (hessian + hessian.T)
    if not bool(jnp.all(jnp.isfinite(fisher))):
        return None
    try:
        covariance = np.linalg.inv(np.asarray(fisher)) * inflation
    except np.linalg.LinAlgError:
        return None
    covariance = 0.5 * (covariance + covariance.T)
    distribution = MultivariateNormal(map_values, covariance)
    if not distribution.is_valid:
        return None
    return distribution


def map_initialization(key, priors: Sequence, log_likelihood: Callable, num_chains: int,
                       population_length: int, start: InitialPopulation,
                       optimizer: Optional[Callable] = None) -> Optional[MAPResult]:
    """
    Seed chains from a Laplace approximation around the MAP.

    The optimizer starts from the best naive candidate. The default,
    bfgs_optimizer, is a local method rather than a global search such as
    differential evolution: on a multimodal likelihood it finds the mode
    nearest that candidate. Pass a global optimizer with the same signature
    when that matters.

    Draws from the approximation use Latin hypercube uniforms; draws
    outside the prior support are discarded and the first num_chains
    feasible draws seed the chains.

    Args:
        key: JAX random key
        priors: Sequence of priors
        log_likelihood: Target log-likelihood
        num_chains: Number of chains C
        population_length: Number of draws from the approximation
        start: Naive population; its best chain value is the optimizer start
        optimizer: optimizer(log_likelihood, lower, upper, x0) -> (values, success)

    Returns:
        MAPResult, or None if any stage fails
    """
    optimizer = optimizer or bfgs_optimizer
    lower, upper, _ = prior_bounds(priors)

    map_values, success = optimizer(log_likelihood, lower, upper, start.chain_values[0])
    if not success:
        logger.warning("MAP optimization did not converge")
        return None
    map_values = jnp.asarray(map_values, dtype=lower.dtype)
    map_fitness = float(evaluate_candidates(log_likelihood, map_values[None, :])[0])
    if not math.isfinite(map_fitness):
        logger.warning("MAP optimum has non-finite log-likelihood")
        return None

    distribution = laplace_approximation(log_likelihood, map_values)
    if distribution is None:
        logger.warning("Hessian at the MAP is singular or not negative definite")
        return None

    u = latin_hypercube(key, population_length, len(priors))
    draws = distribution.inverse_cdf(u)
    feasible = np.asarray(jnp.all((draws >= lower) & (draws <= upper), axis=1))
    if feasible.sum() < num_chains:
        logger.warning(
            f"Only {int(feasible.sum())} of {population_length} Laplace draws lie inside "
            f"the prior support, need {num_chains}"
        )
        return None

    draws = draws[np.flatnonzero(feasible)]
    fitness = evaluate_candidates(log_likelihood, draws)
    population = InitialPopulation(
        chain_values=draws[:num_chains],
        chain_fitness=fitness[:num_chains],
        population_values=draws,
        population_fitness=fitness,
    )
    return MAPResult(
        population=population,
        map=ParameterSet(np.asarray(map_values), map_fitness),
        distribution=distribution,
    )
