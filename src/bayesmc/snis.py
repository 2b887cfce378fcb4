"""
Self-Normalized Importance Sampling (SNIS).

Not a Markov chain: every draw is independent. Draws come either from the
priors (naive Monte Carlo) or from a multivariate normal importance
distribution, and carry the unnormalized log-weight

    naive:       w_i = logL(x_i)
    importance:  w_i = logL(x_i) - log q(x_i)

Weights are normalized with log-sum-exp, and OUTPUT_LENGTH unweighted
posterior draws are resampled from the weighted empirical CDF at the
Weibull plotting positions i / (n + 1).
"""

from typing import Any, Callable, Dict, List, Optional, Sequence

import jax
import jax.numpy as jnp
import jax.random as random
import numpy as np
from jax.scipy.special import logsumexp

from .distributions import MultivariateNormal, prior_bounds, priors_inverse_cdf
from .error_handling import SamplerConfigError, validate_priors
from .mcmc.config import gen_rng_keys
from .mcmc.initialization import bfgs_optimizer, laplace_approximation, naive_initialization
from .mcmc.sampler import MCMCSampler
from .parameter_set import ParameterSet

import logging
logger = logging.getLogger('bayesmc')


def normalize_log_weights(log_weights) -> jnp.ndarray:
    """
    Normalized weights exp(w_i - logsumexp(w)).

    Draws with log-weight -inf (or NaN) get weight exactly 0. If every
    weight is -inf all normalized weights are 0.
    """
    log_weights = jnp.asarray(log_weights)
    finite = jnp.isfinite(log_weights)
    safe = jnp.where(finite, log_weights, -jnp.inf)
    log_norm = logsumexp(safe)
    weights = jnp.where(finite, jnp.exp(safe - log_norm), 0.0)
    return jnp.where(jnp.isfinite(log_norm), weights, 0.0)


def resample_indices(weights, n_out: int) -> np.ndarray:
    """
    Indices drawn from the weighted empirical CDF at plotting positions.

    Uses u_i = i / (n_out + 1), i = 1..n_out, scaled to the total weight, and
    a monotone (left) search over the cumulative weights, so a draw with
    zero weight is never selected.

    Args:
        weights: Non-negative weights (n,), in the order the CDF is built
        n_out: Number of indices to return

    Returns:
        (n_out,) non-decreasing integer array
    """
    cdf = jnp.cumsum(jnp.asarray(weights))
    positions = jnp.arange(1, n_out + 1, dtype=cdf.dtype) / (n_out + 1) * cdf[-1]
    idx = jnp.searchsorted(cdf, positions, side='left')
    return np.asarray(jnp.clip(idx, 0, cdf.shape[0] - 1))


class SNIS(MCMCSampler):
    """
    Self-normalized importance sampler.

    Args:
        priors: Sequence of D priors
        log_likelihood: JAX-traceable log-likelihood
        importance: Optional importance distribution. None means naive Monte
            Carlo from the priors, unless initialize_with_map succeeds, in
            which case the Laplace approximation at the MAP is used.
        mcmc_config: Configuration dict. num_chains, warmup_iterations,
            thinning_interval and initial_population_length default to
            1, 0, 1, 1 and must keep those values; iterations defaults to 100000.
        optimizer: Optional MAP optimizer
    """

    def __init__(self, priors: Sequence, log_likelihood: Callable,
                 importance: Optional[MultivariateNormal] = None,
                 mcmc_config: Optional[Dict[str, Any]] = None,
                 optimizer: Optional[Callable] = None):
        mcmc_config = dict(mcmc_config or {})
        mcmc_config.setdefault('num_chains', 1)
        mcmc_config.setdefault('warmup_iterations', 0)
        mcmc_config.setdefault('thinning_interval', 1)
        mcmc_config.setdefault('initial_population_length', 1)
        mcmc_config.setdefault('iterations', 100000)
        super().__init__(priors, log_likelihood, None, mcmc_config, optimizer)
        self.importance = importance
        self._reset_draws()

    def _reset_draws(self) -> None:
        self._draws = np.empty((0, self.num_params))
        self._fitness = np.empty(0)
        self._weights = np.empty(0)
        self._output_idx = np.empty(0, dtype=np.int64)
        self._importance_used = None

    def _validate(self) -> None:
        config = self.mcmc_config
        errors = validate_priors(self.priors)
        if config['num_chains'] != 1:
            errors.append(f"SNIS uses exactly 1 chain, got {config['num_chains']}")
        if config['warmup_iterations'] != 0:
            errors.append(f"SNIS has no warmup iterations, got {config['warmup_iterations']}")
        if config['thinning_interval'] != 1:
            errors.append(f"thinning_interval must be 1 for SNIS, got {config['thinning_interval']}")
        if config['initial_population_length'] != 1:
            errors.append(
                f"initial_population_length must be 1 for SNIS, got {config['initial_population_length']}"
            )
        if config['output_length'] < 100:
            errors.append(f"output_length must be >= 100, got {config['output_length']}")
        if config['iterations'] < config['output_length']:
            errors.append(
                f"iterations ({config['iterations']}) cannot be less than "
                f"output_length ({config['output_length']})"
            )
        if self.importance is not None:
            if self.importance.dimension != self.num_params:
                errors.append(
                    f"Importance distribution has dimension {self.importance.dimension}, "
                    f"expected {self.num_params}"
                )
            elif not self.importance.is_valid:
                errors.append("Importance distribution covariance must be symmetric positive definite")
        if errors:
            raise SamplerConfigError(errors)

    def _map_importance(self) -> Optional[MultivariateNormal]:
        """Laplace approximation at the MAP, or None (naive sampling) on failure."""
        logger.info("Building the importance distribution from the MAP...")
        _, init_key = gen_rng_keys(self.mcmc_config['rng_seed'])
        start = naive_initialization(init_key, self.priors, self.log_likelihood, 1, 1)
        lower, upper, _ = prior_bounds(self.priors)
        optimizer = self.optimizer or bfgs_optimizer

        map_values, success = optimizer(self.log_likelihood, lower, upper, start.chain_values[0])
        distribution = None
        if success:
            distribution = laplace_approximation(
                self.log_likelihood, jnp.asarray(map_values, dtype=lower.dtype)
            )
        if distribution is None:
            logger.warning("MAP initialization failed; falling back to naive Monte Carlo")
        self.map_distribution = distribution
        return distribution

    def sample(self, parallel: bool = True, resume: bool = False) -> None:
        """
        Draw, weight and resample.

        Draws are always evaluated in parallel and never resumed; the
        arguments exist for interface compatibility with MCMCSampler.
        """
        logger.info("Validating sampler configuration...")
        self._validate()
        logger.info("Configuration is valid")
        self._configure()
        self._reset_results()
        self._reset_draws()
        run_params = self.run_params

        # --- 1. IMPORTANCE DISTRIBUTION ---
        importance = self.importance
        if importance is None and run_params.INITIALIZE_WITH_MAP:
            importance = self._map_importance()
        self._importance_used = importance

        # --- 2. DRAW AND WEIGHT ---
        master_key, _ = gen_rng_keys(self.mcmc_config['rng_seed'])
        n = run_params.ITERATIONS
        lower, upper, _ = prior_bounds(self.priors)
        dtype = lower.dtype
        u = random.uniform(master_key, (n, self.num_params), dtype=dtype,
                           minval=jnp.finfo(dtype).tiny, maxval=1.0)

        if importance is not None:
            logger.info(f"Importance sampling {n} draws from the multivariate normal...")
            draws = importance.inverse_cdf(u)
        else:
            logger.info(f"Naive Monte Carlo sampling {n} draws from the priors...")
            draws = priors_inverse_cdf(self.priors, u).astype(dtype)

        fitness = jax.jit(jax.vmap(self.log_likelihood))(draws)
        fitness = jnp.where(jnp.isnan(fitness), -jnp.inf, fitness)
        if importance is not None:
            log_weights = fitness - importance.log_pdf(draws)
            # Draws outside the prior support have zero posterior mass
            feasible = jnp.all((draws >= lower) & (draws <= upper), axis=1)
            log_weights = jnp.where(feasible, log_weights, -jnp.inf)
        else:
            log_weights = fitness
        log_weights = jnp.where(jnp.isnan(log_weights), -jnp.inf, log_weights)

        # --- 3. MAP AND NORMALIZATION ---
        best = int(jnp.argmax(log_weights))
        if bool(jnp.isfinite(log_weights[best])):
            self.map = ParameterSet(np.asarray(draws[best]), float(fitness[best]),
                                    float(log_weights[best]))
        weights = normalize_log_weights(log_weights)

        # --- 4. RESAMPLE FROM THE WEIGHTED CDF ---
        order = np.argsort(np.asarray(fitness), kind='stable')
        self._draws = np.asarray(draws)[order]
        self._fitness = np.asarray(fitness)[order]
        self._weights = np.asarray(weights)[order]

        if not np.any(self._weights > 0):
            logger.warning("Every importance weight is zero; no output draws were produced")
        else:
            self._output_idx = resample_indices(self._weights, run_params.OUTPUT_LENGTH)

        self._report_progress(1.0)
        self._simulations += 1

    @property
    def weights(self) -> np.ndarray:
        """Normalized importance weights, aligned with chain_values[0]."""
        return self._weights

    @property
    def chain_values(self) -> np.ndarray:
        """All draws sorted by ascending fitness, (1, n, D)."""
        return self._draws[None]

    @property
    def chain_fitness(self) -> np.ndarray:
        return self._fitness[None]

    @property
    def markov_chains(self) -> List[List[ParameterSet]]:
        """All draws as ParameterSets carrying their normalized weights."""
        return [[ParameterSet(v, f, w) for v, f, w in zip(self._draws, self._fitness, self._weights)]]

    @property
    def output(self) -> List[List[ParameterSet]]:
        idx = self._output_idx
        return [[ParameterSet(self._draws[i], self._fitness[i], self._weights[i]) for i in idx]]

    @property
    def output_values(self) -> np.ndarray:
        return self._draws[self._output_idx]

    @property
    def output_fitness(self) -> np.ndarray:
        return self._fitness[self._output_idx]

    @property
    def population_matrix(self) -> List[ParameterSet]:
        return []

    @property
    def accept_count(self) -> np.ndarray:
        return np.zeros(1, dtype=np.int64)

    @property
    def sample_count(self) -> np.ndarray:
        return np.zeros(1, dtype=np.int64)
