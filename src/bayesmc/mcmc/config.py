"""
Sampler Configuration and Validation.

This module handles setting up and validating sampler configurations:
- configure_sampler: Build immutable RunParams from a config dict
- validate_sampler_inputs: Validate config, priors and algorithm together
- build_target: Bundle the log-likelihood with prior support bounds
- gen_rng_keys: Generate JAX random keys
- gen_chain_keys: Split one independent key per chain

All config keys use lowercase with underscores (e.g., 'num_chains', 'rng_seed').
"""

from typing import Any, Dict, Sequence, Tuple

import jax
import jax.random as random

from ..distributions import prior_bounds
from ..error_handling import SamplerConfigError, validate_priors, validate_sampler_config
from .types import RunParams, TargetDensity

import logging
logger = logging.getLogger('bayesmc')


def gen_rng_keys(rng_seed: int) -> Tuple[Any, Any]:
    """Generate JAX random keys from seed.

    Returns:
        (master_key, init_key): Tuple of JAX PRNGKeys
    """
    mkey = jax.random.PRNGKey(rng_seed)
    master_key, init_key = random.split(mkey, 2)
    return master_key, init_key


def gen_chain_keys(master_key, num_chains: int):
    """One key per chain, derived only from the master key."""
    return random.split(master_key, num_chains)


def validate_sampler_inputs(mcmc_config: Dict[str, Any], priors: Sequence, algorithm) -> None:
    """
    Validate everything a run needs before any sampling work begins.

    Args:
        mcmc_config: Cleaned configuration dict
        priors: Sequence of prior distributions
        algorithm: Chain algorithm, or None when the caller validates its own rules

    Raises:
        SamplerConfigError: Listing every violated constraint
    """
    errors = validate_sampler_config(mcmc_config)
    errors += validate_priors(priors)

    if algorithm is not None:
        n_chains = mcmc_config.get('num_chains', 1)
        if n_chains < algorithm.min_chains:
            errors.append(
                f"{type(algorithm).__name__} requires at least {algorithm.min_chains} chains, "
                f"got {n_chains}"
            )
        errors += algorithm.validate(len(priors), mcmc_config)

    if errors:
        raise SamplerConfigError(errors)


def configure_sampler(mcmc_config: Dict[str, Any], num_params: int) -> RunParams:
    """
    Configure precision and build RunParams from a cleaned config dict.

    Args:
        mcmc_config: Configuration dict (after clean_config)
        num_params: Number of free parameters D

    Returns:
        run_params: Frozen RunParams for this run
    """
    if mcmc_config['use_double']:
        jax.config.update("jax_enable_x64", True)
    else:
        jax.config.update("jax_enable_x64", False)

    return RunParams(
        NUM_CHAINS=int(mcmc_config['num_chains']),
        NUM_PARAMS=int(num_params),
        ITERATIONS=int(mcmc_config['iterations']),
        WARMUP_ITERATIONS=int(mcmc_config['warmup_iterations']),
        THINNING_INTERVAL=int(mcmc_config['thinning_interval']),
        OUTPUT_LENGTH=int(mcmc_config['output_length']),
        INITIAL_POPULATION_LENGTH=int(mcmc_config['initial_population_length']),
        INITIALIZE_WITH_MAP=bool(mcmc_config['initialize_with_map']),
        PROGRESS_CHANGED_RATE=float(mcmc_config['progress_changed_rate']),
    )


def build_target(priors: Sequence, log_likelihood) -> TargetDensity:
    """Bundle the log-likelihood with the prior support bounds."""
    lower, upper, _ = prior_bounds(priors)
    return TargetDensity(log_likelihood=log_likelihood, lower=lower, upper=upper)
