"""
Error Handling and Validation Utilities for the samplers.

This module provides the configuration error type, base configuration
validation and post-run diagnostic tools.
"""

from typing import Any, Dict, List

import numpy as np

import logging
logger = logging.getLogger('bayesmc')


class SamplerConfigError(ValueError):
    """
    Raised when a sampler configuration violates one or more constraints.

    Every violated constraint is listed, not just the first one found.

    Attributes:
        errors: List of individual constraint messages
    """

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Invalid sampler configuration:\n  " + "\n  ".join(self.errors))


def validate_sampler_config(mcmc_config: Dict[str, Any]) -> List[str]:
    """
    Checks the algorithm-independent run settings.

    Args:
        mcmc_config: Configuration dictionary (after clean_config)

    Returns:
        errors: List of messages, empty if the configuration is valid
    """
    errors = []

    # Check required keys (all lowercase)
    required_keys = ['num_chains', 'iterations', 'warmup_iterations',
                     'thinning_interval', 'initial_population_length', 'output_length']
    for key in required_keys:
        if key not in mcmc_config:
            errors.append(f"Missing required config key: '{key}'")

    if 'num_chains' in mcmc_config:
        if mcmc_config['num_chains'] < 1:
            errors.append(f"num_chains must be >= 1, got {mcmc_config['num_chains']}")

    if 'iterations' in mcmc_config:
        if mcmc_config['iterations'] < 100:
            errors.append(f"iterations must be >= 100, got {mcmc_config['iterations']}")

    if 'warmup_iterations' in mcmc_config:
        warmup = mcmc_config['warmup_iterations']
        if warmup < 1:
            errors.append(f"warmup_iterations must be >= 1, got {warmup}")
        if 'iterations' in mcmc_config and warmup > mcmc_config['iterations'] // 2:
            errors.append(
                f"warmup_iterations ({warmup}) cannot exceed half of iterations "
                f"({mcmc_config['iterations'] // 2})"
            )

    if 'thinning_interval' in mcmc_config:
        if mcmc_config['thinning_interval'] < 1:
            errors.append(f"thinning_interval must be >= 1, got {mcmc_config['thinning_interval']}")

    if 'initial_population_length' in mcmc_config:
        n_pop = mcmc_config['initial_population_length']
        n_chains = mcmc_config.get('num_chains', 1)
        if n_pop < n_chains:
            errors.append(
                f"initial_population_length ({n_pop}) must be >= num_chains ({n_chains})"
            )

    if 'output_length' in mcmc_config:
        if mcmc_config['output_length'] < 100:
            errors.append(f"output_length must be >= 100, got {mcmc_config['output_length']}")

    if 'progress_changed_rate' in mcmc_config:
        rate = mcmc_config['progress_changed_rate']
        if rate <= 0 or rate > 1:
            errors.append(f"progress_changed_rate must be in (0, 1], got {rate}")

    return errors


def validate_priors(priors) -> List[str]:
    """Check that there is at least one prior and every support is non-empty."""
    errors = []
    if len(priors) < 1:
        errors.append("At least one prior distribution is required")
    for i, prior in enumerate(priors):
        if not prior.minimum < prior.maximum:
            errors.append(
                f"Prior {i} has empty support [{prior.minimum}, {prior.maximum}]"
            )
    return errors


ACCEPTANCE_TOO_LOW = 0.05
ACCEPTANCE_TOO_HIGH = 0.95


def diagnose_sampler_issues(chain_values: np.ndarray, chain_fitness: np.ndarray,
                            acceptance_rates: np.ndarray, warmup: int = 0) -> Dict[str, List[str]]:
    """
    Inspect a finished run for common sampling problems.

    Args:
        chain_values: Recorded chain states (n_chains, n_steps, n_params)
        chain_fitness: Log-likelihood of the recorded states (n_chains, n_steps)
        acceptance_rates: Per-chain acceptance rates (n_chains,)
        warmup: Leading steps ignored by the stuck-chain check

    Returns:
        Dict with 'issues', 'warnings' and 'info' message lists
    """
    diagnostics = {'issues': [], 'warnings': [], 'info': []}
    n_chains, n_steps = chain_fitness.shape

    if not np.all(np.isfinite(chain_values)):
        diagnostics['issues'].append("Chain history contains NaN or Inf parameter values")
    if not np.all(np.isfinite(chain_fitness)):
        diagnostics['issues'].append(
            "Chain history contains states with non-finite log-likelihood"
        )

    never = int(np.sum(acceptance_rates == 0.0)) if n_steps > 0 else 0
    if never:
        diagnostics['issues'].append(f"{never} chain(s) never accepted a proposal")

    # Chains that never accepted are already reported as issues
    kept = chain_values[:, warmup:]
    if kept.shape[1] > 1:
        stuck = int(np.sum(np.all(kept == kept[:, :1], axis=(1, 2)))) - never
        if stuck > 0:
            diagnostics['warnings'].append(
                f"{stuck} chain(s) did not move after warmup"
            )

    low = int(np.sum((acceptance_rates > 0.0) & (acceptance_rates < ACCEPTANCE_TOO_LOW)))
    if low:
        diagnostics['warnings'].append(
            f"{low} chain(s) accept fewer than {ACCEPTANCE_TOO_LOW:.0%} of proposals, "
            f"proposal scale too large"
        )
    high = int(np.sum(acceptance_rates > ACCEPTANCE_TOO_HIGH))
    if high:
        diagnostics['warnings'].append(
            f"{high} chain(s) accept more than {ACCEPTANCE_TOO_HIGH:.0%} of proposals, "
            f"proposal scale may be too small"
        )

    diagnostics['info'].append(f"Recorded steps per chain: {n_steps}")
    diagnostics['info'].append(f"Number of chains: {n_chains}")
    diagnostics['info'].append(f"Number of parameters: {chain_values.shape[2]}")
    return diagnostics


def print_diagnostics(diagnostics: Dict[str, List[str]]) -> None:
    """Log the messages produced by diagnose_sampler_issues."""
    for issue in diagnostics['issues']:
        logger.error(f"  [ERROR] {issue}")
    for warning in diagnostics['warnings']:
        logger.warning(f"  [WARN] {warning}")
    for info in diagnostics['info']:
        logger.info(f"  {info}")
    if not diagnostics['issues'] and not diagnostics['warnings']:
        logger.info("  No sampling issues detected")
