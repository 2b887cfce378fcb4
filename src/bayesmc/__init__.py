"""
bayesmc - Bayesian posterior sampling with JAX

Public API:
    Samplers:
        MCMCSampler - Multi-chain sampler driven by a chain algorithm
        SNIS - Self-normalized importance sampler

    Chain Algorithms:
        RWMH - Random-walk Metropolis-Hastings with a fixed covariance
        ARWMH - Adaptive random-walk Metropolis-Hastings
        DEMCz - Differential evolution MC sampling from the past
        DEMCzs - DEMCz with snooker updates
        HMC - Hamiltonian Monte Carlo
        Gibbs - Caller-supplied conditional sampler
        ChainAlgorithm - Base class for custom algorithms

    Distributions:
        UniformPrior, NormalPrior, TruncatedNormalPrior - Priors
        MultivariateNormal - Importance distribution / Laplace approximation

    Values & Statistics:
        ParameterSet - Parameter vector with fitness and weight
        RunningCovarianceMatrix - Streaming covariance accumulator

    Diagnostics:
        compute_rhat - Gelman-Rubin R-hat
        effective_sample_size - ESS of a series
        summarize_output - Per-parameter posterior summary
        print_acceptance_summary - Log acceptance rates

    Errors:
        SamplerConfigError - Invalid configuration (lists every violation)

Example:
    import jax.numpy as jnp
    from bayesmc import MCMCSampler, ARWMH, UniformPrior

    def log_lh(x):
        return -0.5 * jnp.sum((x - 5.0) ** 2)

    priors = [UniformPrior(0.0, 10.0) for _ in range(3)]
    sampler = MCMCSampler(priors, log_lh, ARWMH(), {'num_chains': 4, 'rng_seed': 1})
    sampler.sample()
    draws = sampler.output_values
"""
# CRITICAL: Import jax_config FIRST to set environment variables before JAX loads
from . import jax_config  # noqa: F401

from .parameter_set import ParameterSet
from .running_covariance import RunningCovarianceMatrix
from .distributions import (
    MultivariateNormal,
    NormalPrior,
    TruncatedNormalPrior,
    UniformPrior,
)
from .error_handling import SamplerConfigError, diagnose_sampler_issues, print_diagnostics
from .algorithms import (
    ARWMH,
    ChainAlgorithm,
    DEMCz,
    DEMCzs,
    Gibbs,
    HMC,
    RWMH,
)
from .mcmc import (
    MCMCSampler,
    compute_rhat,
    effective_sample_size,
    print_acceptance_summary,
    summarize_output,
)
from .snis import SNIS

__all__ = [
    'MCMCSampler',
    'SNIS',
    'RWMH',
    'ARWMH',
    'DEMCz',
    'DEMCzs',
    'HMC',
    'Gibbs',
    'ChainAlgorithm',
    'UniformPrior',
    'NormalPrior',
    'TruncatedNormalPrior',
    'MultivariateNormal',
    'ParameterSet',
    'RunningCovarianceMatrix',
    'SamplerConfigError',
    'diagnose_sampler_issues',
    'print_diagnostics',
    'compute_rhat',
    'effective_sample_size',
    'summarize_output',
    'print_acceptance_summary',
]
