"""
MCMC Package - Multi-chain sampling engine.

Main Entry Point:
    MCMCSampler - Configure, initialize and run multi-chain samplers

Configuration:
    clean_config - Fill config defaults
    configure_sampler - Build immutable RunParams
    validate_sampler_inputs - Raise SamplerConfigError for invalid setups
    gen_rng_keys - Master/init PRNG keys from a seed

Types:
    RunParams, ChainState, StepContext, SamplerCarry, TargetDensity

Diagnostics:
    compute_rhat, effective_sample_size, summarize_output,
    print_rhat_summary, print_acceptance_summary
"""

from .types import ChainState, RunParams, SamplerCarry, StepContext, TargetDensity
from .utils import clean_config
from .config import configure_sampler, gen_rng_keys, validate_sampler_inputs
from .sampler import MCMCSampler
from .diagnostics import (
    compute_rhat,
    effective_sample_size,
    print_acceptance_summary,
    print_rhat_summary,
    summarize_output,
)

__all__ = [
    'MCMCSampler',
    'clean_config',
    'configure_sampler',
    'validate_sampler_inputs',
    'gen_rng_keys',
    'RunParams',
    'ChainState',
    'StepContext',
    'SamplerCarry',
    'TargetDensity',
    'compute_rhat',
    'effective_sample_size',
    'summarize_output',
    'print_rhat_summary',
    'print_acceptance_summary',
]
