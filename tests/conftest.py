"""
Pytest configuration and shared fixtures for bayesmc tests.
"""

import pytest
import numpy as np
import jax
import jax.numpy as jnp

from bayesmc import UniformPrior

# Every test computes in double precision, as the samplers do by default
jax.config.update("jax_enable_x64", True)


@pytest.fixture
def rng_seed():
    """Default RNG seed for reproducible tests."""
    return 42


@pytest.fixture
def base_config(rng_seed):
    """Small but valid sampler configuration for fast runs."""
    return {
        'num_chains': 4,
        'iterations': 200,
        'warmup_iterations': 100,
        'thinning_interval': 5,
        'initial_population_length': 20,
        'output_length': 400,
        'rng_seed': rng_seed,
        'use_double': True,
    }


@pytest.fixture
def uniform_priors():
    """Three U(0, 10) priors."""
    return [UniformPrior(0.0, 10.0) for _ in range(3)]


def make_gaussian_log_likelihood(mu=5.0, sigma=1.0):
    """
    Independent Normal(mu, sigma) log-likelihood (up to a constant) in every
    coordinate.
    """
    mu = jnp.asarray(mu)

    def log_likelihood(x):
        return -0.5 * jnp.sum(((x - mu) / sigma) ** 2)

    return log_likelihood


@pytest.fixture
def gaussian_log_likelihood():
    """Factory fixture: gaussian_log_likelihood(mu, sigma) -> log-likelihood."""
    return make_gaussian_log_likelihood


@pytest.fixture
def normal_5_1():
    """Normal(5, 1) log-likelihood."""
    return make_gaussian_log_likelihood(5.0, 1.0)


@pytest.fixture
def counting_log_likelihood():
    """
    Normal(5, 1) log-likelihood that records every Python-level call.

    JAX traces the function once per compilation, so an empty call list
    means the likelihood was never reached.
    """
    calls = []
    base = make_gaussian_log_likelihood(5.0, 1.0)

    def log_likelihood(x):
        calls.append(1)
        return base(x)

    log_likelihood.calls = calls
    return log_likelihood


def ar1_series(n, phi, seed=0):
    """AR(1) series x_t = phi * x_{t-1} + e_t with standard normal noise."""
    rng = np.random.default_rng(seed)
    e = rng.standard_normal(n)
    x = np.zeros(n)
    for t in range(1, n):
        x[t] = phi * x[t - 1] + e[t]
    return x


@pytest.fixture
def ar1():
    """Factory fixture: ar1(n, phi, seed=0) -> AR(1) series."""
    return ar1_series
