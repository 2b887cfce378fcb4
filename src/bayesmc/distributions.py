"""
Prior and importance distributions consumed by the samplers.

The samplers only need a narrow contract from a prior:
    minimum, maximum, mean  - support bounds and central value (floats)
    inverse_cdf(u)          - quantile function, vectorised over u

Priors are plain frozen dataclasses holding Python floats, so they can be
built before the floating point precision is chosen. All array math uses
jax.numpy so inverse_cdf works on traced values.

Classes:
    UniformPrior: Continuous uniform on [minimum, maximum]
    NormalPrior: Normal(mu, sigma) with unbounded support
    TruncatedNormalPrior: Normal(mu, sigma) restricted to [minimum, maximum]
    MultivariateNormal: Importance distribution / Laplace approximation
"""

import math
from dataclasses import dataclass

import jax.numpy as jnp
import jax.random as random
from jax.scipy.linalg import solve_triangular
from jax.scipy.special import ndtr, ndtri
from jax.scipy.stats import norm
import numpy as np


@dataclass(frozen=True)
class UniformPrior:
    minimum: float
    maximum: float

    @property
    def mean(self) -> float:
        return 0.5 * (self.minimum + self.maximum)

    def inverse_cdf(self, u):
        return self.minimum + u * (self.maximum - self.minimum)


@dataclass(frozen=True)
class NormalPrior:
    mu: float = 0.0
    sigma: float = 1.0

    @property
    def minimum(self) -> float:
        return -math.inf

    @property
    def maximum(self) -> float:
        return math.inf

    @property
    def mean(self) -> float:
        return self.mu

    def inverse_cdf(self, u):
        return self.mu + self.sigma * ndtri(u)


@dataclass(frozen=True)
class TruncatedNormalPrior:
    """Normal(mu, sigma) truncated to [minimum, maximum]."""
    mu: float
    sigma: float
    minimum: float
    maximum: float

    @property
    def mean(self) -> float:
        a = (self.minimum - self.mu) / self.sigma
        b = (self.maximum - self.mu) / self.sigma
        mass = ndtr(b) - ndtr(a)
        return float(self.mu + self.sigma * (norm.pdf(a) - norm.pdf(b)) / mass)

    def inverse_cdf(self, u):
        lo = ndtr((self.minimum - self.mu) / self.sigma)
        hi = ndtr((self.maximum - self.mu) / self.sigma)
        x = self.mu + self.sigma * ndtri(lo + u * (hi - lo))
        return jnp.clip(x, self.minimum, self.maximum)


class MultivariateNormal:
    """
    Multivariate normal distribution N(mean, covariance).

    Used as the importance distribution for SNIS and as the Laplace
    approximation of the posterior after MAP optimisation. Sampling goes
    through inverse_cdf so that stratified (Latin hypercube) uniforms can
    be mapped to draws.
    """

    def __init__(self, mean, covariance):
        self.mean = jnp.asarray(mean, dtype=jnp.result_type(float))
        self.covariance = jnp.asarray(covariance, dtype=self.mean.dtype)
        d = self.mean.shape[0]
        if self.covariance.shape == (d, d):
            self.cholesky = jnp.linalg.cholesky(self.covariance)
        else:
            self.cholesky = jnp.full((d, d), jnp.nan, dtype=self.mean.dtype)

    @property
    def dimension(self) -> int:
        return self.mean.shape[0]

    @property
    def is_valid(self) -> bool:
        """True if the covariance is square, matches the mean and is positive definite."""
        d = self.dimension
        if self.covariance.shape != (d, d):
            return False
        if not np.allclose(np.asarray(self.covariance), np.asarray(self.covariance).T):
            return False
        return bool(jnp.all(jnp.isfinite(self.cholesky)))

    def inverse_cdf(self, u):
        """
        Map uniforms to draws: mean + L @ ndtri(u).

        Args:
            u: Uniforms in (0, 1), shape (D,) or (n, D)

        Returns:
            Draws with the same leading shape as u
        """
        z = ndtri(u)
        return self.mean + z @ self.cholesky.T

    def sample(self, key, n: int):
        z = random.normal(key, (n, self.dimension), dtype=self.mean.dtype)
        return self.mean + z @ self.cholesky.T

    def log_pdf(self, x):
        """Log density, vectorised over a leading axis of x."""
        x = jnp.asarray(x)
        diff = jnp.atleast_2d(x - self.mean)
        y = solve_triangular(self.cholesky, diff.T, lower=True)
        log_det = 2.0 * jnp.sum(jnp.log(jnp.diag(self.cholesky)))
        log_density = -0.5 * (self.dimension * jnp.log(2.0 * jnp.pi) + log_det + jnp.sum(y ** 2, axis=0))
        return log_density if x.ndim > 1 else log_density[0]


def prior_bounds(priors):
    """Return (lower, upper, mean) arrays for a sequence of priors."""
    dtype = jnp.result_type(float)
    lower = jnp.array([p.minimum for p in priors], dtype=dtype)
    upper = jnp.array([p.maximum for p in priors], dtype=dtype)
    mean = jnp.array([p.mean for p in priors], dtype=dtype)
    return lower, upper, mean


def priors_inverse_cdf(priors, u):
    """Apply each prior's inverse CDF to its column of u (n, D)."""
    return jnp.stack([p.inverse_cdf(u[:, j]) for j, p in enumerate(priors)], axis=1)
