"""
Streaming covariance estimation for adaptive proposals.

RunningCovarianceMatrix keeps the sufficient statistics (count, mean,
scatter) of a stream of vectors and updates them with Welford's one-pass
algorithm. It is a NamedTuple, so it is a JAX pytree: one instance per
chain can be carried through a jitted loop and vmapped across chains.
"""

from typing import NamedTuple

import jax
import jax.numpy as jnp


class RunningCovarianceMatrix(NamedTuple):
    """
    Online covariance accumulator.

    Attributes:
        n: Number of vectors pushed so far (scalar)
        mean: Running mean (D,)
        scatter: Sum of outer products of deviations from the mean (D, D)
    """
    n: jnp.ndarray
    mean: jnp.ndarray
    scatter: jnp.ndarray

    @classmethod
    def create(cls, d: int, dtype=None) -> 'RunningCovarianceMatrix':
        """Empty accumulator for d-dimensional vectors."""
        dtype = dtype or jnp.result_type(float)
        return cls(
            n=jnp.zeros((), dtype=jnp.int32),
            mean=jnp.zeros(d, dtype=dtype),
            scatter=jnp.zeros((d, d), dtype=dtype),
        )

    @classmethod
    def from_samples(cls, samples) -> 'RunningCovarianceMatrix':
        """Accumulator after pushing each row of samples in order."""
        samples = jnp.asarray(samples)
        init = cls.create(samples.shape[1], samples.dtype)

        def body(acc, x):
            return acc.push(x), None

        final, _ = jax.lax.scan(body, init, samples)
        return final

    def push(self, x) -> 'RunningCovarianceMatrix':
        """
        Add one vector to the running statistics.

        Welford update: with delta = x - mean_old,
            mean_new = mean_old + delta / n
            scatter_new = scatter_old + outer(delta, x - mean_new)

        Args:
            x: Vector (D,)

        Returns:
            New accumulator; self is unchanged.
        """
        n = self.n + 1
        delta = x - self.mean
        mean = self.mean + delta / n
        scatter = self.scatter + jnp.outer(delta, x - mean)
        # outer(delta, x - mean) is symmetric in exact arithmetic only
        scatter = 0.5 * (scatter + scatter.T)
        return RunningCovarianceMatrix(n=n, mean=mean, scatter=scatter)

    @property
    def covariance(self) -> jnp.ndarray:
        """Sample covariance scatter / (N - 1). Meaningful for N >= 2."""
        return self.scatter / (self.n - 1)
