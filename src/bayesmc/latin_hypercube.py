"""
Latin hypercube sampling on the unit cube.
"""

import jax
import jax.numpy as jnp
import jax.random as random


def latin_hypercube(key, n: int, d: int) -> jnp.ndarray:
    """
    Draw n stratified points in (0, 1)^d.

    Each column splits (0, 1) into n equal strata and places exactly one
    point in every stratum: u[i, j] = (perm_j[i] + v[i, j]) / n with perm_j a
    random permutation of 0..n-1 and v uniform in (0, 1).

    Args:
        key: JAX random key
        n: Number of points
        d: Number of dimensions

    Returns:
        (n, d) array of uniforms strictly inside (0, 1)
    """
    dtype = jnp.result_type(float)
    perm_key, jitter_key = random.split(key)
    column_keys = random.split(perm_key, d)
    strata = jax.vmap(lambda k: random.permutation(k, n))(column_keys).T
    tiny = jnp.finfo(dtype).tiny
    jitter = random.uniform(jitter_key, (n, d), dtype=dtype, minval=tiny, maxval=1.0)
    u = (strata.astype(dtype) + jitter) / n
    return jnp.clip(u, tiny, 1.0 - jnp.finfo(dtype).epsneg)
