"""
Hamiltonian Monte Carlo.

Each iteration:
    1. Jitter the step size eps ~ U(0, 2 * step_size) and the number of
       leapfrog steps L = ceil(U(0, 2 * steps)) to avoid periodic orbits.
    2. Draw momentum phi ~ N(0, M) with diagonal mass matrix M.
    3. Integrate (x, phi) with L leapfrog steps, then negate phi.
    4. Accept with log ratio  dlogL + K(phi_0) - K(phi_L),
       where K(phi) = 0.5 * sum(phi^2 / m).

Coordinates that leave the prior support during integration are clamped
to just inside the bound instead of aborting the trajectory. This keeps
every trajectory usable at the cost of exact reversibility near bounds.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import jax
import jax.numpy as jnp
import jax.random as random
import numpy as np

from .common import ChainAlgorithm, metropolis_accept, safe_log_likelihood


def numerical_gradient(log_likelihood: Callable) -> Callable:
    """
    Central-difference gradient of a log-likelihood.

    Step size per coordinate is eps^(1/3) * max(|x_i|, 1).
    """
    def gradient(x):
        h = jnp.finfo(x.dtype).eps ** (1.0 / 3.0) * jnp.maximum(jnp.abs(x), 1.0)
        shifts = jnp.diag(h)
        f_plus = jax.vmap(log_likelihood)(x + shifts)
        f_minus = jax.vmap(log_likelihood)(x - shifts)
        return (f_plus - f_minus) / (2.0 * h)
    return gradient


def clamp_to_support(x, lower, upper):
    """Clamp coordinates outside [lower, upper] to one machine epsilon inside the bound."""
    eps = jnp.finfo(x.dtype).eps
    lower_inset = lower + eps * jnp.maximum(jnp.abs(lower), 1.0)
    upper_inset = upper - eps * jnp.maximum(jnp.abs(upper), 1.0)
    x = jnp.where(x < lower, lower_inset, x)
    return jnp.where(x > upper, upper_inset, x)


def leapfrog(x, phi, step_size, n_steps, gradient, inverse_mass, lower, upper):
    """
    Leapfrog integration of Hamiltonian dynamics.

    Half momentum step, then n_steps alternating full position and momentum
    updates where the final momentum update is a half step.

    Args:
        x: Initial position (D,)
        phi: Initial momentum (D,)
        step_size: Integration step size
        n_steps: Number of position updates (>= 1, may be traced)
        gradient: Gradient of the log-likelihood
        inverse_mass: 1 / m, per coordinate (D,)
        lower, upper: Prior support bounds for clamping (D,)

    Returns:
        (x, phi) at the end of the trajectory, momentum not negated
    """
    phi = phi + 0.5 * step_size * gradient(x)

    def body(i, carry):
        x, phi = carry
        x = clamp_to_support(x + step_size * inverse_mass * phi, lower, upper)
        factor = jnp.where(i == n_steps - 1, 0.5, 1.0)
        phi = phi + factor * step_size * gradient(x)
        return x, phi

    return jax.lax.fori_loop(0, n_steps, body, (x, phi))


def kinetic_energy(phi, inverse_mass):
    return 0.5 * jnp.sum(inverse_mass * phi * phi)


@dataclass(frozen=True)
class HMC(ChainAlgorithm):
    """
    Hamiltonian Monte Carlo with a diagonal mass matrix.

    Args:
        mass: Per-coordinate mass (D,), default ones
        step_size: Nominal leapfrog step size
        steps: Nominal number of leapfrog steps
        gradient: Gradient of the log-likelihood; numerical differences if None
    """
    mass: Optional[Any] = None
    step_size: float = 0.1
    steps: int = 10
    gradient: Optional[Callable] = None

    def get_mass(self, num_params: int, dtype=None):
        dtype = dtype or jnp.result_type(float)
        if self.mass is None:
            return jnp.ones(num_params, dtype=dtype)
        return jnp.asarray(self.mass, dtype=dtype)

    def validate(self, num_params: int, mcmc_config: Dict[str, Any]) -> List[str]:
        errors = []
        if self.mass is not None:
            mass = np.asarray(self.mass, dtype=np.float64).reshape(-1)
            if mass.shape[0] != num_params:
                errors.append(f"mass must have length {num_params}, got {mass.shape[0]}")
            elif not np.all(mass > 0):
                errors.append("mass must be strictly positive")
        if not self.step_size > 0:
            errors.append(f"step_size must be > 0, got {self.step_size}")
        if self.steps < 1:
            errors.append(f"steps must be >= 1, got {self.steps}")
        return errors

    def chain_iteration(self, key, index, state, algo_state, ctx, target, run_params):
        eps_key, steps_key, phi_key, accept_key = random.split(key, 4)
        dtype = state.values.dtype
        mass = self.get_mass(run_params.NUM_PARAMS, dtype)
        inverse_mass = 1.0 / mass
        gradient = self.gradient or numerical_gradient(target.log_likelihood)

        step_size = random.uniform(eps_key, dtype=dtype, minval=0.0, maxval=2.0 * self.step_size)
        n_steps = jnp.ceil(random.uniform(steps_key, dtype=dtype, minval=0.0, maxval=2.0 * self.steps))
        n_steps = jnp.maximum(n_steps, 1).astype(jnp.int32)

        phi = jnp.sqrt(mass) * random.normal(phi_key, state.values.shape, dtype=dtype)
        kinetic_i = kinetic_energy(phi, inverse_mass)

        proposal, phi = leapfrog(state.values, phi, step_size, n_steps, gradient,
                                 inverse_mass, target.lower, target.upper)
        phi = -phi
        kinetic_p = kinetic_energy(phi, inverse_mass)

        log_lh_p = safe_log_likelihood(target, proposal)
        log_ratio = log_lh_p - state.fitness + kinetic_i - kinetic_p
        accepted = jnp.all(jnp.isfinite(proposal)) & metropolis_accept(accept_key, log_ratio)

        values = jnp.where(accepted, proposal, state.values)
        fitness = jnp.where(accepted, log_lh_p, state.fitness)
        return values, fitness, accepted, algo_state
