"""
Differential Evolution Markov Chain samplers (ter Braak & Vrugt, 2008).

DEMCz proposes moves along the difference of two past states drawn from
the population archive Z:

    x' = x + g * (z_r1 - z_r2) + e,    e ~ U(-noise, noise)^D

with g = 1 with probability jump_threshold (lets chains jump between
modes) and g = 2.38 / sqrt(2D) otherwise.

DEMCzs adds the snooker update with probability snooker_threshold. A
chain c is picked and its state z defines the line through x and z. The
difference of two further chains' states is projected onto that line:

    x' = x + g' * proj_(x - z)(z_c1 - z_c2),    g' ~ U(1.2, 2.2)

The snooker move is not volume preserving, so the log acceptance ratio
gains the Jacobian term (D - 1) * (log|x' - z| - log|x - z|).
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import jax
import jax.numpy as jnp
import jax.random as random

from .common import (
    ChainAlgorithm,
    draw_excluding,
    evaluate_if_feasible,
    metropolis_accept,
)


def snooker_proposal(x, z, z1, z2, gamma):
    """
    Snooker proposal along the line through x and z.

    Args:
        x: Current state (D,)
        z: State of the chain defining the line (D,)
        z1, z2: States whose difference is projected onto the line (D,)
        gamma: Step multiplier

    Returns:
        Proposal x + gamma * proj_(x - z)(z1 - z2), which lies on the line
        through x and z
    """
    line = x - z
    coef = jnp.dot(z1 - z2, line) / jnp.dot(line, line)
    return x + gamma * coef * line


def parallel_direction_proposal(x, z1, z2, gamma, noise):
    """x + gamma * (z1 - z2) + noise."""
    return x + gamma * (z1 - z2) + noise


@dataclass(frozen=True)
class DEMCzs(ChainAlgorithm):
    """
    DEMC with sampling from the past and snooker updates.

    Args:
        jump: Default difference multiplier (default 2.38 / sqrt(2D))
        jump_threshold: Probability of using a unit multiplier (mode jumping)
        snooker_threshold: Probability of a snooker update
        noise: Half-width of the uniform jitter added to parallel moves
    """
    jump: Optional[float] = None
    jump_threshold: float = 0.1
    snooker_threshold: float = 0.1
    noise: float = 1e-3

    min_chains = 3
    population_sampler = True

    def get_jump(self, num_params: int) -> float:
        return self.jump if self.jump is not None else 2.38 / math.sqrt(2 * num_params)

    def validate(self, num_params: int, mcmc_config: Dict[str, Any]) -> List[str]:
        errors = []
        jump = self.get_jump(num_params)
        if not 0 < jump < 2:
            errors.append(f"jump must be in (0, 2), got {jump}")
        if not 0 <= self.jump_threshold <= 1:
            errors.append(f"jump_threshold must be in [0, 1], got {self.jump_threshold}")
        if not 0 <= self.snooker_threshold <= 0.5:
            errors.append(f"snooker_threshold must be in [0, 0.5], got {self.snooker_threshold}")
        if self.noise < 0:
            errors.append(f"noise must be >= 0, got {self.noise}")
        return errors

    def _parallel_move(self, key, state, ctx, target, run_params):
        gamma_key, r1_key, r2_key, noise_key, accept_key = random.split(key, 5)
        dtype = state.values.dtype

        gamma = jnp.where(random.uniform(gamma_key, dtype=dtype) <= self.jump_threshold,
                          1.0, self.get_jump(run_params.NUM_PARAMS))

        # Two distinct rows of the archive
        r1 = random.randint(r1_key, (), 0, ctx.population_count)
        r2 = random.randint(r2_key, (), 0, ctx.population_count - 1)
        r2 = r2 + (r2 >= r1).astype(r2.dtype)

        e = random.uniform(noise_key, state.values.shape, dtype=dtype,
                           minval=-self.noise, maxval=self.noise)
        proposal = parallel_direction_proposal(
            state.values, ctx.population[r1], ctx.population[r2], gamma, e
        )
        feasible, log_lh_p = evaluate_if_feasible(target, proposal)
        log_ratio = log_lh_p - state.fitness
        accepted = feasible & metropolis_accept(accept_key, log_ratio)
        return proposal, log_lh_p, accepted

    def _snooker_move(self, key, index, state, ctx, target, run_params):
        gamma_key, c_key, c1_key, c2_key, accept_key = random.split(key, 5)
        num_chains = run_params.NUM_CHAINS
        dtype = state.values.dtype

        gamma = random.uniform(gamma_key, dtype=dtype, minval=1.2, maxval=2.2)

        c = draw_excluding(c_key, num_chains, [index])
        c1 = draw_excluding(c1_key, num_chains, [c])
        c2 = draw_excluding(c2_key, num_chains, [c, c1])

        z = ctx.chain_values[c]
        proposal = snooker_proposal(state.values, z, ctx.chain_values[c1],
                                    ctx.chain_values[c2], gamma)
        feasible, log_lh_p = evaluate_if_feasible(target, proposal)

        log_jacobian = (run_params.NUM_PARAMS - 1) * (
            jnp.log(jnp.linalg.norm(proposal - z)) - jnp.log(jnp.linalg.norm(state.values - z))
        )
        log_ratio = log_lh_p - state.fitness + log_jacobian
        accepted = feasible & metropolis_accept(accept_key, log_ratio)
        return proposal, log_lh_p, accepted

    def chain_iteration(self, key, index, state, algo_state, ctx, target, run_params):
        choice_key, move_key = random.split(key)

        if self.snooker_threshold > 0:
            use_snooker = (
                (random.uniform(choice_key, dtype=state.values.dtype) <= self.snooker_threshold)
                & (state.sample_count > 5 * run_params.THINNING_INTERVAL)
            )
            proposal, log_lh_p, accepted = jax.lax.cond(
                use_snooker,
                lambda k: self._snooker_move(k, index, state, ctx, target, run_params),
                lambda k: self._parallel_move(k, state, ctx, target, run_params),
                move_key,
            )
        else:
            proposal, log_lh_p, accepted = self._parallel_move(move_key, state, ctx, target, run_params)

        values = jnp.where(accepted, proposal, state.values)
        fitness = jnp.where(accepted, log_lh_p, state.fitness)
        return values, fitness, accepted, algo_state


@dataclass(frozen=True)
class DEMCz(DEMCzs):
    """DEMC with sampling from the past, without snooker updates."""
    snooker_threshold: float = 0.0

    def validate(self, num_params: int, mcmc_config: Dict[str, Any]) -> List[str]:
        errors = super().validate(num_params, mcmc_config)
        if self.snooker_threshold != 0:
            errors.append(f"DEMCz does not use snooker updates, got snooker_threshold={self.snooker_threshold}")
        return errors
