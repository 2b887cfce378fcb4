"""
Outer-Step Kernel Construction and Compilation.

This module builds and compiles the function that advances every chain by
one outer step:
- build_outer_step: Pure function SamplerCarry -> SamplerCarry
- compile_outer_step: AOT-compile the outer step for a concrete carry

Inside one outer step each chain runs THINNING_INTERVAL chain iterations
against a snapshot of all chains taken before the step. Shared structures
(the population archive) are only written after every chain has finished,
which is the barrier between outer steps.
"""

import time
from typing import Any, Tuple

import jax
import jax.numpy as jnp
import jax.random as random

from .types import ChainState, RunParams, SamplerCarry, StepContext, TargetDensity

import logging
logger = logging.getLogger('bayesmc')


def build_outer_step(algorithm, target: TargetDensity, run_params: RunParams, parallel: bool):
    """
    Build the outer-step function for one sampler configuration.

    Args:
        algorithm: ChainAlgorithm instance
        target: TargetDensity (log-likelihood and support bounds)
        run_params: RunParams
        parallel: If True chains are vmapped; otherwise they run one after
            another with lax.map. Both see the same snapshot, so they
            produce the same draws.

    Returns:
        outer_step(carry) -> carry
    """
    num_chains = run_params.NUM_CHAINS
    thinning = run_params.THINNING_INTERVAL

    def outer_step(carry: SamplerCarry) -> SamplerCarry:
        # --- 1. SNAPSHOT OF ALL CHAINS (READ-ONLY DURING THE STEP) ---
        ctx = StepContext(
            chain_values=carry.states.values,
            chain_fitness=carry.states.fitness,
            shared=algorithm.snapshot(carry.states, carry.algo_state, run_params),
            population=carry.population,
            population_count=carry.population_count,
        )

        # --- 2. ADVANCE ONE CHAIN BY THE THINNING INTERVAL ---
        def run_chain(args):
            index, key, state, algo_state = args

            def body(_, c):
                key, state, algo_state = c
                key, step_key = random.split(key)
                state = state._replace(sample_count=state.sample_count + 1)
                values, fitness, accepted, algo_state = algorithm.chain_iteration(
                    step_key, index, state, algo_state, ctx, target, run_params
                )
                state = ChainState(
                    values=values.astype(state.values.dtype),
                    fitness=fitness.astype(state.fitness.dtype),
                    sample_count=state.sample_count,
                    accept_count=state.accept_count + accepted.astype(state.accept_count.dtype),
                )
                return key, state, algo_state

            return jax.lax.fori_loop(0, thinning, body, (key, state, algo_state))

        # --- 3. ALL CHAINS (PARALLEL OR SEQUENTIAL) ---
        chain_args = (jnp.arange(num_chains), carry.keys, carry.states, carry.algo_state)
        if parallel:
            keys, states, algo_state = jax.vmap(run_chain)(chain_args)
        else:
            keys, states, algo_state = jax.lax.map(run_chain, chain_args)

        # --- 4. BARRIER: UPDATE SHARED POPULATION ARCHIVE ---
        population = carry.population
        population_fitness = carry.population_fitness
        population_count = carry.population_count
        if algorithm.population_sampler:
            # dynamic_update_slice needs every start index in one integer dtype
            column = jnp.zeros((), dtype=population_count.dtype)
            population = jax.lax.dynamic_update_slice(
                population, states.values, (population_count, column)
            )
            population_fitness = jax.lax.dynamic_update_slice(
                population_fitness, states.fitness, (population_count,)
            )
            population_count = population_count + num_chains

        return SamplerCarry(
            states=states,
            algo_state=algo_state,
            keys=keys,
            population=population,
            population_fitness=population_fitness,
            population_count=population_count,
        )

    return outer_step


def compile_outer_step(algorithm, target: TargetDensity, run_params: RunParams,
                       parallel: bool, initial_carry: SamplerCarry) -> Tuple[Any, float]:
    """
    Compile the outer-step kernel ahead of time.

    Args:
        algorithm: ChainAlgorithm instance
        target: TargetDensity
        run_params: RunParams
        parallel: Vectorise chains (True) or run them sequentially (False)
        initial_carry: Carry with the shapes and dtypes of the run

    Returns:
        Tuple of (compiled_step_fn, compile_time)
    """
    outer_step = build_outer_step(algorithm, target, run_params, parallel)
    step_jit = jax.jit(outer_step)

    logger.info(f"Compiling {type(algorithm).__name__} kernel "
                f"({'parallel' if parallel else 'sequential'} chains)...")
    compile_start = time.perf_counter()

    # AOT compilation with explicit arguments
    compiled_fn = step_jit.lower(initial_carry).compile()

    compile_time = time.perf_counter() - compile_start
    logger.info(f"Done ({compile_time:.4f}s)")
    return compiled_fn, compile_time
