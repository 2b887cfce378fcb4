"""
MCMC Sampler - multi-chain sampling orchestrator.

MCMCSampler owns the configuration, chain lifecycle and all recorded
results. The per-iteration update rule is delegated to a ChainAlgorithm
(RWMH, ARWMH, DEMCz, DEMCzs, HMC, Gibbs).

A run consists of ITERATIONS + ceil(OUTPUT_LENGTH / NUM_CHAINS) outer
steps. Each outer step advances every chain by THINNING_INTERVAL chain
iterations inside one compiled kernel call, then:
    step <= ITERATIONS  -> append to the Markov chains and mean log-likelihood
    step >  ITERATIONS  -> append to the output and update the MAP

Helper methods:
- _validate: Raise SamplerConfigError before any sampling work
- _initialize: Seed chains, population archive and algorithm state
- _ensure_population_capacity: Grow the archive for the coming steps
- _get_kernel: Compile (or reuse) the outer-step kernel
- _check_resume_shapes: Refuse to resume with a different chain count or dimension
- _record_step: Host-side bookkeeping after each outer step
"""

import math
import threading
import time
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

import jax
import jax.numpy as jnp
import numpy as np

from ..error_handling import SamplerConfigError, diagnose_sampler_issues, print_diagnostics
from ..parameter_set import ParameterSet
from .compile import compile_outer_step
from .config import (
    build_target,
    configure_sampler,
    gen_chain_keys,
    gen_rng_keys,
    validate_sampler_inputs,
)
from .initialization import map_initialization, naive_initialization
from .types import ChainState, InitialPopulation, SamplerCarry
from .utils import clean_config

import logging
logger = logging.getLogger('bayesmc')


class MCMCSampler:
    """
    Multi-chain MCMC sampler.

    Args:
        priors: Sequence of D priors exposing minimum, maximum, mean, inverse_cdf
        log_likelihood: JAX-traceable function mapping a (D,) vector to a scalar
        algorithm: ChainAlgorithm deciding how each chain moves
        mcmc_config: Configuration dict, see clean_config for keys and defaults
        optimizer: Optional MAP optimizer
            optimizer(log_likelihood, lower, upper, x0) -> (values, success)

    Example:
        sampler = MCMCSampler(priors, log_lh, ARWMH(), {'num_chains': 4})
        sampler.sample()
        draws = sampler.output_values
    """

    def __init__(self, priors: Sequence, log_likelihood: Callable, algorithm,
                 mcmc_config: Optional[Dict[str, Any]] = None,
                 optimizer: Optional[Callable] = None):
        self.priors = list(priors)
        self.log_likelihood = log_likelihood
        self.algorithm = algorithm
        self.mcmc_config = clean_config(mcmc_config)
        self.optimizer = optimizer

        self.progress_callbacks: List[Callable[[float, str], None]] = []
        self._cancel_event = threading.Event()
        self._simulations = 0
        self._kernels = {}
        self.run_params = None
        self.target = None
        self.diagnostics = None
        self._reset_results()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def num_params(self) -> int:
        return len(self.priors)

    @property
    def num_chains(self) -> int:
        return self.mcmc_config['num_chains']

    def _validate(self) -> None:
        """Raise SamplerConfigError listing every violated constraint."""
        validate_sampler_inputs(self.mcmc_config, self.priors, self.algorithm)

    def _configure(self) -> None:
        """Set precision and build RunParams and the target for the next run."""
        self.run_params = configure_sampler(self.mcmc_config, self.num_params)
        self.target = build_target(self.priors, self.log_likelihood)

    def add_progress_callback(self, callback: Callable[[float, str], None]) -> None:
        """Register callback(fraction_complete, text), called every progress interval."""
        self.progress_callbacks.append(callback)

    def cancel_simulation(self) -> None:
        """Request cooperative cancellation; honoured before the next outer step."""
        self._cancel_event.set()

    def _report_progress(self, fraction: float) -> None:
        text = f"Sampling... {fraction:.0%}"
        for callback in self.progress_callbacks:
            callback(fraction, text)

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def _reset_results(self) -> None:
        self._carry: Optional[SamplerCarry] = None
        self._chain_values: List[np.ndarray] = []
        self._chain_fitness: List[np.ndarray] = []
        self._output_values: List[np.ndarray] = []
        self._output_fitness: List[np.ndarray] = []
        self._mean_log_likelihood: List[float] = []
        self._initial = None
        self.map = ParameterSet(np.empty(0), -math.inf)
        self.map_distribution = None

    def initialize_chains(self) -> InitialPopulation:
        """
        Seed the chains (naive or MAP-guided) without sampling.

        Returns:
            InitialPopulation with chain seeds and the population archive
        """
        if self.run_params is None:
            self._configure()
        run_params = self.run_params
        _, init_key = gen_rng_keys(self.mcmc_config['rng_seed'])

        logger.info("Initializing chains from the priors...")
        population = naive_initialization(
            init_key, self.priors, self.log_likelihood,
            run_params.NUM_CHAINS, run_params.INITIAL_POPULATION_LENGTH,
        )

        if run_params.INITIALIZE_WITH_MAP:
            logger.info("Initializing chains from the MAP (Laplace approximation)...")
            result = map_initialization(
                init_key, self.priors, self.log_likelihood, run_params.NUM_CHAINS,
                run_params.INITIAL_POPULATION_LENGTH, population, self.optimizer,
            )
            if result is None:
                logger.warning("MAP initialization failed; falling back to prior initialization")
            else:
                population = result.population
                self.map = result.map
                self.map_distribution = result.distribution

        return population

    def _initialize(self) -> None:
        """Build a fresh carry: chain seeds, keys, population archive, algorithm state."""
        self._reset_results()
        run_params = self.run_params
        population = self.initialize_chains()
        self._initial = population

        master_key, _ = gen_rng_keys(self.mcmc_config['rng_seed'])
        num_chains = run_params.NUM_CHAINS
        states = ChainState(
            values=jnp.asarray(population.chain_values),
            fitness=jnp.asarray(population.chain_fitness),
            sample_count=jnp.zeros(num_chains, dtype=jnp.int32),
            accept_count=jnp.zeros(num_chains, dtype=jnp.int32),
        )
        algo_state = self.algorithm.init_state(
            run_params.NUM_PARAMS, num_chains, self.map_distribution
        )
        self._carry = SamplerCarry(
            states=states,
            algo_state=algo_state,
            keys=gen_chain_keys(master_key, num_chains),
            population=jnp.asarray(population.population_values),
            population_fitness=jnp.asarray(population.population_fitness),
            population_count=jnp.asarray(population.population_values.shape[0], dtype=jnp.int32),
        )

    def _ensure_population_capacity(self, steps: int) -> None:
        """Grow the archive so it can hold every chain state of the coming steps."""
        if not self.algorithm.population_sampler:
            return
        carry = self._carry
        count = int(carry.population_count)
        needed = count + steps * self.run_params.NUM_CHAINS
        capacity = carry.population.shape[0]
        if capacity >= needed:
            return
        extra = needed - capacity
        self._carry = carry._replace(
            population=jnp.concatenate(
                [carry.population,
                 jnp.zeros((extra, carry.population.shape[1]), dtype=carry.population.dtype)]
            ),
            population_fitness=jnp.concatenate(
                [carry.population_fitness,
                 jnp.full((extra,), -jnp.inf, dtype=carry.population_fitness.dtype)]
            ),
        )

    def _get_kernel(self, parallel: bool):
        carry = self._carry
        cache_key = (parallel, self.run_params, carry.population.shape)
        compiled = self._kernels.get(cache_key)
        if compiled is None:
            compiled, _ = compile_outer_step(
                self.algorithm, self.target, self.run_params, parallel, carry
            )
            self._kernels[cache_key] = compiled
        return compiled

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def sample(self, parallel: bool = True, resume: bool = False) -> None:
        """
        Run the sampler.

        Args:
            parallel: Advance chains in parallel (vmap) or one after another.
                Results are identical for a fixed seed.
            resume: Continue the chains, archive and adaptive statistics of
                the previous run. Ignored if there is no previous run.

        Proposals outside the prior support are always rejected. With
        parallel=True the vmapped branch lowers to a select, so the
        log-likelihood is still evaluated at such proposals and its value
        discarded. It must therefore return (not raise) for any input;
        use parallel=False if evaluating outside the support is unsafe.

        After the run the chain history is checked with
        diagnose_sampler_issues; the result is stored in self.diagnostics.

        Raises:
            SamplerConfigError: If the configuration is invalid, or if a
                resumed run changes the number of chains or parameters.
                Raised before any likelihood evaluation.
        """
        # --- 1. VALIDATE ---
        logger.info("Validating sampler configuration...")
        self._validate()
        logger.info("Configuration is valid")

        self._cancel_event.clear()
        self._configure()

        # --- 2. INITIALIZE OR RESUME ---
        if resume and self._simulations > 0 and self._carry is not None:
            self._check_resume_shapes()
            logger.info(f"Resuming from {len(self._chain_values)} recorded steps")
            self._output_values = []
            self._output_fitness = []
        else:
            self._kernels = {}
            self._initialize()

        run_params = self.run_params
        total = run_params.TOTAL_ITERATIONS
        self._ensure_population_capacity(total)
        kernel = self._get_kernel(parallel)

        # --- 3. RUN OUTER STEPS ---
        logger.info(f"\n--- MCMC RUN ({type(self.algorithm).__name__}, "
                    f"{run_params.NUM_CHAINS} chains, {total} steps) ---")
        start_time = time.perf_counter()
        completed = 0
        for step in range(1, total + 1):
            if self._cancel_event.is_set():
                logger.warning(f"Sampling cancelled after {completed} of {total} steps")
                break

            self._carry = kernel(self._carry)
            self._record_step(step)
            completed = step

            if step % run_params.PROGRESS_INTERVAL == 0:
                self._report_progress(step / total)

        wall_time = time.perf_counter() - start_time
        logger.info(f"\n--- MCMC Run Summary ---")
        logger.info(f"  Total Wall Time: {timedelta(seconds=int(wall_time))} ({wall_time:.2f}s)")
        logger.info(f"  Mean acceptance rate: {np.mean(self.acceptance_rates):.3f}")
        self.diagnostics = diagnose_sampler_issues(
            self.chain_values, self.chain_fitness, self.acceptance_rates,
            warmup=run_params.WARMUP_ITERATIONS,
        )
        print_diagnostics(self.diagnostics)
        self._simulations += 1

    def _check_resume_shapes(self) -> None:
        """Resuming needs the stored carry to match the chain count and dimension."""
        errors = []
        stored_chains, stored_params = self._carry.states.values.shape
        if stored_chains != self.run_params.NUM_CHAINS:
            errors.append(
                f"Cannot resume: previous run has {stored_chains} chains, "
                f"num_chains is now {self.run_params.NUM_CHAINS}"
            )
        if stored_params != self.run_params.NUM_PARAMS:
            errors.append(
                f"Cannot resume: previous run has {stored_params} parameters, "
                f"now {self.run_params.NUM_PARAMS} priors"
            )
        if errors:
            raise SamplerConfigError(errors)

    def _record_step(self, step: int) -> None:
        """Copy the end-of-step chain states to host and file them by phase."""
        values, fitness = jax.device_get((self._carry.states.values, self._carry.states.fitness))
        values = np.asarray(values)
        fitness = np.asarray(fitness)

        if step <= self.run_params.ITERATIONS:
            self._chain_values.append(values)
            self._chain_fitness.append(fitness)
            self._mean_log_likelihood.append(float(np.mean(fitness)))
        else:
            self._output_values.append(values)
            self._output_fitness.append(fitness)
            best = int(np.argmax(fitness))
            if fitness[best] > self.map.fitness:
                self.map = ParameterSet(values[best], fitness[best])

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    @property
    def chain_values(self) -> np.ndarray:
        """Recorded chain states, (C, n, D)."""
        if not self._chain_values:
            return np.empty((self.num_chains, 0, self.num_params))
        return np.stack(self._chain_values, axis=1)

    @property
    def chain_fitness(self) -> np.ndarray:
        """Log-likelihood of the recorded chain states, (C, n)."""
        if not self._chain_fitness:
            return np.empty((self.num_chains, 0))
        return np.stack(self._chain_fitness, axis=1)

    @property
    def markov_chains(self) -> List[List[ParameterSet]]:
        """Recorded chain history as ParameterSets, one list per chain."""
        values, fitness = self.chain_values, self.chain_fitness
        return [
            [ParameterSet(values[c, i], fitness[c, i]) for i in range(values.shape[1])]
            for c in range(values.shape[0])
        ]

    @property
    def output(self) -> List[List[ParameterSet]]:
        """Posterior draws as ParameterSets, one list per chain."""
        if not self._output_values:
            return [[] for _ in range(self.num_chains)]
        values = np.stack(self._output_values, axis=1)
        fitness = np.stack(self._output_fitness, axis=1)
        return [
            [ParameterSet(values[c, i], fitness[c, i]) for i in range(values.shape[1])]
            for c in range(values.shape[0])
        ]

    @property
    def output_values(self) -> np.ndarray:
        """All posterior draws as a flat (N, D) array, step-major."""
        if not self._output_values:
            return np.empty((0, self.num_params))
        return np.concatenate(self._output_values, axis=0)

    @property
    def output_fitness(self) -> np.ndarray:
        if not self._output_fitness:
            return np.empty((0,))
        return np.concatenate(self._output_fitness, axis=0)

    @property
    def population_matrix(self) -> List[ParameterSet]:
        """The population archive of a population sampler: initial candidates plus
        every chain state appended after each outer step."""
        if self._carry is None or not self.algorithm.population_sampler:
            return []
        count = int(self._carry.population_count)
        values = np.asarray(self._carry.population[:count])
        fitness = np.asarray(self._carry.population_fitness[:count])
        return [ParameterSet(v, f) for v, f in zip(values, fitness)]

    @property
    def initial_states(self) -> List[ParameterSet]:
        if self._initial is None:
            return []
        values = np.asarray(self._initial.chain_values)
        fitness = np.asarray(self._initial.chain_fitness)
        return [ParameterSet(v, f) for v, f in zip(values, fitness)]

    @property
    def accept_count(self) -> np.ndarray:
        if self._carry is None:
            return np.zeros(self.num_chains, dtype=np.int64)
        return np.asarray(self._carry.states.accept_count)

    @property
    def sample_count(self) -> np.ndarray:
        if self._carry is None:
            return np.zeros(self.num_chains, dtype=np.int64)
        return np.asarray(self._carry.states.sample_count)

    @property
    def acceptance_rates(self) -> np.ndarray:
        """Accepted / attempted proposals per chain."""
        samples = self.sample_count
        return np.where(samples > 0, self.accept_count / np.maximum(samples, 1), 0.0)

    @property
    def mean_log_likelihood(self) -> np.ndarray:
        """Across-chain mean log-likelihood per recorded step."""
        return np.asarray(self._mean_log_likelihood)
