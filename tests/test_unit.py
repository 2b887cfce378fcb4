"""
Unit Tests for bayesmc building blocks

Tests individual components in isolation: value types, running covariance,
distributions, proposal helpers, SNIS weighting and diagnostics.
Run with: pytest tests/test_unit.py -v
"""

import math

import numpy as np
import jax
import jax.numpy as jnp
import jax.random
import pytest
from scipy import stats as scipy_stats

from bayesmc import (
    MultivariateNormal,
    NormalPrior,
    ParameterSet,
    RunningCovarianceMatrix,
    TruncatedNormalPrior,
    UniformPrior,
    compute_rhat,
    diagnose_sampler_issues,
    effective_sample_size,
)
from bayesmc.algorithms import leapfrog, numerical_gradient, snooker_proposal
from bayesmc.algorithms.common import draw_excluding, metropolis_accept
from bayesmc.algorithms.hmc import clamp_to_support
from bayesmc.distributions import prior_bounds, priors_inverse_cdf
from bayesmc.latin_hypercube import latin_hypercube
from bayesmc.mcmc.config import gen_rng_keys
from bayesmc.snis import normalize_log_weights, resample_indices


# ============================================================================
# PARAMETER SET TESTS
# ============================================================================

class TestParameterSet:
    """Test the immutable ParameterSet value type."""

    def test_weight_defaults_to_fitness(self):
        p = ParameterSet([1.0, 2.0], -3.5)
        assert p.weight == -3.5
        assert len(p) == 2

    def test_default_fitness_is_minus_infinity(self):
        p = ParameterSet([0.0])
        assert p.fitness == -math.inf

    def test_nan_fitness_rejected(self):
        with pytest.raises(ValueError, match="NaN"):
            ParameterSet([1.0], float('nan'))

    def test_values_are_read_only(self):
        p = ParameterSet(np.array([1.0, 2.0]), 0.0)
        with pytest.raises(ValueError):
            p.values[0] = 5.0

    def test_values_are_copied(self):
        """Mutating the source array does not change the ParameterSet."""
        source = np.array([1.0, 2.0])
        p = ParameterSet(source, 0.0)
        source[0] = 99.0
        assert p.values[0] == 1.0

    def test_with_weight_returns_new_instance(self):
        p = ParameterSet([1.0], -1.0)
        q = p.with_weight(0.25)
        assert q.weight == 0.25
        assert p.weight == -1.0
        assert q.fitness == p.fitness

    def test_equality(self):
        assert ParameterSet([1.0, 2.0], -1.0) == ParameterSet([1.0, 2.0], -1.0)
        assert ParameterSet([1.0, 2.0], -1.0) != ParameterSet([1.0, 2.0], -2.0)


# ============================================================================
# RUNNING COVARIANCE TESTS
# ============================================================================

class TestRunningCovarianceMatrix:
    """Test Welford streaming covariance."""

    def test_matches_batch_covariance(self):
        rng = np.random.default_rng(1)
        samples = rng.normal(size=(200, 3)) @ np.array([[1.0, 0.0, 0.0],
                                                         [0.5, 2.0, 0.0],
                                                         [0.1, -0.3, 0.7]])
        rcm = RunningCovarianceMatrix.from_samples(jnp.asarray(samples))

        assert int(rcm.n) == 200
        np.testing.assert_allclose(np.asarray(rcm.mean), samples.mean(axis=0), rtol=1e-10)
        np.testing.assert_allclose(np.asarray(rcm.covariance), np.cov(samples, rowvar=False),
                                   rtol=1e-8, atol=1e-12)

    def test_order_invariance(self):
        """Any permutation of the pushed rows gives the same covariance."""
        rng = np.random.default_rng(2)
        samples = rng.normal(size=(100, 4))
        perm = rng.permutation(100)

        forward = RunningCovarianceMatrix.from_samples(jnp.asarray(samples))
        shuffled = RunningCovarianceMatrix.from_samples(jnp.asarray(samples[perm]))
        np.testing.assert_allclose(np.asarray(forward.covariance),
                                   np.asarray(shuffled.covariance), rtol=1e-8, atol=1e-12)

    def test_push_is_pure(self):
        rcm = RunningCovarianceMatrix.create(2)
        pushed = rcm.push(jnp.array([1.0, 2.0]))
        assert int(rcm.n) == 0
        assert int(pushed.n) == 1
        np.testing.assert_allclose(np.asarray(pushed.mean), [1.0, 2.0])

    def test_covariance_is_symmetric(self):
        rng = np.random.default_rng(3)
        rcm = RunningCovarianceMatrix.from_samples(jnp.asarray(rng.normal(size=(50, 5)) * 1e3))
        cov = np.asarray(rcm.covariance)
        np.testing.assert_array_equal(cov, cov.T)

    def test_vmaps_over_chains(self):
        """One accumulator per chain, updated in a single vmapped call."""
        single = RunningCovarianceMatrix.create(2)
        batched = jax.tree_util.tree_map(lambda leaf: jnp.broadcast_to(leaf, (3,) + leaf.shape), single)
        x = jnp.arange(6.0).reshape(3, 2)
        updated = jax.vmap(lambda acc, v: acc.push(v))(batched, x)
        np.testing.assert_allclose(np.asarray(updated.mean), np.asarray(x))
        np.testing.assert_array_equal(np.asarray(updated.n), [1, 1, 1])


# ============================================================================
# DISTRIBUTION TESTS
# ============================================================================

class TestDistributions:
    """Test priors and the multivariate normal."""

    def test_uniform_inverse_cdf(self):
        prior = UniformPrior(2.0, 6.0)
        np.testing.assert_allclose(np.asarray(prior.inverse_cdf(jnp.array([0.0, 0.25, 1.0]))),
                                   [2.0, 3.0, 6.0])
        assert prior.mean == 4.0

    def test_normal_prior_matches_scipy(self):
        prior = NormalPrior(1.0, 2.0)
        u = np.array([0.05, 0.5, 0.9])
        np.testing.assert_allclose(np.asarray(prior.inverse_cdf(jnp.asarray(u))),
                                   scipy_stats.norm(1.0, 2.0).ppf(u), rtol=1e-8)
        assert prior.minimum == -math.inf and prior.maximum == math.inf

    def test_truncated_normal_matches_scipy(self):
        prior = TruncatedNormalPrior(0.0, 1.0, -1.0, 2.0)
        ref = scipy_stats.truncnorm(-1.0, 2.0)
        u = np.array([0.1, 0.5, 0.95])
        np.testing.assert_allclose(np.asarray(prior.inverse_cdf(jnp.asarray(u))), ref.ppf(u), rtol=1e-6)
        assert prior.mean == pytest.approx(ref.mean(), rel=1e-8)

    @pytest.mark.parametrize("lower, upper", [(-math.inf, 1.5), (0.5, math.inf), (-3.0, -2.0)])
    def test_truncated_normal_mean_matches_scipy(self, lower, upper):
        prior = TruncatedNormalPrior(1.0, 2.0, lower, upper)
        ref = scipy_stats.truncnorm((lower - 1.0) / 2.0, (upper - 1.0) / 2.0, loc=1.0, scale=2.0)
        assert isinstance(prior.mean, float)
        assert prior.mean == pytest.approx(ref.mean(), rel=1e-8)

    def test_prior_bounds(self):
        lower, upper, mean = prior_bounds([UniformPrior(0.0, 1.0), NormalPrior(3.0, 1.0)])
        np.testing.assert_array_equal(np.asarray(lower), [0.0, -np.inf])
        np.testing.assert_array_equal(np.asarray(upper), [1.0, np.inf])
        np.testing.assert_array_equal(np.asarray(mean), [0.5, 3.0])

    def test_priors_inverse_cdf_columns(self):
        priors = [UniformPrior(0.0, 1.0), UniformPrior(10.0, 20.0)]
        u = jnp.array([[0.5, 0.5], [0.1, 0.9]])
        np.testing.assert_allclose(np.asarray(priors_inverse_cdf(priors, u)),
                                   [[0.5, 15.0], [0.1, 19.0]])

    def test_mvn_log_pdf_matches_scipy(self):
        mean = np.array([1.0, -2.0, 0.5])
        cov = np.array([[2.0, 0.3, 0.1], [0.3, 1.0, -0.2], [0.1, -0.2, 0.5]])
        mvn = MultivariateNormal(mean, cov)
        x = np.random.default_rng(4).normal(size=(10, 3))
        ref = scipy_stats.multivariate_normal(mean, cov)

        np.testing.assert_allclose(np.asarray(mvn.log_pdf(jnp.asarray(x))), ref.logpdf(x), rtol=1e-10)
        assert float(mvn.log_pdf(jnp.asarray(x[0]))) == pytest.approx(ref.logpdf(x[0]), rel=1e-10)

    def test_mvn_inverse_cdf_at_median_is_mean(self):
        mvn = MultivariateNormal([3.0, 4.0], [[1.0, 0.5], [0.5, 2.0]])
        np.testing.assert_allclose(np.asarray(mvn.inverse_cdf(jnp.array([0.5, 0.5]))), [3.0, 4.0],
                                   atol=1e-12)

    def test_mvn_validity(self):
        assert MultivariateNormal([0.0, 0.0], np.eye(2)).is_valid
        assert not MultivariateNormal([0.0, 0.0], [[1.0, 2.0], [2.0, 1.0]]).is_valid
        assert not MultivariateNormal([0.0, 0.0], np.eye(3)).is_valid

    def test_mvn_sample_moments(self):
        cov = np.array([[1.0, 0.8], [0.8, 2.0]])
        mvn = MultivariateNormal([1.0, -1.0], cov)
        draws = np.asarray(mvn.sample(jax.random.PRNGKey(0), 20000))
        np.testing.assert_allclose(draws.mean(axis=0), [1.0, -1.0], atol=0.05)
        np.testing.assert_allclose(np.cov(draws, rowvar=False), cov, atol=0.08)


class TestLatinHypercube:
    """Test stratified uniforms."""

    def test_one_point_per_stratum(self):
        n, d = 25, 4
        u = np.asarray(latin_hypercube(jax.random.PRNGKey(7), n, d))
        assert u.shape == (n, d)
        assert np.all((u > 0) & (u < 1))
        for j in range(d):
            np.testing.assert_array_equal(np.sort(np.floor(u[:, j] * n)), np.arange(n))

    def test_deterministic_for_key(self):
        key = jax.random.PRNGKey(3)
        np.testing.assert_array_equal(np.asarray(latin_hypercube(key, 10, 2)),
                                      np.asarray(latin_hypercube(key, 10, 2)))


class TestRngKeys:

    def test_same_seed_same_keys(self):
        a_master, a_init = gen_rng_keys(5)
        b_master, b_init = gen_rng_keys(5)
        np.testing.assert_array_equal(np.asarray(a_master), np.asarray(b_master))
        np.testing.assert_array_equal(np.asarray(a_init), np.asarray(b_init))
        assert not np.array_equal(np.asarray(a_master), np.asarray(a_init))


# ============================================================================
# PROPOSAL HELPER TESTS
# ============================================================================

class TestProposalHelpers:
    """Test the pure helpers used by the chain algorithms."""

    def test_draw_excluding_never_returns_excluded(self):
        keys = jax.random.split(jax.random.PRNGKey(0), 2000)
        draws = np.asarray(jax.vmap(lambda k: draw_excluding(k, 5, [3, 1]))(keys))
        assert set(np.unique(draws)) == {0, 2, 4}

    def test_draw_excluding_traced_exclusions(self):
        """Excluded values may be traced, as chain indices are inside the kernel."""
        keys = jax.random.split(jax.random.PRNGKey(1), 500)
        excluded = jnp.arange(500) % 4
        draws = np.asarray(jax.vmap(lambda k, e: draw_excluding(k, 4, [e]))(keys, excluded))
        assert np.all(draws != np.asarray(excluded))
        assert np.all((draws >= 0) & (draws < 4))

    def test_metropolis_accept_rejects_nan_and_minus_inf(self):
        key = jax.random.PRNGKey(0)
        assert not bool(metropolis_accept(key, jnp.nan))
        assert not bool(metropolis_accept(key, -jnp.inf))
        assert bool(metropolis_accept(key, 0.0))

    def test_snooker_proposal_is_collinear(self):
        """The snooker proposal lies on the line through x and z."""
        rng = np.random.default_rng(5)
        x, z, z1, z2 = (jnp.asarray(rng.normal(size=4)) for _ in range(4))
        p = np.asarray(snooker_proposal(x, z, z1, z2, 1.7))
        line = np.asarray(x - z)
        step = p - np.asarray(x)
        cos = np.dot(step, line) / (np.linalg.norm(step) * np.linalg.norm(line))
        assert abs(cos) == pytest.approx(1.0, abs=1e-10)

    def test_snooker_proposal_projection_length(self):
        x = jnp.array([1.0, 0.0])
        z = jnp.array([0.0, 0.0])
        p = snooker_proposal(x, z, jnp.array([3.0, 5.0]), jnp.array([1.0, -2.0]), 1.0)
        # Projection of (2, 7) onto the x-axis is (2, 0)
        np.testing.assert_allclose(np.asarray(p), [3.0, 0.0])

    def test_leapfrog_is_reversible(self):
        """Integrating forward, negating momentum and integrating again returns to the start."""
        gradient = lambda x: -x
        x0 = jnp.array([0.3, -1.2, 0.8])
        phi0 = jnp.array([1.0, 0.5, -0.4])
        inverse_mass = jnp.ones(3)
        lower = jnp.full(3, -10.0)
        upper = jnp.full(3, 10.0)

        x1, phi1 = leapfrog(x0, phi0, 0.1, 15, gradient, inverse_mass, lower, upper)
        x2, phi2 = leapfrog(x1, -phi1, 0.1, 15, gradient, inverse_mass, lower, upper)
        np.testing.assert_allclose(np.asarray(x2), np.asarray(x0), atol=1e-10)
        np.testing.assert_allclose(np.asarray(-phi2), np.asarray(phi0), atol=1e-10)

    def test_leapfrog_conserves_energy(self):
        gradient = lambda x: -x
        x0 = jnp.array([1.0, 0.0])
        phi0 = jnp.array([0.0, 1.0])
        x1, phi1 = leapfrog(x0, phi0, 0.05, 40, gradient, jnp.ones(2),
                            jnp.full(2, -10.0), jnp.full(2, 10.0))
        energy = lambda x, p: 0.5 * float(jnp.sum(x ** 2) + jnp.sum(p ** 2))
        assert energy(x1, phi1) == pytest.approx(energy(x0, phi0), rel=5e-3)

    def test_clamp_to_support(self):
        lower = jnp.array([0.0, -5.0])
        upper = jnp.array([1.0, 5.0])
        clamped = np.asarray(clamp_to_support(jnp.array([-0.5, 7.0]), lower, upper))
        assert 0.0 < clamped[0] < 1e-12
        assert 5.0 - 1e-12 < clamped[1] < 5.0

    def test_numerical_gradient(self):
        log_lh = lambda x: -0.5 * jnp.sum((x - 2.0) ** 2) + x[0] * x[1]
        x = jnp.array([1.0, 3.0])
        grad = np.asarray(numerical_gradient(log_lh)(x))
        np.testing.assert_allclose(grad, np.asarray(jax.grad(log_lh)(x)), rtol=1e-6)


# ============================================================================
# SNIS WEIGHTING TESTS
# ============================================================================

class TestImportanceWeights:
    """Test log-sum-exp normalization and CDF resampling."""

    def test_weights_sum_to_one(self):
        w = np.asarray(normalize_log_weights(jnp.array([-1000.0, -1001.0, -1002.5, -999.0])))
        assert w.sum() == pytest.approx(1.0, abs=1e-12)
        assert np.all(w > 0)

    def test_minus_inf_and_nan_get_zero_weight(self):
        w = np.asarray(normalize_log_weights(jnp.array([0.0, -jnp.inf, jnp.nan, 1.0])))
        assert w[1] == 0.0 and w[2] == 0.0
        assert w.sum() == pytest.approx(1.0)

    def test_all_minus_inf_gives_zero_weights(self):
        w = np.asarray(normalize_log_weights(jnp.full(3, -jnp.inf)))
        np.testing.assert_array_equal(w, np.zeros(3))

    def test_zero_weight_never_resampled(self):
        weights = np.array([0.0, 0.5, 0.0, 0.5, 0.0])
        idx = resample_indices(weights, 99)
        assert set(np.unique(idx)) <= {1, 3}
        assert np.all(np.diff(idx) >= 0)

    def test_resampling_follows_weights(self):
        weights = np.array([0.1, 0.2, 0.7])
        idx = resample_indices(weights, 999)
        counts = np.bincount(idx, minlength=3) / 999
        np.testing.assert_allclose(counts, weights, atol=0.01)

    def test_unnormalized_weights(self):
        """Positions are scaled to the CDF total."""
        idx = resample_indices(np.array([2.0, 2.0]), 100)
        assert np.sum(idx == 0) == 50
        assert np.sum(idx == 1) == 50


# ============================================================================
# DIAGNOSTICS TESTS
# ============================================================================

class TestDiagnostics:
    """Test R-hat and effective sample size."""

    def test_rhat_identical_chains(self):
        n_samples = 100
        chain_data = np.random.default_rng(0).normal(size=(n_samples, 1))
        history = np.repeat(chain_data[:, np.newaxis, :], 4, axis=1)
        rhat = compute_rhat(history)
        assert float(rhat[0]) == pytest.approx(np.sqrt((n_samples - 1) / n_samples), abs=1e-8)

    def test_rhat_matches_manual_calculation(self):
        rng = np.random.default_rng(123)
        N = 50
        history = np.stack([rng.normal(0.0, 1.0, (N, 2)), rng.normal(0.5, 1.0, (N, 2))], axis=1)
        B = N * np.var(history.mean(axis=0), axis=0, ddof=1)
        W = np.mean(np.var(history, axis=0, ddof=1), axis=0)
        expected = np.sqrt(((N - 1) * W + B) / N / W)
        np.testing.assert_allclose(compute_rhat(history), expected, rtol=1e-8)

    def test_rhat_detects_separated_chains(self):
        rng = np.random.default_rng(1)
        history = np.stack([rng.normal(0.0, 0.1, (100, 1)), rng.normal(10.0, 0.1, (100, 1))], axis=1)
        assert float(compute_rhat(history)[0]) > 10.0

    def test_rhat_warmup_discarded(self):
        rng = np.random.default_rng(2)
        history = rng.normal(size=(100, 3, 2))
        history[:50, 0, :] += 100.0
        assert np.all(compute_rhat(history, warmup=50) < 1.1)

    def test_rhat_single_chain_is_nan(self):
        assert np.all(np.isnan(compute_rhat(np.zeros((10, 1, 3)))))

    def test_rhat_too_few_samples(self):
        with pytest.raises(ValueError, match="two samples"):
            compute_rhat(np.zeros((3, 2, 1)), warmup=2)

    def test_ess_independent_draws(self):
        x = np.random.default_rng(0).normal(size=4000)
        assert effective_sample_size(x) > 3000

    def test_ess_correlated_draws(self, ar1):
        x = ar1(4000, 0.9)
        ess = effective_sample_size(x)
        # Theoretical ESS for AR(1) is N (1 - phi) / (1 + phi)
        assert 100 < ess < 600

    def test_ess_capped_at_n(self):
        x = np.tile([1.0, -1.0], 100)
        assert effective_sample_size(x) <= 200


# ============================================================================
# POST-RUN CHECKS
# ============================================================================

class TestSamplerIssues:
    """Post-run checks on the recorded chains (n_chains, n_steps, n_params)."""

    @pytest.fixture
    def healthy(self):
        rng = np.random.default_rng(0)
        values = rng.normal(5.0, 1.0, (4, 50, 3))
        fitness = -0.5 * np.sum((values - 5.0) ** 2, axis=2)
        return values, fitness, np.full(4, 0.3)

    def test_healthy_run(self, healthy):
        diagnostics = diagnose_sampler_issues(*healthy)
        assert diagnostics['issues'] == []
        assert diagnostics['warnings'] == []
        assert "Number of chains: 4" in diagnostics['info']

    def test_non_finite_history(self, healthy):
        values, fitness, rates = healthy
        values[1, 10, 0] = np.nan
        fitness[2, 5] = -np.inf
        issues = diagnose_sampler_issues(values, fitness, rates)['issues']
        assert len(issues) == 2

    def test_chain_that_never_accepts(self, healthy):
        values, fitness, rates = healthy
        values[0] = values[0, 0]
        rates[0] = 0.0
        diagnostics = diagnose_sampler_issues(values, fitness, rates)
        assert diagnostics['issues'] == ["1 chain(s) never accepted a proposal"]
        assert diagnostics['warnings'] == []

    def test_chain_stuck_after_warmup(self, healthy):
        values, fitness, rates = healthy
        values[3, 20:] = values[3, 20]
        assert diagnose_sampler_issues(values, fitness, rates, warmup=10)['warnings'] == []
        warnings = diagnose_sampler_issues(values, fitness, rates, warmup=20)['warnings']
        assert warnings == ["1 chain(s) did not move after warmup"]

    @pytest.mark.parametrize("rate, fragment", [(0.01, "fewer than 5%"), (0.99, "more than 95%")])
    def test_acceptance_extremes(self, healthy, rate, fragment):
        values, fitness, rates = healthy
        rates[:2] = rate
        warnings = diagnose_sampler_issues(values, fitness, rates)['warnings']
        assert len(warnings) == 1
        assert warnings[0].startswith("2 chain(s)")
        assert fragment in warnings[0]

    def test_empty_history(self):
        diagnostics = diagnose_sampler_issues(np.empty((4, 0, 3)), np.empty((4, 0)), np.zeros(4))
        assert diagnostics['issues'] == []
        assert "Recorded steps per chain: 0" in diagnostics['info']
