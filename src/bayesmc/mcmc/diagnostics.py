"""
MCMC Diagnostics.

Convergence diagnostics and summaries for sampler results:
- compute_rhat: Gelman-Rubin R-hat across chains
- autocorrelation: Sample autocorrelation function (FFT)
- effective_sample_size: ESS from the truncated autocorrelation sum
- summarize_output: Per-parameter summary statistics of the posterior draws
- print_rhat_summary: Print R-hat statistics with convergence check
- print_acceptance_summary: Print acceptance rate statistics
"""

from functools import partial
from typing import Any, Dict, List

import jax
import jax.numpy as jnp
import numpy as np

import logging
logger = logging.getLogger('bayesmc')

SUMMARY_QUANTILES = (0.025, 0.25, 0.5, 0.75, 0.975)


@partial(jax.jit, static_argnums=(1,))
def _gelman_rubin(history: jnp.ndarray, warmup: int) -> jnp.ndarray:
    history = history[warmup:]
    n_samples, n_chains, _ = history.shape

    # 1. Per-chain means over time and the grand mean
    chain_means = jnp.mean(history, axis=0)  # (n_chains, n_params)

    # 2. Between-chain variance: B = n * var(chain_means)
    B = n_samples * jnp.var(chain_means, axis=0, ddof=1)

    # 3. Within-chain variance: average of per-chain sample variances
    W = jnp.mean(jnp.var(history, axis=0, ddof=1), axis=0)

    # 4. Pooled variance estimate and ratio
    V_hat = ((n_samples - 1) * W + B) / n_samples
    return jnp.sqrt(V_hat / W)


def compute_rhat(history, warmup: int = 0) -> np.ndarray:
    """
    Gelman-Rubin R-hat diagnostic.

    Args:
        history: Sample history (n_samples, n_chains, n_params)
        warmup: Leading samples to discard from every chain

    Returns:
        rhat: (n_params,) array. NaN for every parameter if there are fewer
        than two chains.

    Raises:
        ValueError: If fewer than two samples remain after warmup
    """
    history = jnp.asarray(history)
    n_samples, n_chains, n_params = history.shape
    if warmup < 0:
        raise ValueError(f"warmup must be non-negative, got {warmup}")
    if n_chains < 2:
        return np.full(n_params, np.nan)
    if n_samples - warmup < 2:
        raise ValueError("At least two samples per chain are required after warmup")
    return np.asarray(_gelman_rubin(history, warmup))


def autocorrelation(series: np.ndarray, max_lag: int) -> np.ndarray:
    """Sample autocorrelation of a 1-D series for lags 0..max_lag."""
    x = np.asarray(series, dtype=np.float64) - np.mean(series)
    n = x.shape[0]
    n_fft = 1 << (2 * n - 1).bit_length()
    spectrum = np.fft.rfft(x, n_fft)
    acov = np.fft.irfft(spectrum * np.conj(spectrum), n_fft)[:max_lag + 1]
    if acov[0] <= 0:
        return np.zeros(max_lag + 1)
    return acov / acov[0]


def effective_sample_size(series, threshold: float = 0.05) -> float:
    """
    Effective sample size of a 1-D series.

    ESS = N / (1 + 2 * sum(rho_k)), summing lags k >= 1 until the
    autocorrelation first drops below threshold. Capped at N.
    """
    series = np.asarray(series)
    n = series.shape[0]
    if n < 2:
        return float(n)
    acf = autocorrelation(series, int(np.ceil(n / 2)))
    rho = 0.0
    for value in acf[1:]:
        if value < threshold:
            break
        rho += value
    return float(min(n / (1.0 + 2.0 * rho), n))


def summarize_output(sampler, alpha: float = 0.1) -> List[Dict[str, Any]]:
    """
    Per-parameter summary of the posterior draws.

    R-hat uses the recorded Markov chains after warmup; the remaining
    statistics use the output draws.

    Args:
        sampler: A sampler that has been run
        alpha: Credible interval level; bounds are the alpha/2 and
            1 - alpha/2 quantiles

    Returns:
        List with one dict per parameter (n, mean, median, sd, quantiles,
        lower_ci, upper_ci, rhat, ess)
    """
    draws = sampler.output_values
    chains = sampler.chain_values  # (C, n, D)
    warmup = sampler.mcmc_config.get('warmup_iterations', 0)
    if chains.shape[0] >= 2 and chains.shape[1] - warmup >= 2:
        rhat = compute_rhat(np.swapaxes(chains, 0, 1), warmup)
    else:
        rhat = np.full(draws.shape[1], np.nan)

    summary = []
    for i in range(draws.shape[1]):
        x = draws[:, i]
        q = np.quantile(x, SUMMARY_QUANTILES)
        summary.append({
            'n': int(x.shape[0]),
            'mean': float(np.mean(x)),
            'median': float(np.median(x)),
            'sd': float(np.std(x, ddof=1)),
            'quantiles': dict(zip(SUMMARY_QUANTILES, (float(v) for v in q))),
            'lower_ci': float(np.quantile(x, alpha / 2)),
            'upper_ci': float(np.quantile(x, 1 - alpha / 2)),
            'rhat': float(rhat[i]),
            'ess': effective_sample_size(x),
        })
    return summary


def print_rhat_summary(rhat: np.ndarray, threshold: float = 1.1) -> None:
    """Log R-hat statistics and whether every parameter is below threshold."""
    logger.info("\n--- R-hat Summary ---")
    logger.info(f"  Max: {np.nanmax(rhat):.4f}, Median: {np.nanmedian(rhat):.4f}")
    n_bad = int(np.sum(rhat > threshold))
    if n_bad:
        logger.warning(f"  {n_bad} parameter(s) have R-hat > {threshold}")
    else:
        logger.info(f"  All parameters have R-hat <= {threshold}")


def print_acceptance_summary(sampler) -> None:
    """Log per-chain acceptance rates."""
    rates = sampler.acceptance_rates
    logger.info("\n--- Acceptance Rates ---")
    logger.info(f"  Mean: {np.mean(rates):.3f}, Min: {np.min(rates):.3f}, Max: {np.max(rates):.3f}")
    for c, rate in enumerate(rates):
        logger.info(f"  Chain {c}: {rate:.3f} "
                    f"({int(sampler.accept_count[c])}/{int(sampler.sample_count[c])})")
