"""
spikes.py - Spike-Count Estimation for the Spiked Covariance Model
=================================================================

Two interchangeable strategies decide how many eigenvalues of a sample
covariance lie above the Marchenko-Pastur bulk:

- KNTest: the sequential Tracy-Widom test of Kritchman & Nadler (2008)
- MedianFitting: a histogram seed followed by a search for the noise level
  whose MP median matches the empirical median of the bulk

Both implement ``SpikeCountEstimator.estimate(eigenvalues, gamma)`` and return
a ``SpikeEstimate``. Strategies are looked up by name through
``get_spike_estimator``.

Example Usage:
-------------
    >>> from cov_lab.spikes import estimate_spike_count
    >>> est = estimate_spike_count(eigenvalues, gamma=0.2, method="KNTest")
    >>> est.n_spikes, est.sigma2
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, Type, Union

import numpy as np
import scipy.optimize
from loguru import logger

from .errors import FitError, InsufficientDataError
from .marchenko_pastur import mp_median
from .tracy_widom import tracy_widom_quantile, tracy_widom_scaling
from .types import SpikeEstimate, SpikeMethod, parse_enum


def _prepare(eigenvalues, gamma: float) -> np.ndarray:
    lam = np.asarray(eigenvalues, dtype=float)
    if lam.ndim != 1:
        raise ValueError(f"eigenvalues must be 1D, got shape {lam.shape}")
    if not np.all(np.isfinite(lam)):
        raise ValueError("eigenvalues contain NaN or infinite values")
    if not (np.isfinite(gamma) and gamma > 0):
        raise ValueError(f"gamma must be a positive finite number, got {gamma}")
    return np.clip(np.sort(lam)[::-1], 0.0, None)


def bulk_edge_factor(gamma: float) -> float:
    """Upper MP edge for unit noise variance, (1 + sqrt(gamma))^2."""
    return float((1.0 + np.sqrt(gamma)) ** 2)


# =============================================================================
# STRATEGY CONTRACT
# =============================================================================

class SpikeCountEstimator(ABC):
    """
    Abstract base class for spike-count strategies.

    Subclasses set ``method`` and implement ``estimate``.
    """

    method: SpikeMethod

    @abstractmethod
    def estimate(self, eigenvalues: np.ndarray, gamma: float) -> SpikeEstimate:
        """
        Estimate the number of spikes.

        Parameters
        ----------
        eigenvalues : ndarray (N,)
            Sample covariance eigenvalues (any order).
        gamma : float
            Aspect ratio N/T.
        """

    def _result(self, n_spikes: int, sigma2: float, gamma: float) -> SpikeEstimate:
        return SpikeEstimate(
            n_spikes=int(n_spikes),
            sigma2=float(sigma2),
            method=self.method,
            bulk_edge=float(sigma2 * bulk_edge_factor(gamma)),
        )


# =============================================================================
# KRITCHMAN-NADLER TEST
# =============================================================================

class KNTest(SpikeCountEstimator):
    """
    Kritchman-Nadler sequential test.

    For k = 1, 2, ... the hypothesis "fewer than k spikes" is rejected when

        lambda_k > sigma2_k * (mu(n, N - k) + s(alpha) * sigma(n, N - k))

    where sigma2_k is the noise level estimated assuming k spikes and
    (mu, sigma) is the Tracy-Widom centering/scaling. The count is the last k
    rejected.

    Parameters
    ----------
    alpha : float, default=0.01
        Significance level (must be a tabulated Tracy-Widom level).
    max_iter : int, default=100
        Iteration cap of the noise-level fixed point.
    tol : float, default=1e-7
        Relative convergence tolerance of the fixed point.
    """

    method = SpikeMethod.KN_TEST

    def __init__(self, alpha: float = 0.01, max_iter: int = 100, tol: float = 1e-7):
        self.quantile = tracy_widom_quantile(alpha)
        self.alpha = alpha
        self.max_iter = max_iter
        self.tol = tol

    def noise_variance(self, lam: np.ndarray, k: int, n: float) -> float:
        """
        Noise level assuming the top ``k`` eigenvalues are spikes.

        Solves the Kritchman-Nadler system, which corrects the plain bulk
        mean for the variance the spikes pull out of the bulk.

        Raises
        ------
        FitError
            If the bulk carries no variance or the fixed point does not
            converge within ``max_iter``.
        """
        p = lam.size
        bulk_sum = float(np.sum(np.clip(lam[k:], 0.0, None)))
        if not bulk_sum > np.finfo(float).eps * p * max(float(lam[0]), 0.0):
            logger.error(f"No variance left below the top {k} eigenvalues")
            raise FitError(f"Bulk below k={k} spikes carries no variance")
        sigma2 = bulk_sum / (p - k)
        if k == 0:
            return sigma2

        spikes = lam[:k]
        for _ in range(self.max_iter):
            b = spikes + sigma2 - sigma2 * (p - k) / n
            disc = np.maximum(b ** 2 - 4.0 * spikes * sigma2, 0.0)
            rho = 0.5 * (b + np.sqrt(disc))
            updated = (bulk_sum + float(np.sum(spikes - rho))) / (p - k)
            if updated <= 0:
                raise FitError(f"Noise estimate collapsed to {updated:.3e} at k={k}")
            if abs(updated - sigma2) <= self.tol * sigma2:
                return updated
            sigma2 = updated

        logger.error(f"KN noise estimate did not converge for k={k}")
        raise FitError(f"KN noise estimate did not converge in {self.max_iter} iterations (k={k})")

    def estimate(self, eigenvalues: np.ndarray, gamma: float) -> SpikeEstimate:
        lam = _prepare(eigenvalues, gamma)
        p = lam.size
        n = p / gamma
        if p < 2 or n < 2:
            raise InsufficientDataError(f"KN test needs N >= 2 and T >= 2, got N={p}, T={n:.1f}")

        k_max = min(p, int(np.floor(n))) - 1
        logger.info(f"Running KN test: N={p}, T={n:.1f}, alpha={self.alpha}, k_max={k_max}")

        n_spikes = k_max
        for k in range(1, k_max + 1):
            sigma2 = self.noise_variance(lam, k, n)
            mu, sigma = tracy_widom_scaling(n, p - k)
            threshold = sigma2 * (mu + self.quantile * sigma)
            logger.debug(f"KN k={k}: lambda={lam[k - 1]:.4f}, threshold={threshold:.4f}")
            if lam[k - 1] <= threshold:
                n_spikes = k - 1
                break

        sigma2 = self.noise_variance(lam, n_spikes, n)
        logger.success(f"KN test complete: {n_spikes} spikes, sigma2={sigma2:.4f}")
        return self._result(n_spikes, sigma2, gamma)


# =============================================================================
# MEDIAN FITTING
# =============================================================================

class MedianFitting(SpikeCountEstimator):
    """
    Median-matching search for the noise level.

    1. Freedman-Diaconis histogram of the spectrum; the eigenvalues in bins
       after the first empty bin give a seed count k0.
    2. sigma2 is searched between the edge-matching value for k0 spikes
       (lower) and the value for zero spikes (upper), minimising
       |MP median(sigma2) - median of eigenvalues inside the bulk|.
    3. The count is the number of eigenvalues strictly above the final edge.

    The seed is a heuristic starting point, not the answer.

    Parameters
    ----------
    n_grid : int, default=200
        Grid points of the coarse search.
    max_iter : int, default=500
        Iteration cap of the bounded refinement.
    min_eigenvalues : int, default=10
        Smallest spectrum for which a histogram is considered stable.
    """

    method = SpikeMethod.MEDIAN_FITTING

    def __init__(self, n_grid: int = 200, max_iter: int = 500, min_eigenvalues: int = 10):
        if n_grid < 2:
            raise ValueError(f"n_grid must be at least 2, got {n_grid}")
        self.n_grid = n_grid
        self.max_iter = max_iter
        self.min_eigenvalues = min_eigenvalues

    @staticmethod
    def seed_count(lam: np.ndarray) -> int:
        """Eigenvalues lying in histogram bins beyond the first empty bin."""
        counts, _ = np.histogram(lam, bins="fd")
        empty = np.flatnonzero(counts == 0)
        if empty.size == 0:
            return 0
        return int(counts[empty[0] + 1:].sum())

    def estimate(self, eigenvalues: np.ndarray, gamma: float) -> SpikeEstimate:
        lam = _prepare(eigenvalues, gamma)
        N = lam.size
        if N < self.min_eigenvalues:
            raise InsufficientDataError(
                f"Median fitting needs at least {self.min_eigenvalues} eigenvalues, got N={N}"
            )

        edge = bulk_edge_factor(gamma)
        k0 = min(self.seed_count(lam), N - 2)
        lower = lam[k0] / edge
        upper = lam[0] / edge
        logger.info(
            f"Running median fitting: N={N}, gamma={gamma:.4f}, seed k0={k0}, "
            f"sigma2 in [{lower:.4f}, {upper:.4f}]"
        )
        if not lower > 0:
            raise FitError("Bulk edge of the seed is zero; spectrum is degenerate")

        unit_median = mp_median(1.0, gamma)

        def objective(s2: float) -> float:
            bulk = lam[lam <= s2 * edge]
            if bulk.size == 0:
                return np.inf
            return abs(unit_median * s2 - float(np.median(bulk)))

        if np.isclose(lower, upper):
            sigma2 = lower
        else:
            grid = np.linspace(lower, upper, self.n_grid)
            values = np.array([objective(s) for s in grid])
            i = int(np.argmin(values))
            lo, hi = grid[max(i - 1, 0)], grid[min(i + 1, self.n_grid - 1)]

            res = scipy.optimize.minimize_scalar(
                objective, bounds=(lo, hi), method="bounded",
                options={"maxiter": self.max_iter},
            )
            if not res.success:
                logger.error(f"Median search failed: {res.message}")
                raise FitError(f"Median search did not converge in {self.max_iter} iterations")
            sigma2 = float(res.x) if res.fun <= values[i] else float(grid[i])

        n_spikes = int(np.sum(lam > sigma2 * edge))
        logger.success(f"Median fitting complete: {n_spikes} spikes, sigma2={sigma2:.4f}")
        return self._result(n_spikes, sigma2, gamma)


# =============================================================================
# REGISTRY
# =============================================================================

SPIKE_ESTIMATORS: Dict[SpikeMethod, Type[SpikeCountEstimator]] = {
    SpikeMethod.KN_TEST: KNTest,
    SpikeMethod.MEDIAN_FITTING: MedianFitting,
}


def get_spike_estimator(method: Union[SpikeMethod, str] = SpikeMethod.KN_TEST, **options) -> SpikeCountEstimator:
    """
    Instantiate a spike-count strategy by name.

    Raises
    ------
    InvalidMethodError
        If ``method`` is not a registered strategy.
    """
    method = parse_enum(SpikeMethod, method)
    return SPIKE_ESTIMATORS[method](**options)


def estimate_spike_count(
    eigenvalues: np.ndarray,
    gamma: float,
    method: Union[SpikeMethod, str] = SpikeMethod.KN_TEST,
    **options,
) -> SpikeEstimate:
    """
    Estimate the number of spikes in a sample covariance spectrum.

    Parameters
    ----------
    eigenvalues : ndarray (N,)
        Sample covariance eigenvalues.
    gamma : float
        Aspect ratio N/T.
    method : {"KNTest", "median-fitting"}, default="KNTest"
    **options
        Passed to the strategy constructor (e.g. ``alpha`` for KNTest).
    """
    return get_spike_estimator(method, **options).estimate(eigenvalues, gamma)
