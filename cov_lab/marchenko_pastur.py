"""
marchenko_pastur.py - Marchenko-Pastur Law and Bulk Fitting
===========================================================

The eigenvalues of a pure-noise sample correlation (or covariance) matrix with
aspect ratio q = N/T and noise variance sigma^2 follow the Marchenko-Pastur
law, supported on

    [sigma^2 (1 - sqrt(q))^2, sigma^2 (1 + sqrt(q))^2]

with an additional atom of mass 1 - 1/q at zero when q > 1.

This module evaluates the law, fits sigma^2 to an empirical bulk and
classifies the top of a spectrum into signal and noise under the "max" and
"each" cutoff policies.

Example Usage:
-------------
    >>> from cov_lab.marchenko_pastur import fit_marchenko_pastur
    >>> fit = fit_marchenko_pastur(spectrum.values, q=0.5, cutoff="each")
    >>> fit.sigma2, fit.lambda_max, fit.signal_indices
"""

from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple, Union

import numpy as np
import scipy.integrate
import scipy.optimize
import scipy.stats
from loguru import logger

from .errors import FitError, InsufficientDataError
from .tracy_widom import tracy_widom_quantile, tracy_widom_scaling
from .types import CutoffPolicy, FitMethod, MarchenkoPasturFit, parse_enum


# =============================================================================
# THE LAW
# =============================================================================

def mp_bounds(sigma2: float, q: float) -> Tuple[float, float]:
    """
    Bulk edges (lambda_min, lambda_max).

    lambda_min is reported as 0 when q >= 1: the spectrum then holds
    N - T zero eigenvalues and the noise support reaches down to zero.
    """
    if q <= 0:
        raise ValueError(f"q must be positive, got {q}")
    root = np.sqrt(q)
    lambda_max = sigma2 * (1.0 + root) ** 2
    lambda_min = 0.0 if q >= 1 else sigma2 * (1.0 - root) ** 2
    return float(lambda_min), float(lambda_max)


def _support(sigma2: float, q: float) -> Tuple[float, float]:
    """Edges of the continuous part (inner edge kept for q > 1)."""
    root = np.sqrt(q)
    return sigma2 * (1.0 - root) ** 2, sigma2 * (1.0 + root) ** 2


def mp_pdf(x: Union[float, np.ndarray], sigma2: float, q: float) -> np.ndarray:
    """
    Continuous part of the Marchenko-Pastur density.

    Integrates to min(1, 1/q); the remaining mass sits at zero.
    """
    x = np.atleast_1d(np.asarray(x, dtype=float))
    a, b = _support(sigma2, q)

    pdf = np.zeros_like(x)
    mask = (x > a) & (x < b) & (x > 0)
    xm = x[mask]
    pdf[mask] = np.sqrt((b - xm) * (xm - a)) / (2.0 * np.pi * sigma2 * q * xm)
    return pdf


def mp_cdf(x: float, sigma2: float, q: float) -> float:
    """Marchenko-Pastur distribution function, including the atom at zero."""
    if x < 0:
        return 0.0

    a, b = _support(sigma2, q)
    atom = max(0.0, 1.0 - 1.0 / q)

    if x <= a:
        return atom
    if x >= b:
        return 1.0

    mass, _ = scipy.integrate.quad(lambda t: mp_pdf(t, sigma2, q)[0], a, x, limit=200)
    return float(min(atom + mass, 1.0))


@lru_cache(maxsize=256)
def _unit_median(q: float) -> float:
    if 1.0 - 1.0 / q >= 0.5:
        return 0.0
    a, b = _support(1.0, q)
    return float(scipy.optimize.brentq(lambda x: mp_cdf(x, 1.0, q) - 0.5, a, b, maxiter=200))


def mp_median(sigma2: float, q: float) -> float:
    """
    Median of the Marchenko-Pastur law.

    Scales linearly in sigma2, so the root is solved once per q.
    """
    if q <= 0:
        raise ValueError(f"q must be positive, got {q}")
    return sigma2 * _unit_median(float(q))


# =============================================================================
# NOISE-VARIANCE FIT
# =============================================================================

def _fit_moments(bulk: np.ndarray, q: float, max_iter: int) -> float:
    """Least squares on E[l] = s2 and E[l^2] = s2^2 (1 + q)."""
    m1 = float(np.mean(bulk))
    m2 = float(np.mean(bulk ** 2))

    def residuals(theta):
        s2 = theta[0]
        return np.array([(m1 - s2) / m1, (m2 - s2 ** 2 * (1.0 + q)) / m2])

    res = scipy.optimize.least_squares(
        residuals, x0=[m1], bounds=([1e-12 * m1], [np.inf]), max_nfev=max_iter
    )
    if not res.success:
        logger.error(f"Moment fit failed: {res.message}")
        raise FitError(f"Moment fit did not converge in {max_iter} evaluations: {res.message}")
    return float(res.x[0])


def _fit_density(
    bulk: np.ndarray,
    q: float,
    max_iter: int,
    n_points: int = 500,
) -> float:
    """Squared error between a Gaussian KDE of the bulk and the MP density."""
    m1 = float(np.mean(bulk))
    positive = bulk[bulk > 1e-10 * m1]
    if positive.size < 2:
        raise FitError("Density fit needs at least 2 positive bulk eigenvalues")

    try:
        kde = scipy.stats.gaussian_kde(positive)
    except np.linalg.LinAlgError as e:
        raise FitError(f"Kernel density of the bulk is degenerate: {e}") from e

    weight = positive.size / bulk.size

    def sse(s2):
        a, b = _support(s2, q)
        x = np.linspace(max(a, 0.0), b, n_points)
        return float(np.sum((weight * kde(x) - mp_pdf(x, s2, q)) ** 2))

    res = scipy.optimize.minimize_scalar(
        sse, bounds=(1e-3 * m1, 10.0 * m1), method="bounded",
        options={"maxiter": max_iter, "xatol": 1e-8 * m1},
    )
    if not res.success:
        logger.error(f"Density fit failed: {res.message}")
        raise FitError(f"Density fit did not converge in {max_iter} iterations: {res.message}")
    return float(res.x)


def fit_noise_variance(
    bulk: np.ndarray,
    q: float,
    method: Union[FitMethod, str] = FitMethod.MOMENTS,
    max_iter: int = 200,
) -> float:
    """
    Fit the MP noise variance sigma^2 to bulk eigenvalues.

    Parameters
    ----------
    bulk : ndarray
        Eigenvalues assumed to be noise.
    q : float
        Aspect ratio N/T.
    method : FitMethod or str, default="moments"
        "moments": least squares on the first two MP moments.
        "density": least squares between a KDE of the bulk and the MP density.
    max_iter : int, default=200
        Iteration / evaluation cap of the optimiser.

    Raises
    ------
    InsufficientDataError
        If fewer than 2 bulk eigenvalues are given.
    FitError
        If the optimiser does not converge or the bulk carries no variance.
    """
    method = parse_enum(FitMethod, method)
    bulk = np.clip(np.asarray(bulk, dtype=float), 0.0, None)

    if bulk.size < 2:
        raise InsufficientDataError(f"Need at least 2 bulk eigenvalues, got {bulk.size}")
    if not np.mean(bulk) > 0:
        raise FitError("Bulk eigenvalues carry no variance")

    if method == FitMethod.MOMENTS:
        return _fit_moments(bulk, q, max_iter)
    return _fit_density(bulk, q, max_iter)


# =============================================================================
# SIGNAL CLASSIFICATION
# =============================================================================

@dataclass(frozen=True)
class _Candidate:
    """Fit of the bulk with the top ``k`` eigenvalues removed."""
    k: int
    sigma2: float
    lambda_min: float
    lambda_max: float
    threshold: float


def fit_marchenko_pastur(
    eigenvalues: np.ndarray,
    q: float,
    cutoff: Union[CutoffPolicy, str] = CutoffPolicy.MAX,
    num_eig: Optional[int] = None,
    fit_method: Union[FitMethod, str] = FitMethod.MOMENTS,
    significance: Optional[float] = 0.01,
    parallel: bool = False,
    max_workers: Optional[int] = None,
    max_iter: int = 200,
) -> MarchenkoPasturFit:
    """
    Fit the Marchenko-Pastur law and split the spectrum into signal and noise.

    Parameters
    ----------
    eigenvalues : ndarray (N,)
        Empirical eigenvalues; sorted descending internally, and signal
        indices refer to that order.
    q : float
        Aspect ratio N/T.
    cutoff : CutoffPolicy or str, default="max"
        "max": the top ``num_eig`` eigenvalues (default 1) are signal, sigma^2
        is fit to the rest, and anything above the threshold is signal too.
        "each": eigenvalues are moved into the signal set one at a time,
        refitting after each move, until the next one lies inside the bulk or
        ``num_eig`` signals (default N - 2) are found.
    num_eig : int, optional
        See ``cutoff``.
    fit_method : FitMethod or str, default="moments"
        Criterion passed to ``fit_noise_variance``.
    significance : float or None, default=0.01
        Tracy-Widom level of the finite-sample margin added to lambda_max.
        None compares against the bare lambda_max.
    parallel : bool, default=False
        Evaluate "each" candidates on a thread pool. Same result.
    max_workers : int, optional
        Pool size (defaults to the CPU count).
    max_iter : int, default=200
        Iteration cap of every sigma^2 fit.

    Returns
    -------
    MarchenkoPasturFit

    Raises
    ------
    InsufficientDataError
        If fewer than 3 eigenvalues are given.
    FitError
        If a sigma^2 fit does not converge.
    """
    cutoff = parse_enum(CutoffPolicy, cutoff)
    fit_method = parse_enum(FitMethod, fit_method)
    if not (np.isfinite(q) and q > 0):
        raise ValueError(f"q must be a positive finite number, got {q}")
    if num_eig is not None and num_eig < 0:
        raise ValueError(f"num_eig must be non-negative, got {num_eig}")
    tw_quantile = tracy_widom_quantile(significance) if significance is not None else None

    lam = np.sort(np.asarray(eigenvalues, dtype=float))[::-1]
    N = lam.size
    if N < 3:
        raise InsufficientDataError(f"Need at least 3 eigenvalues, got N={N}")

    n_obs = N / q

    def evaluate(k: int) -> _Candidate:
        sigma2 = fit_noise_variance(lam[k:], q, method=fit_method, max_iter=max_iter)
        lambda_min, lambda_max = mp_bounds(sigma2, q)
        threshold = lambda_max
        if tw_quantile is not None:
            _, tw_sigma = tracy_widom_scaling(n_obs, N - k)
            threshold += sigma2 * tw_quantile * tw_sigma
        logger.debug(
            f"MP candidate k={k}: sigma2={sigma2:.4f}, "
            f"lambda_max={lambda_max:.4f}, threshold={threshold:.4f}"
        )
        return _Candidate(k, sigma2, lambda_min, lambda_max, threshold)

    logger.info(f"Fitting Marchenko-Pastur: N={N}, q={q:.4f}, cutoff='{cutoff.value}'")

    if cutoff == CutoffPolicy.MAX:
        fixed = min(1 if num_eig is None else num_eig, N - 2)
        cand = evaluate(fixed)
        n_signal = max(fixed, int(np.sum(lam > cand.threshold)))
        n_iter = 1
    else:
        cap = min(N - 2 if num_eig is None else num_eig, N - 2)

        def accepted(c: _Candidate) -> bool:
            return c.k == cap or lam[c.k] <= c.threshold

        cand = None
        if parallel:
            workers = max_workers or os.cpu_count() or 1
            with ThreadPoolExecutor(max_workers=workers) as executor:
                for start in range(0, cap + 1, workers):
                    batch = executor.map(evaluate, range(start, min(start + workers, cap + 1)))
                    cand = next((c for c in batch if accepted(c)), None)
                    if cand is not None:
                        break
        else:
            for k in range(cap + 1):
                cand = evaluate(k)
                if accepted(cand):
                    break

        n_signal = cand.k
        n_iter = cand.k + 1

    fit = MarchenkoPasturFit(
        sigma2=cand.sigma2,
        lambda_min=cand.lambda_min,
        lambda_max=cand.lambda_max,
        q=float(q),
        signal_indices=tuple(range(n_signal)),
        cutoff=cutoff,
        fit_method=fit_method,
        threshold=cand.threshold,
        n_iter=n_iter,
    )
    logger.success(
        f"MP fit complete: sigma2={fit.sigma2:.4f}, "
        f"bulk=[{fit.lambda_min:.4f}, {fit.lambda_max:.4f}], signal={fit.n_signal}"
    )
    return fit
