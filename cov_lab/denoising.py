"""
denoising.py - Random Matrix Theory Covariance Denoising
========================================================

Cleans a sample covariance matrix by fitting the Marchenko-Pastur law to the
spectrum of the sample correlation matrix and replacing the eigenvalues it
explains as noise.

Steps:
1. Sample covariance -> correlation C and standard deviations D
2. Eigendecompose C
3. Fit the MP law and classify signal eigenvalues
4. Treat noise eigenvalues ("average" keeps the trace, "delete" drops it)
5. Rebuild C' from the original eigenvectors and return D C' D

The filtered correlation is deliberately not rescaled to unit diagonal, so
that ``trace(C') == N`` under "average" and ``trace(C') < N`` under "delete".
"""

from __future__ import annotations

from typing import Optional, Union

import numpy as np
from loguru import logger

from .decomposition import (
    as_returns_array,
    corr_to_cov,
    cov_to_corr,
    eigen_decomposition,
    sample_covariance,
)
from .marchenko_pastur import fit_marchenko_pastur
from .types import (
    CutoffPolicy,
    EigenTreatment,
    FitMethod,
    RMTConfig,
    RMTResult,
)


def treat_noise_eigenvalues(
    eigenvalues: np.ndarray,
    noise_mask: np.ndarray,
    eigen_treat: EigenTreatment,
) -> np.ndarray:
    """
    Apply the noise treatment to a copy of ``eigenvalues``.

    Parameters
    ----------
    eigenvalues : ndarray (N,)
    noise_mask : ndarray of bool (N,)
        True where the eigenvalue is noise.
    eigen_treat : EigenTreatment
        AVERAGE replaces noise eigenvalues by their mean, DELETE zeroes them.
    """
    cleaned = np.array(eigenvalues, dtype=float, copy=True)
    if not np.any(noise_mask):
        return cleaned

    if eigen_treat == EigenTreatment.AVERAGE:
        cleaned[noise_mask] = cleaned[noise_mask].mean()
    else:
        if np.isclose(cleaned[noise_mask].sum(), 0.0):
            logger.warning("Noise eigenvalues sum to ~0; 'delete' leaves the trace unchanged")
        cleaned[noise_mask] = 0.0
    return cleaned


def denoise(
    returns,
    q: Optional[float] = None,
    cutoff: Union[CutoffPolicy, str] = CutoffPolicy.MAX,
    eigen_treat: Union[EigenTreatment, str] = EigenTreatment.AVERAGE,
    num_eig: Optional[int] = None,
    parallel: bool = False,
    max_workers: Optional[int] = None,
    fit_method: Union[FitMethod, str] = FitMethod.MOMENTS,
    significance: Optional[float] = 0.01,
    max_iter: int = 200,
) -> RMTResult:
    """
    RMT-denoised covariance matrix of a returns panel.

    Parameters
    ----------
    returns : array-like (T, N)
        Returns with T time-ordered observations of N assets.
    q : float, optional
        Aspect ratio N/T; defaults to the panel's own ratio.
    cutoff : {"max", "each"}, default="max"
        Signal classification policy (see ``fit_marchenko_pastur``).
    eigen_treat : {"average", "delete"}, default="average"
        "average" preserves the trace of the correlation matrix;
        "delete" does not.
    num_eig : int, optional
        Fixed signal count under "max", signal cap under "each".
    parallel : bool, default=False
        Run "each" refits concurrently; does not change the result.
    max_workers : int, optional
        Thread-pool size for ``parallel``.
    fit_method : {"moments", "density"}, default="moments"
        Noise-variance fitting criterion.
    significance : float or None, default=0.01
        Tracy-Widom level of the edge margin; None disables it.
    max_iter : int, default=200
        Iteration cap of each noise-variance fit.

    Returns
    -------
    RMTResult
        Covariance, filtered correlation, spectrum, MP fit and signal set.

    Raises
    ------
    InvalidMethodError
        For an unknown cutoff, treatment or fit method.
    InsufficientDataError
        If the panel has fewer than 2 observations or 3 assets.
    NumericalError
        For non-finite returns, zero-variance assets or eigensolver failure.
    FitError
        If the MP fit does not converge.
    """
    config = RMTConfig(
        q=q,
        cutoff=cutoff,
        eigen_treat=eigen_treat,
        num_eig=num_eig,
        parallel=parallel,
        max_workers=max_workers,
        fit_method=fit_method,
        significance=significance,
        max_iter=max_iter,
    )

    X, labels = as_returns_array(returns, min_obs=2, min_assets=3)
    T, N = X.shape
    q_eff = config.q if config.q is not None else N / T

    logger.info(
        f"Starting RMT denoising: {T} periods, {N} assets, q={q_eff:.4f}, "
        f"cutoff='{config.cutoff.value}', eigen_treat='{config.eigen_treat.value}'"
    )

    cov = sample_covariance(X)
    corr, std = cov_to_corr(cov)
    spectrum = eigen_decomposition(corr)

    mp_fit = fit_marchenko_pastur(
        spectrum.values,
        q=q_eff,
        cutoff=config.cutoff,
        num_eig=config.num_eig,
        fit_method=config.fit_method,
        significance=config.significance,
        parallel=config.parallel,
        max_workers=config.max_workers,
        max_iter=config.max_iter,
    )

    noise_mask = np.ones(N, dtype=bool)
    noise_mask[list(mp_fit.signal_indices)] = False
    cleaned = treat_noise_eigenvalues(spectrum.values, noise_mask, config.eigen_treat)

    corr_clean = spectrum.reconstruct(cleaned)
    cov_clean = corr_to_cov(corr_clean, std)

    logger.success(
        f"RMT denoising complete: {mp_fit.n_signal} signal eigenvalues, "
        f"trace {spectrum.trace:.4f} -> {np.trace(corr_clean):.4f}"
    )

    return RMTResult(
        covariance=cov_clean,
        correlation=corr_clean,
        spectrum=spectrum,
        cleaned_eigenvalues=cleaned,
        mp_fit=mp_fit,
        eigen_treat=config.eigen_treat,
        labels=labels,
    )


estimate_rmt = denoise
