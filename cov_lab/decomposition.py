"""
decomposition.py - Eigendecomposition and Covariance Utilities
==============================================================

Dense symmetric eigendecomposition shared by every estimator, plus the
covariance/correlation conversions around it. Uses loguru for diagnostics.
"""

from __future__ import annotations
from typing import Optional, Sequence, Tuple
import numpy as np
import scipy.linalg
from loguru import logger

from .errors import InsufficientDataError, NumericalError
from .types import EigenSpectrum

# =============================================================================
# INPUT HANDLING
# =============================================================================

def as_returns_array(
    returns,
    min_obs: int = 2,
    min_assets: int = 2,
) -> Tuple[np.ndarray, Optional[Sequence]]:
    """
    Convert a (T, N) returns container to a float array.

    Accepts numpy arrays and table-like objects (anything with ``columns``
    and ``to_numpy()``/``values``, e.g. a pandas DataFrame).

    Returns
    -------
    returns : ndarray (T, N)
    labels : list or None
        Column labels when the input carries them.

    Raises
    ------
    ValueError
        If the input is not 2D.
    InsufficientDataError
        If there are fewer than ``min_obs`` rows or ``min_assets`` columns.
    NumericalError
        If the input contains NaN or infinite values.
    """
    labels = list(returns.columns) if hasattr(returns, "columns") else None

    if hasattr(returns, "to_numpy"):
        X = returns.to_numpy(dtype=float)
    else:
        X = np.asarray(returns, dtype=float)

    if X.ndim != 2:
        raise ValueError(f"Returns must be 2D array, got shape {X.shape}")

    T, N = X.shape
    if T < min_obs:
        raise InsufficientDataError(f"Need at least {min_obs} observations, got T={T}")
    if N < min_assets:
        raise InsufficientDataError(f"Need at least {min_assets} assets, got N={N}")
    if not np.all(np.isfinite(X)):
        raise NumericalError("Returns contain NaN or infinite values")

    return X, labels


def sample_covariance(returns: np.ndarray) -> np.ndarray:
    """Unbiased (ddof=1) sample covariance of a (T, N) returns array."""
    X = returns - returns.mean(axis=0)
    cov = X.T @ X / (X.shape[0] - 1)
    return 0.5 * (cov + cov.T)


def cov_to_corr(cov: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Split a covariance matrix into correlation and standard deviations.

    Raises
    ------
    NumericalError
        If any variance is not strictly positive.
    """
    var = np.diag(cov)
    if np.any(var <= 0):
        bad = np.flatnonzero(var <= 0).tolist()
        raise NumericalError(f"Zero or negative variance for assets {bad}")

    std = np.sqrt(var)
    corr = cov / np.outer(std, std)
    corr = np.clip(corr, -1.0, 1.0)  # rounding
    np.fill_diagonal(corr, 1.0)
    return corr, std


def corr_to_cov(corr: np.ndarray, std: np.ndarray) -> np.ndarray:
    """Rescale a correlation matrix by standard deviations: D C D."""
    cov = corr * np.outer(std, std)
    return 0.5 * (cov + cov.T)

# =============================================================================
# EIGENDECOMPOSITION
# =============================================================================

def eigen_decomposition(matrix: np.ndarray, atol: float = 1e-8) -> EigenSpectrum:
    """
    Eigendecomposition of a symmetric matrix, eigenvalues descending.

    Parameters
    ----------
    matrix : ndarray (n, n)
        Real symmetric matrix.
    atol : float, default=1e-8
        Symmetry tolerance, relative to the largest absolute entry.

    Returns
    -------
    spectrum : EigenSpectrum
        Eigenvalues sorted descending with orthonormal eigenvectors.

    Raises
    ------
    NumericalError
        If the matrix is not square, not finite, not symmetric within
        tolerance, or LAPACK fails to converge.
    """
    M = np.asarray(matrix, dtype=float)

    if M.ndim != 2 or M.shape[0] != M.shape[1]:
        logger.error(f"Eigendecomposition failed: matrix must be square, got {M.shape}")
        raise NumericalError(f"Matrix must be square, got shape {M.shape}")

    if not np.all(np.isfinite(M)):
        raise NumericalError("Matrix contains NaN or infinite values")

    scale = max(float(np.max(np.abs(M))), 1.0) if M.size else 1.0
    asym = float(np.max(np.abs(M - M.T))) if M.size else 0.0
    if asym > atol * scale:
        logger.error(f"Eigendecomposition failed: asymmetry {asym:.3e} exceeds tolerance")
        raise NumericalError(f"Matrix is not symmetric (max |M - M.T| = {asym:.3e})")

    n = M.shape[0]
    logger.debug(f"Using Dense Eigensolver (LAPACK) for n={n}")

    try:
        vals, vecs = scipy.linalg.eigh(0.5 * (M + M.T))
    except np.linalg.LinAlgError as e:
        logger.exception("Eigensolver did not converge.")
        raise NumericalError(f"Eigendecomposition did not converge: {e}") from e

    idx = np.argsort(vals)[::-1]
    return EigenSpectrum(values=vals[idx], vectors=vecs[:, idx])


def reconstruct(values: np.ndarray, vectors: np.ndarray) -> np.ndarray:
    """
    Rebuild a symmetric matrix ``V diag(values) V.T``.

    Parameters
    ----------
    values : ndarray (n,)
    vectors : ndarray (n, n)
        Column ``i`` is the eigenvector of ``values[i]``.
    """
    return EigenSpectrum(
        values=np.asarray(values, dtype=float),
        vectors=np.asarray(vectors, dtype=float),
    ).reconstruct()
