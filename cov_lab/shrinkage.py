"""
shrinkage.py - Optimal Nonlinear Eigenvalue Shrinkage in the Spiked Model
========================================================================

In the spiked covariance model the population covariance (in units of the
noise variance) is ``I + sum_i (ell_i - 1) u_i u_i'``. Above the bulk edge
(1 + sqrt(gamma))^2, a sample eigenvalue ``lambda`` is a biased estimate of
its spike ``ell`` and its eigenvector is only partially aligned with ``u``:

    lambda = ell + gamma * ell / (ell - 1)
    c^2    = <u, v>^2 = (1 - gamma / (ell - 1)^2) / (1 + gamma / (ell - 1))
    s^2    = 1 - c^2

For a given loss, the asymptotically optimal shrinker ``eta(ell, c, s)``
minimises the loss of the 2x2 problem A = diag(ell, 1),
B = I + (eta - 1) v v', v = (c, s) (Donoho, Gavish & Johnstone, 2018).

Losses are kept in a ``ShrinkerRegistry``: the three matrix norms applied to
seven pivots plus five statistical discrepancies, 26 entries in total.
Entries carry a closed-form shrinker where one is known; the rest minimise
the reduced 2x2 loss numerically.

Pivots (A population, B estimate):
    1: A - B                 5: A^-1 B + B^-1 A - 2I
    2: A^-1 - B^-1           6: A^-1/2 B A^-1/2 - I
    3: A^-1 B - I            7: log(A^-1/2 B A^-1/2)
    4: B^-1 A - I

Example Usage:
-------------
    >>> from cov_lab.shrinkage import estimate_spiked_covariance
    >>> result = estimate_spiked_covariance(returns, norm="Frobenius", pivot=1)
    >>> result.n_spikes, result.shrunk_eigenvalues[:result.n_spikes]
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple, Union

import numpy as np
import scipy.optimize
from loguru import logger

from .decomposition import as_returns_array, eigen_decomposition, sample_covariance
from .errors import DegenerateSpikeError, InvalidNormError
from .spikes import KNTest, estimate_spike_count
from .types import (
    PIVOTS,
    LossNorm,
    SpikeMethod,
    SpikedConfig,
    SpikedCovarianceResult,
    StatisticalLoss,
)


# =============================================================================
# SPIKED-MODEL MAPS
# =============================================================================

def spike_forward(eigenvalues: np.ndarray, gamma: float) -> np.ndarray:
    """
    Population spike ``ell`` implied by whitened sample eigenvalues.

    Inverts ``lambda = ell + gamma * ell / (ell - 1)``; eigenvalues at or
    below the bulk edge map to 1.
    """
    lam = np.asarray(eigenvalues, dtype=float)
    edge = (1.0 + np.sqrt(gamma)) ** 2
    ell = np.ones_like(lam)
    above = lam > edge
    t = lam[above] + 1.0 - gamma
    ell[above] = 0.5 * (t + np.sqrt(np.maximum(t ** 2 - 4.0 * lam[above], 0.0)))
    return ell


def cosine(ell: np.ndarray, gamma: float) -> np.ndarray:
    """Asymptotic cosine between sample and population eigenvectors."""
    ell = np.asarray(ell, dtype=float)
    c2 = np.zeros_like(ell)
    above = ell > 1.0 + np.sqrt(gamma)
    d = ell[above] - 1.0
    c2[above] = (1.0 - gamma / d ** 2) / (1.0 + gamma / d)
    return np.sqrt(np.clip(c2, 0.0, 1.0))


def sine(ell: np.ndarray, gamma: float) -> np.ndarray:
    """Asymptotic sine, sqrt(1 - c^2)."""
    c = cosine(ell, gamma)
    return np.sqrt(np.clip(1.0 - c ** 2, 0.0, 1.0))


# =============================================================================
# REDUCED 2x2 LOSSES
# =============================================================================

def reduced_problem(ell: float, c: float, s: float, eta: float) -> Tuple[np.ndarray, np.ndarray]:
    """Population A = diag(ell, 1) and estimate B = I + (eta - 1) v v'."""
    A = np.diag([ell, 1.0])
    v = np.array([c, s])
    B = np.eye(2) + (eta - 1.0) * np.outer(v, v)
    return A, B


def _sym_fn(M: np.ndarray, fn: Callable[[np.ndarray], np.ndarray]) -> np.ndarray:
    vals, vecs = np.linalg.eigh(0.5 * (M + M.T))
    return (vecs * fn(vals)) @ vecs.T


def _pivot(A: np.ndarray, B: np.ndarray, pivot: int) -> np.ndarray:
    eye = np.eye(A.shape[0])
    if pivot == 1:
        return A - B
    if pivot == 2:
        return np.linalg.inv(A) - np.linalg.inv(B)
    if pivot == 3:
        return np.linalg.solve(A, B) - eye
    if pivot == 4:
        return np.linalg.solve(B, A) - eye
    if pivot == 5:
        return np.linalg.solve(A, B) + np.linalg.solve(B, A) - 2.0 * eye

    a_inv_half = _sym_fn(A, lambda x: 1.0 / np.sqrt(x))
    M = a_inv_half @ B @ a_inv_half
    if pivot == 6:
        return M - eye
    return _sym_fn(M, np.log)


_NORM_ORD = {
    LossNorm.FROBENIUS: "fro",
    LossNorm.OPERATOR: 2,
    LossNorm.NUCLEAR: "nuc",
}


def norm_loss(norm: LossNorm, pivot: int) -> Callable[[np.ndarray, np.ndarray], float]:
    """Loss ``||pivot(A, B)||`` for a matrix norm."""
    order = _NORM_ORD[norm]
    return lambda A, B: float(np.linalg.norm(_pivot(A, B, pivot), order))


def _logdet(M: np.ndarray) -> float:
    return float(np.linalg.slogdet(M)[1])


def _stein(A, B):
    P = np.linalg.solve(A, B)
    return float(np.trace(P) - _logdet(P) - A.shape[0])


def _entropy(A, B):
    P = np.linalg.solve(B, A)
    return float(np.trace(P) - _logdet(P) - A.shape[0])


def _divergence(A, B):
    return float(np.trace(np.linalg.solve(A, B)) + np.trace(np.linalg.solve(B, A)) - 2 * A.shape[0])


def _frechet(A, B):
    a_half = _sym_fn(A, np.sqrt)
    cross = _sym_fn(a_half @ B @ a_half, lambda x: np.sqrt(np.maximum(x, 0.0)))
    return float(np.trace(A + B - 2.0 * cross))


def _affine(A, B):
    return 0.5 * _logdet(0.5 * (A + B)) - 0.25 * _logdet(A) - 0.25 * _logdet(B)


STATISTICAL_LOSSES: Dict[StatisticalLoss, Callable] = {
    StatisticalLoss.STEIN: _stein,
    StatisticalLoss.ENTROPY: _entropy,
    StatisticalLoss.DIVERGENCE: _divergence,
    StatisticalLoss.FRECHET: _frechet,
    StatisticalLoss.AFFINE: _affine,
}


def numeric_shrinker(loss: Callable[[np.ndarray, np.ndarray], float], n_grid: int = 33) -> Callable:
    """
    Shrinker minimising a reduced 2x2 loss over eta in [1, ell].

    A coarse grid brackets the minimum, bounded Brent refines it.
    """

    def _single(ell: float, c: float, s: float) -> float:
        if ell <= 1.0:
            return 1.0

        def objective(eta):
            return loss(*reduced_problem(ell, c, s, eta))

        grid = np.linspace(1.0, ell, n_grid)
        values = np.array([objective(e) for e in grid])
        i = int(np.argmin(values))
        lo, hi = grid[max(i - 1, 0)], grid[min(i + 1, n_grid - 1)]
        res = scipy.optimize.minimize_scalar(
            objective, bounds=(lo, hi), method="bounded",
            options={"xatol": 1e-10 * ell, "maxiter": 500},
        )
        return float(res.x) if res.fun <= values[i] else float(grid[i])

    def shrinker(ell, c, s):
        ell, c, s = np.broadcast_arrays(
            np.asarray(ell, float), np.asarray(c, float), np.asarray(s, float)
        )
        return np.array([_single(*args) for args in zip(ell.ravel(), c.ravel(), s.ravel())]).reshape(ell.shape)

    return shrinker


# =============================================================================
# CLOSED FORMS
# =============================================================================

CLOSED_FORMS: Dict[str, Callable] = {
    "frobenius_1": lambda ell, c, s: ell * c ** 2 + s ** 2,
    "frobenius_2": lambda ell, c, s: ell / (c ** 2 + ell * s ** 2),
    "frobenius_3": lambda ell, c, s: (ell * c ** 2 + ell ** 2 * s ** 2) / (c ** 2 + ell ** 2 * s ** 2),
    "frobenius_4": lambda ell, c, s: (ell ** 2 * c ** 2 + s ** 2) / (ell * c ** 2 + s ** 2),
    "frobenius_6": lambda ell, c, s: 1.0 + (ell - 1.0) * c ** 2 / (c ** 2 + ell * s ** 2) ** 2,
    "operator_1": lambda ell, c, s: ell,
    "operator_2": lambda ell, c, s: ell,
    "operator_6": lambda ell, c, s: 1.0 + (ell - 1.0) / (c ** 2 + ell * s ** 2),
    "operator_7": lambda ell, c, s: ell,
    "nuclear_1": lambda ell, c, s: np.maximum(1.0 + (ell - 1.0) * (1.0 - 2.0 * s ** 2), 1.0),
    "nuclear_2": lambda ell, c, s: np.maximum(ell / (c ** 2 + (2.0 * ell - 1.0) * s ** 2), 1.0),
    "stein": lambda ell, c, s: ell / (c ** 2 + ell * s ** 2),
    "entropy": lambda ell, c, s: ell * c ** 2 + s ** 2,
    "divergence": lambda ell, c, s: np.sqrt((ell ** 2 * c ** 2 + ell * s ** 2) / (c ** 2 + ell * s ** 2)),
    "affine": lambda ell, c, s: ((1.0 + c ** 2) * ell + s ** 2) / (1.0 + c ** 2 + ell * s ** 2),
}


# =============================================================================
# SHRINKER REGISTRY
# =============================================================================

@dataclass
class ShrinkerInfo:
    """
    A registered loss and its optimal shrinker.

    Attributes
    ----------
    name : str
        Registry key, ``"<norm>_<pivot>"`` or a statistical loss name.
    loss : Callable
        Reduced 2x2 loss ``loss(A, B) -> float``.
    func : Callable
        Shrinker ``func(ell, c, s) -> eta``, vectorised.
    closed_form : bool
        False when ``func`` minimises ``loss`` numerically.
    description : str
        Human-readable description.
    """
    name: str
    loss: Callable
    func: Callable
    closed_form: bool
    description: str = ""


class ShrinkerRegistry:
    """
    Table of loss functions and their optimal shrinkers.

    Built-ins cover the Frobenius, operator and nuclear norms on pivots 1-7
    and the Stein, entropy, divergence, Frechet and affine losses.

    Examples
    --------
    >>> registry = ShrinkerRegistry()
    >>> len(registry.list_losses())
    26
    >>> registry.get("frobenius_1").closed_form
    True
    """

    def __init__(self):
        self._shrinkers: Dict[str, ShrinkerInfo] = {}
        self._register_builtins()

    def _register_builtins(self) -> None:
        for norm in LossNorm:
            for pivot, expr in PIVOTS.items():
                self.register(
                    name=f"{norm.value}_{pivot}",
                    loss=norm_loss(norm, pivot),
                    func=CLOSED_FORMS.get(f"{norm.value}_{pivot}"),
                    description=f"{norm.value.capitalize()} norm of {expr}",
                )
        for stat, loss in STATISTICAL_LOSSES.items():
            self.register(
                name=stat.value,
                loss=loss,
                func=CLOSED_FORMS.get(stat.value),
                description=f"{stat.value.capitalize()} loss",
            )

    def register(
        self,
        name: str,
        loss: Callable,
        func: Optional[Callable] = None,
        description: str = "",
    ) -> None:
        """
        Register a loss. Without ``func`` the shrinker is found numerically.
        """
        key = name.lower()
        self._shrinkers[key] = ShrinkerInfo(
            name=key,
            loss=loss,
            func=func if func is not None else numeric_shrinker(loss),
            closed_form=func is not None,
            description=description,
        )

    def get(self, name: str) -> ShrinkerInfo:
        """
        Retrieve a registered loss.

        Raises
        ------
        InvalidNormError
            If the loss is not registered.
        """
        key = name.lower()
        if key not in self._shrinkers:
            available = ", ".join(sorted(self._shrinkers))
            raise InvalidNormError(f"Unknown loss '{name}'. Available: {available}")
        return self._shrinkers[key]

    def list_losses(self) -> List[str]:
        """Sorted registry keys."""
        return sorted(self._shrinkers)

    def shrink(self, name: str, ell: np.ndarray, c: np.ndarray, s: np.ndarray) -> np.ndarray:
        """Apply a registered shrinker; results are floored at 1."""
        eta = np.asarray(self.get(name).func(ell, c, s), dtype=float)
        eta = np.broadcast_to(eta, np.shape(ell)).astype(float)
        return np.maximum(np.where(np.asarray(ell) > 1.0, eta, 1.0), 1.0)


_DEFAULT_REGISTRY = ShrinkerRegistry()


def default_registry() -> ShrinkerRegistry:
    """The module-level registry used by the estimators."""
    return _DEFAULT_REGISTRY


# =============================================================================
# ENGINE
# =============================================================================

def shrink_eigenvalues(
    eigenvalues: np.ndarray,
    n_spikes: int,
    gamma: float,
    sigma2: float = 1.0,
    norm: Union[LossNorm, str] = LossNorm.FROBENIUS,
    pivot: int = 1,
    statistical: Optional[Union[StatisticalLoss, str]] = None,
    registry: Optional[ShrinkerRegistry] = None,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Shrink the top ``n_spikes`` eigenvalues and whiten the bulk.

    Parameters
    ----------
    eigenvalues : ndarray (N,)
        Sample covariance eigenvalues, descending.
    n_spikes : int
        Number of spikes to shrink.
    gamma : float
        Aspect ratio N/T.
    sigma2 : float, default=1.0
        Noise variance used for whitening.
    norm : {"frobenius", "operator", "nuclear"}, default="frobenius"
    pivot : int, default=1
    statistical : str, optional
        Statistical loss; overrides ``norm`` and ``pivot``.
    registry : ShrinkerRegistry, optional
        Defaults to the module registry.

    Returns
    -------
    shrunk : ndarray (N,)
        Whitened shrunk eigenvalues; positions >= n_spikes are exactly 1.
    ell : ndarray (n_spikes,)
        De-biased spikes the shrinker was applied to.

    Raises
    ------
    DegenerateSpikeError
        If ``n_spikes >= N``.
    """
    registry = registry or _DEFAULT_REGISTRY
    key = SpikedConfig(norm=norm, pivot=pivot, statistical=statistical).loss_key
    info = registry.get(key)

    lam = np.asarray(eigenvalues, dtype=float)
    N = lam.size
    if n_spikes >= N:
        raise DegenerateSpikeError(f"n_spikes={n_spikes} leaves no bulk in dimension N={N}")
    if n_spikes < 0:
        raise ValueError(f"n_spikes must be non-negative, got {n_spikes}")
    if not sigma2 > 0:
        raise ValueError(f"sigma2 must be positive, got {sigma2}")

    white = lam[:n_spikes] / sigma2
    ell = spike_forward(white, gamma)
    c = cosine(ell, gamma)
    s = np.sqrt(np.clip(1.0 - c ** 2, 0.0, 1.0))

    shrunk = np.ones(N)
    shrunk[:n_spikes] = registry.shrink(info.name, ell, c, s)

    below = int(np.sum(ell <= 1.0))
    if below:
        logger.warning(f"{below} requested spikes lie inside the bulk and were set to 1")
    return shrunk, ell


def estimate_spiked_covariance(
    returns,
    gamma: Optional[float] = None,
    num_spikes: Optional[int] = None,
    method: Union[SpikeMethod, str] = SpikeMethod.KN_TEST,
    norm: Union[LossNorm, str] = LossNorm.FROBENIUS,
    pivot: int = 1,
    statistical: Optional[Union[StatisticalLoss, str]] = None,
    alpha: float = 0.01,
) -> SpikedCovarianceResult:
    """
    Spiked-covariance shrinkage estimator.

    Parameters
    ----------
    returns : array-like (T, N)
        Returns with T time-ordered observations of N assets.
    gamma : float, optional
        Aspect ratio N/T; defaults to the panel's own ratio.
    num_spikes : int, optional
        Spike count; estimated with ``method`` when None.
    method : {"KNTest", "median-fitting"}, default="KNTest"
        Spike-count strategy.
    norm : {"Frobenius", "Operator", "Nuclear"}, default="Frobenius"
        Matrix norm of the loss.
    pivot : int, default=1
        Pivot the norm is applied to (1-7, see module docstring).
    statistical : {"stein", "entropy", "divergence", "frechet", "affine"}, optional
        Statistical loss; overrides ``norm`` and ``pivot``.
    alpha : float, default=0.01
        KN test significance level.

    Returns
    -------
    SpikedCovarianceResult

    Raises
    ------
    InvalidNormError
        For an unknown norm, pivot or statistical loss.
    InvalidMethodError
        For an unknown spike-count method.
    DegenerateSpikeError
        If ``num_spikes >= N``.
    InsufficientDataError
        If the panel is too small for the chosen method.
    """
    config = SpikedConfig(
        gamma=gamma,
        num_spikes=num_spikes,
        method=method,
        norm=norm,
        pivot=pivot,
        statistical=statistical,
        alpha=alpha,
    )
    loss_key = config.loss_key
    _DEFAULT_REGISTRY.get(loss_key)

    X, labels = as_returns_array(returns, min_obs=2, min_assets=2)
    T, N = X.shape
    # The sample covariance has rank at most min(N, T - 1).
    rank = min(N, T - 1)
    if config.num_spikes is not None and config.num_spikes >= rank:
        raise DegenerateSpikeError(
            f"num_spikes={config.num_spikes} leaves no bulk: N={N}, T={T}, rank <= {rank}"
        )
    gamma_eff = config.gamma if config.gamma is not None else N / T

    logger.info(
        f"Starting spiked shrinkage: {T} periods, {N} assets, gamma={gamma_eff:.4f}, loss='{loss_key}'"
    )

    spectrum = eigen_decomposition(sample_covariance(X))

    if config.num_spikes is None:
        options = {"alpha": config.alpha} if config.method == SpikeMethod.KN_TEST else {}
        estimate = estimate_spike_count(spectrum.values, gamma_eff, config.method, **options)
        n_spikes, sigma2 = estimate.n_spikes, estimate.sigma2
    else:
        n_spikes = config.num_spikes
        lam = np.clip(spectrum.values, 0.0, None)
        sigma2 = KNTest(alpha=config.alpha).noise_variance(lam, n_spikes, N / gamma_eff)

    shrunk, ell = shrink_eigenvalues(
        spectrum.values, n_spikes, gamma_eff, sigma2,
        norm=config.norm, pivot=config.pivot, statistical=config.statistical,
    )

    V = spectrum.vectors[:, :n_spikes]
    cov = sigma2 * (np.eye(N) + (V * (shrunk[:n_spikes] - 1.0)) @ V.T)
    cov = 0.5 * (cov + cov.T)

    logger.success(f"Spiked shrinkage complete: {n_spikes} spikes, sigma2={sigma2:.4f}")

    return SpikedCovarianceResult(
        covariance=cov,
        n_spikes=n_spikes,
        shrunk_eigenvalues=shrunk,
        sigma2=float(sigma2),
        gamma=float(gamma_eff),
        loss=loss_key,
        spectrum=spectrum,
        spike_estimates=ell,
        labels=labels,
        norm=config.norm if config.statistical is None else None,
        pivot=config.pivot if config.statistical is None else None,
    )
