"""
types.py - Core Data Structures, Enums and Configuration for Covariance Lab

This module defines the value objects passed between the estimation stages:
- EigenSpectrum: Descending eigenvalues with orthonormal eigenvectors
- MarchenkoPasturFit: Fitted noise level, bulk edges and signal set
- RMTResult / SpikedCovarianceResult: Outputs of the two public estimators
- RMTConfig / SpikedConfig: Eagerly validated estimator configuration

Design Principles:
-----------------
1. Immutability (frozen dataclasses); every stage returns new values
2. Validation at construction time (fail-fast, before any numerical work)
3. String enums so that callers may pass either members or plain strings
4. Numpy-style docstrings throughout

Example Usage:
-------------
    >>> from cov_lab.types import RMTConfig, CutoffPolicy
    >>>
    >>> config = RMTConfig(cutoff="each", eigen_treat="delete")
    >>> config.cutoff is CutoffPolicy.EACH
    True
"""

from __future__ import annotations

import numpy as np
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple, Type, TypeVar

from .errors import InvalidMethodError, InvalidNormError
from .tracy_widom import tracy_widom_quantile


# =============================================================================
# ENUMS
# =============================================================================

class CutoffPolicy(str, Enum):
    """
    How the Marchenko-Pastur fitter separates signal from noise.

    MAX: The top ``num_eig`` eigenvalues are fixed as signal before fitting.
    EACH: Eigenvalues are tested one at a time, refitting after each move.
    """
    MAX = "max"
    EACH = "each"


class EigenTreatment(str, Enum):
    """
    What happens to noise eigenvalues during RMT reconstruction.

    AVERAGE: Replaced by their mean; preserves the trace.
    DELETE: Set to zero; the trace is reduced by the noise variance.
    """
    AVERAGE = "average"
    DELETE = "delete"


class FitMethod(str, Enum):
    """Noise-variance fitting criterion for the MP bulk."""
    MOMENTS = "moments"
    DENSITY = "density"


class SpikeMethod(str, Enum):
    """Spike-count estimation strategies."""
    KN_TEST = "KNTest"
    MEDIAN_FITTING = "median-fitting"


class LossNorm(str, Enum):
    """Matrix norms for the spiked-covariance loss functions."""
    FROBENIUS = "frobenius"
    OPERATOR = "operator"
    NUCLEAR = "nuclear"


class StatisticalLoss(str, Enum):
    """Statistical discrepancies with their own optimal shrinkers."""
    STEIN = "stein"
    ENTROPY = "entropy"
    DIVERGENCE = "divergence"
    FRECHET = "frechet"
    AFFINE = "affine"


PIVOTS: Dict[int, str] = {
    1: "A - B",
    2: "A^-1 - B^-1",
    3: "A^-1 B - I",
    4: "B^-1 A - I",
    5: "A^-1 B + B^-1 A - 2I",
    6: "A^-1/2 B A^-1/2 - I",
    7: "log(A^-1/2 B A^-1/2)",
}

E = TypeVar("E", bound=Enum)

_ALIASES: Dict[str, str] = {
    "kn": "KNTest",
    "kn-test": "KNTest",
    "kntest": "KNTest",
    "median": "median-fitting",
    "medianfitting": "median-fitting",
    "median-fitting": "median-fitting",
    "fro": "frobenius",
    "op": "operator",
    "spectral": "operator",
    "trace": "nuclear",
}


def parse_enum(enum_cls: Type[E], value, error_cls: Type[Exception] = InvalidMethodError) -> E:
    """
    Convert ``value`` to a member of ``enum_cls``.

    Strings are matched case-insensitively, with ``_`` and spaces treated
    as ``-``.

    Raises
    ------
    error_cls
        If ``value`` names no member.
    """
    if isinstance(value, enum_cls):
        return value

    if isinstance(value, str):
        key = value.strip().lower().replace("_", "-").replace(" ", "-")
        key = _ALIASES.get(key, key)
        for member in enum_cls:
            if member.value.lower() == key.lower():
                return member

    valid = ", ".join(repr(m.value) for m in enum_cls)
    raise error_cls(f"Invalid {enum_cls.__name__} '{value}'. Valid values: {valid}")


# =============================================================================
# EIGEN-SPECTRUM
# =============================================================================

@dataclass(frozen=True)
class EigenSpectrum:
    """
    Eigendecomposition of a symmetric matrix.

    Parameters
    ----------
    values : np.ndarray
        Eigenvalues with shape (n,), sorted descending.
    vectors : np.ndarray
        Eigenvectors with shape (n, n); column ``i`` belongs to ``values[i]``.
    """
    values: np.ndarray
    vectors: np.ndarray

    def __post_init__(self):
        if self.values.ndim != 1:
            raise ValueError(f"values must be 1D, got shape {self.values.shape}")
        n = self.values.shape[0]
        if self.vectors.shape != (n, n):
            raise ValueError(
                f"vectors shape mismatch: expected ({n}, {n}), got {self.vectors.shape}"
            )

    @property
    def n(self) -> int:
        """Matrix dimension."""
        return self.values.shape[0]

    @property
    def trace(self) -> float:
        """Sum of the eigenvalues."""
        return float(np.sum(self.values))

    def reconstruct(self, values: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Rebuild ``V diag(values) V.T``.

        Parameters
        ----------
        values : np.ndarray, optional
            Replacement eigenvalues (same order). Defaults to ``self.values``.
        """
        vals = self.values if values is None else np.asarray(values, dtype=float)
        if vals.shape != self.values.shape:
            raise ValueError(
                f"values must have shape {self.values.shape}, got {vals.shape}"
            )
        matrix = (self.vectors * vals) @ self.vectors.T
        return 0.5 * (matrix + matrix.T)


# =============================================================================
# MARCHENKO-PASTUR FIT
# =============================================================================

@dataclass(frozen=True)
class MarchenkoPasturFit:
    """
    Result of fitting the Marchenko-Pastur law to an eigenvalue spectrum.

    Parameters
    ----------
    sigma2 : float
        Noise variance estimate (> 0).
    lambda_min : float
        Lower bulk edge; 0 when ``q >= 1``.
    lambda_max : float
        Upper bulk edge.
    q : float
        Aspect ratio N/T used for the fit.
    signal_indices : Tuple[int, ...]
        Positions (in the descending spectrum) classified as signal.
    cutoff : CutoffPolicy
        Policy that produced the classification.
    fit_method : FitMethod
        Criterion used to fit ``sigma2``.
    threshold : float
        Acceptance threshold actually applied (``lambda_max`` plus the
        Tracy-Widom margin, if any).
    n_iter : int
        Number of signal-classification rounds performed.
    """
    sigma2: float
    lambda_min: float
    lambda_max: float
    q: float
    signal_indices: Tuple[int, ...]
    cutoff: CutoffPolicy
    fit_method: FitMethod
    threshold: float
    n_iter: int = 1

    def __post_init__(self):
        if not self.sigma2 > 0:
            raise ValueError(f"sigma2 must be positive, got {self.sigma2}")
        if not 0 <= self.lambda_min <= self.lambda_max:
            raise ValueError(
                f"Invalid bulk edges: lambda_min={self.lambda_min}, lambda_max={self.lambda_max}"
            )

    @property
    def n_signal(self) -> int:
        """Number of eigenvalues classified as signal."""
        return len(self.signal_indices)

    def pdf(self, x: np.ndarray) -> np.ndarray:
        """Fitted MP density at ``x`` (for external plotting)."""
        from .marchenko_pastur import mp_pdf
        return mp_pdf(x, self.sigma2, self.q)


# =============================================================================
# ESTIMATOR RESULTS
# =============================================================================

@dataclass(frozen=True)
class RMTResult:
    """
    Output of RMT denoising.

    Parameters
    ----------
    covariance : np.ndarray
        Denoised covariance matrix (N, N).
    correlation : np.ndarray
        Filtered correlation matrix (N, N); not renormalised to unit diagonal.
    spectrum : EigenSpectrum
        Eigendecomposition of the sample correlation matrix.
    cleaned_eigenvalues : np.ndarray
        Eigenvalues after the noise treatment (same order as ``spectrum``).
    mp_fit : MarchenkoPasturFit
        Fitted MP parameters and signal set.
    eigen_treat : EigenTreatment
        Treatment applied to the noise eigenvalues.
    labels : Sequence, optional
        Asset labels carried over from the input.
    """
    covariance: np.ndarray
    correlation: np.ndarray
    spectrum: EigenSpectrum
    cleaned_eigenvalues: np.ndarray
    mp_fit: MarchenkoPasturFit
    eigen_treat: EigenTreatment
    labels: Optional[Sequence] = None

    @property
    def signal_indices(self) -> Tuple[int, ...]:
        return self.mp_fit.signal_indices

    @property
    def noise_indices(self) -> Tuple[int, ...]:
        signal = set(self.mp_fit.signal_indices)
        return tuple(i for i in range(self.spectrum.n) if i not in signal)


@dataclass(frozen=True)
class SpikeEstimate:
    """
    Estimated number of spikes and noise level.

    Parameters
    ----------
    n_spikes : int
        Number of eigenvalues above the bulk.
    sigma2 : float
        Noise variance estimate.
    method : SpikeMethod
        Strategy that produced the estimate.
    bulk_edge : float
        Upper bulk edge ``sigma2 * (1 + sqrt(gamma))**2`` in data units.
    """
    n_spikes: int
    sigma2: float
    method: SpikeMethod
    bulk_edge: float

    def __post_init__(self):
        if self.n_spikes < 0:
            raise ValueError(f"n_spikes must be non-negative, got {self.n_spikes}")
        if not self.sigma2 > 0:
            raise ValueError(f"sigma2 must be positive, got {self.sigma2}")


@dataclass(frozen=True)
class SpikedCovarianceResult:
    """
    Output of spiked-covariance shrinkage.

    Parameters
    ----------
    covariance : np.ndarray
        Shrunk covariance matrix (N, N).
    n_spikes : int
        Number of shrunk spikes.
    shrunk_eigenvalues : np.ndarray
        Shrunk eigenvalues (N,) in whitened units; bulk positions equal 1.
    sigma2 : float
        Noise variance used to whiten and re-colour.
    gamma : float
        Aspect ratio N/T.
    loss : str
        Registry key of the loss whose shrinker was applied.
    spectrum : EigenSpectrum
        Eigendecomposition of the sample covariance.
    spike_estimates : np.ndarray
        De-biased population spikes (whitened) for the top ``n_spikes``.
    labels : Sequence, optional
        Asset labels carried over from the input.
    norm : LossNorm, optional
        Loss norm; None when a statistical loss was used.
    pivot : int, optional
        Loss pivot; None when a statistical loss was used.
    """
    covariance: np.ndarray
    n_spikes: int
    shrunk_eigenvalues: np.ndarray
    sigma2: float
    gamma: float
    loss: str
    spectrum: EigenSpectrum
    spike_estimates: np.ndarray
    labels: Optional[Sequence] = None
    norm: Optional[LossNorm] = None
    pivot: Optional[int] = None

    @property
    def shrinkage(self) -> np.ndarray:
        """Amount removed from each de-biased spike by the shrinker."""
        return self.spike_estimates - self.shrunk_eigenvalues[: self.n_spikes]


# =============================================================================
# CONFIGURATION
# =============================================================================

def _validate_significance(value: Optional[float], name: str) -> None:
    if value is None:
        return
    try:
        tracy_widom_quantile(value)
    except ValueError as e:
        raise ValueError(f"{name}: {e}") from e


@dataclass(frozen=True)
class RMTConfig:
    """
    Configuration of the RMT denoiser.

    Parameters
    ----------
    q : float, optional
        Aspect ratio N/T. Defaults to the data's own ratio.
    cutoff : CutoffPolicy or str, default="max"
    eigen_treat : EigenTreatment or str, default="average"
    num_eig : int, optional
        Under "max": eigenvalues fixed as signal (default 1).
        Under "each": cap on the signal count (default N - 2).
    parallel : bool, default=False
        Run the "each" candidate refits on a thread pool.
    max_workers : int, optional
        Thread-pool size when ``parallel`` is set.
    fit_method : FitMethod or str, default="moments"
    significance : float or None, default=0.01
        Tracy-Widom level for the finite-sample edge margin; None disables it.
    max_iter : int, default=200
        Iteration cap for each noise-variance fit.
    """
    q: Optional[float] = None
    cutoff: CutoffPolicy = CutoffPolicy.MAX
    eigen_treat: EigenTreatment = EigenTreatment.AVERAGE
    num_eig: Optional[int] = None
    parallel: bool = False
    max_workers: Optional[int] = None
    fit_method: FitMethod = FitMethod.MOMENTS
    significance: Optional[float] = 0.01
    max_iter: int = 200

    def __post_init__(self):
        object.__setattr__(self, "cutoff", parse_enum(CutoffPolicy, self.cutoff))
        object.__setattr__(self, "eigen_treat", parse_enum(EigenTreatment, self.eigen_treat))
        object.__setattr__(self, "fit_method", parse_enum(FitMethod, self.fit_method))

        if self.q is not None and not (np.isfinite(self.q) and self.q > 0):
            raise ValueError(f"q must be a positive finite number, got {self.q}")
        if self.num_eig is not None and self.num_eig < 0:
            raise ValueError(f"num_eig must be non-negative, got {self.num_eig}")
        if self.max_iter < 1:
            raise ValueError(f"max_iter must be at least 1, got {self.max_iter}")
        if self.max_workers is not None and self.max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {self.max_workers}")
        _validate_significance(self.significance, "significance")


@dataclass(frozen=True)
class SpikedConfig:
    """
    Configuration of the spiked-covariance shrinkage estimator.

    Parameters
    ----------
    gamma : float, optional
        Aspect ratio N/T. Defaults to the data's own ratio.
    num_spikes : int, optional
        Fixed spike count; estimated with ``method`` when None.
    method : SpikeMethod or str, default="KNTest"
    norm : LossNorm or str, default="frobenius"
    pivot : int, default=1
        Matrix discrepancy the norm is applied to (see ``PIVOTS``).
    statistical : StatisticalLoss or str, optional
        Statistical loss; overrides ``norm``/``pivot`` when given.
    alpha : float, default=0.01
        Significance level of the KN test.
    """
    gamma: Optional[float] = None
    num_spikes: Optional[int] = None
    method: SpikeMethod = SpikeMethod.KN_TEST
    norm: LossNorm = LossNorm.FROBENIUS
    pivot: int = 1
    statistical: Optional[StatisticalLoss] = None
    alpha: float = 0.01

    def __post_init__(self):
        object.__setattr__(self, "method", parse_enum(SpikeMethod, self.method))
        object.__setattr__(self, "norm", parse_enum(LossNorm, self.norm, InvalidNormError))
        if self.statistical is not None:
            object.__setattr__(
                self, "statistical",
                parse_enum(StatisticalLoss, self.statistical, InvalidNormError)
            )

        if isinstance(self.pivot, bool) or self.pivot not in PIVOTS:
            raise InvalidNormError(
                f"pivot must be one of {sorted(PIVOTS)}, got {self.pivot}"
            )
        if self.gamma is not None and not (np.isfinite(self.gamma) and self.gamma > 0):
            raise ValueError(f"gamma must be a positive finite number, got {self.gamma}")
        if self.num_spikes is not None and self.num_spikes < 0:
            raise ValueError(f"num_spikes must be non-negative, got {self.num_spikes}")
        _validate_significance(self.alpha, "alpha")

    @property
    def loss_key(self) -> str:
        """Registry key of the configured loss."""
        if self.statistical is not None:
            return self.statistical.value
        return f"{self.norm.value}_{self.pivot}"
