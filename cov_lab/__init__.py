"""
cov_lab - Random Matrix Theory Covariance Estimators
"""

__version__ = "1.0.0"

# =============================================================================
# CORE TYPES
# =============================================================================
from .types import (
    EigenSpectrum,
    MarchenkoPasturFit,
    RMTResult,
    SpikeEstimate,
    SpikedCovarianceResult,
    RMTConfig,
    SpikedConfig,
    CutoffPolicy,
    EigenTreatment,
    FitMethod,
    SpikeMethod,
    LossNorm,
    StatisticalLoss,
    PIVOTS,
)

# =============================================================================
# ERRORS
# =============================================================================
from .errors import (
    CovLabError,
    NumericalError,
    FitError,
    InsufficientDataError,
    InvalidNormError,
    InvalidMethodError,
    DegenerateSpikeError,
)

# =============================================================================
# DECOMPOSITION
# =============================================================================
from .decomposition import (
    eigen_decomposition,
    reconstruct,
    sample_covariance,
    cov_to_corr,
    corr_to_cov,
)

# =============================================================================
# MARCHENKO-PASTUR
# =============================================================================
from .marchenko_pastur import (
    mp_bounds,
    mp_pdf,
    mp_cdf,
    mp_median,
    fit_noise_variance,
    fit_marchenko_pastur,
)

# =============================================================================
# ESTIMATORS
# =============================================================================
from .denoising import (
    denoise,
    estimate_rmt,
)
from .spikes import (
    SpikeCountEstimator,
    KNTest,
    MedianFitting,
    get_spike_estimator,
    estimate_spike_count,
)
from .shrinkage import (
    ShrinkerRegistry,
    ShrinkerInfo,
    shrink_eigenvalues,
    estimate_spiked_covariance,
)

# =============================================================================
# SIMULATION
# =============================================================================
from .simulation import (
    ReturnsSimulator,
    CovarianceValidator,
    spiked_covariance,
    simulate_spiked_returns,
)

# =============================================================================
# I/O
# =============================================================================
from .io import (
    save_result,
    load_result,
    ResultFormat,
)

# =============================================================================
# PUBLIC API
# =============================================================================
__all__ = [
    "__version__",
    "EigenSpectrum",
    "MarchenkoPasturFit",
    "RMTResult",
    "SpikeEstimate",
    "SpikedCovarianceResult",
    "RMTConfig",
    "SpikedConfig",
    "CutoffPolicy",
    "EigenTreatment",
    "FitMethod",
    "SpikeMethod",
    "LossNorm",
    "StatisticalLoss",
    "PIVOTS",
    "CovLabError",
    "NumericalError",
    "FitError",
    "InsufficientDataError",
    "InvalidNormError",
    "InvalidMethodError",
    "DegenerateSpikeError",
    "eigen_decomposition",
    "reconstruct",
    "sample_covariance",
    "cov_to_corr",
    "corr_to_cov",
    "mp_bounds",
    "mp_pdf",
    "mp_cdf",
    "mp_median",
    "fit_noise_variance",
    "fit_marchenko_pastur",
    "denoise",
    "estimate_rmt",
    "SpikeCountEstimator",
    "KNTest",
    "MedianFitting",
    "get_spike_estimator",
    "estimate_spike_count",
    "ShrinkerRegistry",
    "ShrinkerInfo",
    "shrink_eigenvalues",
    "estimate_spiked_covariance",
    "ReturnsSimulator",
    "CovarianceValidator",
    "spiked_covariance",
    "simulate_spiked_returns",
    "save_result",
    "load_result",
    "ResultFormat",
]
