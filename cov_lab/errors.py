"""
errors.py - Exception Hierarchy for Covariance Lab

Every error raised on purpose by cov_lab derives from ``CovLabError`` and
also from the closest builtin, so callers can catch either
``CovLabError`` or e.g. ``ValueError`` for configuration problems.
"""


class CovLabError(Exception):
    """Base class for all cov_lab errors."""


class NumericalError(CovLabError, ArithmeticError):
    """Decomposition failure or invalid (non-symmetric, non-finite) input."""


class FitError(CovLabError, RuntimeError):
    """An iterative fit did not converge within its iteration cap."""


class InsufficientDataError(CovLabError, ValueError):
    """Too few observations or variables for the requested method."""


class InvalidNormError(CovLabError, ValueError):
    """Unsupported loss norm, pivot or statistical loss."""


class InvalidMethodError(CovLabError, ValueError):
    """Unsupported method, cutoff policy or eigenvalue treatment."""


class DegenerateSpikeError(CovLabError, ValueError):
    """Spike count leaves no bulk to estimate the noise level from."""
