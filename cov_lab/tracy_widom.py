"""
tracy_widom.py - Largest-Eigenvalue Fluctuations of White Wishart Matrices

The largest eigenvalue of a pure-noise sample covariance does not sit exactly
on the Marchenko-Pastur edge; it fluctuates around it on the Tracy-Widom (TW1)
scale.  Both the ``cutoff="each"`` acceptance threshold and the
Kritchman-Nadler test use the centering/scaling constants of Johnstone (2001)
together with tabulated TW1 upper quantiles.

References
----------
Johnstone, I. M. (2001). On the distribution of the largest eigenvalue in
principal components analysis. Annals of Statistics 29(2).
"""

from __future__ import annotations

from typing import Dict, Tuple

import numpy as np

# Upper quantiles s(alpha) with P(TW1 > s) = alpha.
TRACY_WIDOM_QUANTILES: Dict[float, float] = {
    0.10: 0.4501,
    0.05: 0.9793,
    0.025: 1.4538,
    0.01: 2.0234,
    0.005: 2.4224,
    0.001: 3.2724,
}


def tracy_widom_quantile(alpha: float) -> float:
    """
    Upper TW1 quantile for significance level ``alpha``.

    Raises
    ------
    ValueError
        If ``alpha`` is not one of the tabulated levels.
    """
    for level, quantile in TRACY_WIDOM_QUANTILES.items():
        if np.isclose(alpha, level, rtol=0.0, atol=1e-12):
            return quantile
    levels = ", ".join(str(a) for a in sorted(TRACY_WIDOM_QUANTILES))
    raise ValueError(f"No Tracy-Widom quantile tabulated for alpha={alpha}. Available: {levels}")


def tracy_widom_scaling(n: float, p: float) -> Tuple[float, float]:
    """
    Centering and scaling of the largest eigenvalue of ``X.T @ X / n``.

    For ``n`` observations of ``p`` i.i.d. unit-variance variables,
    ``(lambda_1 - mu) / sigma`` converges to TW1.

    Returns
    -------
    (mu, sigma) : tuple of float
    """
    if n <= 0.5 or p <= 0.5:
        raise ValueError(f"n and p must exceed 1/2, got n={n}, p={p}")

    a = np.sqrt(n - 0.5)
    b = np.sqrt(p - 0.5)
    mu = (a + b) ** 2 / n
    sigma = (a + b) / n * (1.0 / a + 1.0 / b) ** (1.0 / 3.0)
    return float(mu), float(sigma)
