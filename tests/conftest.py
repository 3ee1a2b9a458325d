"""
conftest.py - Pytest Configuration and Shared Fixtures

This file contains fixtures used across all test modules. Fixtures are
organized by category:
- Random number generators (for reproducibility)
- Returns panels with known covariance (pure noise, factor, spiked)
"""

import pytest
import numpy as np

from cov_lab import simulate_spiked_returns


# =============================================================================
# RANDOM NUMBER GENERATORS
# =============================================================================

@pytest.fixture
def rng():
    """
    Provide a seeded random number generator for reproducible tests.

    All tests should use this fixture (or derive from it) to ensure
    reproducibility across runs.
    """
    return np.random.default_rng(seed=42)


@pytest.fixture
def rng_alternate():
    """Alternate RNG with different seed for comparison tests."""
    return np.random.default_rng(seed=12345)


# =============================================================================
# RETURNS PANELS
# =============================================================================

@pytest.fixture
def noise_returns(rng):
    """
    Pure-noise returns, identity covariance.

    Shape: (100, 80) - q = 0.8.
    """
    return rng.standard_normal((100, 80))


@pytest.fixture
def factor_returns(rng):
    """
    Returns from a 3-factor model with homogeneous assets.

    Every asset has unit loadings (random signs) and the same idiosyncratic
    variance, so the correlation matrix is an exact spiked model.

    Shape: (500, 50) - q = 0.1.
    """
    T, N, k = 500, 50, 3
    loadings = rng.choice([-1.0, 1.0], size=(k, N))
    factors = rng.standard_normal((T, k)) * np.sqrt([1.0, 0.6, 0.4])
    idio = rng.standard_normal((T, N)) * np.sqrt(0.5)
    return factors @ loadings + idio


@pytest.fixture
def spiked_panel(rng):
    """
    Three well separated spikes in dimension 200.

    Returns (returns, true_covariance) with T=400 (gamma = 0.5).
    """
    return simulate_spiked_returns(400, 200, spikes=[30.0, 20.0, 10.0], rng=rng)


@pytest.fixture
def many_spikes_panel(rng):
    """
    Fifteen spikes 48, 46, ..., 20 in dimension 100, T=500, sigma^2 = 1.
    """
    spikes = np.arange(48.0, 19.0, -2.0)
    return simulate_spiked_returns(500, 100, spikes=spikes, rng=rng)


# =============================================================================
# HELPER FIXTURES
# =============================================================================

@pytest.fixture
def tolerance():
    """Standard numerical tolerance for float comparisons."""
    return {"rtol": 1e-5, "atol": 1e-8}


@pytest.fixture
def large_sample_tolerance():
    """Looser tolerance for statistical convergence tests."""
    return {"rtol": 0.05, "atol": 0.01}
