"""
test_denoising.py - Tests for RMT Covariance Denoising

Tests cover:
- Trace behaviour of the "average" and "delete" treatments
- Symmetry and shape of the outputs
- Signal detection on factor data, none on pure noise
- Configuration validation before any numerical work
"""

import pytest
import numpy as np

from cov_lab import (
    denoise,
    estimate_rmt,
    RMTResult,
    EigenTreatment,
    InvalidMethodError,
    InsufficientDataError,
    NumericalError,
)
from cov_lab.denoising import treat_noise_eigenvalues


class TestTreatNoiseEigenvalues:
    """Tests for treat_noise_eigenvalues."""

    def test_average_preserves_sum(self):
        lam = np.array([5.0, 2.0, 1.0, 0.5, 0.5])
        mask = np.array([False, False, True, True, True])
        cleaned = treat_noise_eigenvalues(lam, mask, EigenTreatment.AVERAGE)

        np.testing.assert_allclose(cleaned, [5.0, 2.0, 2 / 3, 2 / 3, 2 / 3])
        assert cleaned.sum() == pytest.approx(lam.sum())

    def test_delete_zeroes_noise(self):
        lam = np.array([5.0, 2.0, 1.0])
        mask = np.array([False, True, True])
        cleaned = treat_noise_eigenvalues(lam, mask, EigenTreatment.DELETE)
        np.testing.assert_allclose(cleaned, [5.0, 0.0, 0.0])

    def test_input_not_modified(self):
        lam = np.array([3.0, 1.0, 1.0])
        treat_noise_eigenvalues(lam, np.array([False, True, True]), EigenTreatment.DELETE)
        np.testing.assert_allclose(lam, [3.0, 1.0, 1.0])

    def test_no_noise(self):
        lam = np.array([3.0, 2.0])
        cleaned = treat_noise_eigenvalues(lam, np.zeros(2, dtype=bool), EigenTreatment.AVERAGE)
        np.testing.assert_allclose(cleaned, lam)


class TestDenoise:
    """Tests for the RMT denoiser."""

    def test_result_structure(self, factor_returns):
        result = estimate_rmt(factor_returns)
        N = factor_returns.shape[1]

        assert isinstance(result, RMTResult)
        assert result.covariance.shape == (N, N)
        assert result.correlation.shape == (N, N)
        assert result.cleaned_eigenvalues.shape == (N,)
        assert set(result.signal_indices).isdisjoint(result.noise_indices)
        assert len(result.signal_indices) + len(result.noise_indices) == N

    @pytest.mark.parametrize("cutoff", ["max", "each"])
    def test_average_preserves_trace(self, factor_returns, cutoff):
        result = denoise(factor_returns, cutoff=cutoff, eigen_treat="average")
        N = factor_returns.shape[1]

        assert np.trace(result.correlation) == pytest.approx(N, rel=1e-10)
        assert result.spectrum.trace == pytest.approx(N, rel=1e-10)

    @pytest.mark.parametrize("cutoff", ["max", "each"])
    def test_delete_reduces_trace(self, factor_returns, cutoff):
        result = denoise(factor_returns, cutoff=cutoff, eigen_treat="delete")
        N = factor_returns.shape[1]
        assert np.trace(result.correlation) < N

    def test_symmetric_outputs(self, factor_returns):
        result = denoise(factor_returns, cutoff="each")
        np.testing.assert_allclose(result.covariance, result.covariance.T, atol=1e-12)
        np.testing.assert_allclose(result.correlation, result.correlation.T, atol=1e-12)

    def test_signal_eigenvalues_untouched(self, factor_returns):
        result = denoise(factor_returns, cutoff="each")
        idx = list(result.signal_indices)
        np.testing.assert_allclose(result.cleaned_eigenvalues[idx], result.spectrum.values[idx])

    def test_detects_factors(self, factor_returns):
        result = denoise(factor_returns, cutoff="each")
        assert set(range(3)) <= set(result.signal_indices)

    def test_density_fit(self, factor_returns):
        result = denoise(factor_returns, cutoff="each", fit_method="density")
        assert result.mp_fit.fit_method.value == "density"
        assert set(range(3)) <= set(result.signal_indices)

    def test_pure_noise_has_no_signal(self):
        """Pure noise is classified as noise in nearly every draw."""
        empty = 0
        for seed in range(5):
            X = np.random.default_rng(seed).standard_normal((100, 80))
            result = denoise(X, cutoff="each")
            empty += result.mp_fit.n_signal == 0
        assert empty >= 4

    def test_covariance_rescaled_by_std(self, factor_returns):
        result = denoise(factor_returns, cutoff="each")
        std = factor_returns.std(axis=0, ddof=1)
        np.testing.assert_allclose(result.covariance, result.correlation * np.outer(std, std))

    def test_parallel_matches_sequential(self, factor_returns):
        seq = denoise(factor_returns, cutoff="each")
        par = denoise(factor_returns, cutoff="each", parallel=True, max_workers=3)
        np.testing.assert_allclose(par.covariance, seq.covariance)

    def test_labels_carried(self, factor_returns):
        columns = [f"asset_{i}" for i in range(factor_returns.shape[1])]

        class Frame:
            def __init__(self, data):
                self.columns = columns
                self._data = data

            def to_numpy(self, dtype=None):
                return self._data.astype(dtype)

        result = denoise(Frame(factor_returns))
        assert result.labels == columns

    def test_invalid_cutoff_before_numerics(self):
        with pytest.raises(InvalidMethodError):
            denoise(None, cutoff="median")

    def test_invalid_treatment(self, factor_returns):
        with pytest.raises(InvalidMethodError):
            denoise(factor_returns, eigen_treat="shrink")

    def test_too_few_assets(self, rng):
        with pytest.raises(InsufficientDataError):
            denoise(rng.standard_normal((50, 2)))

    def test_constant_asset(self, rng):
        X = rng.standard_normal((50, 5))
        X[:, 2] = 1.0
        with pytest.raises(NumericalError):
            denoise(X)

    def test_explicit_q(self, factor_returns):
        result = denoise(factor_returns, q=0.2, cutoff="each")
        assert result.mp_fit.q == 0.2
