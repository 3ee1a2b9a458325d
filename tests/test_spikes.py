"""
test_spikes.py - Tests for Spike-Count Estimation

Tests cover:
- KN test on spiked and pure-noise spectra
- Median fitting and its histogram seed
- Strategy lookup by name
"""

import pytest
import numpy as np

from cov_lab import (
    KNTest,
    MedianFitting,
    SpikeCountEstimator,
    SpikeEstimate,
    SpikeMethod,
    get_spike_estimator,
    estimate_spike_count,
    eigen_decomposition,
    sample_covariance,
    FitError,
    InsufficientDataError,
    InvalidMethodError,
)


def covariance_eigenvalues(returns):
    return eigen_decomposition(sample_covariance(returns)).values


class TestKNTest:
    """Tests for the Kritchman-Nadler test."""

    def test_fifteen_spikes(self, many_spikes_panel):
        returns, _ = many_spikes_panel
        est = KNTest().estimate(covariance_eigenvalues(returns), gamma=100 / 500)

        assert isinstance(est, SpikeEstimate)
        assert est.method is SpikeMethod.KN_TEST
        assert abs(est.n_spikes - 15) <= 1
        assert est.sigma2 == pytest.approx(1.0, rel=0.1)

    def test_three_spikes(self, spiked_panel):
        returns, _ = spiked_panel
        est = estimate_spike_count(covariance_eigenvalues(returns), 0.5, "KNTest")
        assert abs(est.n_spikes - 3) <= 1

    def test_pure_noise(self):
        zero = 0
        for seed in range(5):
            X = np.random.default_rng(seed).standard_normal((100, 80))
            est = KNTest().estimate(covariance_eigenvalues(X), gamma=0.8)
            zero += est.n_spikes == 0
        assert zero >= 4

    def test_bulk_edge(self, spiked_panel):
        returns, _ = spiked_panel
        est = KNTest().estimate(covariance_eigenvalues(returns), 0.5)
        assert est.bulk_edge == pytest.approx(est.sigma2 * (1 + np.sqrt(0.5)) ** 2)

    def test_noise_variance_without_spikes_is_mean(self):
        lam = np.array([3.0, 2.0, 1.0, 0.5])
        assert KNTest().noise_variance(lam, 0, 10.0) == pytest.approx(lam.mean())

    def test_noise_variance_corrects_bulk_mean(self, spiked_panel):
        """Spikes pull variance out of the bulk; the estimate adds it back."""
        returns, _ = spiked_panel
        lam = covariance_eigenvalues(returns)
        sigma2 = KNTest().noise_variance(lam, 3, 400.0)
        assert sigma2 > lam[3:].mean()

    def test_noise_variance_empty_bulk(self):
        lam = np.array([5.0, 3.0, 1e-17, -1e-17])
        with pytest.raises(FitError):
            KNTest().noise_variance(lam, 2, 10.0)

    def test_untabulated_alpha(self):
        with pytest.raises(ValueError):
            KNTest(alpha=0.3)

    def test_invalid_gamma(self):
        with pytest.raises(ValueError):
            KNTest().estimate(np.ones(10), gamma=-1.0)


class TestMedianFitting:
    """Tests for median fitting."""

    def test_three_spikes(self, spiked_panel):
        returns, _ = spiked_panel
        est = MedianFitting().estimate(covariance_eigenvalues(returns), 0.5)

        assert est.method is SpikeMethod.MEDIAN_FITTING
        assert abs(est.n_spikes - 3) <= 1
        assert est.sigma2 == pytest.approx(1.0, rel=0.15)

    def test_fifteen_spikes(self, many_spikes_panel):
        returns, _ = many_spikes_panel
        est = estimate_spike_count(covariance_eigenvalues(returns), 0.2, "median-fitting")
        assert abs(est.n_spikes - 15) <= 1

    def test_count_bounded_by_seed(self, noise_returns):
        lam = covariance_eigenvalues(noise_returns)
        est = MedianFitting().estimate(lam, 0.8)
        assert est.n_spikes <= MedianFitting.seed_count(lam)

    def test_seed_count_with_gap(self):
        lam = np.concatenate([np.linspace(0.5, 1.5, 60), [10.0, 12.0]])
        assert MedianFitting.seed_count(lam) == 2

    def test_seed_count_without_gap(self):
        assert MedianFitting.seed_count(np.linspace(0.0, 1.0, 50)) == 0

    def test_too_few_eigenvalues(self):
        with pytest.raises(InsufficientDataError):
            MedianFitting().estimate(np.ones(5), 0.5)


class TestRegistry:
    """Tests for strategy lookup."""

    @pytest.mark.parametrize("name,cls", [
        ("KNTest", KNTest),
        ("kn_test", KNTest),
        ("median-fitting", MedianFitting),
        ("Median_Fitting", MedianFitting),
        (SpikeMethod.MEDIAN_FITTING, MedianFitting),
    ])
    def test_lookup(self, name, cls):
        estimator = get_spike_estimator(name)
        assert isinstance(estimator, cls)
        assert isinstance(estimator, SpikeCountEstimator)

    def test_options_forwarded(self):
        assert get_spike_estimator("KNTest", alpha=0.05).alpha == 0.05

    def test_unknown_method(self):
        with pytest.raises(InvalidMethodError):
            get_spike_estimator("elbow")
