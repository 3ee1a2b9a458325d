"""
test_simulation.py - Tests for Returns Simulation and Covariance Validation

Tests cover:
- Spiked population covariances
- ReturnsSimulator diagonal and dense paths
- Student-t innovations
- CovarianceValidator metrics
"""

import pytest
import numpy as np

from cov_lab import (
    ReturnsSimulator,
    CovarianceValidator,
    spiked_covariance,
    simulate_spiked_returns,
    NumericalError,
)


class TestSpikedCovariance:
    """Tests for spiked_covariance."""

    def test_eigenvalues(self, rng):
        cov, basis = spiked_covariance([9.0, 4.0], 20, sigma2=2.0, rng=rng)
        vals = np.sort(np.linalg.eigvalsh(cov))[::-1]

        np.testing.assert_allclose(vals[:2], [18.0, 8.0])
        np.testing.assert_allclose(vals[2:], 2.0)
        np.testing.assert_allclose(basis.T @ basis, np.eye(20), atol=1e-10)

    def test_canonical_basis(self):
        cov, basis = spiked_covariance([5.0], 4, random_basis=False)
        np.testing.assert_allclose(cov, np.diag([5.0, 1.0, 1.0, 1.0]))
        np.testing.assert_array_equal(basis, np.eye(4))

    def test_too_many_spikes(self):
        with pytest.raises(ValueError):
            spiked_covariance([3.0, 2.0], 2)

    def test_non_positive_spike(self):
        with pytest.raises(ValueError):
            spiked_covariance([0.0], 5)


class TestReturnsSimulator:
    """Tests for ReturnsSimulator."""

    def test_shape(self, rng):
        returns = ReturnsSimulator(np.eye(5), rng=rng).simulate(100)
        assert returns.shape == (100, 5)

    def test_diagonal_covariance(self, rng, large_sample_tolerance):
        cov = np.diag([1.0, 4.0, 0.25])
        returns = ReturnsSimulator(cov, rng=rng).simulate(20000)
        np.testing.assert_allclose(returns.var(axis=0), np.diag(cov), **large_sample_tolerance)

    def test_dense_covariance(self, rng, large_sample_tolerance):
        cov = np.array([[1.0, 0.5], [0.5, 2.0]])
        returns = ReturnsSimulator(cov, rng=rng).simulate(20000)
        np.testing.assert_allclose(np.cov(returns, rowvar=False), cov, **large_sample_tolerance)

    def test_force_dense_matches_diagonal(self):
        cov = np.diag([1.0, 2.0, 3.0])
        diag = ReturnsSimulator(cov, rng=np.random.default_rng(0)).simulate(50)
        dense = ReturnsSimulator(cov, rng=np.random.default_rng(0), force_dense=True).simulate(50)
        np.testing.assert_allclose(diag, dense)

    def test_student_t_variance(self, rng, large_sample_tolerance):
        returns = ReturnsSimulator(np.eye(3), rng=rng).simulate(50000, innovation="student_t", df=6)
        np.testing.assert_allclose(returns.var(axis=0), 1.0, **large_sample_tolerance)

    def test_student_t_needs_finite_variance(self, rng):
        with pytest.raises(ValueError, match="df > 2"):
            ReturnsSimulator(np.eye(2), rng=rng).simulate(10, innovation="student_t", df=2)

    def test_unknown_innovation(self, rng):
        with pytest.raises(ValueError, match="Unknown innovation"):
            ReturnsSimulator(np.eye(2), rng=rng).simulate(10, innovation="cauchy")

    def test_not_positive_definite(self, rng):
        cov = np.array([[1.0, 2.0], [2.0, 1.0]])
        with pytest.raises(NumericalError):
            ReturnsSimulator(cov, rng=rng)

    def test_reproducible(self):
        a, _ = simulate_spiked_returns(20, 5, spikes=[4.0], rng=np.random.default_rng(7))
        b, _ = simulate_spiked_returns(20, 5, spikes=[4.0], rng=np.random.default_rng(7))
        np.testing.assert_array_equal(a, b)

    def test_different_seeds_differ(self, rng, rng_alternate):
        a, _ = simulate_spiked_returns(20, 5, spikes=[4.0], rng=rng)
        b, _ = simulate_spiked_returns(20, 5, spikes=[4.0], rng=rng_alternate)
        assert not np.allclose(a, b)


class TestCovarianceValidator:
    """Tests for CovarianceValidator."""

    def test_zero_error_on_truth(self):
        cov = np.diag([2.0, 1.0])
        result = CovarianceValidator(cov).compare(cov)
        assert result.frobenius_error == 0.0
        assert result.max_absolute_error == 0.0

    def test_metrics(self):
        result = CovarianceValidator(np.eye(2)).compare(np.diag([3.0, 1.0]))
        assert result.frobenius_error == pytest.approx(2.0)
        assert result.operator_error == pytest.approx(2.0)
        assert result.mean_absolute_error == pytest.approx(0.5)
        assert result.max_absolute_error == pytest.approx(2.0)

    def test_shape_mismatch(self):
        with pytest.raises(ValueError, match="shape"):
            CovarianceValidator(np.eye(3)).compare(np.eye(2))

    def test_pure_noise_panel(self, rng):
        returns, cov = simulate_spiked_returns(5000, 10, rng=rng)
        np.testing.assert_allclose(cov, np.eye(10), atol=1e-10)
        assert CovarianceValidator(cov).compare(np.cov(returns, rowvar=False)).max_absolute_error < 0.1
