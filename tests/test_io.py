"""
test_io.py - Tests for Result Serialization and Deserialization

Tests cover:
- NPZ format save/load for both result types
- JSON format save/load
- Label preservation
- Error handling
"""

import pytest
import numpy as np
import json

from cov_lab import estimate_rmt, estimate_spiked_covariance
from cov_lab.io import (
    save_result,
    load_result,
    result_to_dict,
    ResultFormat,
)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def rmt_result(factor_returns):
    return estimate_rmt(factor_returns, cutoff="each")


@pytest.fixture
def spiked_result(spiked_panel):
    returns, _ = spiked_panel
    return estimate_spiked_covariance(returns)


# =============================================================================
# NPZ Format Tests
# =============================================================================

class TestNPZFormat:
    """Tests for NPZ format save/load."""

    def test_rmt_round_trip(self, rmt_result, tmp_path):
        path = tmp_path / "rmt.npz"
        save_result(rmt_result, path)
        data = load_result(path)

        assert data["kind"] == "rmt"
        np.testing.assert_array_equal(data["covariance"], rmt_result.covariance)
        np.testing.assert_array_equal(data["cleaned_eigenvalues"], rmt_result.cleaned_eigenvalues)
        assert tuple(data["signal_indices"]) == rmt_result.signal_indices
        assert data["sigma2"] == rmt_result.mp_fit.sigma2
        assert data["cutoff"] == "each"
        assert data["eigen_treat"] == "average"

    def test_spiked_round_trip(self, spiked_result, tmp_path):
        path = tmp_path / "spiked.npz"
        save_result(spiked_result, path, format=ResultFormat.NPZ)
        data = load_result(path)

        assert data["kind"] == "spiked"
        assert data["n_spikes"] == spiked_result.n_spikes
        assert data["loss"] == "frobenius_1"
        np.testing.assert_array_equal(data["shrunk_eigenvalues"], spiked_result.shrunk_eigenvalues)
        np.testing.assert_array_equal(data["spike_estimates"], spiked_result.spike_estimates)

    def test_no_labels_key_without_labels(self, rmt_result, tmp_path):
        path = tmp_path / "rmt.npz"
        save_result(rmt_result, path)
        assert "labels" not in load_result(path)


# =============================================================================
# JSON Format Tests
# =============================================================================

class TestJSONFormat:
    """Tests for JSON format save/load."""

    def test_rmt_round_trip(self, rmt_result, tmp_path):
        path = tmp_path / "rmt.json"
        save_result(rmt_result, path, format="json")
        data = load_result(path)

        np.testing.assert_allclose(data["covariance"], rmt_result.covariance)
        np.testing.assert_allclose(data["eigenvectors"], rmt_result.spectrum.vectors)
        assert data["signal_indices"].dtype.kind == "i"
        assert data["q"] == pytest.approx(rmt_result.mp_fit.q)

    def test_human_readable(self, spiked_result, tmp_path):
        path = tmp_path / "spiked.json"
        save_result(spiked_result, path, format=ResultFormat.JSON)

        with open(path) as f:
            raw = json.load(f)
        assert raw["kind"] == "spiked"
        assert isinstance(raw["covariance"], list)

    def test_labels_preserved(self, factor_returns, tmp_path):
        columns = [f"A{i}" for i in range(factor_returns.shape[1])]

        class Frame:
            def __init__(self, data):
                self.columns = columns
                self._data = data

            def to_numpy(self, dtype=None):
                return self._data.astype(dtype)

        result = estimate_rmt(Frame(factor_returns))
        for suffix in ("npz", "json"):
            path = tmp_path / f"labelled.{suffix}"
            save_result(result, path, format=suffix)
            assert load_result(path)["labels"] == columns


# =============================================================================
# Error Handling
# =============================================================================

class TestErrors:
    """Tests for error handling."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_result(tmp_path / "missing.npz")

    def test_unknown_suffix(self, tmp_path):
        path = tmp_path / "result.txt"
        path.write_text("data")
        with pytest.raises(ValueError, match="Unknown result format"):
            load_result(path)

    def test_unknown_format(self, rmt_result, tmp_path):
        with pytest.raises(ValueError):
            save_result(rmt_result, tmp_path / "r.npz", format="hdf5")

    def test_not_a_result(self):
        with pytest.raises(TypeError):
            result_to_dict({"covariance": np.eye(2)})
