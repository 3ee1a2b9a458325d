"""
test_cli.py - Tests for the cov-lab Command Line Interface

Tests cover:
- simulate -> spikes / rmt / spiked pipeline on a CSV
- Result files written by --output
- Error exits
"""

import pytest
import numpy as np
from typer.testing import CliRunner

from cov_lab.cli import app
from cov_lab.io import load_result


runner = CliRunner()


@pytest.fixture
def returns_csv(tmp_path):
    path = tmp_path / "returns.csv"
    result = runner.invoke(app, [
        "simulate", "--periods", "300", "--assets", "60",
        "--spike", "25", "--spike", "12", "--seed", "7", "--output", str(path),
    ])
    assert result.exit_code == 0, result.output
    return path


class TestSimulate:
    """Tests for the simulate command."""

    def test_writes_csv(self, returns_csv):
        with open(returns_csv) as f:
            header = f.readline().strip().split(",")
        data = np.loadtxt(returns_csv, delimiter=",", skiprows=1)

        assert header[0] == "asset_0"
        assert len(header) == 60
        assert data.shape == (300, 60)

    def test_seed_reproducible(self, tmp_path):
        paths = [tmp_path / "a.csv", tmp_path / "b.csv"]
        for path in paths:
            runner.invoke(app, ["simulate", "-n", "20", "-p", "5", "--seed", "3", "-o", str(path)])
        assert paths[0].read_text() == paths[1].read_text()

    def test_too_many_spikes(self, tmp_path):
        result = runner.invoke(app, [
            "simulate", "-n", "20", "-p", "1", "--spike", "5", "-o", str(tmp_path / "x.csv"),
        ])
        assert result.exit_code == 1


class TestAnalysisCommands:
    """Tests for rmt, spiked and spikes."""

    def test_spikes(self, returns_csv):
        result = runner.invoke(app, ["spikes", str(returns_csv)])
        assert result.exit_code == 0, result.output
        assert "spikes" in result.output

    def test_spikes_median_fitting(self, returns_csv):
        result = runner.invoke(app, ["spikes", str(returns_csv), "--method", "median-fitting"])
        assert result.exit_code == 0, result.output

    def test_rmt_saves_result(self, returns_csv, tmp_path):
        output = tmp_path / "rmt.npz"
        result = runner.invoke(app, ["rmt", str(returns_csv), "--cutoff", "each", "-o", str(output)])

        assert result.exit_code == 0, result.output
        data = load_result(output)
        assert data["kind"] == "rmt"
        assert data["covariance"].shape == (60, 60)
        assert f"bulk edge = {data['lambda_max']:.4f}" in result.output
        assert f"{data['threshold']:.4f}" in result.output

    def test_spiked_saves_json(self, returns_csv, tmp_path):
        output = tmp_path / "spiked.json"
        result = runner.invoke(app, [
            "spiked", str(returns_csv), "--norm", "operator", "--pivot", "6",
            "-o", str(output), "--format", "json",
        ])

        assert result.exit_code == 0, result.output
        data = load_result(output)
        assert data["loss"] == "operator_6"

    def test_spiked_statistical(self, returns_csv):
        result = runner.invoke(app, ["spiked", str(returns_csv), "--statistical", "stein"])
        assert result.exit_code == 0, result.output
        assert "stein" in result.output

    def test_spiked_unknown_statistical(self, returns_csv):
        result = runner.invoke(app, ["spiked", str(returns_csv), "--statistical", "hellinger"])
        assert result.exit_code == 1
        assert "InvalidNormError" in result.output

    @pytest.mark.parametrize("command", ["spiked", "spikes"])
    def test_untabulated_alpha(self, returns_csv, command):
        result = runner.invoke(app, [command, str(returns_csv), "--alpha", "0.3"])
        assert result.exit_code == 1
        assert "ValueError" in result.output

    def test_pivot_out_of_range(self, returns_csv):
        result = runner.invoke(app, ["spiked", str(returns_csv), "--pivot", "8"])
        assert result.exit_code != 0

    def test_missing_file(self, tmp_path):
        result = runner.invoke(app, ["rmt", str(tmp_path / "missing.csv")])
        assert result.exit_code == 1
        assert "File not found" in result.output


class TestInfoCommands:
    """Tests for losses and version."""

    def test_losses(self):
        result = runner.invoke(app, ["losses"])
        assert result.exit_code == 0
        assert "stein" in result.output
        assert "frobenius_1" in result.output

    def test_version(self):
        from cov_lab import __version__

        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output
