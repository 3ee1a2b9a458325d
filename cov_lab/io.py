"""
io.py - Result Serialization and Deserialization

This module saves estimator results to disk and reads them back as plain
dictionaries. Supported formats:
- NPZ: NumPy's compressed archive format (default, exact arrays)
- JSON: Human-readable format (nested lists)

Example Usage:
-------------
    >>> from cov_lab.io import save_result, load_result
    >>>
    >>> result = estimate_rmt(returns)
    >>> save_result(result, "rmt.npz")
    >>> data = load_result("rmt.npz")
    >>> data["covariance"].shape
"""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Union

import numpy as np
from loguru import logger

from .types import RMTResult, SpikedCovarianceResult, parse_enum


class ResultFormat(str, Enum):
    """Supported result file formats."""
    NPZ = "npz"
    JSON = "json"


Result = Union[RMTResult, SpikedCovarianceResult]


def result_to_dict(result: Result) -> Dict[str, Any]:
    """
    Flatten a result into arrays and scalars.

    Raises
    ------
    TypeError
        If ``result`` is not an estimator result.
    """
    if isinstance(result, RMTResult):
        fit = result.mp_fit
        data: Dict[str, Any] = {
            "kind": "rmt",
            "covariance": result.covariance,
            "correlation": result.correlation,
            "eigenvalues": result.spectrum.values,
            "eigenvectors": result.spectrum.vectors,
            "cleaned_eigenvalues": result.cleaned_eigenvalues,
            "signal_indices": np.asarray(fit.signal_indices, dtype=int),
            "sigma2": fit.sigma2,
            "lambda_min": fit.lambda_min,
            "lambda_max": fit.lambda_max,
            "threshold": fit.threshold,
            "q": fit.q,
            "cutoff": fit.cutoff.value,
            "fit_method": fit.fit_method.value,
            "eigen_treat": result.eigen_treat.value,
        }
    elif isinstance(result, SpikedCovarianceResult):
        data = {
            "kind": "spiked",
            "covariance": result.covariance,
            "eigenvalues": result.spectrum.values,
            "eigenvectors": result.spectrum.vectors,
            "shrunk_eigenvalues": result.shrunk_eigenvalues,
            "spike_estimates": result.spike_estimates,
            "n_spikes": result.n_spikes,
            "sigma2": result.sigma2,
            "gamma": result.gamma,
            "loss": result.loss,
        }
    else:
        raise TypeError(f"Cannot serialise object of type {type(result).__name__}")

    if result.labels is not None:
        data["labels"] = [str(label) for label in result.labels]
    return data


def save_result(
    result: Result,
    path: Union[str, Path],
    format: Union[ResultFormat, str] = ResultFormat.NPZ,
) -> None:
    """
    Save an estimator result to disk.

    Parameters
    ----------
    result : RMTResult or SpikedCovarianceResult
        The result to save.
    path : str or Path
        Destination file path.
    format : ResultFormat, default=ResultFormat.NPZ
        Output format.

    Examples
    --------
    >>> save_result(result, "result.npz")
    >>> save_result(result, "result.json", format="json")
    """
    path = Path(path)
    format = parse_enum(ResultFormat, format, ValueError)
    data = result_to_dict(result)

    if format == ResultFormat.NPZ:
        _save_npz(data, path)
    else:
        _save_json(data, path)
    logger.info(f"Saved {data['kind']} result to {path}")


def load_result(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load a saved result as a dictionary.

    Arrays come back as ``np.ndarray``, scalars as Python numbers and
    strings, labels as a list.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the file format is not recognized.
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Result file not found: {path}")

    if path.suffix == ".npz":
        return _load_npz(path)
    elif path.suffix == ".json":
        return _load_json(path)
    else:
        raise ValueError(f"Unknown result format: {path.suffix}")


def _save_npz(data: Dict[str, Any], path: Path) -> None:
    """Scalars and strings are stored as 0-d arrays."""
    arrays = {key: np.asarray(value) for key, value in data.items()}
    with open(path, "wb") as f:
        np.savez_compressed(f, **arrays)


def _load_npz(path: Path) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    with np.load(path, allow_pickle=False) as archive:
        for key in archive.files:
            value = archive[key]
            data[key] = value.item() if value.ndim == 0 else value
    if "labels" in data:
        data["labels"] = [str(label) for label in data["labels"]]
    return data


def _save_json(data: Dict[str, Any], path: Path) -> None:
    serialisable = {
        key: value.tolist() if isinstance(value, np.ndarray) else value
        for key, value in data.items()
    }
    with open(path, "w") as f:
        json.dump(serialisable, f, indent=2)


_JSON_ARRAYS = {
    "covariance", "correlation", "eigenvalues", "eigenvectors",
    "cleaned_eigenvalues", "signal_indices", "shrunk_eigenvalues",
    "spike_estimates",
}


def _load_json(path: Path) -> Dict[str, Any]:
    with open(path, "r") as f:
        data = json.load(f)

    for key in _JSON_ARRAYS & data.keys():
        data[key] = np.array(data[key], dtype=int if key == "signal_indices" else float)
    return data
