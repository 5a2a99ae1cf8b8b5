"""
Matrix Utilities

Validation, labelled-matrix alignment, nearest positive semi-definite repair
and Cholesky factorization with a single repair-and-retry.
"""

import logging
from typing import Mapping, Sequence, Tuple

import numpy as np
import pandas as pd

from .config import MIN_EIGENVALUE_THRESHOLD, SYMMETRY_TOLERANCE
from .errors import NonPositiveDefiniteError, ValidationError

logger = logging.getLogger(__name__)


def as_ordered_matrix(data, order: Sequence[str], name: str = "matrix") -> np.ndarray:
    """Convert a labelled matrix to an ndarray in the requested symbol order.

    Parameters:
    data: pandas DataFrame indexed by symbol, nested mapping
          {symbol: {symbol: value}}, or a 2-D array already in `order`
    order (list): Symbols defining row/column order
    name (str): Matrix name for error messages

    Returns:
    np.array: len(order) x len(order) float matrix
    """
    n = len(order)
    if isinstance(data, pd.DataFrame):
        missing = [s for s in order if s not in data.index or s not in data.columns]
        if missing:
            raise ValidationError(f"{name} is missing symbols: {missing}", field=missing[0])
        matrix = data.loc[list(order), list(order)].to_numpy(dtype=float)
    elif isinstance(data, Mapping):
        try:
            matrix = np.array([[float(data[a][b]) for b in order] for a in order])
        except KeyError as e:
            raise ValidationError(f"{name} is missing symbol {e.args[0]!r}", field=str(e.args[0])) from e
    else:
        matrix = np.asarray(data, dtype=float)
        if matrix.shape != (n, n):
            raise ValidationError(
                f"{name} shape {matrix.shape} doesn't match {n} assets", field=name
            )
    validate_square_matrix(matrix, name)
    return matrix


def validate_square_matrix(matrix: np.ndarray, name: str = "matrix") -> np.ndarray:
    """Reject matrices that are not square, finite and symmetric."""
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise ValidationError(f"{name} must be square, got shape {matrix.shape}", field=name)
    if not np.all(np.isfinite(matrix)):
        raise ValidationError(f"{name} contains NaN or infinite values", field=name)
    if not np.allclose(matrix, matrix.T, atol=SYMMETRY_TOLERANCE):
        raise ValidationError(f"{name} must be symmetric", field=name)
    return matrix


def validate_correlation_matrix(matrix: np.ndarray, name: str = "correlation matrix") -> np.ndarray:
    validate_square_matrix(matrix, name)
    if not np.allclose(np.diag(matrix), 1.0):
        raise ValidationError(f"{name} diagonal must be 1.0", field=name)
    if np.any(np.abs(matrix) > 1.0 + SYMMETRY_TOLERANCE):
        raise ValidationError(f"{name} entries must lie in [-1, 1]", field=name)
    return matrix


def min_eigenvalue(matrix: np.ndarray) -> float:
    return float(np.min(np.linalg.eigvalsh(matrix)))


def nearest_psd(matrix: np.ndarray, floor: float = MIN_EIGENVALUE_THRESHOLD) -> np.ndarray:
    """Nearest positive semi-definite matrix by eigenvalue clipping.

    Eigenvalues below `floor` are raised to `floor`, so the result admits a
    Cholesky factor when floor > 0.
    """
    symmetric = (matrix + matrix.T) / 2.0
    eigenvalues, eigenvectors = np.linalg.eigh(symmetric)
    clipped = np.maximum(eigenvalues, floor)
    repaired = eigenvectors @ np.diag(clipped) @ eigenvectors.T
    return (repaired + repaired.T) / 2.0


def nearest_correlation(matrix: np.ndarray, floor: float = MIN_EIGENVALUE_THRESHOLD) -> np.ndarray:
    """Nearest PSD matrix rescaled back to a unit diagonal."""
    repaired = nearest_psd(matrix, floor)
    d = np.sqrt(np.diag(repaired))
    repaired = repaired / np.outer(d, d)
    np.fill_diagonal(repaired, 1.0)
    return repaired


def safe_cholesky(matrix: np.ndarray,
                  name: str = "matrix",
                  is_correlation: bool = False) -> Tuple[np.ndarray, np.ndarray]:
    """Cholesky factor with one nearest-PSD repair attempt.

    Returns:
    tuple: (L, matrix_used) where L @ L.T == matrix_used
    """
    try:
        return np.linalg.cholesky(matrix), matrix
    except np.linalg.LinAlgError:
        pass

    observed = min_eigenvalue(matrix)
    logger.warning("%s is not positive definite (min eigenvalue: %.3e); "
                   "substituting nearest PSD matrix", name, observed)
    repaired = nearest_correlation(matrix) if is_correlation else nearest_psd(matrix)
    try:
        return np.linalg.cholesky(repaired), repaired
    except np.linalg.LinAlgError as e:
        raise NonPositiveDefiniteError(name, observed) from e


def ensure_positive_definite(matrix: np.ndarray,
                             name: str = "matrix",
                             is_correlation: bool = False) -> Tuple[np.ndarray, bool]:
    """Return a factorizable version of matrix and whether a repair was applied."""
    _, used = safe_cholesky(matrix, name, is_correlation)
    return used, used is not matrix


def covariance_from_correlation(volatilities, correlation: np.ndarray) -> np.ndarray:
    """Cov = diag(sigma) @ Corr @ diag(sigma)"""
    vol_diag = np.diag(np.asarray(volatilities, dtype=float))
    return vol_diag @ correlation @ vol_diag


def correlation_from_covariance(covariance: np.ndarray) -> np.ndarray:
    vols = np.sqrt(np.clip(np.diag(covariance), 0.0, None))
    corr = np.zeros_like(covariance, dtype=float)
    n = len(vols)
    for i in range(n):
        for j in range(n):
            denom = vols[i] * vols[j]
            corr[i, j] = (covariance[i, j] / denom) if denom > 0 else (1.0 if i == j else 0.0)
    return corr
