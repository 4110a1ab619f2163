"""Statistical utilities for hdwgcna.

Provides multiple-testing correction, column-wise correlation and
scaling helpers shared by the network, eigengene and differential
modules.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Union

import numpy as np
from scipy import stats

ArrayLike = Union[Iterable[float], np.ndarray]


class CorrectionMethod(Enum):
    """Multiple testing correction methods."""

    FDR_BH = "fdr_bh"
    BONFERRONI = "bonferroni"
    HOLM = "holm"
    NONE = "none"


def apply_fdr_correction(
    p_values: ArrayLike,
    method: Union[str, CorrectionMethod] = CorrectionMethod.FDR_BH,
) -> np.ndarray:
    """Apply multiple testing correction to p-values.

    NaN p-values are left as NaN and do not count towards the number of
    tests.

    Parameters
    ----------
    p_values : ArrayLike
        Raw p-values
    method : str or CorrectionMethod
        Correction method: "fdr_bh", "bonferroni", "holm", "none"

    Returns
    -------
    np.ndarray
        Corrected p-values, same shape as the input
    """
    method = CorrectionMethod(method)
    p_values = np.asarray(p_values, dtype=float)
    original_shape = p_values.shape
    flat = p_values.ravel()

    adjusted = np.full(flat.shape, np.nan)
    valid_mask = ~np.isnan(flat)
    valid_p = flat[valid_mask]
    n_tests = len(valid_p)

    if n_tests == 0:
        return adjusted.reshape(original_shape)

    if method is CorrectionMethod.NONE:
        adjusted_valid = valid_p.copy()

    elif method is CorrectionMethod.BONFERRONI:
        adjusted_valid = np.clip(valid_p * n_tests, 0, 1)

    elif method is CorrectionMethod.FDR_BH:
        sorted_idx = np.argsort(valid_p, kind="mergesort")
        sorted_p = valid_p[sorted_idx]

        ranks = np.arange(1, n_tests + 1)
        adjusted_sorted = sorted_p * n_tests / ranks
        adjusted_sorted = np.minimum.accumulate(adjusted_sorted[::-1])[::-1]
        adjusted_sorted = np.clip(adjusted_sorted, 0, 1)

        adjusted_valid = np.empty(n_tests)
        adjusted_valid[sorted_idx] = adjusted_sorted

    else:  # HOLM
        sorted_idx = np.argsort(valid_p, kind="mergesort")
        sorted_p = valid_p[sorted_idx]

        adjusted_sorted = sorted_p * (n_tests - np.arange(n_tests))
        adjusted_sorted = np.maximum.accumulate(adjusted_sorted)
        adjusted_sorted = np.clip(adjusted_sorted, 0, 1)

        adjusted_valid = np.empty(n_tests)
        adjusted_valid[sorted_idx] = adjusted_sorted

    # Guard against floating point drift below the raw value
    adjusted_valid = np.maximum(adjusted_valid, valid_p)
    adjusted[valid_mask] = adjusted_valid
    return adjusted.reshape(original_shape)


def scale_columns(matrix: np.ndarray) -> np.ndarray:
    """Center and scale each column to unit variance.

    Zero-variance columns become all zeros rather than NaN.

    Parameters
    ----------
    matrix : np.ndarray
        (n_obs, n_features) matrix

    Returns
    -------
    np.ndarray
        Scaled copy of the matrix (ddof=1, matching R's ``scale``)
    """
    matrix = np.asarray(matrix, dtype=float)
    centered = matrix - matrix.mean(axis=0, keepdims=True)
    if matrix.shape[0] < 2:
        return np.zeros_like(centered)
    std = centered.std(axis=0, ddof=1, keepdims=True)
    std[std == 0] = 1.0
    scaled = centered / std
    return scaled


def correlate_columns(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Pearson correlation between every column of ``a`` and every column of ``b``.

    Parameters
    ----------
    a : np.ndarray
        (n_obs, p) matrix
    b : np.ndarray
        (n_obs, q) matrix

    Returns
    -------
    np.ndarray
        (p, q) correlation matrix. Pairs involving a constant column are 0.
    """
    a = np.asarray(a, dtype=float)
    b = np.asarray(b, dtype=float)
    if a.ndim == 1:
        a = a[:, None]
    if b.ndim == 1:
        b = b[:, None]
    if a.shape[0] != b.shape[0]:
        raise ValueError(
            f"Row counts differ: {a.shape[0]} vs {b.shape[0]}"
        )

    a_c = a - a.mean(axis=0, keepdims=True)
    b_c = b - b.mean(axis=0, keepdims=True)
    a_norm = np.sqrt((a_c ** 2).sum(axis=0))
    b_norm = np.sqrt((b_c ** 2).sum(axis=0))

    with np.errstate(divide="ignore", invalid="ignore"):
        cor = (a_c.T @ b_c) / np.outer(a_norm, b_norm)
    cor[~np.isfinite(cor)] = 0.0
    return np.clip(cor, -1.0, 1.0)


def cor_pvalue_student(cor: ArrayLike, n_samples: int) -> np.ndarray:
    """Student asymptotic p-value for Pearson correlations.

    Parameters
    ----------
    cor : ArrayLike
        Correlation coefficients
    n_samples : int
        Number of observations the correlations were computed on

    Returns
    -------
    np.ndarray
        Two-sided p-values (NaN when ``n_samples < 3``)
    """
    cor = np.asarray(cor, dtype=float)
    if n_samples < 3:
        return np.full(cor.shape, np.nan)
    with np.errstate(divide="ignore", invalid="ignore"):
        t = np.sqrt(n_samples - 2) * cor / np.sqrt(1 - cor ** 2)
    p = 2 * stats.t.sf(np.abs(t), n_samples - 2)
    return np.where(np.abs(cor) >= 1.0, 0.0, p)
