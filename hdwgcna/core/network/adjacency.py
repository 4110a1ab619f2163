"""Correlation and adjacency computation.

The same transform is used by the soft-power sweep and by network
construction, so both see identical adjacencies for a given power.
"""

from typing import Union
import logging

import numpy as np
from scipy import stats

from .config import CorrelationType, NetworkType

logger = logging.getLogger(__name__)


def correlation_matrix(
    expr: np.ndarray,
    correlation: Union[str, CorrelationType] = CorrelationType.PEARSON,
) -> np.ndarray:
    """Feature-by-feature correlation of an (n_obs, n_features) matrix.

    Correlations involving a constant feature are set to 0; the diagonal
    is exactly 1 and every entry lies in [-1, 1].

    Parameters
    ----------
    expr : np.ndarray
        Observations x features
    correlation : str or CorrelationType
        Correlation measure

    Returns
    -------
    np.ndarray
        (n_features, n_features) symmetric correlation matrix
    """
    correlation = CorrelationType(correlation)
    expr = np.asarray(expr, dtype=float)
    if correlation is CorrelationType.SPEARMAN:
        expr = stats.rankdata(expr, axis=0)

    with np.errstate(divide="ignore", invalid="ignore"):
        cor = np.corrcoef(expr, rowvar=False)
    cor = np.atleast_2d(cor)

    n_bad = int(np.count_nonzero(~np.isfinite(cor)))
    if n_bad:
        logger.warning(
            "%d correlations are undefined (constant features); setting them to 0", n_bad
        )
        cor[~np.isfinite(cor)] = 0.0

    cor = np.clip(cor, -1.0, 1.0)
    cor = (cor + cor.T) / 2
    np.fill_diagonal(cor, 1.0)
    return cor


def transform_correlation(
    cor: np.ndarray,
    network_type: Union[str, NetworkType] = NetworkType.SIGNED,
) -> np.ndarray:
    """Map correlations onto [0, 1] according to the network type.

    signed: (1 + r) / 2; unsigned: |r|; signed hybrid: max(r, 0).
    """
    network_type = NetworkType(network_type)
    if network_type is NetworkType.SIGNED:
        return (1.0 + cor) / 2.0
    if network_type is NetworkType.UNSIGNED:
        return np.abs(cor)
    return np.clip(cor, 0.0, None)


def adjacency_from_correlation(
    cor: np.ndarray,
    power: float,
    network_type: Union[str, NetworkType] = NetworkType.SIGNED,
) -> np.ndarray:
    """Soft-threshold a correlation matrix into an adjacency matrix.

    Parameters
    ----------
    cor : np.ndarray
        Symmetric correlation matrix with entries in [-1, 1]
    power : float
        Soft-thresholding exponent (positive)
    network_type : str or NetworkType
        Correlation -> [0, 1] transform applied before the power

    Returns
    -------
    np.ndarray
        Symmetric adjacency with entries in [0, 1] and unit diagonal
    """
    if power <= 0:
        raise ValueError(f"Soft power must be positive, got {power}")
    adj = transform_correlation(cor, network_type) ** power
    adj = np.clip(adj, 0.0, 1.0)
    np.fill_diagonal(adj, 1.0)
    return adj


def adjacency(
    expr: np.ndarray,
    power: float,
    network_type: Union[str, NetworkType] = NetworkType.SIGNED,
    correlation: Union[str, CorrelationType] = CorrelationType.PEARSON,
) -> np.ndarray:
    """Adjacency matrix straight from an (n_obs, n_features) expression matrix."""
    cor = correlation_matrix(expr, correlation)
    return adjacency_from_correlation(cor, power, network_type)


def connectivity(adj: np.ndarray) -> np.ndarray:
    """Whole-network connectivity: k_i = sum over j != i of a_ij."""
    return adj.sum(axis=1) - np.diag(adj)
