"""Topological overlap matrix.

TOM[i, j] = (sum_u a_iu * a_uj + a_ij) / (f(k_i, k_j) + 1 - a_ij), with
u running over all other features, k the whole-network connectivity and
f either ``min`` or ``mean``. Rows are processed in blocks so that peak
memory stays at one block of the product.
"""

from typing import List, Optional, Tuple, Union
import logging
import threading

import numpy as np

from ...errors import check_cancelled
from .config import TOMDenominator, TOMType

logger = logging.getLogger(__name__)


def _tom_block(
    adj: np.ndarray,
    k: np.ndarray,
    start: int,
    stop: int,
    denominator: TOMDenominator,
) -> np.ndarray:
    """TOM rows ``start:stop`` of a zero-diagonal adjacency matrix."""
    block = adj[start:stop]
    shared = block @ adj
    k_rows = k[start:stop, None]
    if denominator is TOMDenominator.MIN:
        f = np.minimum(k_rows, k[None, :])
    else:
        f = (k_rows + k[None, :]) / 2.0

    abs_block = np.abs(block)
    with np.errstate(divide="ignore", invalid="ignore"):
        tom = np.abs(shared + block) / (f + 1.0 - abs_block)
    tom[~np.isfinite(tom)] = 0.0
    return tom


def _row_blocks(n: int, block_size: int) -> List[Tuple[int, int]]:
    return [(s, min(s + block_size, n)) for s in range(0, n, block_size)]


def compute_tom(
    adj: np.ndarray,
    tom_type: Union[str, TOMType] = TOMType.SIGNED,
    denominator: Union[str, TOMDenominator] = TOMDenominator.MIN,
    sign: Optional[np.ndarray] = None,
    block_size: int = 2000,
    n_jobs: int = 1,
    cancel_event: Optional[threading.Event] = None,
) -> np.ndarray:
    """Compute the topological overlap matrix of an adjacency matrix.

    Parameters
    ----------
    adj : np.ndarray
        Symmetric adjacency matrix with entries in [0, 1]
    tom_type : str or TOMType
        ``signed`` multiplies the adjacency by ``sign`` (when given) so that
        shared neighbours with opposite signs cancel out; ``unsigned``
        ignores signs.
    denominator : str or TOMDenominator
        Connectivity summary ``min`` or ``mean``
    sign : np.ndarray, optional
        Sign of the underlying correlations, same shape as ``adj``
    block_size : int
        Number of rows per block
    n_jobs : int
        Parallel jobs over row blocks
    cancel_event : threading.Event, optional
        Checked between row blocks

    Returns
    -------
    np.ndarray
        Symmetric TOM with entries in [0, 1] and unit diagonal
    """
    tom_type = TOMType(tom_type)
    denominator = TOMDenominator(denominator)
    adj = np.array(adj, dtype=float)
    if adj.ndim != 2 or adj.shape[0] != adj.shape[1]:
        raise ValueError(f"Adjacency must be a square matrix, got shape {adj.shape}")
    if block_size < 1:
        raise ValueError(f"block_size must be positive, got {block_size}")

    if tom_type is TOMType.SIGNED and sign is not None:
        adj = adj * np.sign(sign)
    np.fill_diagonal(adj, 0.0)
    k = np.abs(adj).sum(axis=1)

    n = adj.shape[0]
    blocks = _row_blocks(n, block_size)
    logger.debug("Computing TOM for %d features in %d blocks", n, len(blocks))

    tom = np.empty((n, n), dtype=float)
    if n_jobs > 1 and len(blocks) > 1:
        from joblib import Parallel, delayed

        check_cancelled(cancel_event, "TOM computation")
        parts = Parallel(n_jobs=n_jobs)(
            delayed(_tom_block)(adj, k, s, e, denominator) for s, e in blocks
        )
        for (s, e), part in zip(blocks, parts):
            tom[s:e] = part
    else:
        for s, e in blocks:
            check_cancelled(cancel_event, "TOM computation")
            tom[s:e] = _tom_block(adj, k, s, e, denominator)
    check_cancelled(cancel_event, "TOM computation")

    tom = np.clip(tom, 0.0, 1.0)
    tom = (tom + tom.T) / 2.0
    np.fill_diagonal(tom, 1.0)
    return tom


def tom_dissimilarity(tom: np.ndarray) -> np.ndarray:
    """1 - TOM with an exact zero diagonal."""
    diss = 1.0 - tom
    np.fill_diagonal(diss, 0.0)
    return diss
