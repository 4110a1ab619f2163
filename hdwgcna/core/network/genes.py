"""Feature selection and network expression matrices."""

from typing import Any, List, Optional, Sequence, Union
import logging

import numpy as np
import pandas as pd
from scipy import sparse

from ...errors import ShapeMismatchError
from .config import GeneSelectionConfig, GeneSelectionMethod

logger = logging.getLogger(__name__)


def _layer_matrix(adata: Any, layer: Optional[str]) -> Any:
    if layer is None:
        return adata.X
    if layer not in adata.layers:
        raise KeyError(f"Layer '{layer}' not found in adata.layers")
    return adata.layers[layer]


def _expressed_fraction(matrix: Any) -> np.ndarray:
    """Fraction of rows with a value > 0, per column."""
    n = matrix.shape[0]
    if n == 0:
        return np.zeros(matrix.shape[1])
    if sparse.issparse(matrix):
        counts = np.asarray((matrix > 0).sum(axis=0)).ravel()
    else:
        counts = (np.asarray(matrix) > 0).sum(axis=0)
    return counts / n


def to_dense(matrix: Any) -> np.ndarray:
    if sparse.issparse(matrix):
        return matrix.toarray()
    return np.asarray(matrix)


def select_genes(
    adata: Any,  # AnnData
    config: Optional[GeneSelectionConfig] = None,
    method: Optional[Union[str, GeneSelectionMethod]] = None,
    fraction: Optional[float] = None,
    group_by: Optional[str] = None,
    gene_list: Optional[Sequence[str]] = None,
    n_top_genes: Optional[int] = None,
    layer: Optional[str] = None,
) -> List[str]:
    """Choose the features used for co-expression network analysis.

    Parameters
    ----------
    adata : AnnData
        Single-cell (or metacell) data
    config : GeneSelectionConfig, optional
        Defaults for the remaining arguments
    method : str or GeneSelectionMethod, optional
        ``fraction``, ``variable``, ``all`` or ``custom``
    fraction : float, optional
        Minimum fraction of observations with non-zero expression
    group_by : str, optional
        With ``fraction``: a gene passes if it reaches the fraction in at
        least one group of this obs column
    gene_list : Sequence[str], optional
        Features to use with ``custom``
    n_top_genes : int, optional
        Number of highly variable genes with ``variable``
    layer : str, optional
        Layer used for the expression checks

    Returns
    -------
    List[str]
        Selected feature names, in ``adata.var_names`` order

    Raises
    ------
    ShapeMismatchError
        If a ``custom`` gene is missing from the data
    ValueError
        If no gene is selected
    """
    cfg = config or GeneSelectionConfig()
    method = GeneSelectionMethod(method if method is not None else cfg.method)
    fraction = fraction if fraction is not None else cfg.fraction
    group_by = group_by if group_by is not None else cfg.group_by
    n_top_genes = n_top_genes if n_top_genes is not None else cfg.n_top_genes
    layer = layer if layer is not None else cfg.layer

    var_names = pd.Index(adata.var_names)

    if method is GeneSelectionMethod.ALL:
        mask = np.ones(len(var_names), dtype=bool)

    elif method is GeneSelectionMethod.CUSTOM:
        if not gene_list:
            raise ValueError("method='custom' requires a non-empty gene_list")
        missing = [g for g in gene_list if g not in var_names]
        if missing:
            raise ShapeMismatchError(
                f"{len(missing)} requested genes not found in the data: {missing[:10]}"
            )
        mask = var_names.isin(list(gene_list))

    elif method is GeneSelectionMethod.FRACTION:
        if not 0 <= fraction <= 1:
            raise ValueError(f"fraction must be in [0, 1], got {fraction}")
        matrix = _layer_matrix(adata, layer)
        if group_by is None:
            mask = _expressed_fraction(matrix) >= fraction
        else:
            if group_by not in adata.obs.columns:
                raise KeyError(f"Column '{group_by}' not found in adata.obs")
            labels = adata.obs[group_by].astype(str).to_numpy()
            mask = np.zeros(len(var_names), dtype=bool)
            for group in np.unique(labels):
                mask |= _expressed_fraction(matrix[labels == group]) >= fraction

    else:  # VARIABLE
        import scanpy as sc

        if "highly_variable" in adata.var.columns:
            mask = adata.var["highly_variable"].to_numpy(dtype=bool)
        else:
            tmp = adata.copy()
            if layer is not None:
                tmp.X = tmp.layers[layer].copy()
            sc.pp.normalize_total(tmp, target_sum=1e4)
            sc.pp.log1p(tmp)
            sc.pp.highly_variable_genes(tmp, n_top_genes=min(n_top_genes, tmp.n_vars))
            mask = tmp.var["highly_variable"].to_numpy(dtype=bool)

    genes = list(var_names[mask])
    if not genes:
        raise ValueError(f"No genes selected with method '{method.value}'")
    logger.info(
        "Selected %d of %d genes (method=%s)", len(genes), len(var_names), method.value
    )
    return genes


def select_expression(
    adata: Any,  # AnnData
    genes: Sequence[str],
    group_by: Optional[str] = None,
    group_name: Optional[Union[str, Sequence[str]]] = None,
    layer: Optional[str] = None,
) -> pd.DataFrame:
    """Build the observations x genes matrix used for network construction.

    Observations are restricted to ``group_name`` values of ``group_by``
    (all observations if either is None). Genes without variance in the
    selection are dropped with a warning.

    Returns
    -------
    pd.DataFrame
        Dense expression matrix indexed by observation name

    Raises
    ------
    ShapeMismatchError
        If a gene is missing from the data
    ValueError
        If the selection leaves no observations or fewer than two genes
    """
    genes = list(genes)
    var_names = pd.Index(adata.var_names)
    missing = [g for g in genes if g not in var_names]
    if missing:
        raise ShapeMismatchError(
            f"{len(missing)} network genes are not present in the data: {missing[:10]}"
        )

    obs_mask = np.ones(adata.n_obs, dtype=bool)
    if group_by is not None and group_name is not None:
        if group_by not in adata.obs.columns:
            raise KeyError(f"Column '{group_by}' not found in adata.obs")
        wanted = [group_name] if isinstance(group_name, str) else list(group_name)
        obs_mask = adata.obs[group_by].astype(str).isin([str(w) for w in wanted]).to_numpy()
        if not obs_mask.any():
            raise ValueError(f"No observations with {group_by} in {wanted}")

    col_idx = var_names.get_indexer(genes)
    matrix = _layer_matrix(adata, layer)[obs_mask][:, col_idx]
    dat_expr = pd.DataFrame(
        to_dense(matrix).astype(float),
        index=np.asarray(adata.obs_names)[obs_mask],
        columns=genes,
    )

    good = dat_expr.var(axis=0, ddof=1).fillna(0) > 0
    n_bad = int((~good).sum())
    if n_bad:
        logger.warning(
            "Dropping %d genes with zero variance in the selected observations", n_bad
        )
        dat_expr = dat_expr.loc[:, good]
    if dat_expr.shape[1] < 2:
        raise ValueError(
            f"Only {dat_expr.shape[1]} genes vary in the selected observations"
        )

    logger.info(
        "Network expression matrix: %d observations x %d genes",
        dat_expr.shape[0],
        dat_expr.shape[1],
    )
    return dat_expr
