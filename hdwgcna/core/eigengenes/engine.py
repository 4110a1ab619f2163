"""Module eigengenes, eigengene-based connectivity and hub genes.

An eigengene is the first principal component of a module's scaled
expression sub-matrix, oriented to correlate positively with the module's
average scaled expression.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union
import logging
import time

import numpy as np
import pandas as pd
from scipy import sparse

from ...errors import ShapeMismatchError
from ...utils.stats import correlate_columns, scale_columns
from ..network.colors import UNASSIGNED
from .config import EigengeneConfig, HarmonizeMethod, ScoringMethod
from .harmonize import harmonize_eigengenes

KME_PREFIX = "kME_"


def module_eigengene(values: np.ndarray) -> np.ndarray:
    """First principal component of an (n_obs, n_genes) module matrix.

    Columns are centered and scaled; the component is sign-aligned with
    the row means of the scaled matrix, so reordering the columns does
    not change the result.

    Returns
    -------
    np.ndarray
        Eigengene vector of length n_obs (zeros if the module has no
        variance)
    """
    scaled = scale_columns(values)
    if not np.any(scaled):
        return np.zeros(scaled.shape[0])
    u, s, _ = np.linalg.svd(scaled, full_matrices=False)
    me = u[:, 0] * s[0]
    average = scaled.mean(axis=1)
    if np.dot(me - me.mean(), average - average.mean()) < 0:
        me = -me
    return me


def module_levels(modules: pd.DataFrame) -> List[str]:
    """Assigned module names, in table order (unassigned excluded)."""
    col = modules["module"]
    if isinstance(col.dtype, pd.CategoricalDtype):
        levels = [m for m in col.cat.categories if m in set(col)]
    else:
        levels = list(pd.unique(col))
    return [str(m) for m in levels if m != UNASSIGNED]


def compute_eigengenes(expr: pd.DataFrame, modules: pd.DataFrame) -> pd.DataFrame:
    """Eigengenes of every assigned module.

    Parameters
    ----------
    expr : pd.DataFrame
        Observations x genes; must contain every assigned gene in
        ``modules``. Unassigned genes may be absent.
    modules : pd.DataFrame
        Module assignment table with ``gene_name`` and ``module`` columns

    Returns
    -------
    pd.DataFrame
        Observations x modules, indexed like ``expr``
    """
    assigned = modules.loc[modules["module"] != UNASSIGNED, "gene_name"]
    missing = sorted(set(assigned) - set(expr.columns))
    if missing:
        raise ShapeMismatchError(
            f"{len(missing)} module genes are missing from the expression matrix: {missing[:10]}"
        )
    out = {}
    for module in module_levels(modules):
        genes = modules.loc[modules["module"] == module, "gene_name"].tolist()
        out[module] = module_eigengene(expr[genes].to_numpy(dtype=float))
    return pd.DataFrame(out, index=expr.index, columns=module_levels(modules))


def get_hub_genes(modules: pd.DataFrame, n_hubs: int = 10) -> pd.DataFrame:
    """Top ``n_hubs`` genes per module by connectivity to their own module.

    Ties in kME are broken by gene name so the ranking is deterministic.

    Returns
    -------
    pd.DataFrame
        Columns ``gene_name, module, kME``, grouped by module in table
        order and sorted by descending kME within each module
    """
    if n_hubs < 1:
        raise ValueError(f"n_hubs must be positive, got {n_hubs}")
    frames = []
    for module in module_levels(modules):
        col = f"{KME_PREFIX}{module}"
        if col not in modules.columns:
            raise KeyError(f"Column '{col}' missing; run module_connectivity first")
        sub = modules.loc[modules["module"] == module, ["gene_name", "module", col]]
        sub = sub.rename(columns={col: "kME"})
        sub = sub.sort_values(["gene_name"], kind="mergesort")
        sub = sub.sort_values(["kME"], ascending=False, kind="mergesort")
        frames.append(sub.head(n_hubs))
    if not frames:
        return pd.DataFrame(columns=["gene_name", "module", "kME"])
    hubs = pd.concat(frames, ignore_index=True)
    hubs["module"] = hubs["module"].astype(str)
    return hubs


@dataclass
class EigengeneResult:
    """Eigengene matrices of one experiment.

    Attributes
    ----------
    mes : pd.DataFrame
        Raw eigengenes (observations x modules)
    hmes : pd.DataFrame, optional
        Harmonized eigengenes, same shape; None without batch variables
    batch_vars : List[str]
        Batch columns used for harmonization
    elapsed_seconds : float
        Time taken
    """

    mes: pd.DataFrame = None
    hmes: Optional[pd.DataFrame] = None
    batch_vars: Optional[List[str]] = None
    elapsed_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "n_obs": int(self.mes.shape[0]) if self.mes is not None else 0,
            "modules": list(self.mes.columns) if self.mes is not None else [],
            "harmonized": self.hmes is not None,
            "batch_vars": list(self.batch_vars or []),
            "elapsed_seconds": self.elapsed_seconds,
        }


class ModuleSummarizer:
    """Summarize co-expression modules on single-cell resolution data.

    Parameters
    ----------
    config : EigengeneConfig, optional
        Summarization configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> summarizer = ModuleSummarizer()
    >>> result = summarizer.eigengenes(adata, modules, batch_vars=["sample"])
    >>> modules = summarizer.module_connectivity(adata, modules, result.hmes)
    >>> hubs = get_hub_genes(modules, n_hubs=10)
    """

    def __init__(
        self,
        config: Optional[EigengeneConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or EigengeneConfig()
        self.logger = logger or logging.getLogger(__name__)

    def _expression(
        self,
        adata: Any,
        genes: Sequence[str],
        layer: Optional[str],
        obs_mask: Optional[np.ndarray] = None,
    ) -> pd.DataFrame:
        var_names = pd.Index(adata.var_names)
        missing = [g for g in genes if g not in var_names]
        if missing:
            raise ShapeMismatchError(
                f"{len(missing)} module genes are missing from the data: {missing[:10]}"
            )
        if layer is not None and layer not in adata.layers:
            raise KeyError(f"Layer '{layer}' not found in adata.layers")
        matrix = adata.X if layer is None else adata.layers[layer]
        obs_names = np.asarray(adata.obs_names)
        if obs_mask is not None:
            matrix = matrix[obs_mask]
            obs_names = obs_names[obs_mask]
        matrix = matrix[:, var_names.get_indexer(list(genes))]
        if sparse.issparse(matrix):
            matrix = matrix.toarray()
        return pd.DataFrame(np.asarray(matrix, dtype=float), index=obs_names, columns=list(genes))

    def _group_mask(
        self,
        adata: Any,
        group_by: Optional[str],
        group_name: Optional[Union[str, Sequence[str]]],
    ) -> Optional[np.ndarray]:
        if group_by is None or group_name is None:
            return None
        if group_by not in adata.obs.columns:
            raise KeyError(f"Column '{group_by}' not found in adata.obs")
        wanted = [group_name] if isinstance(group_name, str) else list(group_name)
        mask = adata.obs[group_by].astype(str).isin([str(w) for w in wanted]).to_numpy()
        if not mask.any():
            raise ValueError(f"No observations with {group_by} in {wanted}")
        return mask

    def eigengenes(
        self,
        adata: Any,  # AnnData
        modules: pd.DataFrame,
        layer: Optional[str] = None,
        batch_vars: Optional[Sequence[str]] = None,
        harmonize_method: Optional[HarmonizeMethod] = None,
        group_by: Optional[str] = None,
        group_name: Optional[Union[str, Sequence[str]]] = None,
    ) -> EigengeneResult:
        """Compute raw and (optionally) harmonized module eigengenes.

        Parameters
        ----------
        adata : AnnData
            Single-cell data (normalized expression)
        modules : pd.DataFrame
            Module assignment table
        layer : str, optional
            Expression layer. Uses config default if None.
        batch_vars : Sequence[str], optional
            obs columns to harmonize over. Uses config default if None;
            an empty list disables harmonization.
        harmonize_method : HarmonizeMethod, optional
            Uses config default if None.
        group_by, group_name : optional
            Restrict to observations whose ``group_by`` value is in
            ``group_name``

        Returns
        -------
        EigengeneResult
            Raw eigengenes and harmonized eigengenes (or None)
        """
        cfg = self.config
        layer = layer if layer is not None else cfg.layer
        batch_vars = list(batch_vars) if batch_vars is not None else list(cfg.batch_vars)
        harmonize_method = HarmonizeMethod(
            harmonize_method if harmonize_method is not None else cfg.harmonize_method
        )

        start = time.time()
        genes = modules.loc[modules["module"] != UNASSIGNED, "gene_name"].tolist()
        mask = self._group_mask(adata, group_by, group_name)
        expr = self._expression(adata, genes, layer, mask)
        self.logger.info(
            "Computing eigengenes for %d modules on %d observations",
            len(module_levels(modules)),
            expr.shape[0],
        )
        mes = compute_eigengenes(expr, modules)

        hmes = None
        if batch_vars:
            obs = adata.obs if mask is None else adata.obs.loc[mask]
            hmes = harmonize_eigengenes(
                mes,
                obs,
                batch_vars,
                method=harmonize_method,
                theta=cfg.harmony_theta,
                max_iter=cfg.harmony_max_iter,
                random_state=cfg.random_seed,
                logger=self.logger,
            )

        result = EigengeneResult(
            mes=mes,
            hmes=hmes,
            batch_vars=batch_vars or None,
            elapsed_seconds=time.time() - start,
        )
        self.logger.info("Eigengenes computed in %.1f seconds", result.elapsed_seconds)
        return result

    def module_connectivity(
        self,
        adata: Any,  # AnnData
        modules: pd.DataFrame,
        mes: pd.DataFrame,
        layer: Optional[str] = None,
        group_by: Optional[str] = None,
        group_name: Optional[Union[str, Sequence[str]]] = None,
    ) -> pd.DataFrame:
        """Correlate every network gene with every module eigengene.

        Parameters
        ----------
        adata : AnnData
            Single-cell data (normalized expression)
        modules : pd.DataFrame
            Module assignment table (not modified)
        mes : pd.DataFrame
            Eigengenes indexed by observation name
        layer : str, optional
            Expression layer. Uses config default if None.
        group_by, group_name : optional
            Observation subset used for the correlations

        Returns
        -------
        pd.DataFrame
            Copy of ``modules`` with one ``kME_<module>`` column per module
            (previous kME columns are replaced)
        """
        layer = layer if layer is not None else self.config.layer
        mask = self._group_mask(adata, group_by, group_name)
        genes = modules["gene_name"].tolist()
        expr = self._expression(adata, genes, layer, mask)

        missing_obs = expr.index.difference(mes.index)
        if len(missing_obs):
            raise ShapeMismatchError(
                f"{len(missing_obs)} observations have no eigengene values"
            )
        me_values = mes.loc[expr.index]
        self.logger.info(
            "Computing kME for %d genes x %d modules on %d observations",
            len(genes),
            me_values.shape[1],
            expr.shape[0],
        )
        kme = correlate_columns(expr.to_numpy(), me_values.to_numpy(dtype=float))

        out = modules.drop(
            columns=[c for c in modules.columns if c.startswith(KME_PREFIX)]
        ).copy()
        for j, module in enumerate(me_values.columns):
            out[f"{KME_PREFIX}{module}"] = kme[:, j]
        return out

    def module_expression_scores(
        self,
        adata: Any,  # AnnData
        modules: pd.DataFrame,
        n_genes: Optional[int] = None,
        method: Optional[ScoringMethod] = None,
        layer: Optional[str] = None,
    ) -> pd.DataFrame:
        """Score each observation for each module from its top hub genes.

        ``average`` takes the mean z-scored expression of the hub genes;
        ``control`` uses ``scanpy.tl.score_genes`` (hub gene average minus
        a random expression-matched control set).

        Returns
        -------
        pd.DataFrame
            Observations x modules score matrix
        """
        cfg = self.config
        n_genes = n_genes if n_genes is not None else cfg.n_hub_genes
        method = ScoringMethod(method if method is not None else cfg.scoring_method)
        layer = layer if layer is not None else cfg.layer

        hubs = get_hub_genes(modules, n_genes)
        self.logger.info(
            "Scoring %d modules from top %d hub genes (%s)",
            hubs["module"].nunique(),
            n_genes,
            method.value,
        )
        scores = {}
        for module, sub in hubs.groupby("module", sort=False):
            genes = sub["gene_name"].tolist()
            if method is ScoringMethod.AVERAGE:
                expr = self._expression(adata, genes, layer)
                scores[module] = scale_columns(expr.to_numpy()).mean(axis=1)
            else:
                import scanpy as sc

                kwargs = {"layer": layer} if layer is not None else {}
                scored = sc.tl.score_genes(
                    adata,
                    genes,
                    score_name="module_score",
                    random_state=cfg.random_seed,
                    use_raw=False,
                    copy=True,
                    **kwargs,
                )
                scores[module] = scored.obs["module_score"].to_numpy()
        return pd.DataFrame(scores, index=np.asarray(adata.obs_names))
