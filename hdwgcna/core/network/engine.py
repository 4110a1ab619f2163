"""Co-expression network construction.

Builds the signed/unsigned adjacency at a soft power, derives the
topological overlap matrix, clusters genes by average linkage on
1 - TOM, cuts the tree dynamically and merges modules whose eigengenes
are highly correlated.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging
import threading
import time

import numpy as np
import pandas as pd
from scipy.cluster import hierarchy
from scipy.spatial.distance import squareform

from ...errors import DegenerateNetworkError, check_cancelled
from .adjacency import adjacency_from_correlation, correlation_matrix
from .colors import module_names, standard_color
from .config import NetworkConfig, NetworkType, SoftPowerConfig, TOMType
from .soft_power import SoftPowerSelector, select_soft_power
from .tom import compute_tom, tom_dissimilarity
from .tree_cut import cutree_hybrid, relabel_by_size


def _n_modules(labels: np.ndarray) -> int:
    return len(np.unique(labels[labels != 0]))


def merge_close_modules(
    expr: np.ndarray,
    labels: np.ndarray,
    cut_height: float = 0.2,
    logger: Optional[logging.Logger] = None,
) -> np.ndarray:
    """Merge modules whose eigengenes are closer than ``cut_height``.

    Eigengenes are clustered by average linkage on 1 - correlation; every
    group joined below ``cut_height`` takes the label of its largest
    member. Repeated until no pair of modules is closer than the cut.

    Parameters
    ----------
    expr : np.ndarray
        Observations x genes expression matrix used for the network
    labels : np.ndarray
        Module label per gene (0 = unassigned), numbered by size
    cut_height : float
        Eigengene dissimilarity threshold

    Returns
    -------
    np.ndarray
        Merged labels, renumbered by size
    """
    from ..eigengenes.engine import module_eigengene

    logger = logger or logging.getLogger(__name__)
    labels = relabel_by_size(np.asarray(labels).copy())
    n_rounds = 0
    while _n_modules(labels) > 1:
        present = np.unique(labels[labels != 0])
        mes = np.column_stack([module_eigengene(expr[:, labels == lab]) for lab in present])
        with np.errstate(divide="ignore", invalid="ignore"):
            cor = np.corrcoef(mes, rowvar=False)
        cor[~np.isfinite(cor)] = 0.0
        diss = np.clip(1.0 - cor, 0.0, 2.0)
        np.fill_diagonal(diss, 0.0)
        diss = (diss + diss.T) / 2.0

        tree = hierarchy.linkage(squareform(diss, checks=False), method="average")
        groups = hierarchy.fcluster(tree, t=cut_height, criterion="distance")
        if len(np.unique(groups)) == len(present):
            break

        merged = labels.copy()
        for g in np.unique(groups):
            members = present[groups == g]
            # present is sorted, so members[0] is the largest module
            for lab in members[1:]:
                merged[labels == lab] = members[0]
        n_rounds += 1
        logger.debug(
            "Merge round %d: %d -> %d modules", n_rounds, len(present), len(np.unique(groups))
        )
        labels = relabel_by_size(merged)
    return labels


@dataclass
class NetworkResult:
    """Result from network construction.

    Attributes
    ----------
    genes : List[str]
        Network features, in matrix order
    soft_power : float
        Soft power used for the adjacency
    tom : np.ndarray
        Topological overlap matrix (genes x genes)
    linkage : np.ndarray
        SciPy linkage of 1 - TOM (average linkage)
    unmerged_labels : np.ndarray
        Labels from the dynamic tree cut, before module merging
    labels : np.ndarray
        Final labels (0 = unassigned), numbered by module size
    modules : pd.DataFrame
        Module assignment table: gene_name, module, color
    power_table : pd.DataFrame, optional
        Power sweep used for automatic power selection
    tom_path : str, optional
        Where the TOM was written
    params : Dict[str, Any]
        Parameters used
    elapsed_seconds : float
        Time taken
    """

    genes: List[str] = field(default_factory=list)
    soft_power: Optional[float] = None
    tom: Optional[np.ndarray] = None
    linkage: Optional[np.ndarray] = None
    unmerged_labels: Optional[np.ndarray] = None
    labels: Optional[np.ndarray] = None
    modules: Optional[pd.DataFrame] = None
    power_table: Optional[pd.DataFrame] = None
    tom_path: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)
    elapsed_seconds: float = 0.0

    @property
    def n_modules(self) -> int:
        return _n_modules(self.labels) if self.labels is not None else 0

    def module_sizes(self) -> Dict[str, int]:
        return self.modules["module"].value_counts(sort=False).to_dict()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "n_genes": len(self.genes),
            "soft_power": self.soft_power,
            "n_modules": self.n_modules,
            "module_sizes": {str(k): int(v) for k, v in self.module_sizes().items()},
            "tom_path": self.tom_path,
            "params": dict(self.params),
            "elapsed_seconds": self.elapsed_seconds,
        }


def build_module_table(
    genes: List[str],
    labels: np.ndarray,
    prefix: Optional[str] = None,
) -> pd.DataFrame:
    """Module assignment table with one row per gene.

    ``module`` is categorical, ordered by label (largest module first,
    unassigned last).
    """
    names = module_names(labels, prefix)
    order = [names[lab] for lab in sorted(names) if lab != 0]
    if 0 in names:
        order.append(names[0])
    return pd.DataFrame(
        {
            "gene_name": list(genes),
            "module": pd.Categorical([names[int(lab)] for lab in labels], categories=order),
            "color": [standard_color(int(lab)) for lab in labels],
        }
    )


class NetworkConstructor:
    """Construct a co-expression network and detect gene modules.

    Parameters
    ----------
    config : NetworkConfig, optional
        Network configuration
    soft_power_config : SoftPowerConfig, optional
        Used when the soft power is selected automatically
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> constructor = NetworkConstructor(NetworkConfig(min_module_size=30))
    >>> result = constructor.construct(dat_expr, soft_power=6, network_name="INH")
    >>> result.modules.head()
    """

    def __init__(
        self,
        config: Optional[NetworkConfig] = None,
        soft_power_config: Optional[SoftPowerConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or NetworkConfig()
        self.soft_power_config = soft_power_config or SoftPowerConfig(
            network_type=self.config.network_type,
            correlation=self.config.correlation,
        )
        self.logger = logger or logging.getLogger(__name__)

    def _resolve_power(
        self,
        dat_expr: pd.DataFrame,
        power_table: Optional[pd.DataFrame],
        cancel_event: Optional[threading.Event],
    ):
        if power_table is None:
            selector = SoftPowerSelector(self.soft_power_config, logger=self.logger)
            power_table = selector.test_powers(
                dat_expr,
                network_type=self.config.network_type,
                correlation=self.config.correlation,
                cancel_event=cancel_event,
            )
        power = select_soft_power(power_table, self.soft_power_config.r_squared_cut)
        self.logger.info("Auto-selected soft power %s", power)
        return power, power_table

    def construct(
        self,
        dat_expr: pd.DataFrame,
        soft_power: Optional[float] = None,
        power_table: Optional[pd.DataFrame] = None,
        network_name: str = "network",
        min_module_size: Optional[int] = None,
        merge_cut_height: Optional[float] = None,
        deep_split: Optional[int] = None,
        tom_dir: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> NetworkResult:
        """Build the network and assign genes to modules.

        Parameters
        ----------
        dat_expr : pd.DataFrame
            Observations x genes expression matrix (see ``select_expression``)
        soft_power : float, optional
            Soft power. Uses config value, then automatic selection, if None.
        power_table : pd.DataFrame, optional
            Existing power sweep for automatic selection
        network_name : str
            Name used for the persisted TOM file
        min_module_size : int, optional
            Uses config default if None.
        merge_cut_height : float, optional
            Uses config default if None.
        deep_split : int, optional
            Uses config default if None.
        tom_dir : str, optional
            TOM output directory. Uses config default if None.
        cancel_event : threading.Event, optional
            Checked between stages and TOM blocks

        Returns
        -------
        NetworkResult
            TOM, dendrogram, labels and module assignment table

        Raises
        ------
        DegenerateNetworkError
            If fewer than two modules remain after tree cutting or merging
        """
        cfg = self.config
        min_module_size = min_module_size if min_module_size is not None else cfg.min_module_size
        merge_cut_height = merge_cut_height if merge_cut_height is not None else cfg.merge_cut_height
        deep_split = deep_split if deep_split is not None else cfg.deep_split
        tom_dir = tom_dir if tom_dir is not None else cfg.tom_dir
        soft_power = soft_power if soft_power is not None else cfg.soft_power

        start = time.time()
        genes = [str(g) for g in dat_expr.columns]
        expr = dat_expr.to_numpy(dtype=float)

        if soft_power is None:
            soft_power, power_table = self._resolve_power(dat_expr, power_table, cancel_event)

        self.logger.info(
            "Constructing %s network '%s': %d genes, %d observations, power=%s, "
            "TOM=%s/%s, deep_split=%d, min_module_size=%d",
            cfg.network_type.value,
            network_name,
            len(genes),
            expr.shape[0],
            soft_power,
            cfg.tom_type.value,
            cfg.tom_denominator.value,
            deep_split,
            min_module_size,
        )

        cor = correlation_matrix(expr, cfg.correlation)
        adj = adjacency_from_correlation(cor, soft_power, cfg.network_type)
        sign = cor if cfg.network_type is NetworkType.UNSIGNED and cfg.tom_type is TOMType.SIGNED else None
        check_cancelled(cancel_event, "Network construction")

        tom = compute_tom(
            adj,
            tom_type=cfg.tom_type,
            denominator=cfg.tom_denominator,
            sign=sign,
            block_size=cfg.block_size,
            n_jobs=cfg.n_jobs,
            cancel_event=cancel_event,
        )
        del adj, cor

        diss = tom_dissimilarity(tom)
        linkage = hierarchy.linkage(squareform(diss, checks=False), method="average")
        check_cancelled(cancel_event, "Network construction")

        unmerged = cutree_hybrid(
            linkage,
            diss,
            cut_height=cfg.detect_cut_height,
            min_cluster_size=min_module_size,
            deep_split=deep_split,
        )
        n_found = _n_modules(unmerged)
        self.logger.info(
            "Dynamic tree cut found %d modules (%d genes unassigned)",
            n_found,
            int(np.count_nonzero(unmerged == 0)),
        )
        if n_found < 2:
            raise DegenerateNetworkError(n_found, soft_power, stage="tree cut")

        labels = unmerged
        if cfg.merge_modules:
            labels = merge_close_modules(expr, unmerged, merge_cut_height, logger=self.logger)
            n_merged = _n_modules(labels)
            if n_merged < n_found:
                self.logger.info(
                    "Merged %d modules into %d (cut height %.2f)", n_found, n_merged, merge_cut_height
                )
            if n_merged < 2:
                raise DegenerateNetworkError(n_merged, soft_power, stage="module merging")

        modules = build_module_table(genes, labels, cfg.module_prefix)

        tom_path = None
        if tom_dir is not None:
            from ...io.storage import save_tom

            tom_path = str(save_tom(tom, genes, tom_dir, network_name))
            self.logger.info("Saved TOM to %s", tom_path)

        result = NetworkResult(
            genes=genes,
            soft_power=soft_power,
            tom=tom,
            linkage=linkage,
            unmerged_labels=unmerged,
            labels=labels,
            modules=modules,
            power_table=power_table,
            tom_path=tom_path,
            params={
                "network_name": network_name,
                "network_type": cfg.network_type.value,
                "correlation": cfg.correlation.value,
                "tom_type": cfg.tom_type.value,
                "tom_denominator": cfg.tom_denominator.value,
                "deep_split": deep_split,
                "detect_cut_height": cfg.detect_cut_height,
                "min_module_size": min_module_size,
                "merge_cut_height": merge_cut_height if cfg.merge_modules else None,
            },
            elapsed_seconds=time.time() - start,
        )
        self.logger.info(
            "Network '%s' complete: %d modules in %.1f seconds",
            network_name,
            result.n_modules,
            result.elapsed_seconds,
        )
        return result
