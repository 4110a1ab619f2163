"""Metacell construction.

Groups cells into small, bounded-overlap neighbourhoods in an embedding
space and aggregates their expression into metacell profiles. Runs
independently within every combination of the grouping columns.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging
import threading
import time

import numpy as np
import pandas as pd
from scipy import sparse

from ...errors import InsufficientGroupSize, check_cancelled
from .config import AggregationMethod, MetacellConfig


@dataclass
class MetacellResult:
    """Result from metacell construction.

    Attributes
    ----------
    adata : AnnData
        Metacell expression matrix (metacells x genes)
    members : Dict[str, List[str]]
        Map of metacell name to source observation names
    group_counts : Dict[str, int]
        Number of metacells produced per aggregation group
    skipped_groups : List[Dict[str, Any]]
        Groups that produced no metacells, with the reason
    elapsed_seconds : float
        Time taken for construction
    """

    adata: Any = None
    members: Dict[str, List[str]] = field(default_factory=dict)
    group_counts: Dict[str, int] = field(default_factory=dict)
    skipped_groups: List[Dict[str, Any]] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def n_metacells(self) -> int:
        return len(self.members)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "n_metacells": self.n_metacells,
            "group_counts": dict(self.group_counts),
            "skipped_groups": list(self.skipped_groups),
            "elapsed_seconds": self.elapsed_seconds,
        }


def select_neighborhoods(
    knn_indices: np.ndarray,
    max_shared: int,
    target: int,
    max_iter: int,
    rng: np.random.Generator,
) -> List[int]:
    """Greedily pick neighbourhoods with bounded pairwise overlap.

    Candidate seeds are visited in a random (seeded) order. A candidate is
    accepted when it shares at most ``max_shared`` cells with every
    neighbourhood accepted so far.

    Parameters
    ----------
    knn_indices : np.ndarray
        (n_cells, k) neighbourhood membership; row i is seed i and its neighbours
    max_shared : int
        Maximum allowed overlap between any two accepted neighbourhoods
    target : int
        Stop once this many neighbourhoods are accepted
    max_iter : int
        Maximum number of candidates examined
    rng : np.random.Generator
        Random generator for the visiting order

    Returns
    -------
    List[int]
        Row indices of the accepted seeds, in acceptance order
    """
    n_cells = knn_indices.shape[0]
    if n_cells == 0 or target <= 0:
        return []

    order = rng.permutation(n_cells)
    chosen: List[int] = []
    chosen_sets: List[set] = []

    for n_examined, candidate in enumerate(order):
        if n_examined >= max_iter or len(chosen) >= target:
            break
        members = set(knn_indices[candidate].tolist())
        shared = max((len(members & other) for other in chosen_sets), default=0)
        if shared <= max_shared:
            chosen.append(int(candidate))
            chosen_sets.append(members)

    return chosen


class MetacellAggregator:
    """Metacell constructor using bounded-overlap kNN neighbourhoods.

    Parameters
    ----------
    config : MetacellConfig, optional
        Metacell configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> from hdwgcna.core.metacells import MetacellAggregator, MetacellConfig
    >>> aggregator = MetacellAggregator(MetacellConfig(k=20, max_shared=5))
    >>> result = aggregator.construct(adata, group_by=["cell_type", "sample"])
    >>> metacells = result.adata
    """

    def __init__(
        self,
        config: Optional[MetacellConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or MetacellConfig()
        self.logger = logger or logging.getLogger(__name__)

    def _get_embedding(self, adata: Any, reduction: str, n_dims: Optional[int]) -> np.ndarray:
        if reduction not in adata.obsm:
            available = list(adata.obsm.keys())
            raise KeyError(
                f"Reduction '{reduction}' not found in adata.obsm (available: {available})"
            )
        embedding = np.asarray(adata.obsm[reduction], dtype=float)
        if n_dims is not None:
            embedding = embedding[:, :n_dims]
        return embedding

    def _get_matrix(self, adata: Any, layer: Optional[str]) -> Any:
        if layer and layer in adata.layers:
            self.logger.info("Aggregating layer '%s'", layer)
            return adata.layers[layer]
        if layer:
            self.logger.warning(
                "Requested layer '%s' not found; falling back to AnnData.X", layer
            )
        return adata.X

    def group_labels(self, obs: pd.DataFrame, group_by: Sequence[str], sep: str) -> pd.Series:
        """Combine one or more obs columns into a single group label."""
        missing = [col for col in group_by if col not in obs.columns]
        if missing:
            raise KeyError(f"Grouping columns not found in adata.obs: {missing}")
        labels = obs[group_by[0]].astype(str)
        for col in group_by[1:]:
            labels = labels + sep + obs[col].astype(str)
        return labels

    def _aggregate_group(
        self,
        matrix: Any,
        embedding: np.ndarray,
        obs_names: np.ndarray,
        group: str,
        k: int,
        max_shared: int,
        min_cells: int,
        target: int,
        max_iter: int,
        aggregation: AggregationMethod,
        rng: np.random.Generator,
    ) -> Tuple[np.ndarray, List[List[str]]]:
        """Build metacells for one aggregation group.

        Raises
        ------
        InsufficientGroupSize
            If the group has fewer than ``min_cells`` observations
        """
        from sklearn.neighbors import NearestNeighbors

        n_cells = embedding.shape[0]
        if n_cells < min_cells or n_cells == 0:
            raise InsufficientGroupSize(group, n_cells, min_cells)

        k_eff = min(k, n_cells)
        if k_eff < k:
            self.logger.warning(
                "Group '%s' has %d cells (< k=%d); using neighbourhoods of %d cells",
                group,
                n_cells,
                k,
                k_eff,
            )

        self_idx = np.arange(n_cells)[:, None]
        if k_eff > 1:
            nn = NearestNeighbors(n_neighbors=k_eff - 1, metric="euclidean")
            nn.fit(embedding)
            neighbors = nn.kneighbors(return_distance=False)
            knn_indices = np.hstack([self_idx, neighbors])
        else:
            knn_indices = self_idx

        chosen = select_neighborhoods(knn_indices, max_shared, target, max_iter, rng)

        rows = []
        members = []
        for seed in chosen:
            idx = np.sort(knn_indices[seed])
            block = matrix[idx]
            if aggregation is AggregationMethod.SUM:
                values = block.sum(axis=0)
            else:
                values = block.mean(axis=0)
            rows.append(np.asarray(values, dtype=float).ravel())
            members.append([str(name) for name in obs_names[idx]])

        if not rows:
            return np.zeros((0, matrix.shape[1])), []
        return np.vstack(rows), members

    def construct(
        self,
        adata: Any,  # AnnData
        group_by: Sequence[str],
        k: Optional[int] = None,
        max_shared: Optional[int] = None,
        min_cells: Optional[int] = None,
        target_metacells: Optional[int] = None,
        reduction: Optional[str] = None,
        layer: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> MetacellResult:
        """Construct metacells within every combination of ``group_by`` columns.

        Parameters
        ----------
        adata : AnnData
            Single-cell expression data with an embedding in ``obsm``.
            Not modified.
        group_by : Sequence[str]
            obs columns whose Cartesian product defines aggregation groups
        k : int, optional
            Neighbourhood size. Uses config default if None.
        max_shared : int, optional
            Overlap cap between metacells. Uses config default if None.
        min_cells : int, optional
            Minimum group size. Uses config default if None.
        target_metacells : int, optional
            Per-group cap on metacells. Uses config default if None.
        reduction : str, optional
            obsm key for neighbour search. Uses config default if None.
        layer : str, optional
            Layer to aggregate. Uses config default if None.
        cancel_event : threading.Event, optional
            Checked between groups; when set the run is abandoned

        Returns
        -------
        MetacellResult
            Metacell AnnData, membership map and per-group statistics

        Raises
        ------
        InsufficientGroupSize
            If no group produces any metacell
        """
        import anndata as ad

        cfg = self.config
        k = k if k is not None else cfg.k
        max_shared = max_shared if max_shared is not None else cfg.max_shared
        min_cells = min_cells if min_cells is not None else cfg.min_cells
        target_metacells = (
            target_metacells if target_metacells is not None else cfg.target_metacells
        )
        reduction = reduction if reduction is not None else cfg.reduction
        layer = layer if layer is not None else cfg.layer

        if k < 2:
            raise ValueError(f"k must be at least 2, got {k}")
        if max_shared < 0:
            raise ValueError(f"max_shared must be non-negative, got {max_shared}")
        group_by = [group_by] if isinstance(group_by, str) else list(group_by)
        if not group_by:
            raise ValueError("group_by must name at least one obs column")

        self.logger.info(
            "Constructing metacells: group_by=%s, k=%d, max_shared=%d, min_cells=%d, "
            "target=%d, reduction=%s",
            group_by,
            k,
            max_shared,
            min_cells,
            target_metacells,
            reduction,
        )
        start = time.time()

        embedding = self._get_embedding(adata, reduction, cfg.n_dims)
        matrix = self._get_matrix(adata, layer)
        if sparse.issparse(matrix):
            matrix = sparse.csr_matrix(matrix)
        else:
            matrix = np.asarray(matrix)

        labels = self.group_labels(adata.obs, group_by, cfg.group_sep)
        obs_names = np.asarray(adata.obs_names)
        rng = np.random.default_rng(cfg.random_seed)

        result = MetacellResult()
        all_rows = []
        obs_records = []

        for group in sorted(labels.unique()):
            check_cancelled(cancel_event, "Metacell construction")
            mask = (labels == group).to_numpy()
            try:
                rows, members = self._aggregate_group(
                    matrix[mask],
                    embedding[mask],
                    obs_names[mask],
                    group,
                    k,
                    max_shared,
                    min_cells,
                    target_metacells,
                    cfg.max_iter,
                    cfg.aggregation,
                    rng,
                )
            except InsufficientGroupSize as e:
                self.logger.warning("Skipping group: %s", e)
                result.skipped_groups.append(
                    {"group": group, "n_cells": e.n_cells, "reason": "insufficient_cells"}
                )
                continue

            if len(members) == 0:
                self.logger.warning(
                    "Group '%s' produced no metacells after overlap filtering; skipping",
                    group,
                )
                result.skipped_groups.append(
                    {"group": group, "n_cells": int(mask.sum()), "reason": "no_metacells"}
                )
                continue

            group_values = adata.obs.loc[mask, group_by].iloc[0]
            for i, member_names in enumerate(members):
                name = f"{group}_{i + 1}"
                result.members[name] = member_names
                record = {col: str(group_values[col]) for col in group_by}
                record["metacell_group"] = group
                record["n_cells"] = len(member_names)
                record["name"] = name
                obs_records.append(record)
            all_rows.append(rows)
            result.group_counts[group] = len(members)
            self.logger.debug(
                "Group '%s': %d cells -> %d metacells", group, int(mask.sum()), len(members)
            )

        if not all_rows:
            raise InsufficientGroupSize(
                "<all>",
                int(adata.n_obs),
                min_cells,
                message="No aggregation group produced any metacells",
            )

        obs = pd.DataFrame(obs_records).set_index("name")
        obs.index.name = None
        for col in group_by + ["metacell_group"]:
            obs[col] = pd.Categorical(obs[col])

        X = np.vstack(all_rows).astype(np.float32)
        metacells = ad.AnnData(X=X, obs=obs, var=adata.var.copy())
        metacells.uns["metacell_members"] = {
            name: list(cells) for name, cells in result.members.items()
        }
        metacells.uns["metacell_params"] = {
            "group_by": list(group_by),
            "k": int(k),
            "max_shared": int(max_shared),
            "min_cells": int(min_cells),
            "target_metacells": int(target_metacells),
            "reduction": reduction,
            "aggregation": cfg.aggregation.value,
        }

        result.adata = metacells
        result.elapsed_seconds = time.time() - start
        self.logger.info(
            "Constructed %d metacells from %d groups (%d skipped) in %.1f seconds",
            result.n_metacells,
            len(result.group_counts),
            len(result.skipped_groups),
            result.elapsed_seconds,
        )
        return result


def normalize_metacells(
    adata: Any,  # AnnData
    target_sum: float = 1e4,
    logger: Optional[logging.Logger] = None,
) -> Any:
    """Library-size normalize and log1p-transform metacell expression in place.

    The raw aggregate is kept in ``layers["counts"]``.

    Parameters
    ----------
    adata : AnnData
        Metacell AnnData (modified in place)
    target_sum : float
        Total counts per metacell after normalization

    Returns
    -------
    AnnData
        The same object, for chaining
    """
    import scanpy as sc

    logger = logger or logging.getLogger(__name__)
    adata.layers["counts"] = adata.X.copy()
    sc.pp.normalize_total(adata, target_sum=target_sum)
    sc.pp.log1p(adata)
    logger.info(
        "Normalized %d metacells (target_sum=%.0f, log1p)", adata.n_obs, target_sum
    )
    return adata
