"""Dynamic hybrid tree cut (tree stage).

Walks the merge tree bottom-up and grows "basic" branches, joining two
branches whenever one of them is too small, too scattered or too close to
the other to stand as a cluster on its own. Basic branches that survive
to the top and pass the size, core-scatter and gap criteria become
modules. Observations left outside every module are labelled 0.

Only the dendrogram stage is run; unassigned features are not
reassigned to the nearest module afterwards.
"""

from dataclasses import dataclass, field
from typing import List, Optional
import logging
import math

import numpy as np

logger = logging.getLogger(__name__)

# Maximum core scatter per deep_split level (0-4); minimum gap is derived
DEFAULT_MAX_CORE_SCATTER = [0.64, 0.73, 0.82, 0.91, 0.95]
DEFAULT_MIN_GAP = [(1.0 - s) * 3.0 / 4.0 for s in DEFAULT_MAX_CORE_SCATTER]
REFERENCE_QUANTILE = 0.05


@dataclass
class _Branch:
    singletons: List[int] = field(default_factory=list)
    size: int = 0
    is_basic: bool = True
    is_top_basic: bool = True
    attach_height: float = np.nan


def core_size(branch_size: int, min_cluster_size: int) -> int:
    """Number of leading singletons that form a branch core."""
    base = min_cluster_size / 2 + 1
    if base < branch_size:
        return int(base + math.sqrt(branch_size - base))
    return branch_size


def _core_scatter(branch: _Branch, dist: np.ndarray, min_cluster_size: int) -> float:
    """Average within-core distance of a basic branch."""
    n_core = core_size(len(branch.singletons), min_cluster_size)
    core = branch.singletons[:n_core]
    sub = dist[np.ix_(core, core)]
    return float(np.mean(sub.sum(axis=0) / (n_core - 1)))


def relabel_by_size(labels: np.ndarray) -> np.ndarray:
    """Renumber non-zero labels 1..m by decreasing size; ties keep label order."""
    out = np.zeros_like(labels)
    present = np.unique(labels[labels != 0])
    if len(present) == 0:
        return out
    sizes = np.array([np.count_nonzero(labels == lab) for lab in present])
    order = np.argsort(-sizes, kind="mergesort")
    for new, idx in enumerate(order, start=1):
        out[labels == present[idx]] = new
    return out


def cutree_hybrid(
    linkage: np.ndarray,
    dist: np.ndarray,
    cut_height: Optional[float] = None,
    min_cluster_size: int = 20,
    deep_split: int = 1,
) -> np.ndarray:
    """Detect clusters in a dendrogram with the hybrid dynamic tree cut.

    Parameters
    ----------
    linkage : np.ndarray
        SciPy linkage matrix (n - 1, 4) with non-decreasing heights
    dist : np.ndarray
        (n, n) dissimilarity matrix the linkage was built from
    cut_height : float, optional
        Maximum merge height considered. Defaults to 99% of the range
        between the reference height and the highest merge.
    min_cluster_size : int
        Minimum number of features per cluster
    deep_split : int
        Sensitivity level 0-4; higher values give more, smaller clusters

    Returns
    -------
    np.ndarray
        Integer labels of length n: 0 for unassigned, 1 for the largest
        cluster, 2 for the next largest and so on
    """
    linkage = np.asarray(linkage, dtype=float)
    dist = np.array(dist, dtype=float)
    n_merge = linkage.shape[0]
    n_points = n_merge + 1
    if n_merge < 1:
        raise ValueError("Dendrogram has no merges")
    if dist.shape != (n_points, n_points):
        raise ValueError(
            f"Distance matrix shape {dist.shape} does not match {n_points} leaves"
        )
    if not 0 <= deep_split < len(DEFAULT_MAX_CORE_SCATTER):
        raise ValueError(f"deep_split must be in 0..4, got {deep_split}")
    np.fill_diagonal(dist, 0.0)

    heights = linkage[:, 2]
    ref_merge = max(int(round(n_merge * REFERENCE_QUANTILE)) - 1, 0)
    ref_height = heights[ref_merge]
    max_height = heights.max()
    if cut_height is None:
        cut_height = 0.99 * (max_height - ref_height) + ref_height
    elif cut_height > max_height:
        cut_height = max_height

    n_below_cut = int(np.count_nonzero(heights <= cut_height))
    if n_below_cut < min_cluster_size:
        logger.warning("Cut height %.3f too low: no merges below the cut", cut_height)
        return np.zeros(n_points, dtype=int)

    max_abs_core_scatter = ref_height + DEFAULT_MAX_CORE_SCATTER[deep_split] * (cut_height - ref_height)
    min_abs_gap = DEFAULT_MIN_GAP[deep_split] * (cut_height - ref_height)
    min_abs_split_height = ref_height

    branches: List[_Branch] = []
    merge_to_branch = np.full(n_merge, -1, dtype=int)

    def fails(branch: _Branch, scatter: float, height: float) -> bool:
        return branch.is_basic and (
            branch.size < min_cluster_size
            or scatter > max_abs_core_scatter
            or height - scatter < min_abs_gap
            or height < min_abs_split_height
        )

    for m in range(n_merge):
        height = heights[m]
        if height > cut_height:
            continue
        a, b = int(linkage[m, 0]), int(linkage[m, 1])
        a_leaf, b_leaf = a < n_points, b < n_points

        if a_leaf and b_leaf:
            branches.append(_Branch(singletons=[a, b], size=2))
            merge_to_branch[m] = len(branches) - 1
            continue

        if a_leaf or b_leaf:
            leaf, sub = (a, b) if a_leaf else (b, a)
            idx = merge_to_branch[sub - n_points]
            branch = branches[idx]
            if branch.is_basic:
                branch.singletons.append(leaf)
            branch.size += 1
            merge_to_branch[m] = idx
            continue

        pair = [merge_to_branch[a - n_points], merge_to_branch[b - n_points]]
        if branches[pair[1]].size < branches[pair[0]].size:
            pair.reverse()
        small, large = pair

        sm_scatter = (
            _core_scatter(branches[small], dist, min_cluster_size) if branches[small].is_basic else 0.0
        )
        lg_scatter = (
            _core_scatter(branches[large], dist, min_cluster_size) if branches[large].is_basic else 0.0
        )

        if fails(branches[small], sm_scatter, height):
            do_merge = True
        elif fails(branches[large], lg_scatter, height):
            do_merge = True
            small, large = large, small
        else:
            do_merge = False

        if do_merge:
            # The failing branch is absorbed into the other one
            sb, lb = branches[small], branches[large]
            sb.attach_height = height
            sb.is_top_basic = False
            if lb.is_basic:
                lb.singletons.extend(sb.singletons)
            lb.size += sb.size
            merge_to_branch[m] = large
            continue

        if branches[large].is_basic and not branches[small].is_basic:
            small, large = large, small
        sb, lb = branches[small], branches[large]
        sb.attach_height = height
        if lb.is_basic:
            # Both are basic: join them under a new composite branch
            lb.attach_height = height
            branches.append(_Branch(size=sb.size + lb.size, is_basic=False, is_top_basic=False))
            merge_to_branch[m] = len(branches) - 1
        else:
            lb.size += sb.size
            merge_to_branch[m] = large

    labels = np.zeros(n_points, dtype=int)
    next_label = 0
    for branch in branches:
        if not branch.is_top_basic:
            continue
        attach = cut_height if np.isnan(branch.attach_height) else branch.attach_height
        scatter = _core_scatter(branch, dist, min_cluster_size)
        if (
            branch.size >= min_cluster_size
            and scatter < max_abs_core_scatter
            and attach - scatter > min_abs_gap
        ):
            next_label += 1
            labels[branch.singletons] = next_label

    logger.debug(
        "Tree cut: %d branches, %d clusters, %d unassigned",
        len(branches),
        next_label,
        int(np.count_nonzero(labels == 0)),
    )
    return relabel_by_size(labels)
