"""Configuration classes for the metacell module.

All metacell parameters are configurable; defaults follow hdWGCNA's
``MetacellsByGroups``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class AggregationMethod(Enum):
    """How member observations are combined into one metacell vector."""

    MEAN = "mean"
    SUM = "sum"


@dataclass
class MetacellConfig:
    """Configuration for metacell construction.

    Attributes
    ----------
    k : int
        Neighbourhood size (number of cells per metacell, including the seed)
    max_shared : int
        Maximum number of cells two metacells of one run may share
    min_cells : int
        Groups with fewer cells are skipped
    target_metacells : int
        Maximum number of metacells kept per group
    max_iter : int
        Maximum number of candidate neighbourhoods examined per group
    reduction : str
        Key in ``adata.obsm`` holding the embedding used for neighbour search
    n_dims : int, optional
        Use only the first ``n_dims`` embedding dimensions
    layer : str, optional
        Layer to aggregate. Falls back to X when None or missing.
    aggregation : AggregationMethod
        Mean or sum of member expression vectors
    group_sep : str
        Separator used to join multi-column group labels
    random_seed : int
        Seed for the candidate ordering
    """

    k: int = 25
    max_shared: int = 10
    min_cells: int = 100
    target_metacells: int = 1000
    max_iter: int = 5000
    reduction: str = "X_pca"
    n_dims: Optional[int] = None
    layer: Optional[str] = None
    aggregation: AggregationMethod = AggregationMethod.MEAN
    group_sep: str = "#"
    random_seed: int = 1337

    def __post_init__(self) -> None:
        self.aggregation = AggregationMethod(self.aggregation)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetacellConfig":
        """Create MetacellConfig from dictionary."""
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "k": self.k,
            "max_shared": self.max_shared,
            "min_cells": self.min_cells,
            "target_metacells": self.target_metacells,
            "max_iter": self.max_iter,
            "reduction": self.reduction,
            "n_dims": self.n_dims,
            "layer": self.layer,
            "aggregation": self.aggregation.value,
            "group_sep": self.group_sep,
            "random_seed": self.random_seed,
        }
