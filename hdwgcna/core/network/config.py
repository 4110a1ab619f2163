"""Configuration classes for network construction.

Covers gene selection, the soft-power sweep, adjacency/TOM options and
dynamic tree cutting. Defaults follow hdWGCNA's ``ConstructNetwork``.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class NetworkType(Enum):
    """Correlation -> adjacency transform."""

    SIGNED = "signed"
    UNSIGNED = "unsigned"
    SIGNED_HYBRID = "signed hybrid"


class TOMType(Enum):
    """Topological overlap variant."""

    UNSIGNED = "unsigned"
    SIGNED = "signed"


class TOMDenominator(Enum):
    """Connectivity summary used in the TOM denominator."""

    MIN = "min"
    MEAN = "mean"


class CorrelationType(Enum):
    """Feature-feature correlation measure."""

    PEARSON = "pearson"
    SPEARMAN = "spearman"


class GeneSelectionMethod(Enum):
    """How features for the network are chosen."""

    FRACTION = "fraction"
    VARIABLE = "variable"
    ALL = "all"
    CUSTOM = "custom"


def default_powers() -> List[int]:
    """Default soft-power candidates: 1..10, then 12..30 in steps of 2."""
    return list(range(1, 11)) + list(range(12, 31, 2))


@dataclass
class GeneSelectionConfig:
    """Configuration for choosing network features.

    Attributes
    ----------
    method : GeneSelectionMethod
        Selection strategy
    fraction : float
        Minimum fraction of observations expressing a gene (``fraction`` method)
    group_by : str, optional
        If set, the fraction must be reached within at least one group
    n_top_genes : int
        Number of highly variable genes (``variable`` method)
    layer : str, optional
        Layer used for expression checks
    """

    method: GeneSelectionMethod = GeneSelectionMethod.FRACTION
    fraction: float = 0.05
    group_by: Optional[str] = None
    n_top_genes: int = 2000
    layer: Optional[str] = None

    def __post_init__(self) -> None:
        self.method = GeneSelectionMethod(self.method)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "method": self.method.value,
            "fraction": self.fraction,
            "group_by": self.group_by,
            "n_top_genes": self.n_top_genes,
            "layer": self.layer,
        }


@dataclass
class SoftPowerConfig:
    """Configuration for the soft-power sweep.

    Attributes
    ----------
    powers : List[int]
        Candidate exponents
    network_type : NetworkType
        Correlation -> adjacency transform
    correlation : CorrelationType
        Correlation measure
    n_breaks : int
        Number of connectivity bins for the scale-free fit
    r_squared_cut : float
        Minimum fit R² for automatic power selection
    n_jobs : int
        Number of parallel jobs for the sweep
    """

    powers: List[int] = field(default_factory=default_powers)
    network_type: NetworkType = NetworkType.SIGNED
    correlation: CorrelationType = CorrelationType.PEARSON
    n_breaks: int = 10
    r_squared_cut: float = 0.8
    n_jobs: int = 1

    def __post_init__(self) -> None:
        self.network_type = NetworkType(self.network_type)
        self.correlation = CorrelationType(self.correlation)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "powers": list(self.powers),
            "network_type": self.network_type.value,
            "correlation": self.correlation.value,
            "n_breaks": self.n_breaks,
            "r_squared_cut": self.r_squared_cut,
            "n_jobs": self.n_jobs,
        }


@dataclass
class NetworkConfig:
    """Configuration for adjacency, TOM and module detection.

    Attributes
    ----------
    soft_power : int, optional
        Fixed soft power. If None, chosen from the power sweep.
    network_type : NetworkType
        Correlation -> adjacency transform
    correlation : CorrelationType
        Correlation measure
    tom_type : TOMType
        Topological overlap variant
    tom_denominator : TOMDenominator
        Connectivity summary in the TOM denominator
    deep_split : int
        Tree-cut sensitivity (0-4)
    detect_cut_height : float
        Maximum dendrogram height considered by the tree cut
    min_module_size : int
        Minimum number of genes per module
    merge_cut_height : float
        Eigengene dissimilarity below which modules are merged
    merge_modules : bool
        Run the eigengene-based merge step
    module_prefix : str, optional
        If set, rename modules ``<prefix>1, <prefix>2, ...`` by size
    tom_dir : str, optional
        Directory where the TOM is persisted. None disables persistence.
    block_size : int
        Row block size for TOM computation
    n_jobs : int
        Number of parallel jobs for TOM blocks
    """

    soft_power: Optional[int] = None
    network_type: NetworkType = NetworkType.SIGNED
    correlation: CorrelationType = CorrelationType.PEARSON
    tom_type: TOMType = TOMType.SIGNED
    tom_denominator: TOMDenominator = TOMDenominator.MIN
    deep_split: int = 4
    detect_cut_height: float = 0.995
    min_module_size: int = 50
    merge_cut_height: float = 0.2
    merge_modules: bool = True
    module_prefix: Optional[str] = None
    tom_dir: Optional[str] = "TOM"
    block_size: int = 2000
    n_jobs: int = 1

    def __post_init__(self) -> None:
        self.network_type = NetworkType(self.network_type)
        self.correlation = CorrelationType(self.correlation)
        self.tom_type = TOMType(self.tom_type)
        self.tom_denominator = TOMDenominator(self.tom_denominator)
        if not 0 <= self.deep_split <= 4:
            raise ValueError(f"deep_split must be in 0..4, got {self.deep_split}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "soft_power": self.soft_power,
            "network_type": self.network_type.value,
            "correlation": self.correlation.value,
            "tom_type": self.tom_type.value,
            "tom_denominator": self.tom_denominator.value,
            "deep_split": self.deep_split,
            "detect_cut_height": self.detect_cut_height,
            "min_module_size": self.min_module_size,
            "merge_cut_height": self.merge_cut_height,
            "merge_modules": self.merge_modules,
            "module_prefix": self.module_prefix,
            "tom_dir": self.tom_dir,
            "block_size": self.block_size,
            "n_jobs": self.n_jobs,
        }
