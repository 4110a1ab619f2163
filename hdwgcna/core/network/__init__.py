"""Co-expression network construction.

Provides gene selection, the soft-power sweep, adjacency and TOM
computation, the dynamic tree cut and module merging.

Example Usage
-------------
>>> from hdwgcna.core.network import (
...     NetworkConstructor, SoftPowerSelector, select_expression, select_soft_power
... )
>>> dat_expr = select_expression(metacells, genes, group_by="cell_type", group_name="INH")
>>> table = SoftPowerSelector().test_powers(dat_expr)
>>> power = select_soft_power(table)
>>> result = NetworkConstructor().construct(dat_expr, soft_power=power, network_name="INH")
"""

from .adjacency import (
    adjacency,
    adjacency_from_correlation,
    connectivity,
    correlation_matrix,
    transform_correlation,
)
from .colors import STANDARD_COLORS, UNASSIGNED, labels_to_colors, module_names, standard_color
from .config import (
    CorrelationType,
    GeneSelectionConfig,
    GeneSelectionMethod,
    NetworkConfig,
    NetworkType,
    SoftPowerConfig,
    TOMDenominator,
    TOMType,
    default_powers,
)
from .engine import NetworkConstructor, NetworkResult, build_module_table, merge_close_modules
from .genes import select_expression, select_genes
from .soft_power import (
    POWER_TABLE_COLUMNS,
    SoftPowerSelector,
    scale_free_fit,
    select_soft_power,
    validate_powers,
)
from .tom import compute_tom, tom_dissimilarity
from .tree_cut import core_size, cutree_hybrid, relabel_by_size

__all__ = [
    # Config
    "CorrelationType",
    "GeneSelectionConfig",
    "GeneSelectionMethod",
    "NetworkConfig",
    "NetworkType",
    "SoftPowerConfig",
    "TOMDenominator",
    "TOMType",
    "default_powers",
    # Genes
    "select_expression",
    "select_genes",
    # Adjacency
    "adjacency",
    "adjacency_from_correlation",
    "connectivity",
    "correlation_matrix",
    "transform_correlation",
    # Soft power
    "POWER_TABLE_COLUMNS",
    "SoftPowerSelector",
    "scale_free_fit",
    "select_soft_power",
    "validate_powers",
    # TOM
    "compute_tom",
    "tom_dissimilarity",
    # Tree cut
    "core_size",
    "cutree_hybrid",
    "relabel_by_size",
    # Colors
    "STANDARD_COLORS",
    "UNASSIGNED",
    "labels_to_colors",
    "module_names",
    "standard_color",
    # Engine
    "NetworkConstructor",
    "NetworkResult",
    "build_module_table",
    "merge_close_modules",
]
