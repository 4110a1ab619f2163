"""Metacell module: bounded-overlap neighbourhood aggregation.

Reduces single-cell sparsity by averaging (or summing) small kNN
neighbourhoods of cells drawn from one group each.

Example Usage
-------------
>>> from hdwgcna.core.metacells import (
...     MetacellAggregator, MetacellConfig, normalize_metacells,
... )
>>> aggregator = MetacellAggregator(MetacellConfig(k=25, max_shared=10))
>>> result = aggregator.construct(adata, group_by=["cell_type", "sample"])
>>> metacells = normalize_metacells(result.adata)
"""

from .config import (
    AggregationMethod,
    MetacellConfig,
)

from .engine import (
    MetacellAggregator,
    MetacellResult,
    normalize_metacells,
    select_neighborhoods,
)

__all__ = [
    # Config
    "AggregationMethod",
    "MetacellConfig",
    # Engine
    "MetacellAggregator",
    "MetacellResult",
    "normalize_metacells",
    "select_neighborhoods",
]
