"""Module eigengenes, connectivity and hub genes.

Example Usage
-------------
>>> from hdwgcna.core.eigengenes import ModuleSummarizer, get_hub_genes
>>> summarizer = ModuleSummarizer()
>>> result = summarizer.eigengenes(adata, modules, batch_vars=["sample"])
>>> modules = summarizer.module_connectivity(adata, modules, result.hmes)
>>> hubs = get_hub_genes(modules, n_hubs=10)
"""

from .config import EigengeneConfig, HarmonizeMethod, ScoringMethod
from .engine import (
    KME_PREFIX,
    EigengeneResult,
    ModuleSummarizer,
    compute_eigengenes,
    get_hub_genes,
    module_eigengene,
    module_levels,
)
from .harmonize import harmonize_eigengenes
from .traits import module_trait_correlation

__all__ = [
    # Config
    "EigengeneConfig",
    "HarmonizeMethod",
    "ScoringMethod",
    # Engine
    "KME_PREFIX",
    "EigengeneResult",
    "ModuleSummarizer",
    "compute_eigengenes",
    "get_hub_genes",
    "module_eigengene",
    "module_levels",
    # Harmonization
    "harmonize_eigengenes",
    # Traits
    "module_trait_correlation",
]
