"""hdwgcna: Co-expression network analysis for single-cell data.

This package provides tools for:
- Metacell construction by bounded-overlap neighbourhood aggregation
- Soft-power selection by scale-free topology fit
- Signed co-expression networks with topological overlap and dynamic tree cut
- Module eigengenes, batch harmonization, kME and hub genes
- Differential module eigengene tests

Example usage:
    >>> from hdwgcna.pipeline import run_pipeline
    >>> from hdwgcna.config import HdWGCNAConfig
    >>>
    >>> config = HdWGCNAConfig.from_yaml("hdwgcna.yaml")
    >>> store, summary = run_pipeline(adata, config, output_dir="out/")
    >>> store.get(config.experiment_name).modules.head()
"""

__version__ = "0.1.0"
