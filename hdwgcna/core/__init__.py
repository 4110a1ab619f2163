"""Core computational modules for hdwgcna.

This package contains the analysis engines:
- metacells: Bounded-overlap kNN aggregation of cells into metacells
- network: Gene selection, soft-power sweep, TOM and dynamic tree cut
- eigengenes: Module eigengenes, harmonization, kME and hub genes
- differential: Differential module eigengene tests
- experiment: Named, caller-owned experiment containers
"""
