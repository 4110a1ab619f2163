"""Differential module eigengene tests.

Example Usage
-------------
>>> from hdwgcna.core.differential import DMETester, DMEConfig
>>> tester = DMETester(DMEConfig(test="wilcoxon"))
>>> dmes = tester.two_group(hmes, group1=ad_cells, group2=control_cells)
>>> markers = tester.one_vs_rest(hmes, adata.obs, group_by="cell_type")
"""

from .config import DifferentialTest, DMEConfig
from .engine import DME_COLUMNS, DMETester, log2_fold_change

__all__ = [
    # Config
    "DifferentialTest",
    "DMEConfig",
    # Engine
    "DME_COLUMNS",
    "DMETester",
    "log2_fold_change",
]
