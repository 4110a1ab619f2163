"""Command-line interface for hdwgcna.

Example Usage
-------------
    # From command line:
    hdwgcna --help
    hdwgcna metacells --input cells.h5ad --out out/ -g cell_type -g sample
    hdwgcna test-powers --input out/metacells.h5ad --out out/
    hdwgcna run --input cells.h5ad --config hdwgcna.yaml --out out/
"""

from .main import cli, main

__all__ = [
    "cli",
    "main",
]
