"""Test fixtures for hdwgcna."""

from .mock_adata import (
    create_mock_adata,
    create_module_expression,
    majority_labels,
    planted_gene_names,
)

__all__ = [
    "create_mock_adata",
    "create_module_expression",
    "majority_labels",
    "planted_gene_names",
]
