"""Utility functions for hdwgcna.

Provides statistical helpers shared across modules.
"""

from .stats import (
    CorrectionMethod,
    apply_fdr_correction,
    cor_pvalue_student,
    correlate_columns,
    scale_columns,
)

__all__ = [
    "CorrectionMethod",
    "apply_fdr_correction",
    "cor_pvalue_student",
    "correlate_columns",
    "scale_columns",
]
