"""Configuration for differential module eigengene testing."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from ...utils.stats import CorrectionMethod


class DifferentialTest(Enum):
    """Two-sample test applied per module."""

    WILCOXON = "wilcoxon"
    T_TEST = "t-test"


@dataclass
class DMEConfig:
    """Configuration for differential eigengene tests.

    Attributes
    ----------
    test : DifferentialTest
        ``wilcoxon`` (Mann-Whitney U, two-sided) or ``t-test`` (Welch)
    correction : CorrectionMethod
        Multiple testing correction across the modules of one comparison
    min_pct : float
        Keep modules where either group has at least this fraction of
        observations above ``expr_threshold``
    expr_threshold : float
        Score above which an observation counts as expressing a module
    pseudocount : float
        Added to both group means before the log2 ratio
    harmonized : bool
        Test harmonized eigengenes when available
    group_by : str, optional
        obs column for one-vs-rest tests in the pipeline
    """

    test: DifferentialTest = DifferentialTest.WILCOXON
    correction: CorrectionMethod = CorrectionMethod.FDR_BH
    min_pct: float = 0.0
    expr_threshold: float = 0.0
    pseudocount: float = 1e-9
    harmonized: bool = True
    group_by: Optional[str] = None

    def __post_init__(self) -> None:
        self.test = DifferentialTest(self.test)
        self.correction = CorrectionMethod(self.correction)
        if not 0 <= self.min_pct <= 1:
            raise ValueError(f"min_pct must be in [0, 1], got {self.min_pct}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "test": self.test.value,
            "correction": self.correction.value,
            "min_pct": self.min_pct,
            "expr_threshold": self.expr_threshold,
            "pseudocount": self.pseudocount,
            "harmonized": self.harmonized,
            "group_by": self.group_by,
        }
