"""Configuration for module eigengenes, connectivity and hub-gene scores."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class HarmonizeMethod(Enum):
    """Batch correction applied to eigengenes."""

    HARMONY = "harmony"
    LINEAR = "linear"


class ScoringMethod(Enum):
    """Hub-gene module scoring."""

    AVERAGE = "average"
    CONTROL = "control"


@dataclass
class EigengeneConfig:
    """Configuration for module summarization.

    Attributes
    ----------
    layer : str, optional
        Layer of the single-cell data used for eigengenes and kME
    batch_vars : List[str]
        obs columns to harmonize eigengenes over (empty disables it)
    harmonize_method : HarmonizeMethod
        ``harmony`` (harmonypy) or ``linear`` (OLS residuals)
    harmony_theta : float
        Harmony diversity penalty
    harmony_max_iter : int
        Maximum Harmony iterations
    use_harmonized : bool
        Compute kME against harmonized eigengenes when available
    n_hub_genes : int
        Hub genes reported per module
    scoring_method : ScoringMethod
        Hub-gene module score method
    random_seed : int
        Seed for Harmony and control-gene sampling
    """

    layer: Optional[str] = None
    batch_vars: List[str] = field(default_factory=list)
    harmonize_method: HarmonizeMethod = HarmonizeMethod.HARMONY
    harmony_theta: float = 2.0
    harmony_max_iter: int = 10
    use_harmonized: bool = True
    n_hub_genes: int = 10
    scoring_method: ScoringMethod = ScoringMethod.AVERAGE
    random_seed: int = 12345

    def __post_init__(self) -> None:
        self.harmonize_method = HarmonizeMethod(self.harmonize_method)
        self.scoring_method = ScoringMethod(self.scoring_method)
        if isinstance(self.batch_vars, str):
            self.batch_vars = [self.batch_vars]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "layer": self.layer,
            "batch_vars": list(self.batch_vars),
            "harmonize_method": self.harmonize_method.value,
            "harmony_theta": self.harmony_theta,
            "harmony_max_iter": self.harmony_max_iter,
            "use_harmonized": self.use_harmonized,
            "n_hub_genes": self.n_hub_genes,
            "scoring_method": self.scoring_method.value,
            "random_seed": self.random_seed,
        }
