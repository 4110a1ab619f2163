"""Combined configuration for a full hdWGCNA run.

Example
-------
>>> from hdwgcna.config import HdWGCNAConfig
>>> config = HdWGCNAConfig.from_yaml("hdwgcna.yaml")
>>> config.network.min_module_size
50
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from ..core.differential.config import DMEConfig
from ..core.eigengenes.config import EigengeneConfig
from ..core.metacells.config import MetacellConfig
from ..core.network.config import GeneSelectionConfig, NetworkConfig, SoftPowerConfig


@dataclass
class HdWGCNAConfig:
    """Master configuration for the analysis pipeline.

    Attributes
    ----------
    experiment_name : str
        Name of the experiment (also used for the TOM file)
    metacell_group_by : List[str]
        obs columns whose combinations define metacell aggregation groups
    network_group_by : str, optional
        obs column restricting the network to some of its values
    network_group_name : List[str]
        Values of ``network_group_by`` to keep (all if empty)
    normalize_metacells : bool
        Library-size normalize and log-transform metacells
    metacells : MetacellConfig
    genes : GeneSelectionConfig
    soft_power : SoftPowerConfig
    network : NetworkConfig
    eigengenes : EigengeneConfig
    dme : DMEConfig
    """

    experiment_name: str = "wgcna"
    metacell_group_by: List[str] = field(default_factory=list)
    network_group_by: Optional[str] = None
    network_group_name: List[str] = field(default_factory=list)
    normalize_metacells: bool = True
    metacells: MetacellConfig = field(default_factory=MetacellConfig)
    genes: GeneSelectionConfig = field(default_factory=GeneSelectionConfig)
    soft_power: SoftPowerConfig = field(default_factory=SoftPowerConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    eigengenes: EigengeneConfig = field(default_factory=EigengeneConfig)
    dme: DMEConfig = field(default_factory=DMEConfig)

    def __post_init__(self) -> None:
        if isinstance(self.metacell_group_by, str):
            self.metacell_group_by = [self.metacell_group_by]
        if isinstance(self.network_group_name, str):
            self.network_group_name = [self.network_group_name]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HdWGCNAConfig":
        """Create configuration from a (possibly partial) dictionary."""
        data = dict(data or {})
        return cls(
            experiment_name=data.get("experiment_name", "wgcna"),
            metacell_group_by=data.get("metacell_group_by", []),
            network_group_by=data.get("network_group_by"),
            network_group_name=data.get("network_group_name", []),
            normalize_metacells=data.get("normalize_metacells", True),
            metacells=MetacellConfig.from_dict(data.get("metacells", {}) or {}),
            genes=GeneSelectionConfig(**(data.get("genes", {}) or {})),
            soft_power=SoftPowerConfig(**(data.get("soft_power", {}) or {})),
            network=NetworkConfig(**(data.get("network", {}) or {})),
            eigengenes=EigengeneConfig(**(data.get("eigengenes", {}) or {})),
            dme=DMEConfig(**(data.get("dme", {}) or {})),
        )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "HdWGCNAConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        # Handle nested hdwgcna section
        if "hdwgcna" in data:
            data = data["hdwgcna"] or {}

        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "HdWGCNAConfig":
        """Create default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "experiment_name": self.experiment_name,
            "metacell_group_by": list(self.metacell_group_by),
            "network_group_by": self.network_group_by,
            "network_group_name": list(self.network_group_name),
            "normalize_metacells": self.normalize_metacells,
            "metacells": self.metacells.to_dict(),
            "genes": self.genes.to_dict(),
            "soft_power": self.soft_power.to_dict(),
            "network": self.network.to_dict(),
            "eigengenes": self.eigengenes.to_dict(),
            "dme": self.dme.to_dict(),
        }

    def to_yaml(self, path: Union[str, Path]) -> Path:
        """Write configuration to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=False)
        return path
