"""Experiment containers.

A ``WGCNAExperiment`` holds every artifact of one co-expression analysis
(metacells, gene list, power table, network, eigengenes, test results).
An ``ExperimentStore`` is a caller-owned collection of experiments keyed
by name, so that independent analyses (e.g. one per cell type) never
share state.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional
import copy

import pandas as pd

from ..errors import ExperimentNotFoundError, MissingArtifactError

RAW_EIGENGENES = "MEs"
HARMONIZED_EIGENGENES = "hMEs"


@dataclass
class WGCNAExperiment:
    """All artifacts of one named co-expression analysis.

    Attributes
    ----------
    name : str
        Experiment name
    metacells : AnnData, optional
        Metacell expression
    metacell_result : MetacellResult, optional
        Membership map and per-group statistics
    genes : List[str]
        Network features
    group_by : str, optional
        obs column used to select the network observations
    group_name : List[str]
        Values of ``group_by`` used for the network
    dat_expr : pd.DataFrame, optional
        Network expression matrix (observations x genes)
    power_table : pd.DataFrame, optional
        Soft-power sweep
    network : NetworkResult, optional
        TOM, dendrogram and labels
    modules : pd.DataFrame, optional
        Module assignment table (with kME columns once computed)
    eigengenes : Dict[str, pd.DataFrame]
        ``"MEs"`` and, when harmonized, ``"hMEs"``
    dmes : Dict[str, pd.DataFrame]
        Differential eigengene results by name
    hub_genes : pd.DataFrame, optional
        Top genes per module by kME
    traits : pd.DataFrame, optional
        Module-trait correlation table
    """

    name: str
    metacells: Any = None
    metacell_result: Any = None
    genes: List[str] = field(default_factory=list)
    group_by: Optional[str] = None
    group_name: List[str] = field(default_factory=list)
    dat_expr: Optional[pd.DataFrame] = None
    power_table: Optional[pd.DataFrame] = None
    network: Any = None
    modules: Optional[pd.DataFrame] = None
    eigengenes: Dict[str, pd.DataFrame] = field(default_factory=dict)
    dmes: Dict[str, pd.DataFrame] = field(default_factory=dict)
    hub_genes: Optional[pd.DataFrame] = None
    traits: Optional[pd.DataFrame] = None

    def require(self, attr: str, needed_by: str) -> Any:
        """Return an artifact, failing if it has not been produced yet."""
        value = getattr(self, attr)
        if value is None or (isinstance(value, (list, dict)) and not value):
            raise MissingArtifactError(
                f"Experiment '{self.name}' has no {attr}; it is required by {needed_by}"
            )
        return value

    @property
    def soft_power(self) -> Optional[float]:
        return self.network.soft_power if self.network is not None else None

    def get_mes(self, harmonized: bool = True) -> pd.DataFrame:
        """Eigengene matrix; harmonized when requested and available.

        Raises
        ------
        MissingArtifactError
            If no eigengenes have been computed
        """
        if harmonized and HARMONIZED_EIGENGENES in self.eigengenes:
            return self.eigengenes[HARMONIZED_EIGENGENES]
        if RAW_EIGENGENES not in self.eigengenes:
            raise MissingArtifactError(f"Experiment '{self.name}' has no eigengenes")
        return self.eigengenes[RAW_EIGENGENES]

    def summary(self) -> Dict[str, Any]:
        """Short description of which artifacts are present."""
        return {
            "name": self.name,
            "n_metacells": int(self.metacells.n_obs) if self.metacells is not None else 0,
            "n_genes": len(self.genes),
            "soft_power": self.soft_power,
            "n_modules": self.network.n_modules if self.network is not None else 0,
            "eigengenes": sorted(self.eigengenes),
            "dmes": sorted(self.dmes),
        }


class ExperimentStore:
    """Named collection of independent experiments.

    Example
    -------
    >>> store = ExperimentStore()
    >>> exp = store.create("INH")
    >>> store.copy("INH", "INH_v2")
    >>> store.names()
    ['INH', 'INH_v2']
    """

    def __init__(self):
        self._experiments: Dict[str, WGCNAExperiment] = {}

    def create(self, name: str, overwrite: bool = False, **kwargs: Any) -> WGCNAExperiment:
        """Create and register a new experiment."""
        if not name:
            raise ValueError("Experiment name must be non-empty")
        if name in self._experiments and not overwrite:
            raise ValueError(f"Experiment '{name}' already exists")
        experiment = WGCNAExperiment(name=name, **kwargs)
        self._experiments[name] = experiment
        return experiment

    def get(self, name: str) -> WGCNAExperiment:
        try:
            return self._experiments[name]
        except KeyError:
            raise ExperimentNotFoundError(
                f"Experiment '{name}' not found; available: {self.names()}"
            ) from None

    def __getitem__(self, name: str) -> WGCNAExperiment:
        return self.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._experiments

    def __len__(self) -> int:
        return len(self._experiments)

    def __iter__(self) -> Iterator[str]:
        return iter(self._experiments)

    def names(self) -> List[str]:
        return list(self._experiments)

    def remove(self, name: str) -> WGCNAExperiment:
        """Remove an experiment and return it."""
        experiment = self.get(name)
        del self._experiments[name]
        return experiment

    def copy(self, source: str, target: str, overwrite: bool = False) -> WGCNAExperiment:
        """Deep-copy an experiment under a new name.

        The copy shares no mutable data with the source.
        """
        if target in self._experiments and not overwrite:
            raise ValueError(f"Experiment '{target}' already exists")
        duplicate = copy.deepcopy(self.get(source))
        duplicate.name = target
        self._experiments[target] = duplicate
        return duplicate
