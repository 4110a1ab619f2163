"""Error types raised by hdwgcna.

Group-level aggregation failures are recovered by the metacell engine
(the group is skipped and recorded). Every other error propagates to the
caller unchanged: they are deterministic for a given input and parameter
set, so nothing in the package retries them.
"""

from typing import Optional


class HdWGCNAError(Exception):
    """Base class for all hdwgcna errors."""

    pass


class InsufficientGroupSize(HdWGCNAError):
    """Raised when an aggregation group has fewer than ``min_cells`` observations.

    Parameters
    ----------
    group : str
        Aggregation group label
    n_cells : int
        Number of observations in the group
    min_cells : int
        Required minimum
    """

    def __init__(self, group: str, n_cells: int, min_cells: int, message: Optional[str] = None):
        self.group = group
        self.n_cells = n_cells
        self.min_cells = min_cells
        if message is None:
            message = (
                f"Group '{group}' has {n_cells} cells, fewer than min_cells={min_cells}"
            )
        super().__init__(message)


class DegenerateNetworkError(HdWGCNAError):
    """Raised when fewer than two modules survive module detection."""

    def __init__(self, n_modules: int, soft_power: Optional[int] = None, stage: str = "tree cut"):
        self.n_modules = n_modules
        self.soft_power = soft_power
        self.stage = stage
        hint = f" at soft power {soft_power}" if soft_power is not None else ""
        super().__init__(
            f"Only {n_modules} module(s) remain after {stage}{hint}; "
            "try a different soft power or a smaller min_module_size"
        )


class EmptyGroupError(HdWGCNAError):
    """Raised when a differential test comparison set is empty."""

    pass


class InvalidPowerRange(HdWGCNAError):
    """Raised when a soft-power sweep has no valid candidate powers."""

    pass


class ShapeMismatchError(HdWGCNAError):
    """Raised when feature or observation sets disagree between stages."""

    pass


class MissingArtifactError(HdWGCNAError):
    """Raised when a stage runs before the artifact it depends on exists."""

    pass


class ExperimentNotFoundError(HdWGCNAError, KeyError):
    """Raised when an experiment name is not present in the store."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class OperationCancelled(HdWGCNAError):
    """Raised when a long-running operation observes its cancel event."""

    pass


def check_cancelled(cancel_event, what: str) -> None:
    """Raise OperationCancelled if ``cancel_event`` is set."""
    if cancel_event is not None and cancel_event.is_set():
        raise OperationCancelled(f"{what} cancelled")
