"""Soft-power selection by scale-free topology fit.

For every candidate power the adjacency matrix is built with the same
transform used for network construction, and the distribution of
whole-network connectivity is scored against a power law.
"""

from typing import Any, List, Optional, Sequence
import logging
import numbers
import threading
import time

import numpy as np
import pandas as pd

from ...errors import InvalidPowerRange, check_cancelled
from .adjacency import adjacency_from_correlation, connectivity, correlation_matrix
from .config import CorrelationType, NetworkType, SoftPowerConfig

POWER_TABLE_COLUMNS = [
    "Power",
    "SFT.R.sq",
    "slope",
    "signed.R.sq",
    "truncated.R.sq",
    "mean.k",
    "median.k",
    "max.k",
]


def scale_free_fit(k: np.ndarray, n_breaks: int = 10) -> dict:
    """Score a connectivity vector against a scale-free (power-law) model.

    Connectivity is split into ``n_breaks`` equal-width bins and
    ``log10(p(k) + 1e-9)`` is regressed on ``log10(mean k in bin)``.

    Parameters
    ----------
    k : np.ndarray
        Whole-network connectivity per feature
    n_breaks : int
        Number of bins

    Returns
    -------
    dict
        ``r_squared``, ``slope`` and ``truncated_r_squared`` (adjusted R² of
        the truncated exponential model). NaN when connectivity is constant.
    """
    import statsmodels.formula.api as smf

    k = np.asarray(k, dtype=float)
    nan_fit = {"r_squared": np.nan, "slope": np.nan, "truncated_r_squared": np.nan}
    if len(k) == 0 or np.ptp(k) == 0:
        return nan_fit

    edges = np.linspace(k.min(), k.max(), n_breaks + 1)
    # Right-closed bins, first bin includes the minimum
    bin_idx = np.clip(np.searchsorted(edges[1:-1], k, side="left"), 0, n_breaks - 1)
    counts = np.bincount(bin_idx, minlength=n_breaks)
    sums = np.bincount(bin_idx, weights=k, minlength=n_breaks)
    midpoints = 0.5 * (edges[1:] + edges[:-1])

    with np.errstate(divide="ignore", invalid="ignore"):
        dk = sums / counts
    empty = (counts == 0) | (dk == 0)
    dk[empty] = midpoints[empty]
    dk[dk <= 0] = np.nan

    df = pd.DataFrame(
        {
            "log_dk": np.log10(dk),
            "log_p_dk": np.log10(counts / len(k) + 1e-9),
            "dk": dk,
        }
    ).dropna()
    if len(df) < 3:
        return nan_fit

    model = smf.ols("log_p_dk ~ log_dk", data=df).fit()
    truncated = smf.ols("log_p_dk ~ log_dk + dk", data=df).fit()
    return {
        "r_squared": float(model.rsquared),
        "slope": float(model.params["log_dk"]),
        "truncated_r_squared": float(truncated.rsquared_adj),
    }


def _fit_power(
    cor: np.ndarray,
    power: float,
    network_type: NetworkType,
    n_breaks: int,
) -> dict:
    """Build the adjacency at one power and summarize its fit."""
    adj = adjacency_from_correlation(cor, power, network_type)
    k = connectivity(adj)
    fit = scale_free_fit(k, n_breaks)
    slope = fit["slope"]
    return {
        "Power": power,
        "SFT.R.sq": fit["r_squared"],
        "slope": slope,
        "signed.R.sq": -np.sign(slope) * fit["r_squared"],
        "truncated.R.sq": fit["truncated_r_squared"],
        "mean.k": float(np.mean(k)),
        "median.k": float(np.median(k)),
        "max.k": float(np.max(k)),
    }


def validate_powers(powers: Sequence[Any], logger: Optional[logging.Logger] = None) -> List[float]:
    """Return the sorted, de-duplicated positive numeric powers.

    Raises
    ------
    InvalidPowerRange
        If no valid candidate remains
    """
    logger = logger or logging.getLogger(__name__)
    if powers is None:
        raise InvalidPowerRange("No candidate soft powers given")

    valid = []
    for p in powers:
        if isinstance(p, bool) or not isinstance(p, numbers.Real) or not np.isfinite(p) or p <= 0:
            logger.warning("Ignoring invalid soft power candidate: %r", p)
            continue
        valid.append(p)

    if not valid:
        raise InvalidPowerRange(
            f"No valid soft power candidates in {list(powers)!r}; powers must be positive numbers"
        )
    return sorted(set(valid))


def select_soft_power(power_table: pd.DataFrame, r_squared_cut: float = 0.8) -> Any:
    """Pick a soft power from a power table.

    The lowest power whose scale-free fit R² reaches ``r_squared_cut``;
    if none does, the power with the highest R².

    Raises
    ------
    InvalidPowerRange
        If the table has no finite R² values
    """
    table = power_table.dropna(subset=["SFT.R.sq"]).sort_values("Power", kind="mergesort")
    if table.empty:
        raise InvalidPowerRange("Power table has no usable scale-free fits")

    passing = table[table["SFT.R.sq"] >= r_squared_cut]
    if not passing.empty:
        return passing["Power"].iloc[0]
    # idxmax returns the first maximum, i.e. the lowest power among ties
    return table.loc[table["SFT.R.sq"].idxmax(), "Power"]


class SoftPowerSelector:
    """Sweep soft-thresholding powers and report scale-free topology fits.

    The sweep is diagnostic: it returns the full table and leaves the
    choice to the caller (see ``select_soft_power``).

    Parameters
    ----------
    config : SoftPowerConfig, optional
        Sweep configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> selector = SoftPowerSelector()
    >>> table = selector.test_powers(dat_expr, powers=[1, 2, 4, 6, 8])
    >>> power = select_soft_power(table)
    """

    def __init__(
        self,
        config: Optional[SoftPowerConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or SoftPowerConfig()
        self.logger = logger or logging.getLogger(__name__)

    def test_powers(
        self,
        dat_expr: Any,
        powers: Optional[Sequence[Any]] = None,
        network_type: Optional[NetworkType] = None,
        correlation: Optional[CorrelationType] = None,
        n_breaks: Optional[int] = None,
        n_jobs: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> pd.DataFrame:
        """Compute the scale-free fit table for each candidate power.

        Parameters
        ----------
        dat_expr : array-like or pd.DataFrame
            Observations x features expression matrix
        powers : Sequence, optional
            Candidate powers. Uses config default if None.
        network_type : NetworkType, optional
            Correlation -> adjacency transform. Uses config default if None.
        correlation : CorrelationType, optional
            Correlation measure. Uses config default if None.
        n_breaks : int, optional
            Connectivity bins. Uses config default if None.
        n_jobs : int, optional
            Parallel jobs. Uses config default if None.
        cancel_event : threading.Event, optional
            Checked between powers

        Returns
        -------
        pd.DataFrame
            One row per power, columns as in ``POWER_TABLE_COLUMNS``
        """
        cfg = self.config
        powers = powers if powers is not None else cfg.powers
        network_type = NetworkType(network_type if network_type is not None else cfg.network_type)
        correlation = CorrelationType(correlation if correlation is not None else cfg.correlation)
        n_breaks = n_breaks if n_breaks is not None else cfg.n_breaks
        n_jobs = n_jobs if n_jobs is not None else cfg.n_jobs

        powers = validate_powers(powers, self.logger)
        expr = np.asarray(dat_expr, dtype=float)
        if expr.ndim != 2 or expr.shape[0] < 3 or expr.shape[1] < 2:
            raise ValueError(
                f"Expression matrix must have at least 3 observations and 2 features, got {expr.shape}"
            )

        self.logger.info(
            "Testing %d soft powers (%s network, %s) on %d observations x %d features",
            len(powers),
            network_type.value,
            correlation.value,
            expr.shape[0],
            expr.shape[1],
        )
        start = time.time()
        cor = correlation_matrix(expr, correlation)
        check_cancelled(cancel_event, "Soft power sweep")

        if n_jobs > 1 and len(powers) > 1:
            from joblib import Parallel, delayed

            rows = Parallel(n_jobs=n_jobs)(
                delayed(_fit_power)(cor, p, network_type, n_breaks) for p in powers
            )
            check_cancelled(cancel_event, "Soft power sweep")
        else:
            rows = []
            for p in powers:
                check_cancelled(cancel_event, "Soft power sweep")
                rows.append(_fit_power(cor, p, network_type, n_breaks))
                self.logger.debug(
                    "Power %s: R^2=%.3f, mean k=%.2f", p, rows[-1]["SFT.R.sq"], rows[-1]["mean.k"]
                )

        table = pd.DataFrame(rows, columns=POWER_TABLE_COLUMNS)
        self.logger.info(
            "Power sweep complete in %.1f seconds (%d powers reach R^2 >= %.2f)",
            time.time() - start,
            int((table["SFT.R.sq"] >= cfg.r_squared_cut).sum()),
            cfg.r_squared_cut,
        )
        return table
