"""Batch harmonization of module eigengenes.

Input and output are observations x modules matrices of identical shape
and index; only the values change.
"""

from typing import List, Optional, Sequence, Union
import logging

import numpy as np
import pandas as pd

from .config import HarmonizeMethod


def _harmony(
    mes: pd.DataFrame,
    meta: pd.DataFrame,
    batch_vars: List[str],
    theta: float,
    max_iter: int,
    random_state: int,
) -> np.ndarray:
    import harmonypy

    ho = harmonypy.run_harmony(
        mes.to_numpy(dtype=float),
        meta,
        batch_vars,
        theta=theta,
        max_iter_harmony=max_iter,
        random_state=random_state,
        verbose=False,
    )
    z = np.asarray(ho.Z_corr)
    n_obs, n_mod = mes.shape
    # Z_corr is (modules, observations)
    if z.shape == (n_mod, n_obs):
        z = z.T
    return z


def _linear(mes: pd.DataFrame, meta: pd.DataFrame, batch_vars: List[str]) -> np.ndarray:
    """Remove additive batch effects by OLS, keeping each module's mean."""
    import statsmodels.formula.api as smf

    df = meta.reset_index(drop=True).copy()
    rhs = " + ".join(f"C(Q('{v}'))" for v in batch_vars)
    out = np.empty(mes.shape, dtype=float)
    for j, module in enumerate(mes.columns):
        df["score"] = mes[module].to_numpy(dtype=float)
        fit = smf.ols(f"score ~ {rhs}", data=df).fit()
        out[:, j] = fit.resid.to_numpy() + df["score"].mean()
    return out


def harmonize_eigengenes(
    mes: pd.DataFrame,
    obs: pd.DataFrame,
    batch_vars: Union[str, Sequence[str]],
    method: Union[str, HarmonizeMethod] = HarmonizeMethod.HARMONY,
    theta: float = 2.0,
    max_iter: int = 10,
    random_state: int = 12345,
    logger: Optional[logging.Logger] = None,
) -> pd.DataFrame:
    """Correct an eigengene matrix for batch labels.

    Parameters
    ----------
    mes : pd.DataFrame
        Observations x modules eigengene matrix
    obs : pd.DataFrame
        Observation metadata containing ``batch_vars``; aligned by index
    batch_vars : str or Sequence[str]
        Batch columns
    method : str or HarmonizeMethod
        ``harmony`` or ``linear``

    Returns
    -------
    pd.DataFrame
        Harmonized eigengenes, same shape, index and columns as ``mes``
    """
    logger = logger or logging.getLogger(__name__)
    method = HarmonizeMethod(method)
    batch_vars = [batch_vars] if isinstance(batch_vars, str) else list(batch_vars)
    if not batch_vars:
        raise ValueError("At least one batch variable is required")
    missing = [v for v in batch_vars if v not in obs.columns]
    if missing:
        raise KeyError(f"Batch columns not found in obs: {missing}")

    meta = obs.loc[mes.index, batch_vars].astype(str)
    n_batches = {v: meta[v].nunique() for v in batch_vars}
    if all(n < 2 for n in n_batches.values()):
        logger.warning("Only one batch present in %s; eigengenes left unchanged", batch_vars)
        return mes.copy()
    batch_vars = [v for v in batch_vars if n_batches[v] > 1]
    meta = meta[batch_vars]

    logger.info(
        "Harmonizing %d eigengenes over %s with %s", mes.shape[1], n_batches, method.value
    )
    if method is HarmonizeMethod.HARMONY:
        values = _harmony(mes, meta, batch_vars, theta, max_iter, random_state)
    else:
        values = _linear(mes, meta, batch_vars)

    if values.shape != mes.shape:
        raise ValueError(
            f"Harmonized eigengene shape {values.shape} differs from input {mes.shape}"
        )
    return pd.DataFrame(values, index=mes.index, columns=mes.columns)
