"""Module-trait correlation."""

from typing import Optional, Sequence, Union
import logging

import numpy as np
import pandas as pd

from ...utils.stats import (
    CorrectionMethod,
    apply_fdr_correction,
    correlate_columns,
    cor_pvalue_student,
)

ALL_GROUP = "all"
TRAIT_COLUMNS = ["group", "trait", "module", "cor", "p_val", "fdr"]


def encode_traits(obs: pd.DataFrame, traits: Sequence[str]) -> pd.DataFrame:
    """Numeric encoding of obs traits.

    Numeric and boolean columns are used as-is; categorical and string
    columns are replaced by their category codes.
    """
    missing = [t for t in traits if t not in obs.columns]
    if missing:
        raise KeyError(f"Trait columns not found in obs: {missing}")
    encoded = {}
    for trait in traits:
        col = obs[trait]
        if pd.api.types.is_bool_dtype(col) or pd.api.types.is_numeric_dtype(col):
            encoded[trait] = col.astype(float).to_numpy()
        else:
            codes = pd.Categorical(col).codes.astype(float)
            codes[codes < 0] = np.nan
            encoded[trait] = codes
    return pd.DataFrame(encoded, index=obs.index)


def _correlate_block(
    mes: pd.DataFrame,
    traits: pd.DataFrame,
    group: str,
    correction: CorrectionMethod,
) -> pd.DataFrame:
    records = []
    for trait in traits.columns:
        values = traits[trait]
        keep = values.notna().to_numpy()
        n = int(keep.sum())
        cor = correlate_columns(values.to_numpy()[keep], mes.to_numpy(dtype=float)[keep])[0]
        p = cor_pvalue_student(cor, n)
        for module, r, pv in zip(mes.columns, cor, p):
            records.append(
                {"group": group, "trait": trait, "module": module, "cor": r, "p_val": pv}
            )
    block = pd.DataFrame(records, columns=TRAIT_COLUMNS[:-1])
    block["fdr"] = apply_fdr_correction(block["p_val"].to_numpy(), correction)
    return block


def module_trait_correlation(
    mes: pd.DataFrame,
    obs: pd.DataFrame,
    traits: Sequence[str],
    group_by: Optional[str] = None,
    correction: Union[str, CorrectionMethod] = CorrectionMethod.FDR_BH,
    logger: Optional[logging.Logger] = None,
) -> pd.DataFrame:
    """Correlate module eigengenes with observation traits.

    Correlations are computed over all observations (group ``"all"``) and,
    with ``group_by``, separately within each of its values. FDR is
    controlled across all trait x module tests of one group.

    Parameters
    ----------
    mes : pd.DataFrame
        Observations x modules eigengenes
    obs : pd.DataFrame
        Observation metadata, aligned to ``mes`` by index
    traits : Sequence[str]
        Trait columns of ``obs``
    group_by : str, optional
        Column defining groups for per-group correlations
    correction : str or CorrectionMethod
        Multiple testing correction

    Returns
    -------
    pd.DataFrame
        Long table with columns ``group, trait, module, cor, p_val, fdr``
    """
    logger = logger or logging.getLogger(__name__)
    correction = CorrectionMethod(correction)
    traits = [traits] if isinstance(traits, str) else list(traits)
    if not traits:
        raise ValueError("At least one trait is required")

    obs = obs.loc[mes.index]
    encoded = encode_traits(obs, traits)
    blocks = [_correlate_block(mes, encoded, ALL_GROUP, correction)]

    if group_by is not None:
        if group_by not in obs.columns:
            raise KeyError(f"Column '{group_by}' not found in obs")
        labels = obs[group_by].astype(str)
        for group in sorted(labels.unique()):
            mask = (labels == group).to_numpy()
            blocks.append(
                _correlate_block(mes.loc[mask], encoded.loc[mask], group, correction)
            )

    result = pd.concat(blocks, ignore_index=True)
    logger.info(
        "Module-trait correlation: %d traits x %d modules in %d groups",
        len(traits),
        mes.shape[1],
        len(blocks),
    )
    return result
