"""Differential module eigengene (DME) tests.

Each module's eigengene distribution is compared between two disjoint
sets of observations. Eigengenes can be negative, so before the log2
fold change both groups are shifted by the module's minimum over the two
groups whenever that minimum is not strictly positive.
"""

from typing import Any, Dict, List, Optional, Sequence
import logging

import numpy as np
import pandas as pd
from scipy.stats import mannwhitneyu, ttest_ind

from ...errors import EmptyGroupError
from ...utils.stats import CorrectionMethod, apply_fdr_correction
from .config import DifferentialTest, DMEConfig

DME_COLUMNS = ["module", "avg_log2FC", "pct.1", "pct.2", "p_val", "p_val_adj", "group"]


def log2_fold_change(x1: np.ndarray, x2: np.ndarray, pseudocount: float = 1e-9) -> float:
    """log2 ratio of group means after shifting scores to be non-negative."""
    lowest = min(x1.min(), x2.min())
    if lowest <= 0:
        x1 = x1 - lowest
        x2 = x2 - lowest
    return float(np.log2((x1.mean() + pseudocount) / (x2.mean() + pseudocount)))


def _test(x1: np.ndarray, x2: np.ndarray, test: DifferentialTest) -> float:
    if test is DifferentialTest.WILCOXON:
        p = mannwhitneyu(x1, x2, alternative="two-sided").pvalue
    else:
        p = ttest_ind(x1, x2, equal_var=False).pvalue
    # Constant scores give an undefined statistic
    return 1.0 if np.isnan(p) else float(p)


class DMETester:
    """Compare module eigengenes between observation groups.

    Parameters
    ----------
    config : DMEConfig, optional
        Test configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> tester = DMETester()
    >>> dmes = tester.two_group(hmes, group1=cases, group2=controls)
    >>> markers = tester.one_vs_rest(hmes, adata.obs, group_by="cell_type")
    """

    def __init__(
        self,
        config: Optional[DMEConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or DMEConfig()
        self.logger = logger or logging.getLogger(__name__)

    def _resolve_group(self, mes: pd.DataFrame, names: Sequence[Any], which: str) -> List[Any]:
        names = list(pd.unique(pd.Index(names)))
        present = mes.index.intersection(pd.Index(names))
        n_missing = len(names) - len(present)
        if n_missing:
            self.logger.warning(
                "%s: %d observations have no eigengene values and are ignored", which, n_missing
            )
        if len(present) == 0:
            raise EmptyGroupError(f"{which} is empty after filtering")
        return list(present)

    def two_group(
        self,
        mes: pd.DataFrame,
        group1: Sequence[Any],
        group2: Sequence[Any],
        test: Optional[DifferentialTest] = None,
        correction: Optional[CorrectionMethod] = None,
        min_pct: Optional[float] = None,
        label: str = "group1",
    ) -> pd.DataFrame:
        """Test every module between two disjoint observation sets.

        Parameters
        ----------
        mes : pd.DataFrame
            Observations x modules eigengenes (raw or harmonized)
        group1, group2 : Sequence
            Observation names of the two groups
        test : DifferentialTest, optional
            Uses config default if None.
        correction : CorrectionMethod, optional
            Uses config default if None.
        min_pct : float, optional
            Uses config default if None.
        label : str
            Value of the ``group`` column in the output

        Returns
        -------
        pd.DataFrame
            One row per tested module with columns ``DME_COLUMNS``, sorted
            by adjusted p-value

        Raises
        ------
        ValueError
            If the two groups share observations
        EmptyGroupError
            If either group has no observations in ``mes``
        """
        cfg = self.config
        test = DifferentialTest(test if test is not None else cfg.test)
        correction = CorrectionMethod(correction if correction is not None else cfg.correction)
        min_pct = min_pct if min_pct is not None else cfg.min_pct

        overlap = set(group1) & set(group2)
        if overlap:
            raise ValueError(
                f"Comparison groups must be disjoint; {len(overlap)} observations are in both"
            )
        g1 = self._resolve_group(mes, group1, "group1")
        g2 = self._resolve_group(mes, group2, "group2")

        values1 = mes.loc[g1].to_numpy(dtype=float)
        values2 = mes.loc[g2].to_numpy(dtype=float)

        records = []
        for j, module in enumerate(mes.columns):
            x1, x2 = values1[:, j], values2[:, j]
            pct1 = float(np.mean(x1 > cfg.expr_threshold))
            pct2 = float(np.mean(x2 > cfg.expr_threshold))
            if max(pct1, pct2) < min_pct:
                self.logger.debug("Module %s below min_pct=%.2f; skipped", module, min_pct)
                continue
            records.append(
                {
                    "module": module,
                    "avg_log2FC": log2_fold_change(x1, x2, cfg.pseudocount),
                    "pct.1": pct1,
                    "pct.2": pct2,
                    "p_val": _test(x1, x2, test),
                }
            )

        result = pd.DataFrame(records, columns=DME_COLUMNS[:5])
        if result.empty:
            self.logger.warning("No module passed min_pct=%.2f", min_pct)
        result["p_val_adj"] = apply_fdr_correction(result["p_val"].to_numpy(), correction)
        result["group"] = label
        result = result.sort_values("p_val_adj", kind="mergesort").reset_index(drop=True)

        self.logger.info(
            "DME %s: %d vs %d observations, %d modules (%s, %s), %d with adjusted p < 0.05",
            label,
            len(g1),
            len(g2),
            len(result),
            test.value,
            correction.value,
            int((result["p_val_adj"] < 0.05).sum()),
        )
        return result[DME_COLUMNS]

    def one_vs_rest(
        self,
        mes: pd.DataFrame,
        obs: pd.DataFrame,
        group_by: str,
        test: Optional[DifferentialTest] = None,
        correction: Optional[CorrectionMethod] = None,
        min_pct: Optional[float] = None,
    ) -> pd.DataFrame:
        """Test every category of ``group_by`` against all other observations.

        p-values are corrected within each category's block of modules.

        Returns
        -------
        pd.DataFrame
            Concatenated per-category results, categories in sorted order
        """
        if group_by not in obs.columns:
            raise KeyError(f"Column '{group_by}' not found in obs")
        labels = obs.loc[obs.index.intersection(mes.index), group_by].dropna().astype(str)
        categories = sorted(labels.unique())
        if len(categories) < 2:
            raise EmptyGroupError(
                f"One-vs-rest needs at least two categories in '{group_by}', found {categories}"
            )

        blocks = []
        for category in categories:
            in_group = labels.index[labels == category]
            rest = labels.index[labels != category]
            blocks.append(
                self.two_group(
                    mes,
                    in_group,
                    rest,
                    test=test,
                    correction=correction,
                    min_pct=min_pct,
                    label=category,
                )
            )
        return pd.concat(blocks, ignore_index=True)

    def summarize(self, dmes: pd.DataFrame, alpha: float = 0.05) -> Dict[str, int]:
        """Count significant modules per group."""
        sig = dmes[dmes["p_val_adj"] < alpha]
        return {str(k): int(v) for k, v in sig.groupby("group").size().items()}
