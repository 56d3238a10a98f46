"""
Multiple-testing correction for differential expression tables.

Two policies are applied to every result table:

- ``p_val_adj``: the native whole-transcriptome Bonferroni adjustment,
  ``min(1, p * n_genes_in_dataset)``, regardless of how many genes were tested.
- ``p_val_bonferroni`` / ``p_val_BH``: panel-restricted corrections computed over
  exactly the p-values of the genes tested in one stratum. Only added when the
  caller restricted testing to a gene panel.
"""

from __future__ import annotations

from typing import Union

import numpy as np
import pandas as pd
from statsmodels.stats.multitest import multipletests

PANEL_BONFERRONI_COL = "p_val_bonferroni"
PANEL_BH_COL = "p_val_BH"


class FDRCorrector:
    """
    Multiple-testing correction backed by statsmodels.

    NaN p-values are left as NaN and excluded from the number of tests.

    Example:
        >>> corrector = FDRCorrector(method="fdr_bh")
        >>> qvalues = corrector.correct(pvalues)
    """

    METHODS = [
        "bonferroni",
        "fdr_bh",  # Benjamini-Hochberg
    ]

    def __init__(
        self,
        method: str = "fdr_bh",
        alpha: float = 0.05,
    ):
        """
        Initialize corrector.

        Args:
            method: Correction method.
            alpha: Significance threshold.
        """
        if method not in self.METHODS:
            raise ValueError(
                f"Unknown method: {method}. Available: {self.METHODS}"
            )
        self.method = method
        self.alpha = alpha

    def correct(
        self,
        pvalues: Union[np.ndarray, pd.Series],
    ) -> Union[np.ndarray, pd.Series]:
        """
        Apply correction.

        Args:
            pvalues: 1-D p-values.

        Returns:
            Corrected p-values (same type and order as input).
        """
        if isinstance(pvalues, pd.Series):
            return pd.Series(
                self._correct_array(pvalues.to_numpy(dtype=float)),
                index=pvalues.index,
                name=pvalues.name,
            )
        return self._correct_array(np.asarray(pvalues, dtype=float))

    def _correct_array(self, pvalues: np.ndarray) -> np.ndarray:
        corrected = np.full(pvalues.shape, np.nan)
        finite = ~np.isnan(pvalues)
        if finite.any():
            _, qvals, _, _ = multipletests(
                pvalues[finite], alpha=self.alpha, method=self.method
            )
            corrected[finite] = qvals
        return corrected


def whole_transcriptome_adjust(pvalues: np.ndarray, n_genes: int) -> np.ndarray:
    """
    Bonferroni adjustment against every gene in the dataset.

    Args:
        pvalues: Raw p-values of the tested genes.
        n_genes: Number of genes in the dataset, tested or not.

    Returns:
        ``min(1, p * n_genes)``.
    """
    return np.minimum(np.asarray(pvalues, dtype=float) * n_genes, 1.0)


def add_panel_corrections(
    table: pd.DataFrame,
    pvalue_col: str = "p_val",
) -> pd.DataFrame:
    """
    Add panel-restricted Bonferroni and BH columns to one stratum's table.

    The number of tests is the number of rows in ``table``, i.e. the panel
    genes that survived expression filters in this stratum.

    Args:
        table: Result table of one stratum.
        pvalue_col: Column with raw p-values.

    Returns:
        Copy of ``table`` with ``p_val_bonferroni`` and ``p_val_BH`` added.
    """
    out = table.copy()
    pvalues = out[pvalue_col]
    out[PANEL_BONFERRONI_COL] = FDRCorrector(method="bonferroni").correct(pvalues)
    out[PANEL_BH_COL] = FDRCorrector(method="fdr_bh").correct(pvalues)
    return out
