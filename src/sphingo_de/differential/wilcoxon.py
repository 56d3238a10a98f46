"""
Wilcoxon rank-sum test over cells.
"""

from __future__ import annotations

from typing import Literal, Union

import numpy as np
from scipy import sparse as sp
from scipy import stats

Matrix = Union[np.ndarray, sp.spmatrix]
Alternative = Literal["two-sided", "greater", "less"]


def _as_columns(X: Matrix) -> np.ndarray:
    """Dense float matrix with genes as columns."""
    X = X.toarray() if sp.issparse(X) else np.asarray(X, dtype=float)
    return X.reshape(-1, 1) if X.ndim == 1 else X.astype(float, copy=False)


class WilcoxonTest:
    """
    Mann-Whitney U test of group 1 vs group 2, gene by gene.

    The normal approximation (with tie and continuity correction) is used for
    every gene, so p-values do not depend on group sizes crossing an exact-test
    cutoff. A gene whose values are all tied gets p = 1.

    Example:
        >>> statistic, pvalue = WilcoxonTest().test(uc_cells, hc_cells)
    """

    def __init__(self, alternative: Alternative = "two-sided"):
        """
        Args:
            alternative: Alternative hypothesis passed to scipy.
        """
        self.alternative = alternative

    def test(
        self,
        group1: Matrix,
        group2: Matrix,
    ) -> tuple[np.ndarray, np.ndarray]:
        """
        Test every gene column.

        Args:
            group1: Cells x genes for the first group.
            group2: Cells x genes for the second group.

        Returns:
            (U statistic, p-value) arrays, one entry per gene.
        """
        x_all = _as_columns(group1)
        y_all = _as_columns(group2)
        if x_all.shape[1] != y_all.shape[1]:
            raise ValueError(
                f"Groups have different gene counts: {x_all.shape[1]} vs {y_all.shape[1]}"
            )

        n_genes = x_all.shape[1]
        u_stat = np.full(n_genes, np.nan)
        p_val = np.full(n_genes, np.nan)
        if x_all.shape[0] == 0 or y_all.shape[0] == 0:
            return u_stat, p_val

        for j, (x, y) in enumerate(zip(x_all.T, y_all.T)):
            if x.min() == x.max() == y.min() == y.max():
                u_stat[j], p_val[j] = x.size * y.size / 2, 1.0
                continue
            res = stats.mannwhitneyu(x, y, alternative=self.alternative, method="asymptotic")
            u_stat[j], p_val[j] = res.statistic, res.pvalue

        return u_stat, p_val


def wilcoxon_test(
    group1: Matrix,
    group2: Matrix,
    alternative: Alternative = "two-sided",
) -> tuple[np.ndarray, np.ndarray]:
    """Functional form of :class:`WilcoxonTest`."""
    return WilcoxonTest(alternative=alternative).test(group1, group2)
