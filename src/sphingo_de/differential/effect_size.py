"""
Effect size and detection statistics for two groups of cells.

Expression values are log-normalized (``log1p`` of size-factor scaled counts),
so fold changes are computed on the back-transformed scale:

    avg_log2FC = log2(mean(expm1(x_1)) + 1) - log2(mean(expm1(x_2)) + 1)
"""

from __future__ import annotations

from typing import Union

import numpy as np
from scipy import sparse as sp

Matrix = Union[np.ndarray, sp.spmatrix]


def _column_mean(X: Matrix) -> np.ndarray:
    return np.asarray(X.mean(axis=0), dtype=float).ravel()


class EffectSizeCalculator:
    """
    Computes avg_log2FC and percent-expressed for cells x genes matrices.

    Example:
        >>> calc = EffectSizeCalculator()
        >>> lfc = calc.avg_log2fc(uc_cells, hc_cells)
        >>> pct_uc = calc.pct_expressed(uc_cells)
    """

    def __init__(self, pseudocount: float = 1.0, pct_decimals: int = 3):
        """
        Args:
            pseudocount: Added to group means before taking log2.
            pct_decimals: Rounding applied to detection fractions.
        """
        self.pseudocount = pseudocount
        self.pct_decimals = pct_decimals

    def avg_log2fc(self, group1: Matrix, group2: Matrix) -> np.ndarray:
        """
        Log2 fold change of group means on the linear scale.

        Args:
            group1: First group (cells x genes, log-normalized).
            group2: Second group (cells x genes, log-normalized).

        Returns:
            Array of log2 fold changes, one per gene.
        """
        mean1 = _column_mean(self._expm1(group1))
        mean2 = _column_mean(self._expm1(group2))
        return np.log2(mean1 + self.pseudocount) - np.log2(mean2 + self.pseudocount)

    def pct_expressed(self, group: Matrix) -> np.ndarray:
        """
        Fraction of cells with non-zero expression, per gene.

        Args:
            group: Cells x genes matrix.

        Returns:
            Fractions rounded to ``pct_decimals``.
        """
        n_cells = group.shape[0]
        if n_cells == 0:
            return np.full(group.shape[1], np.nan)
        if sp.issparse(group):
            detected = np.asarray((group > 0).sum(axis=0), dtype=float).ravel()
        else:
            detected = (np.asarray(group) > 0).sum(axis=0).astype(float)
        return np.round(detected / n_cells, self.pct_decimals)

    @staticmethod
    def _expm1(X: Matrix) -> Matrix:
        if sp.issparse(X):
            return X.expm1()
        return np.expm1(np.asarray(X, dtype=float))
