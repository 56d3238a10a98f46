"""
Two-part hurdle likelihood-ratio test for sparse single-cell expression.

Each gene is modelled as a mixture of a detection event (Bernoulli) and, for
detected cells, a Gaussian expression level. The group effect is tested on
both parts at once, as MAST does for a single two-level covariate:

    LR = LR_discrete + LR_continuous,   LR ~ chi2(df_discrete + df_continuous)

With one binary covariate both maximum-likelihood fits have closed forms,
so no iterative fitting is needed and results are deterministic.
"""

from __future__ import annotations

from typing import Union

import numpy as np
from scipy import sparse as sp
from scipy import stats
from scipy.special import xlogy

Matrix = Union[np.ndarray, sp.spmatrix]


def _bernoulli_loglik(k: np.ndarray, n: np.ndarray, p: np.ndarray) -> np.ndarray:
    return xlogy(k, p) + xlogy(n - k, 1.0 - p)


class HurdleTest:
    """
    Hurdle model likelihood-ratio test (group 1 vs group 2).

    The continuous part contributes one degree of freedom only when each group
    has at least ``min_detected`` detected cells and the within-group residual
    variance is non-zero; otherwise only the detection part is tested.

    Example:
        >>> test = HurdleTest()
        >>> statistic, pvalue = test.test(uc_cells, hc_cells)
    """

    def __init__(self, min_detected: int = 2):
        """
        Args:
            min_detected: Minimum detected cells per group for the continuous part.
        """
        self.min_detected = min_detected

    def test(
        self,
        group1: Matrix,
        group2: Matrix,
    ) -> tuple[np.ndarray, np.ndarray]:
        """
        Perform the hurdle test for every gene.

        Args:
            group1: First group (cells x genes).
            group2: Second group (cells x genes).

        Returns:
            Tuple of (LR statistic, pvalue) arrays.
        """
        n1, s1, ss1, k1 = self._summaries(group1)
        n2, s2, ss2, k2 = self._summaries(group2)

        # Discrete part: group-specific vs pooled detection rate
        p1 = k1 / n1
        p2 = k2 / n2
        p0 = (k1 + k2) / (n1 + n2)
        lr_discrete = 2.0 * (
            _bernoulli_loglik(k1, n1, p1)
            + _bernoulli_loglik(k2, n2, p2)
            - _bernoulli_loglik(k1, n1, p0)
            - _bernoulli_loglik(k2, n2, p0)
        )
        lr_discrete = np.maximum(lr_discrete, 0.0)

        # Continuous part: group-specific vs pooled mean of detected values
        m = k1 + k2
        with np.errstate(divide="ignore", invalid="ignore"):
            rss_full = (ss1 - s1**2 / k1) + (ss2 - s2**2 / k2)
            rss_null = (ss1 + ss2) - (s1 + s2) ** 2 / m

        tol = np.finfo(float).eps * np.maximum(ss1 + ss2, 1.0) * 16
        has_continuous = (
            (k1 >= self.min_detected)
            & (k2 >= self.min_detected)
            & (rss_full > tol)
        )

        lr_continuous = np.zeros_like(lr_discrete)
        idx = np.flatnonzero(has_continuous)
        if idx.size:
            lr_continuous[idx] = m[idx] * (
                np.log(np.maximum(rss_null[idx], rss_full[idx])) - np.log(rss_full[idx])
            )

        statistic = lr_discrete + lr_continuous
        df = 1.0 + has_continuous.astype(float)
        pvalue = stats.chi2.sf(statistic, df)

        return statistic, pvalue

    @staticmethod
    def _summaries(X: Matrix) -> tuple[float, np.ndarray, np.ndarray, np.ndarray]:
        """Cell count, sum, sum of squares and detection count of positive values."""
        n = float(X.shape[0])
        if n == 0:
            raise ValueError("Cannot run hurdle test on an empty group")
        if sp.issparse(X):
            X = sp.csr_matrix(X)
            pos = X.multiply(X > 0).tocsr()
            total = np.asarray(pos.sum(axis=0), dtype=float).ravel()
            total_sq = np.asarray(pos.multiply(pos).sum(axis=0), dtype=float).ravel()
            detected = np.asarray((pos > 0).sum(axis=0), dtype=float).ravel()
        else:
            X = np.asarray(X, dtype=float)
            pos = np.where(X > 0, X, 0.0)
            total = pos.sum(axis=0)
            total_sq = (pos**2).sum(axis=0)
            detected = (pos > 0).sum(axis=0).astype(float)
        return n, total, total_sq, detected


def hurdle_test(
    group1: Matrix,
    group2: Matrix,
    min_detected: int = 2,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Perform the hurdle likelihood-ratio test.

    Args:
        group1: First group (cells x genes).
        group2: Second group (cells x genes).
        min_detected: Minimum detected cells per group for the continuous part.

    Returns:
        Tuple of (statistic, pvalue) arrays.
    """
    return HurdleTest(min_detected=min_detected).test(group1, group2)
