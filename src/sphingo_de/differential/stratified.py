"""
Stratified differential expression.

Cells are partitioned by a categorical field (e.g. cell type), or kept together
as one bulk pseudo-stratum, and a two-group comparison (e.g. UC vs HC) is run
independently within each stratum. A stratum that cannot be tested is logged
and skipped; it never aborts the run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Optional, Protocol, Sequence, Union

import anndata as ad
import numpy as np
import pandas as pd
from scipy import sparse as sp

from sphingo_de.differential.effect_size import EffectSizeCalculator
from sphingo_de.differential.fdr import add_panel_corrections, whole_transcriptome_adjust
from sphingo_de.differential.hurdle import HurdleTest
from sphingo_de.differential.wilcoxon import WilcoxonTest
from sphingo_de.encoding import encode_stratum
from sphingo_de.export.writer import ResultWriter
from sphingo_de.panel import BULK_STRATUM

logger = logging.getLogger(__name__)

RESULT_COLUMNS = ["p_val", "avg_log2FC", "pct.1", "pct.2", "p_val_adj"]


class InsufficientCellsError(ValueError):
    """A group has too few cells within a stratum."""


class NoFeaturesError(ValueError):
    """No gene survives the expression pre-filters."""


class DegenerateTestError(ValueError):
    """The two-group test could not be evaluated on a stratum."""


STRATUM_ERRORS = (
    InsufficientCellsError,
    NoFeaturesError,
    DegenerateTestError,
    np.linalg.LinAlgError,
)


class DETest(Protocol):
    """Two-group test over cells x genes matrices."""

    def test(self, group1: Any, group2: Any) -> tuple[np.ndarray, np.ndarray]:
        ...


@dataclass(frozen=True)
class StrataSpec:
    """
    How cells are partitioned before testing.

    Use :meth:`bulk` for one pseudo-stratum covering every cell, or
    :meth:`by_field` to split on a metadata column.
    """

    field: Optional[str] = None
    """Metadata column to split on (None in bulk mode)."""

    allow: Optional[tuple[str, ...]] = None
    """Only test these strata (field mode)."""

    bulk_label: str = BULK_STRATUM
    """Name of the bulk pseudo-stratum."""

    @classmethod
    def bulk(cls, label: str = BULK_STRATUM) -> "StrataSpec":
        return cls(field=None, bulk_label=label)

    @classmethod
    def by_field(cls, field: str, allow: Optional[Sequence[str]] = None) -> "StrataSpec":
        return cls(field=field, allow=tuple(allow) if allow is not None else None)

    @property
    def is_bulk(self) -> bool:
        return self.field is None

    def enumerate(self, obs: pd.DataFrame) -> list[str]:
        """Strata present in ``obs``, in order of first appearance."""
        if self.is_bulk:
            return [self.bulk_label]
        if self.field not in obs.columns:
            raise KeyError(f"Stratify field '{self.field}' not found in cell metadata")
        labels = obs[self.field]
        n_missing = int(labels.isna().sum())
        if n_missing:
            logger.warning(
                "%d cells have no '%s' label and belong to no stratum", n_missing, self.field
            )
        present = [str(v) for v in pd.unique(labels.dropna().astype(str))]
        if self.allow is None:
            return present
        allowed = set(self.allow)
        missing = allowed.difference(present)
        if missing:
            logger.warning("Requested strata not present: %s", sorted(missing))
        return [s for s in present if s in allowed]

    def mask(self, obs: pd.DataFrame, stratum: str) -> np.ndarray:
        """Boolean cell mask for one stratum."""
        if self.is_bulk:
            return np.ones(len(obs), dtype=bool)
        labels = obs[self.field]
        return (labels.notna() & (labels.astype(str) == stratum)).to_numpy()


@dataclass
class DEResult:
    """Result of DE within one stratum."""

    stratum: str
    """Stratum label."""

    table: pd.DataFrame
    """Per-gene results indexed by gene."""

    n_group1: int = 0
    """Cells in group 1."""

    n_group2: int = 0
    """Cells in group 2."""

    comparison: str = ""
    """Description of comparison."""

    path: Optional[Path] = None
    """Persisted table, if written."""

    @property
    def key(self) -> str:
        """Filesystem-safe stratum key."""
        return encode_stratum(self.stratum)

    @property
    def n_tested(self) -> int:
        return len(self.table)


@dataclass
class StratumFailure:
    """A stratum skipped because the comparison could not be run."""

    stratum: str
    comparison: str
    reason: str
    error_type: str = "ValueError"


@dataclass
class DERunReport:
    """Outcome of one stratified DE run."""

    comparison: str
    results: dict[str, DEResult] = field(default_factory=dict)
    failures: list[StratumFailure] = field(default_factory=list)

    @property
    def tables(self) -> dict[str, pd.DataFrame]:
        """Stratum key -> result table, in enumeration order."""
        return {r.key: r.table for r in self.results.values()}

    @property
    def paths(self) -> dict[str, Path]:
        """Stratum key -> persisted table path, in enumeration order."""
        return {r.key: r.path for r in self.results.values() if r.path is not None}

    def failures_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [vars(f) for f in self.failures],
            columns=["stratum", "comparison", "reason", "error_type"],
        )

    def summary(self) -> dict[str, Any]:
        return {
            "comparison": self.comparison,
            "n_strata_tested": len(self.results),
            "n_strata_failed": len(self.failures),
            "n_rows": sum(r.n_tested for r in self.results.values()),
        }


class PanelDifferential:
    """
    Per-stratum two-group DE restricted to a gene panel.

    Pre-filters follow the usual single-cell marker conventions: a gene is
    tested only if it is detected in at least ``min_pct`` of the cells of
    either group and its absolute avg_log2FC reaches ``logfc_threshold``.

    Example:
        >>> diff = PanelDifferential(min_pct=0.1, logfc_threshold=0.1)
        >>> report = diff.run(
        ...     adata,
        ...     grouping_field="disease",
        ...     group_a="UC",
        ...     group_b="HC",
        ...     strata=StrataSpec.by_field("cell_type"),
        ...     gene_panel=SPHINGOSINE_PANEL,
        ...     output_dir="results/de",
        ... )
    """

    def __init__(
        self,
        method: Literal["hurdle", "wilcoxon"] = "hurdle",
        min_pct: float = 0.1,
        logfc_threshold: float = 0.1,
        min_cells_group: int = 3,
        layer: Optional[str] = None,
        test: Optional[DETest] = None,
    ):
        """
        Initialize panel differential.

        Args:
            method: Statistical test method (ignored when ``test`` is given).
            min_pct: Minimum detection fraction in either group.
            logfc_threshold: Minimum absolute avg_log2FC.
            min_cells_group: Minimum cells per group.
            layer: Expression layer (None for .X).
            test: Custom test object with a ``test(group1, group2)`` method.
        """
        if test is None:
            if method == "hurdle":
                test = HurdleTest()
            elif method == "wilcoxon":
                test = WilcoxonTest()
            else:
                raise ValueError(f"Unknown method: {method}")
        self.method = method
        self.test = test
        self.min_pct = min_pct
        self.logfc_threshold = logfc_threshold
        self.min_cells_group = min_cells_group
        self.layer = layer
        self.effect_calc = EffectSizeCalculator()

    def compare(
        self,
        adata: ad.AnnData,
        grouping_field: str,
        group_a: Any,
        group_b: Any,
        gene_panel: Optional[Sequence[str]] = None,
        n_genes_total: Optional[int] = None,
    ) -> tuple[pd.DataFrame, int, int]:
        """
        Compare two groups of cells.

        Args:
            adata: Cells to compare (typically one stratum).
            grouping_field: Column defining groups.
            group_a: Value for group 1.
            group_b: Value for group 2.
            gene_panel: Genes to test (None or empty for all genes).
            n_genes_total: Gene count for the native adjustment
                (defaults to ``adata.n_vars``).

        Returns:
            Tuple of (result table, n_group1, n_group2).
        """
        obs = adata.obs
        if grouping_field not in obs.columns:
            raise KeyError(f"Grouping field '{grouping_field}' not found in cell metadata")
        if gene_panel is not None:
            gene_panel = [str(g) for g in gene_panel]

        mask1 = (obs[grouping_field] == group_a).to_numpy()
        mask2 = (obs[grouping_field] == group_b).to_numpy()
        n1, n2 = int(mask1.sum()), int(mask2.sum())

        if n1 < self.min_cells_group:
            raise InsufficientCellsError(
                f"Cell group 1 ({group_a}) has fewer than {self.min_cells_group} cells (n={n1})"
            )
        if n2 < self.min_cells_group:
            raise InsufficientCellsError(
                f"Cell group 2 ({group_b}) has fewer than {self.min_cells_group} cells (n={n2})"
            )

        features = self._resolve_features(adata, gene_panel)
        cols = adata.var_names.get_indexer(features)

        X = adata.layers[self.layer] if self.layer is not None else adata.X
        if sp.issparse(X):
            X = sp.csr_matrix(X)
        X1 = X[np.flatnonzero(mask1)][:, cols]
        X2 = X[np.flatnonzero(mask2)][:, cols]

        pct1 = self.effect_calc.pct_expressed(X1)
        pct2 = self.effect_calc.pct_expressed(X2)
        keep = np.maximum(pct1, pct2) >= self.min_pct
        if not keep.any():
            raise NoFeaturesError("No features pass min_pct threshold")

        lfc = self.effect_calc.avg_log2fc(X1, X2)
        keep &= np.abs(lfc) >= self.logfc_threshold
        if not keep.any():
            raise NoFeaturesError("No features pass logfc_threshold")

        kept = np.flatnonzero(keep)
        logger.debug(
            "Testing %d/%d features (%s=%d, %s=%d)",
            kept.size, len(features), group_a, n1, group_b, n2,
        )
        try:
            _, pval = self.test.test(X1[:, kept], X2[:, kept])
        except (ValueError, FloatingPointError) as e:
            raise DegenerateTestError(f"Two-group test failed: {e}") from e
        pval = np.asarray(pval, dtype=float)

        table = pd.DataFrame(
            {
                "p_val": pval,
                "avg_log2FC": lfc[kept],
                "pct.1": pct1[kept],
                "pct.2": pct2[kept],
                "p_val_adj": whole_transcriptome_adjust(
                    pval, n_genes_total if n_genes_total is not None else adata.n_vars
                ),
            },
            index=pd.Index([features[i] for i in kept], name="gene"),
        )
        table = table.sort_values(
            ["p_val", "avg_log2FC"], ascending=[True, False], kind="mergesort"
        )

        if gene_panel is not None and len(gene_panel) > 0:
            table = add_panel_corrections(table)

        return table, n1, n2

    def run(
        self,
        adata: ad.AnnData,
        grouping_field: str,
        group_a: Any,
        group_b: Any,
        strata: StrataSpec,
        gene_panel: Optional[Sequence[str]] = None,
        output_dir: Optional[Union[str, Path]] = None,
    ) -> DERunReport:
        """
        Run the comparison independently within each stratum.

        Args:
            adata: Combined dataset.
            grouping_field: Column defining groups.
            group_a: Value for group 1.
            group_b: Value for group 2.
            strata: Stratum selection.
            gene_panel: Genes to test (None or empty for all genes).
            output_dir: Directory for per-stratum TSV tables (None to skip writing).

        Returns:
            DERunReport with per-stratum results and failures.
        """
        comparison = f"{group_a}_vs_{group_b}"
        if grouping_field not in adata.obs.columns:
            raise KeyError(f"Grouping field '{grouping_field}' not found in cell metadata")
        if gene_panel is not None:
            gene_panel = [str(g) for g in gene_panel]

        writer = ResultWriter(Path(output_dir)) if output_dir is not None else None
        report = DERunReport(comparison=comparison)
        stratum_names = strata.enumerate(adata.obs)
        logger.info(
            "Running %s across %d strata (%s)",
            comparison, len(stratum_names), "bulk" if strata.is_bulk else strata.field,
        )

        for stratum in stratum_names:
            mask = strata.mask(adata.obs, stratum)
            subset = adata if strata.is_bulk else adata[mask]

            try:
                table, n1, n2 = self.compare(
                    subset,
                    grouping_field,
                    group_a,
                    group_b,
                    gene_panel=gene_panel,
                    n_genes_total=adata.n_vars,
                )
            except STRATUM_ERRORS as e:
                logger.warning("DE skipped for stratum '%s' (%s): %s", stratum, comparison, e)
                report.failures.append(
                    StratumFailure(
                        stratum=stratum,
                        comparison=comparison,
                        reason=str(e),
                        error_type=type(e).__name__,
                    )
                )
                continue

            result = DEResult(
                stratum=stratum,
                table=table,
                n_group1=n1,
                n_group2=n2,
                comparison=comparison,
            )
            if writer is not None:
                result.path = writer.write_stratum_table(table, stratum)
            report.results[stratum] = result
            logger.info(
                "Stratum '%s': %d genes tested (%s=%d, %s=%d)",
                stratum, result.n_tested, group_a, n1, group_b, n2,
            )

        return report

    def _resolve_features(
        self,
        adata: ad.AnnData,
        gene_panel: Optional[Sequence[str]],
    ) -> list[str]:
        if gene_panel is None or len(gene_panel) == 0:
            return list(adata.var_names)
        present = set(adata.var_names)
        features = [g for g in dict.fromkeys(gene_panel) if g in present]
        absent = [g for g in gene_panel if g not in present]
        if absent:
            logger.debug("Panel genes absent from dataset: %s", absent)
        if not features:
            raise NoFeaturesError("No panel genes present in dataset")
        return features


def run_de(
    adata: ad.AnnData,
    grouping_field: str,
    group_a: Any,
    group_b: Any,
    strata: Union[StrataSpec, str, None] = None,
    gene_panel: Optional[Sequence[str]] = None,
    min_pct: float = 0.1,
    logfc_threshold: float = 0.1,
    output_dir: Optional[Union[str, Path]] = None,
    method: Literal["hurdle", "wilcoxon"] = "hurdle",
    test: Optional[DETest] = None,
) -> DERunReport:
    """
    Convenience function for stratified DE.

    Args:
        adata: Combined dataset.
        grouping_field: Group column.
        group_a: Group 1 value.
        group_b: Group 2 value.
        strata: StrataSpec, a stratify field name, or None for bulk.
        gene_panel: Genes to test.
        min_pct: Minimum detection fraction in either group.
        logfc_threshold: Minimum absolute avg_log2FC.
        output_dir: Directory for per-stratum tables.
        method: Test method.
        test: Custom test object (overrides ``method``).

    Returns:
        DERunReport.
    """
    if strata is None:
        strata = StrataSpec.bulk()
    elif isinstance(strata, str):
        strata = StrataSpec.by_field(strata)

    diff = PanelDifferential(
        method=method,
        min_pct=min_pct,
        logfc_threshold=logfc_threshold,
        test=test,
    )
    return diff.run(
        adata,
        grouping_field,
        group_a,
        group_b,
        strata=strata,
        gene_panel=gene_panel,
        output_dir=output_dir,
    )
