"""
Main Pipeline class that orchestrates loading, DE, assembly and plotting.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
import logging

import anndata as ad
import pandas as pd

from sphingo_de.assembly import assemble, filter_significant
from sphingo_de.core.config import Config
from sphingo_de.differential.fdr import PANEL_BH_COL
from sphingo_de.differential.stratified import DERunReport, PanelDifferential, StrataSpec
from sphingo_de.export.writer import ResultWriter
from sphingo_de.ingest.merge import load_and_merge
from sphingo_de.plotting.expression import plot_stratum_expression
from sphingo_de.plotting.heatmap import ALL_BINS, SIGNIFICANT_BINS, plot_log2fc_heatmap
from sphingo_de.preprocess import preprocess

logger = logging.getLogger(__name__)

COMBINED_FILE = "combined_results.csv"
SIGNIFICANT_FILE = "combined_results_significant.csv"


@dataclass
class PipelineResult:
    """Result of pipeline execution."""

    combined: Optional[pd.DataFrame] = None
    significant: Optional[pd.DataFrame] = None
    reports: dict[str, DERunReport] = field(default_factory=dict)
    output_paths: dict[str, Path] = field(default_factory=dict)
    metrics: dict[str, Any] = field(default_factory=dict)


class Pipeline:
    """Panel DE pipeline.

    Example:
        >>> from sphingo_de import Pipeline, Config
        >>>
        >>> config = Config.from_yaml("config/uc_vs_hc.yaml")
        >>> result = Pipeline(config).run()
        >>> result.significant.head()
    """

    def __init__(self, config: Optional[Config] = None):
        """Initialize pipeline.

        Parameters
        ----------
        config : Config, optional
            Pipeline configuration
        """
        self.config = config or Config()
        de = self.config.de
        self.differential = PanelDifferential(
            method=de.method,
            min_pct=de.min_pct,
            logfc_threshold=de.logfc_threshold,
            min_cells_group=de.min_cells_group,
            layer=de.layer,
        )

    def run(self, adata: Optional[ad.AnnData] = None) -> PipelineResult:
        """Run the full pipeline.

        Parameters
        ----------
        adata : AnnData, optional
            Combined dataset; loaded from the configured datasets if omitted

        Returns
        -------
        PipelineResult
            Tables, per-run reports, output paths and metrics
        """
        cfg = self.config
        de = cfg.de
        result = PipelineResult()

        if adata is None:
            logger.info("Loading %d datasets", len(cfg.datasets))
            adata = load_and_merge(
                cfg.datasets, fields=[de.grouping_field, de.stratify_field]
            )

        if cfg.preprocess.enabled:
            logger.info("Normalizing and clustering")
            preprocess(adata, cfg.preprocess, seed=cfg.seed)

        result.reports = self.run_differential(adata)

        tables: dict[str, Path] = {}
        for report in result.reports.values():
            for key, path in report.paths.items():
                if key in tables:
                    raise ValueError(f"Stratum key '{key}' produced by more than one DE run")
                tables[key] = path

        result.combined = assemble(tables, de.gene_panel, de.group_a, de.group_b)
        if de.gene_panel:
            result.significant = filter_significant(result.combined, alpha=de.alpha)
        else:
            result.significant = result.combined.loc[
                result.combined["p_val_adj"] < de.alpha
            ].reset_index(drop=True)

        writer = ResultWriter(cfg.output_dir)
        result.output_paths["combined"] = writer.write_long_table(result.combined, COMBINED_FILE)
        result.output_paths["significant"] = writer.write_long_table(
            result.significant, SIGNIFICANT_FILE
        )
        failures = pd.concat(
            [r.failures_frame() for r in result.reports.values()], ignore_index=True
        )
        result.output_paths["failures"] = writer.write_failures(failures)

        if cfg.plot.enabled:
            result.output_paths.update(self.plot(adata, result))

        result.metrics = self._compute_metrics(result)
        logger.info("Pipeline complete: %s", result.metrics)
        return result

    def run_differential(self, adata: ad.AnnData) -> dict[str, DERunReport]:
        """Run DE on the bulk pseudo-stratum and per stratum."""
        cfg = self.config
        de = cfg.de
        runs = []
        if de.run_bulk:
            runs.append(("bulk", StrataSpec.bulk(), cfg.bulk_dir))
        runs.append(
            (de.stratify_field, StrataSpec.by_field(de.stratify_field, de.strata), cfg.de_dir)
        )

        reports = {}
        for name, strata, out_dir in runs:
            reports[name] = self.differential.run(
                adata,
                grouping_field=de.grouping_field,
                group_a=de.group_a,
                group_b=de.group_b,
                strata=strata,
                gene_panel=de.gene_panel,
                output_dir=out_dir,
            )
        return reports

    def plot(self, adata: ad.AnnData, result: PipelineResult) -> dict[str, Path]:
        """Render heatmaps and per-stratum expression plots."""
        cfg = self.config
        plot = cfg.plot
        fig_dir = cfg.figures_dir
        bh = PANEL_BH_COL if PANEL_BH_COL in result.combined.columns else "p_val_adj"
        paths: dict[str, Path] = {}

        heatmaps = [
            ("heatmap_significant", result.significant, SIGNIFICANT_BINS,
             plot.stratum_order_significant, None),
            ("heatmap_all", result.combined, ALL_BINS, plot.stratum_order_all, None),
            ("heatmap_all_annotated", result.combined, ALL_BINS, plot.stratum_order_all, bh),
        ]
        for name, table, bins, order, annotate in heatmaps:
            path = plot_log2fc_heatmap(
                table,
                fig_dir / f"{name}.png",
                boundaries=bins,
                gene_order=plot.gene_order,
                stratum_order=order,
                annotate_column=annotate,
                alpha=cfg.de.alpha,
                title=f"{cfg.de.group_a} vs {cfg.de.group_b}",
                dpi=plot.dpi,
            )
            if path is not None:
                paths[name] = path

        if plot.per_stratum_plots:
            genes = plot.gene_order or list(cfg.de.gene_panel or [])
            group_order = [cfg.de.group_a, cfg.de.group_b]
            for run_name, report in result.reports.items():
                strata = (
                    StrataSpec.bulk() if run_name == "bulk"
                    else StrataSpec.by_field(cfg.de.stratify_field)
                )
                for stratum in report.results:
                    plot_stratum_expression(
                        adata,
                        stratum,
                        genes,
                        cfg.de.grouping_field,
                        fig_dir / "per_stratum",
                        strata=strata,
                        group_order=group_order,
                        dpi=plot.dpi,
                    )
            paths["per_stratum"] = fig_dir / "per_stratum"

        return paths

    def _compute_metrics(self, result: PipelineResult) -> dict[str, Any]:
        metrics: dict[str, Any] = {}
        for name, report in result.reports.items():
            summary = report.summary()
            metrics[f"{name}_strata_tested"] = summary["n_strata_tested"]
            metrics[f"{name}_strata_failed"] = summary["n_strata_failed"]
        metrics["n_rows"] = 0 if result.combined is None else len(result.combined)
        metrics["n_significant"] = 0 if result.significant is None else len(result.significant)
        return metrics


def create_pipeline(config_path: Optional[Path] = None, **overrides) -> Pipeline:
    """Create a pipeline from a YAML config file and keyword overrides."""
    config = Config.from_yaml(config_path) if config_path else Config()
    for key, value in overrides.items():
        if not hasattr(config, key):
            raise AttributeError(f"Unknown config option: {key}")
        setattr(config, key, value)
    config.__post_init__()
    return Pipeline(config)
