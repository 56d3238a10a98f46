"""
Command-line interface for sphingo-de.

Usage:
    sphingo-de run --config config/uc_vs_hc.yaml
    sphingo-de de --input combined.h5ad --group-a UC --group-b HC -o results/de
    sphingo-de assemble --input results/de --group-a UC --group-b HC -o results
    sphingo-de plot --results results/combined_results.csv -o results/figures
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

logger = logging.getLogger("sphingo_de")


def _setup_logging(
    verbose: bool = False,
    log_file: Optional[str] = None,
    force: bool = False,
) -> None:
    """Configure logging for CLI."""
    level = logging.DEBUG if verbose else logging.INFO
    fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=force)


def _use_agg_backend() -> None:
    import matplotlib
    matplotlib.use("Agg")


def cmd_run(args: argparse.Namespace) -> int:
    """Run the full pipeline from a YAML config file."""
    from sphingo_de.core.config import Config
    from sphingo_de.pipeline import Pipeline

    config_path = Path(args.config)
    if not config_path.exists():
        logger.error("Config file not found: %s", config_path)
        return 1

    config = Config.from_yaml(config_path)
    if config.verbose or config.log_file:
        # Config file settings extend the command-line flags
        _setup_logging(
            verbose=config.verbose or bool(args.verbose),
            log_file=args.log_file or (str(config.log_file) if config.log_file else None),
            force=True,
        )
    if args.output:
        config.output_dir = Path(args.output)
    if not config.datasets:
        logger.error("No datasets configured in %s", config_path)
        return 1

    _use_agg_backend()
    result = Pipeline(config).run()
    logger.info("Results written to %s", config.output_dir)
    for name, path in result.output_paths.items():
        logger.info("  %s: %s", name, path)
    return 0


def cmd_de(args: argparse.Namespace) -> int:
    """Run stratified DE on one H5AD file."""
    from sphingo_de.differential import StrataSpec, run_de
    from sphingo_de.ingest import load_dataset
    from sphingo_de.panel import SPHINGOSINE_PANEL

    adata = load_dataset(args.input, layer=args.layer)

    if args.bulk:
        strata = StrataSpec.bulk()
    else:
        strata = StrataSpec.by_field(args.stratify_field, args.strata)

    if args.all_genes:
        panel = None
    else:
        panel = args.panel or list(SPHINGOSINE_PANEL)

    report = run_de(
        adata,
        grouping_field=args.group_field,
        group_a=args.group_a,
        group_b=args.group_b,
        strata=strata,
        gene_panel=panel,
        min_pct=args.min_pct,
        logfc_threshold=args.logfc_threshold,
        output_dir=args.output,
        method=args.method,
    )

    summary = report.summary()
    logger.info(
        "%s: %d strata tested, %d skipped",
        summary["comparison"], summary["n_strata_tested"], summary["n_strata_failed"],
    )
    if not report.results:
        logger.error("No stratum could be tested")
        return 1
    return 0


def cmd_assemble(args: argparse.Namespace) -> int:
    """Assemble per-stratum tables from one or more directories."""
    from sphingo_de.assembly import assemble, discover_result_tables, filter_significant
    from sphingo_de.export import ResultWriter
    from sphingo_de.panel import SPHINGOSINE_PANEL

    tables: dict[str, Path] = {}
    for directory in args.input:
        for key, path in discover_result_tables(directory).items():
            if key in tables:
                logger.error(
                    "Stratum key '%s' found in both %s and %s",
                    key, tables[key].parent, path.parent,
                )
                return 1
            tables[key] = path
    if not tables:
        logger.error("No result tables found in %s", ", ".join(args.input))
        return 1

    panel = None if args.all_genes else (args.panel or list(SPHINGOSINE_PANEL))
    combined = assemble(tables, panel, args.group_a, args.group_b)

    writer = ResultWriter(Path(args.output or "."))
    writer.write_long_table(combined, "combined_results.csv")
    if panel:
        significant = filter_significant(combined, alpha=args.alpha)
        writer.write_long_table(significant, "combined_results_significant.csv")
        logger.info("%d of %d rows significant", len(significant), len(combined))
    logger.info("Assembled %d tables into %s", len(tables), writer.output_dir)
    return 0


def cmd_plot(args: argparse.Namespace) -> int:
    """Render heatmaps from a combined results CSV."""
    import pandas as pd

    _use_agg_backend()
    from sphingo_de.plotting import ALL_BINS, SIGNIFICANT_BINS, plot_log2fc_heatmap
    from sphingo_de.panel import SPHINGOSINE_PANEL, STRATUM_ORDER_ALL, STRATUM_ORDER_SIGNIFICANT

    results_path = Path(args.results)
    if not results_path.exists():
        logger.error("Results file not found: %s", results_path)
        return 1

    combined = pd.read_csv(results_path)
    out_dir = Path(args.output or ".")

    if args.significant:
        bins, order = SIGNIFICANT_BINS, STRATUM_ORDER_SIGNIFICANT
    else:
        bins, order = ALL_BINS, STRATUM_ORDER_ALL

    path = plot_log2fc_heatmap(
        combined,
        out_dir / f"{results_path.stem}_heatmap.png",
        boundaries=bins,
        gene_order=list(SPHINGOSINE_PANEL),
        stratum_order=list(order),
        annotate_column=args.annotate,
    )
    if path is None:
        logger.error("Nothing to plot in %s", results_path)
        return 1
    logger.info("Heatmap saved to %s", path)
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="sphingo-de",
        description="Panel-restricted per-cell-type differential expression",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("--log-file", type=str, help="Log file path")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # --- run ---
    p_run = subparsers.add_parser("run", help="Run full pipeline from YAML config")
    p_run.add_argument("--config", required=True, help="Pipeline YAML config file")
    p_run.add_argument("--output", "-o", help="Output directory")
    p_run.set_defaults(func=cmd_run)

    # --- de ---
    p_de = subparsers.add_parser("de", help="Stratified DE on one H5AD file")
    p_de.add_argument("--input", "-i", required=True, help="Input H5AD file")
    p_de.add_argument("--layer", help="Expression layer (default .X)")
    p_de.add_argument("--group-field", default="disease", help="Grouping column")
    p_de.add_argument("--group-a", default="UC", help="First group value")
    p_de.add_argument("--group-b", default="HC", help="Second group value")
    strata = p_de.add_mutually_exclusive_group()
    strata.add_argument("--stratify-field", default="cell_type", help="Stratification column")
    strata.add_argument("--bulk", action="store_true", help="Test all cells as one stratum")
    p_de.add_argument("--strata", nargs="+", help="Only test these strata")
    genes = p_de.add_mutually_exclusive_group()
    genes.add_argument("--panel", nargs="+", help="Genes to test (default: sphingosine panel)")
    genes.add_argument("--all-genes", action="store_true", help="Test the whole transcriptome")
    p_de.add_argument("--min-pct", type=float, default=0.1)
    p_de.add_argument("--logfc-threshold", type=float, default=0.1)
    p_de.add_argument("--method", default="hurdle", choices=["hurdle", "wilcoxon"])
    p_de.add_argument("--output", "-o", required=True, help="Output directory")
    p_de.set_defaults(func=cmd_de)

    # --- assemble ---
    p_asm = subparsers.add_parser("assemble", help="Combine per-stratum tables")
    p_asm.add_argument("--input", "-i", nargs="+", required=True, help="Result directories")
    p_asm.add_argument("--group-a", default="UC", help="Label for positive log2FC")
    p_asm.add_argument("--group-b", default="HC", help="Label for non-positive log2FC")
    genes = p_asm.add_mutually_exclusive_group()
    genes.add_argument("--panel", nargs="+", help="Genes to keep (default: sphingosine panel)")
    genes.add_argument("--all-genes", action="store_true", help="Keep every gene")
    p_asm.add_argument("--alpha", type=float, default=0.05)
    p_asm.add_argument("--output", "-o", help="Output directory")
    p_asm.set_defaults(func=cmd_assemble)

    # --- plot ---
    p_plot = subparsers.add_parser("plot", help="Heatmap of combined results")
    p_plot.add_argument("--results", required=True, help="Combined results CSV")
    p_plot.add_argument("--significant", action="store_true",
                        help="Use the significant-only bins and stratum order")
    p_plot.add_argument("--annotate", help="Mark tiles where this column is below 0.05")
    p_plot.add_argument("--output", "-o", help="Output directory")
    p_plot.set_defaults(func=cmd_plot)

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    _setup_logging(verbose=args.verbose, log_file=args.log_file)

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
