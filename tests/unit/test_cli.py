"""Unit tests for the sphingo-de CLI.

Tests parser construction, argument handling, and command dispatch.
"""

from __future__ import annotations

import pytest
from unittest.mock import patch, MagicMock
from pathlib import Path

import numpy as np
import pandas as pd

from sphingo_de.cli import build_parser, main, cmd_assemble, cmd_plot, cmd_run


# ===========================================================================
# Parser construction
# ===========================================================================

class TestBuildParser:
    """Tests for argument parser construction."""

    def test_parser_has_all_subcommands(self):
        parser = build_parser()
        subparsers_action = None
        for action in parser._subparsers._actions:
            if hasattr(action, "_parser_class"):
                subparsers_action = action
                break
        assert subparsers_action is not None
        assert set(subparsers_action.choices.keys()) == {"run", "de", "assemble", "plot"}

    def test_no_command_returns_zero(self):
        """No subcommand should print help and return 0."""
        assert main([]) == 0

    def test_verbose_flag(self):
        parser = build_parser()
        args = parser.parse_args(["--verbose", "run", "--config", "c.yaml"])
        assert args.verbose is True

    def test_log_file_flag(self):
        parser = build_parser()
        args = parser.parse_args(["--log-file", "/tmp/test.log", "run", "--config", "c.yaml"])
        assert args.log_file == "/tmp/test.log"


# ===========================================================================
# Subcommand argument parsing
# ===========================================================================

class TestSubcommandArgs:
    """Tests for individual subcommand argument parsing."""

    def test_de_defaults(self):
        parser = build_parser()
        args = parser.parse_args(["de", "--input", "x.h5ad", "-o", "out"])
        assert args.group_field == "disease"
        assert args.group_a == "UC"
        assert args.group_b == "HC"
        assert args.stratify_field == "cell_type"
        assert args.bulk is False
        assert args.panel is None
        assert args.all_genes is False
        assert args.min_pct == 0.1
        assert args.logfc_threshold == 0.1
        assert args.method == "hurdle"

    def test_de_requires_output(self):
        parser = build_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["de", "--input", "x.h5ad"])

    def test_de_panel_and_all_genes_exclusive(self):
        parser = build_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["de", "-i", "x.h5ad", "-o", "o", "--panel", "SPHK1", "--all-genes"])

    def test_de_bulk_and_field_exclusive(self):
        parser = build_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(
                ["de", "-i", "x.h5ad", "-o", "o", "--bulk", "--stratify-field", "cluster"]
            )

    def test_de_method_choices(self):
        parser = build_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["de", "-i", "x.h5ad", "-o", "o", "--method", "t-test"])

    def test_assemble_multiple_inputs(self):
        parser = build_parser()
        args = parser.parse_args(["assemble", "--input", "de", "de_bulk", "--alpha", "0.01"])
        assert args.input == ["de", "de_bulk"]
        assert args.alpha == 0.01

    def test_plot_args(self):
        parser = build_parser()
        args = parser.parse_args(
            ["plot", "--results", "r.csv", "--significant", "--annotate", "p_val_BH"]
        )
        assert args.significant is True
        assert args.annotate == "p_val_BH"


# ===========================================================================
# Command dispatch
# ===========================================================================

class TestDispatch:
    """Tests that main() routes to the right handler."""

    @patch("sphingo_de.cli._setup_logging")
    def test_dispatch_calls_func(self, mock_logging):
        handler = MagicMock(return_value=0)
        parser = build_parser()
        args = parser.parse_args(["run", "--config", "c.yaml"])
        args.func = handler

        with patch("sphingo_de.cli.build_parser") as mock_build:
            mock_build.return_value.parse_args.return_value = args
            assert main(["run", "--config", "c.yaml"]) == 0

        handler.assert_called_once_with(args)

    @patch("sphingo_de.cli._setup_logging")
    def test_de_forwards_options(self, mock_logging, tmp_path):
        report = MagicMock()
        report.results = {"bulk": object()}
        report.summary.return_value = {
            "comparison": "UC_vs_HC", "n_strata_tested": 1, "n_strata_failed": 0,
        }

        with patch("sphingo_de.ingest.load_dataset") as mock_load, \
                patch("sphingo_de.differential.run_de", return_value=report) as mock_run:
            rc = main(["de", "-i", "x.h5ad", "--bulk", "--panel", "SPHK1", "S1PR1",
                       "-o", str(tmp_path)])

        assert rc == 0
        mock_load.assert_called_once_with("x.h5ad", layer=None)
        kwargs = mock_run.call_args.kwargs
        assert kwargs["strata"].is_bulk
        assert kwargs["gene_panel"] == ["SPHK1", "S1PR1"]
        assert kwargs["output_dir"] == str(tmp_path)

    @patch("sphingo_de.cli._setup_logging")
    def test_de_no_results_fails(self, mock_logging, tmp_path):
        report = MagicMock()
        report.results = {}
        report.summary.return_value = {
            "comparison": "UC_vs_HC", "n_strata_tested": 0, "n_strata_failed": 3,
        }

        with patch("sphingo_de.ingest.load_dataset"), \
                patch("sphingo_de.differential.run_de", return_value=report):
            assert main(["de", "-i", "x.h5ad", "--all-genes", "-o", str(tmp_path)]) == 1


# ===========================================================================
# Command handlers
# ===========================================================================

def _write_tables(out_dir: Path) -> None:
    from sphingo_de.export import ResultWriter

    writer = ResultWriter(out_dir)
    for stratum, lfc in (("bulk", 0.3), ("CD4+ Memory", -0.2)):
        table = pd.DataFrame(
            {
                "p_val": [0.001, 0.3],
                "avg_log2FC": [lfc, 0.05],
                "pct.1": [0.5, 0.4],
                "pct.2": [0.3, 0.4],
                "p_val_adj": [0.02, 1.0],
                "p_val_bonferroni": [0.002, 0.6],
                "p_val_BH": [0.002, 0.3],
            },
            index=pd.Index(["SPHK1", "S1PR1"], name="gene"),
        )
        writer.write_stratum_table(table, stratum)


class TestCmdRun:
    """Tests for the run command handler."""

    def test_missing_config(self, tmp_path):
        args = MagicMock(config=str(tmp_path / "absent.yaml"), output=None)
        assert cmd_run(args) == 1

    @patch("sphingo_de.cli._setup_logging")
    def test_no_datasets(self, mock_logging, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text("output_dir: out\n")
        args = MagicMock(config=str(path), output=None, verbose=False, log_file=None)
        assert cmd_run(args) == 1
        mock_logging.assert_not_called()

    @patch("sphingo_de.cli._setup_logging")
    def test_config_logging_applied(self, mock_logging, tmp_path):
        log_path = tmp_path / "run.log"
        path = tmp_path / "c.yaml"
        path.write_text(f"output_dir: out\nverbose: true\nlog_file: {log_path}\n")
        args = MagicMock(config=str(path), output=None, verbose=False, log_file=None)

        cmd_run(args)

        mock_logging.assert_called_once_with(
            verbose=True, log_file=str(log_path), force=True
        )

    @patch("sphingo_de.cli._setup_logging")
    def test_command_line_log_file_wins(self, mock_logging, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text(f"output_dir: out\nlog_file: {tmp_path / 'config.log'}\n")
        args = MagicMock(config=str(path), output=None, verbose=True, log_file="cli.log")

        cmd_run(args)

        mock_logging.assert_called_once_with(verbose=True, log_file="cli.log", force=True)


class TestCmdAssemble:
    """Tests for the assemble command handler."""

    def test_writes_combined_and_significant(self, tmp_path):
        _write_tables(tmp_path / "de")
        args = MagicMock(
            input=[str(tmp_path / "de")], group_a="UC", group_b="HC",
            all_genes=False, panel=None, alpha=0.05, output=str(tmp_path / "out"),
        )

        assert cmd_assemble(args) == 0

        combined = pd.read_csv(tmp_path / "out" / "combined_results.csv")
        significant = pd.read_csv(tmp_path / "out" / "combined_results_significant.csv")
        assert len(combined) == 4
        assert set(combined["stratum"]) == {"bulk", "CD4+ Memory"}
        assert list(significant["gene"]) == ["SPHK1", "SPHK1"]
        assert set(significant["enriched_in"]) == {"UC", "HC"}

    def test_multiple_directories(self, tmp_path):
        _write_tables(tmp_path / "de")
        (tmp_path / "de_bulk").mkdir()
        (tmp_path / "de" / "bulk.tsv").rename(tmp_path / "de_bulk" / "bulk.tsv")
        args = MagicMock(
            input=[str(tmp_path / "de_bulk"), str(tmp_path / "de")], group_a="UC",
            group_b="HC", all_genes=False, panel=None, alpha=0.05,
            output=str(tmp_path / "out"),
        )

        assert cmd_assemble(args) == 0

        combined = pd.read_csv(tmp_path / "out" / "combined_results.csv")
        assert list(combined["stratum"].unique()) == ["bulk", "CD4+ Memory"]

    def test_duplicate_key_across_directories_fails(self, tmp_path):
        _write_tables(tmp_path / "run1")
        _write_tables(tmp_path / "run2")
        args = MagicMock(
            input=[str(tmp_path / "run1"), str(tmp_path / "run2")], group_a="UC",
            group_b="HC", all_genes=False, panel=None, alpha=0.05,
            output=str(tmp_path / "out"),
        )

        assert cmd_assemble(args) == 1
        assert not (tmp_path / "out" / "combined_results.csv").exists()

    def test_empty_directory_fails(self, tmp_path):
        (tmp_path / "de").mkdir()
        args = MagicMock(
            input=[str(tmp_path / "de")], group_a="UC", group_b="HC",
            all_genes=False, panel=None, alpha=0.05, output=str(tmp_path),
        )
        assert cmd_assemble(args) == 1


class TestCmdPlot:
    """Tests for the plot command handler."""

    def test_missing_results(self, tmp_path):
        args = MagicMock(results=str(tmp_path / "absent.csv"), output=str(tmp_path))
        assert cmd_plot(args) == 1

    def test_heatmap_written(self, tmp_path):
        pd.DataFrame(
            {
                "stratum": ["bulk", "CD4+ Memory"],
                "gene": ["SPHK1", "SPHK1"],
                "avg_log2FC": [0.3, np.nan],
                "p_val_BH": [0.01, 0.5],
            }
        ).to_csv(tmp_path / "combined_results.csv", index=False)
        args = MagicMock(
            results=str(tmp_path / "combined_results.csv"), significant=False,
            annotate="p_val_BH", output=str(tmp_path / "figs"),
        )

        assert cmd_plot(args) == 0
        assert (tmp_path / "figs" / "combined_results_heatmap.png").exists()
