"""
Tabular writers for DE results.

Per-stratum tables are tab-separated and keyed by gene; combined long tables
are comma-separated without an index.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import pandas as pd

from sphingo_de.encoding import encode_stratum

STRATUM_SUFFIX = ".tsv"


class ResultWriter:
    """Writes DE result tables under one output directory."""

    def __init__(
        self,
        output_dir: Path,
        float_format: Optional[str] = None,
    ):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.float_format = float_format

    def stratum_path(self, stratum: str) -> Path:
        """Path of the table for ``stratum`` (encoded file name)."""
        return self.output_dir / f"{encode_stratum(stratum)}{STRATUM_SUFFIX}"

    def write_stratum_table(self, table: pd.DataFrame, stratum: str) -> Path:
        """Write one stratum's result table, indexed by gene.

        Parameters
        ----------
        table : pd.DataFrame
            DE result table indexed by gene
        stratum : str
            Stratum label (encoded for the file name)

        Returns
        -------
        Path
            Path to written file
        """
        path = self.stratum_path(stratum)
        table.to_csv(
            path,
            sep="\t",
            index=True,
            index_label="gene",
            float_format=self.float_format,
        )
        return path

    def write_long_table(self, df: pd.DataFrame, filename: str) -> Path:
        """Write a combined long-format table as CSV."""
        path = self.output_dir / filename
        df.to_csv(path, index=False, float_format=self.float_format)
        return path

    def write_failures(self, failures: pd.DataFrame, filename: str = "failures.tsv") -> Path:
        """Write the list of strata skipped during DE."""
        path = self.output_dir / filename
        failures.to_csv(path, sep="\t", index=False)
        return path
