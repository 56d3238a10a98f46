"""
Assembly of per-stratum DE tables into one long table.

Each per-stratum table is keyed by gene and named by the encoded stratum.
Assembly re-attaches both identities as explicit columns, restricts rows to
the gene panel, concatenates strata in order and labels the direction of
each change.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from sphingo_de.differential.fdr import PANEL_BH_COL, PANEL_BONFERRONI_COL
from sphingo_de.differential.stratified import RESULT_COLUMNS
from sphingo_de.encoding import decode_stratum
from sphingo_de.export.writer import STRATUM_SUFFIX

logger = logging.getLogger(__name__)

DIRECTION_COL = "enriched_in"


class ResultTableError(IOError):
    """A persisted per-stratum result table is missing or malformed."""


def read_result_table(path: Union[str, Path]) -> pd.DataFrame:
    """
    Read one persisted per-stratum table.

    Args:
        path: TSV written by :class:`~sphingo_de.export.ResultWriter`.

    Returns:
        Table indexed by gene.

    Raises:
        ResultTableError: If the file cannot be read or lacks result columns.
    """
    path = Path(path)
    try:
        table = pd.read_csv(path, sep="\t", index_col=0)
    except (OSError, UnicodeDecodeError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise ResultTableError(f"Cannot read result table {path}: {e}") from e

    missing = [c for c in RESULT_COLUMNS if c not in table.columns]
    if missing:
        raise ResultTableError(f"Result table {path} is missing columns {missing}")

    table.index = table.index.astype(str)
    table.index.name = "gene"
    return table


def discover_result_tables(directory: Union[str, Path]) -> dict[str, Path]:
    """
    List persisted per-stratum tables in a directory, sorted by file name.

    Returns:
        Mapping of stratum key (file stem) to path.
    """
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"Result directory not found: {directory}")
    paths = sorted(directory.glob(f"*{STRATUM_SUFFIX}"))
    return {p.name[: -len(STRATUM_SUFFIX)]: p for p in paths}


def direction_label(avg_log2fc: Union[float, np.ndarray, pd.Series], group_a: str, group_b: str):
    """``group_a`` where avg_log2FC > 0, otherwise ``group_b``."""
    return np.where(np.asarray(avg_log2fc, dtype=float) > 0, group_a, group_b)


def assemble(
    result_tables: Mapping[str, Union[str, Path, pd.DataFrame]],
    gene_panel: Optional[Sequence[str]],
    group_a: str,
    group_b: str,
) -> pd.DataFrame:
    """
    Combine per-stratum tables into one long table.

    Args:
        result_tables: Stratum key -> table or path to a persisted table.
            Iteration order sets the row order of strata.
        gene_panel: Genes to keep (None keeps every gene).
        group_a: Label for positive avg_log2FC.
        group_b: Label for non-positive avg_log2FC.

    Returns:
        Long table with ``stratum``, ``gene``, ``stratum_key``, the result
        columns and ``enriched_in``.
    """
    panel = set(gene_panel) if gene_panel is not None and len(gene_panel) > 0 else None
    frames = []

    for key, source in result_tables.items():
        if isinstance(source, pd.DataFrame):
            table = source
        else:
            table = read_result_table(source)

        try:
            stratum = decode_stratum(key)
        except ValueError as e:
            raise ResultTableError(f"Cannot recover stratum from key {key!r}: {e}") from e

        if panel is not None:
            kept = table.index.isin(panel)
            if not kept.all():
                logger.debug(
                    "Stratum '%s': dropping %d genes outside the panel", stratum, (~kept).sum()
                )
            table = table.loc[kept]

        df = table.rename_axis("gene").reset_index()
        df.insert(0, "stratum", stratum)
        df.insert(2, "stratum_key", key)
        frames.append(df)

    if not frames:
        corrections = [PANEL_BONFERRONI_COL, PANEL_BH_COL] if panel is not None else []
        return pd.DataFrame(
            columns=["stratum", "gene", "stratum_key", *RESULT_COLUMNS, *corrections, DIRECTION_COL]
        )

    long = pd.concat(frames, ignore_index=True)

    duplicated = long.duplicated(subset=["gene", "stratum"])
    if duplicated.any():
        pairs = long.loc[duplicated, ["gene", "stratum"]].to_records(index=False).tolist()
        raise ValueError(f"Duplicate (gene, stratum) pairs in results: {pairs[:5]}")

    long[DIRECTION_COL] = direction_label(long["avg_log2FC"], group_a, group_b)
    logger.info(
        "Assembled %d rows across %d strata", len(long), long["stratum"].nunique()
    )
    return long


def filter_significant(
    long: pd.DataFrame,
    alpha: float = 0.05,
    column: str = PANEL_BH_COL,
) -> pd.DataFrame:
    """
    Rows whose corrected p-value is below ``alpha``.

    Args:
        long: Output of :func:`assemble`.
        alpha: Significance threshold (strict).
        column: Corrected p-value column.

    Returns:
        Filtered copy with a fresh index.
    """
    if column not in long.columns:
        raise KeyError(
            f"Column '{column}' not in results; panel-restricted corrections "
            "are only computed when a gene panel is supplied"
        )
    return long.loc[long[column] < alpha].reset_index(drop=True)
