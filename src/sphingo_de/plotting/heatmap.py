"""
Log2 fold-change heatmaps over (gene, stratum) pairs.

Fold changes are binned on fixed boundaries and coloured on a diverging ramp;
pairs without a result are drawn in a neutral grey.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional, Sequence, Union

import matplotlib
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from matplotlib.colors import BoundaryNorm, ListedColormap, to_hex
from matplotlib.patches import Patch

logger = logging.getLogger(__name__)

# 8 bins spanning +/-0.4 for significant hits, 18 bins spanning +/-0.9 for all results
SIGNIFICANT_BINS: tuple[float, ...] = tuple(float(x) + 0.0 for x in np.round(np.linspace(-0.4, 0.4, 9), 2))
ALL_BINS: tuple[float, ...] = tuple(float(x) + 0.0 for x in np.round(np.linspace(-0.9, 0.9, 19), 2))

MISSING_COLOR = "#D9D9D9"


def bin_labels(boundaries: Sequence[float]) -> list[str]:
    """Interval labels; all bins half-open except the last, which is closed."""
    edges = list(boundaries)
    labels = [f"[{lo:g}, {hi:g})" for lo, hi in zip(edges[:-2], edges[1:-1])]
    labels.append(f"[{edges[-2]:g}, {edges[-1]:g}]")
    return labels


def bin_log2fc(
    values: Union[Sequence[float], np.ndarray, pd.Series],
    boundaries: Sequence[float],
) -> pd.Categorical:
    """
    Assign fold changes to bins.

    Values outside the boundaries fall into the first or last bin; NaN stays
    missing.

    Args:
        values: avg_log2FC values.
        boundaries: Strictly increasing bin edges (at least two).

    Returns:
        Ordered categorical of bin labels.
    """
    edges = np.asarray(boundaries, dtype=float)
    if edges.size < 2 or np.any(np.diff(edges) <= 0):
        raise ValueError("Bin boundaries must be strictly increasing with at least two edges")

    v = np.asarray(values, dtype=float)
    clipped = np.clip(v, edges[0], edges[-1])
    idx = np.searchsorted(edges, clipped, side="right") - 1
    idx = np.minimum(idx, edges.size - 2)
    codes = np.where(np.isnan(v), -1, idx)
    return pd.Categorical.from_codes(codes, categories=bin_labels(edges), ordered=True)


def diverging_palette(n: int, cmap: str = "RdBu_r") -> list[str]:
    """``n`` hex colours sampled evenly from a diverging colormap."""
    if n < 1:
        raise ValueError("Palette needs at least one colour")
    ramp = matplotlib.colormaps[cmap]
    return [to_hex(ramp(x)) for x in np.linspace(0.0, 1.0, n)]


def order_axis(present: Iterable[str], preferred: Optional[Sequence[str]]) -> list[str]:
    """Preferred order restricted to present labels, then unknown labels sorted."""
    present = list(dict.fromkeys(present))
    if not preferred:
        return present
    present_set = set(present)
    ordered = [x for x in dict.fromkeys(preferred) if x in present_set]
    extras = sorted(present_set.difference(ordered))
    return ordered + extras


def plot_log2fc_heatmap(
    long: pd.DataFrame,
    path: Union[str, Path],
    boundaries: Sequence[float] = ALL_BINS,
    gene_order: Optional[Sequence[str]] = None,
    stratum_order: Optional[Sequence[str]] = None,
    annotate_column: Optional[str] = None,
    alpha: float = 0.05,
    title: Optional[str] = None,
    dpi: int = 300,
) -> Optional[Path]:
    """
    Draw a gene x stratum tile grid coloured by binned avg_log2FC.

    Args:
        long: Long table with ``gene``, ``stratum`` and ``avg_log2FC``.
        path: Output image path.
        boundaries: Bin edges.
        gene_order: Row order.
        stratum_order: Column order.
        annotate_column: Mark tiles where this column is below ``alpha``.
        alpha: Threshold for annotation.
        title: Figure title.
        dpi: Image resolution.

    Returns:
        Path to the image, or None when there is nothing to draw.
    """
    if long.empty:
        logger.warning("No rows to draw for %s; skipping heatmap", path)
        return None

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    genes = order_axis(long["gene"], gene_order)
    strata = order_axis(long["stratum"], stratum_order)
    gene_pos = {g: i for i, g in enumerate(genes)}
    stratum_pos = {s: j for j, s in enumerate(strata)}

    bins = bin_log2fc(long["avg_log2FC"], boundaries)
    n_bins = len(bins.categories)
    rows = long["gene"].map(gene_pos).to_numpy()
    cols = long["stratum"].map(stratum_pos).to_numpy()

    # 0 = missing, 1..n_bins = fold-change bins
    grid = np.zeros((len(genes), len(strata)), dtype=int)
    grid[rows, cols] = np.asarray(bins.codes) + 1

    palette = diverging_palette(n_bins)
    cmap = ListedColormap([MISSING_COLOR] + palette)
    norm = BoundaryNorm(np.arange(-0.5, n_bins + 1.5), cmap.N)

    fig, ax = plt.subplots(
        figsize=(max(4.0, 0.35 * len(strata) + 3.0), max(3.0, 0.3 * len(genes) + 1.5))
    )
    ax.imshow(grid, cmap=cmap, norm=norm, aspect="auto", interpolation="nearest")

    ax.set_xticks(np.arange(len(strata)))
    ax.set_xticklabels(strata, rotation=90, fontsize=8)
    ax.set_yticks(np.arange(len(genes)))
    ax.set_yticklabels(genes, fontsize=8)
    ax.set_xticks(np.arange(-0.5, len(strata)), minor=True)
    ax.set_yticks(np.arange(-0.5, len(genes)), minor=True)
    ax.grid(which="minor", color="white", linewidth=0.5)
    ax.tick_params(which="minor", length=0)

    if annotate_column is not None and annotate_column in long.columns:
        significant = (long[annotate_column] < alpha).to_numpy()
        for r, c in zip(rows[significant], cols[significant]):
            ax.text(c, r, "*", ha="center", va="center", fontsize=8, color="black")

    handles = [Patch(facecolor=MISSING_COLOR, label="not tested")]
    handles += [
        Patch(facecolor=color, label=label)
        for color, label in zip(palette, bins.categories)
    ]
    ax.legend(
        handles=handles[::-1],
        title="avg_log2FC",
        bbox_to_anchor=(1.02, 1.0),
        loc="upper left",
        fontsize=7,
        title_fontsize=8,
        frameon=False,
    )
    if title:
        ax.set_title(title)

    fig.savefig(path, dpi=dpi, bbox_inches="tight")
    plt.close(fig)
    logger.info("Saved heatmap %s (%d genes x %d strata)", path, len(genes), len(strata))
    return path
