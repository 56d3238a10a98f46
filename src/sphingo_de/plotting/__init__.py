"""
Visualization of DE results.

Heatmaps of binned fold changes and per-stratum expression plots.
"""

from sphingo_de.plotting.heatmap import (
    ALL_BINS,
    MISSING_COLOR,
    SIGNIFICANT_BINS,
    bin_labels,
    bin_log2fc,
    diverging_palette,
    order_axis,
    plot_log2fc_heatmap,
)
from sphingo_de.plotting.expression import plot_stratum_expression

__all__ = [
    "ALL_BINS",
    "MISSING_COLOR",
    "SIGNIFICANT_BINS",
    "bin_labels",
    "bin_log2fc",
    "diverging_palette",
    "order_axis",
    "plot_log2fc_heatmap",
    "plot_stratum_expression",
]
