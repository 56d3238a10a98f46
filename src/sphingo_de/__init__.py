"""
sphingo-de - Panel-restricted differential expression for single-cell data.

This package provides:
- Loading and merging of H5AD datasets with harmonized metadata
- Normalization and clustering (scanpy)
- Per-cell-type two-group DE with panel-restricted multiple-testing correction
- Assembly of per-stratum tables into one long table
- Heatmaps, dot plots and violin plots

Example:
    >>> from sphingo_de import Pipeline, Config
    >>>
    >>> config = Config.from_yaml("config/uc_vs_hc.yaml")
    >>> result = Pipeline(config).run()
    >>> result.significant.head()
"""

__version__ = "0.1.0"

from sphingo_de.core.config import Config, DEConfig, DatasetSpec
from sphingo_de.panel import SPHINGOSINE_PANEL
from sphingo_de.encoding import decode_stratum, encode_stratum

# Subpackages are imported as needed to avoid heavy startup cost
# Use explicit imports for specific functionality:
#   from sphingo_de.differential import run_de, StrataSpec
#   from sphingo_de.assembly import assemble, filter_significant
#   from sphingo_de.plotting import plot_log2fc_heatmap
#   from sphingo_de.ingest import load_and_merge

from sphingo_de.pipeline import Pipeline, PipelineResult, create_pipeline

__all__ = [
    # Version
    "__version__",
    # Pipeline
    "Pipeline",
    "PipelineResult",
    "create_pipeline",
    # Core
    "Config",
    "DEConfig",
    "DatasetSpec",
    "SPHINGOSINE_PANEL",
    "encode_stratum",
    "decode_stratum",
]
