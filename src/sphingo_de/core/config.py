"""
Pipeline configuration management.

Provides dataclass-based configuration with validation and serialization.
"""

from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional, Literal, Any
import os

import yaml

from sphingo_de.panel import (
    SPHINGOSINE_PANEL,
    STRATUM_ORDER_ALL,
    STRATUM_ORDER_SIGNIFICANT,
)


@dataclass
class DatasetSpec:
    """One input dataset and how its metadata maps onto shared field names."""

    name: str
    """Provenance tag written to the merged metadata."""

    path: Path
    """Path to the H5AD file."""

    column_map: dict[str, str] = field(default_factory=dict)
    """Rename map applied to obs columns (source name -> shared name)."""

    def __post_init__(self):
        self.path = Path(self.path)


@dataclass
class DEConfig:
    """Differential expression configuration."""

    grouping_field: str = "disease"
    """Metadata column defining the two compared groups."""

    group_a: str = "UC"
    """Group 1 (positive log2FC means higher in this group)."""

    group_b: str = "HC"
    """Group 2 (reference)."""

    stratify_field: str = "cell_type"
    """Metadata column partitioning cells before testing."""

    strata: Optional[list[str]] = None
    """Allow-list of strata (None tests every stratum present)."""

    run_bulk: bool = True
    """Also test all cells as a single bulk pseudo-stratum."""

    gene_panel: Optional[list[str]] = field(
        default_factory=lambda: list(SPHINGOSINE_PANEL)
    )
    """Genes to test (None or empty tests the whole transcriptome)."""

    min_pct: float = 0.1
    """Minimum detection fraction in either group for a gene to be tested."""

    logfc_threshold: float = 0.1
    """Minimum absolute avg_log2FC for a gene to be tested."""

    min_cells_group: int = 3
    """Minimum cells per group within a stratum."""

    method: Literal["hurdle", "wilcoxon"] = "hurdle"
    """Two-group test."""

    layer: Optional[str] = None
    """Expression layer used for testing (None for .X, log-normalized)."""

    alpha: float = 0.05
    """Significance threshold on the panel-restricted BH p-value."""

    def __post_init__(self):
        if not 0.0 <= self.min_pct <= 1.0:
            raise ValueError(f"min_pct must be in [0, 1], got {self.min_pct}")
        if self.logfc_threshold < 0:
            raise ValueError(
                f"logfc_threshold must be non-negative, got {self.logfc_threshold}"
            )
        if self.group_a == self.group_b:
            raise ValueError("group_a and group_b must differ")


@dataclass
class PreprocessConfig:
    """Normalization and clustering configuration."""

    enabled: bool = True
    """Run normalization/clustering after merging."""

    target_sum: float = 1e4
    """Library size after total-count normalization."""

    n_top_genes: int = 2000
    """Highly variable genes used for PCA."""

    n_pcs: int = 30
    """Principal components."""

    n_neighbors: int = 15
    """Neighbors in the kNN graph."""

    resolution: float = 0.8
    """Leiden resolution."""


@dataclass
class PlotConfig:
    """Plotting configuration."""

    enabled: bool = True
    """Render heatmaps and per-stratum plots."""

    gene_order: list[str] = field(default_factory=lambda: list(SPHINGOSINE_PANEL))
    """Heatmap row order."""

    stratum_order_all: list[str] = field(
        default_factory=lambda: list(STRATUM_ORDER_ALL)
    )
    """Heatmap column order for all results."""

    stratum_order_significant: list[str] = field(
        default_factory=lambda: list(STRATUM_ORDER_SIGNIFICANT)
    )
    """Heatmap column order for significant results."""

    per_stratum_plots: bool = True
    """Render a dot plot and a violin plot per stratum."""

    dpi: int = 300
    """Resolution of saved figures."""


@dataclass
class Config:
    """
    Main pipeline configuration.

    Example:
        >>> config = Config.from_yaml("config/uc_vs_hc.yaml")
        >>> pipeline = Pipeline(config)
    """

    datasets: list[DatasetSpec] = field(default_factory=list)
    """Input datasets to merge."""

    output_dir: Path = Path("results")
    """Base output directory."""

    seed: int = 0
    """Random seed for PCA, Leiden and UMAP."""

    # Sub-configurations
    de: DEConfig = field(default_factory=DEConfig)
    preprocess: PreprocessConfig = field(default_factory=PreprocessConfig)
    plot: PlotConfig = field(default_factory=PlotConfig)

    # Logging
    verbose: bool = False
    """Enable verbose logging."""

    log_file: Optional[Path] = None
    """Log file path."""

    def __post_init__(self):
        """Normalize paths."""
        self.output_dir = Path(self.output_dir)
        if self.log_file is not None:
            self.log_file = Path(self.log_file)

    @property
    def de_dir(self) -> Path:
        """Directory holding per-stratum result tables."""
        return self.output_dir / "de"

    @property
    def bulk_dir(self) -> Path:
        """Directory holding the bulk result table."""
        return self.output_dir / "de_bulk"

    @property
    def figures_dir(self) -> Path:
        """Directory holding figures."""
        return self.output_dir / "figures"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        d = asdict(self)
        d["output_dir"] = str(self.output_dir)
        d["log_file"] = str(self.log_file) if self.log_file is not None else None
        for ds in d["datasets"]:
            ds["path"] = str(ds["path"])
        return d

    def to_yaml(self, path: Path | str) -> None:
        """Save configuration to a YAML file."""
        path = Path(path)
        with open(path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=False)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Config":
        """Create from dictionary."""
        d = dict(d)
        # Handle nested configs
        if "datasets" in d:
            d["datasets"] = [
                ds if isinstance(ds, DatasetSpec) else DatasetSpec(**ds)
                for ds in d["datasets"]
            ]
        if "de" in d and isinstance(d["de"], dict):
            d["de"] = DEConfig(**d["de"])
        if "preprocess" in d and isinstance(d["preprocess"], dict):
            d["preprocess"] = PreprocessConfig(**d["preprocess"])
        if "plot" in d and isinstance(d["plot"], dict):
            d["plot"] = PlotConfig(**d["plot"])
        return cls(**d)

    @classmethod
    def from_yaml(cls, path: Path | str) -> "Config":
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        with open(path) as f:
            d = yaml.safe_load(f) or {}
        return cls.from_dict(d)

    @classmethod
    def from_env(cls) -> "Config":
        """Create configuration from environment variables."""
        de = DEConfig(
            group_a=os.getenv("SPHINGO_DE_GROUP_A", "UC"),
            group_b=os.getenv("SPHINGO_DE_GROUP_B", "HC"),
            min_pct=float(os.getenv("SPHINGO_DE_MIN_PCT", "0.1")),
            logfc_threshold=float(os.getenv("SPHINGO_DE_LOGFC_THRESHOLD", "0.1")),
        )
        return cls(
            output_dir=Path(os.getenv("SPHINGO_DE_OUTPUT_DIR", "results")),
            seed=int(os.getenv("SPHINGO_DE_SEED", "0")),
            de=de,
            verbose=os.getenv("SPHINGO_DE_VERBOSE", "").lower() in ("1", "true", "yes"),
        )
